"""OneScript — FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from onescript.config import Settings, settings as default_settings
from onescript.db.database import Database
from onescript.embeddings.base import EmbeddingProvider
from onescript.embeddings.client import EmbeddingClient
from onescript.embeddings.gemini import GeminiEmbeddingProvider
from onescript.embeddings.rate_limiter import RateLimiter
from onescript.models.source import KnowledgeSource, SourceStatus, SourceType
from onescript.pipeline.jobs import ProcessingJobs
from onescript.pipeline.processor import SourceProcessor

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9.-]", re.IGNORECASE)


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


# --- Request / Response models ---


class TextSourceRequest(BaseModel):
    organization_id: str
    name: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)


class IngestResponse(BaseModel):
    success: bool = True
    source_id: str


class SourceResponse(BaseModel):
    id: str
    organization_id: str
    type: str
    name: str
    status: str
    error_message: str | None = None
    embedding_dimensions: int | None = None
    metadata: dict
    created_at: datetime | None = None
    updated_at: datetime | None = None
    processed_at: datetime | None = None

    @classmethod
    def from_source(cls, source: KnowledgeSource) -> "SourceResponse":
        return cls(
            id=source.id,
            organization_id=source.organization_id,
            type=source.type.value,
            name=source.name,
            status=source.status.value,
            error_message=source.error_message,
            embedding_dimensions=len(source.embedding) if source.embedding else None,
            metadata=source.metadata,
            created_at=source.created_at,
            updated_at=source.updated_at,
            processed_at=source.processed_at,
        )


class StatsResponse(BaseModel):
    organization_id: str
    total: int
    by_status: dict[str, int]


def create_app(
    settings: Settings | None = None,
    provider: EmbeddingProvider | None = None,
) -> FastAPI:
    """Build the application; one limiter, client and job runner per app."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)

        db = Database(settings.database_path)
        await db.connect()
        limiter = RateLimiter(settings.min_request_delay)
        if provider is None:
            embedding_provider = GeminiEmbeddingProvider(
                model=settings.embedding_model,
                task_type=settings.embedding_task_type,
                dimensions=settings.embedding_dimensions,
                base_url=settings.embedding_api_url,
                timeout=settings.embedding_timeout,
            )
        else:
            embedding_provider = provider
        embeddings = EmbeddingClient(embedding_provider, limiter, settings)
        processor = SourceProcessor(db, embeddings)
        jobs = ProcessingJobs(processor, db, settings)

        app.state.db = db
        app.state.embeddings = embeddings
        app.state.jobs = jobs
        await jobs.start()
        try:
            yield
        finally:
            await jobs.stop()
            await limiter.aclose()
            await db.close()

    app = FastAPI(
        title="OneScript",
        description="Knowledge source ingestion and embedding",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # --- Routes ---

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/ingest", response_model=IngestResponse)
    async def ingest_file(
        request: Request,
        organization_id: str = Form(...),
        file: UploadFile = File(...),
    ):
        """Store an uploaded .txt file and queue it for embedding.

        Returns as soon as the source row exists; poll the source to follow
        its status.
        """
        filename = file.filename or ""
        if not filename:
            raise HTTPException(status_code=400, detail="No file provided")
        if not filename.lower().endswith(".txt"):
            raise HTTPException(status_code=400, detail="Only .txt files are supported")

        org_dir = sanitize_filename(organization_id)
        if org_dir.strip(".") == "":
            raise HTTPException(status_code=400, detail="Invalid organization id")

        data = await file.read()
        if not data:
            raise HTTPException(status_code=400, detail="File is empty")

        valid_filename = sanitize_filename(filename)
        relative_path = Path(org_dir) / valid_filename
        upload_root = Path(settings.upload_dir).resolve()
        target = upload_root / relative_path
        if not target.resolve().is_relative_to(upload_root):
            raise HTTPException(status_code=400, detail="Invalid upload path")

        try:
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, data)
        except OSError:
            logger.exception("File save error for %s", filename)
            raise HTTPException(status_code=500, detail="Failed to save file")

        content = data.decode("utf-8", errors="replace")
        db: Database = request.app.state.db
        source_id = await db.create_source(
            organization_id,
            SourceType.FILE,
            filename,
            content,
            metadata={
                "localPath": str(Path(settings.upload_dir).name / relative_path),
                "fileSize": len(data),
                "mimeType": "text/plain",
                "originalName": filename,
                "wordCount": len(content.split()),
            },
        )
        request.app.state.jobs.enqueue(source_id)
        return IngestResponse(source_id=source_id)

    @app.post("/api/sources/text", response_model=IngestResponse)
    async def ingest_text(request: Request, req: TextSourceRequest):
        db: Database = request.app.state.db
        source_id = await db.create_source(
            req.organization_id,
            SourceType.TEXT,
            req.name,
            req.content,
            metadata={"wordCount": len(req.content.split())},
        )
        request.app.state.jobs.enqueue(source_id)
        return IngestResponse(source_id=source_id)

    @app.get("/api/sources/{source_id}", response_model=SourceResponse)
    async def get_source(request: Request, source_id: str):
        source = await request.app.state.db.get_source(source_id)
        if source is None:
            raise HTTPException(status_code=404, detail="Source not found")
        return SourceResponse.from_source(source)

    @app.post("/api/sources/{source_id}/reprocess", response_model=IngestResponse)
    async def reprocess_source(request: Request, source_id: str):
        """Explicitly re-trigger processing, e.g. after a failure."""
        source = await request.app.state.db.get_source(source_id)
        if source is None:
            raise HTTPException(status_code=404, detail="Source not found")
        request.app.state.jobs.enqueue(source_id)
        return IngestResponse(source_id=source_id)

    @app.get(
        "/api/organizations/{organization_id}/sources",
        response_model=list[SourceResponse],
    )
    async def list_sources(
        request: Request, organization_id: str, status: SourceStatus | None = None
    ):
        sources = await request.app.state.db.list_sources(organization_id, status)
        return [SourceResponse.from_source(s) for s in sources]

    @app.get("/api/organizations/{organization_id}/stats", response_model=StatsResponse)
    async def organization_stats(request: Request, organization_id: str):
        counts = await request.app.state.db.count_sources(organization_id)
        return StatsResponse(
            organization_id=organization_id,
            total=sum(counts.values()),
            by_status=counts,
        )

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "onescript.main:app",
        host=default_settings.host,
        port=default_settings.port,
    )
