"""Source processor — drives one knowledge source through embedding."""

from __future__ import annotations

import logging

from onescript.db.database import Database
from onescript.embeddings.client import EmbeddingClient
from onescript.errors import (
    PersistenceError,
    SourceBusyError,
    SourceNotFoundError,
    SourceNotReadyError,
)

logger = logging.getLogger(__name__)


class SourceProcessor:
    """Moves a source from ``pending`` to ``active`` or ``failed``.

    Outcomes are reported through the persisted ``status`` and
    ``error_message`` columns; exceptions are re-raised only so the job
    runner can log them.
    """

    def __init__(self, db: Database, embeddings: EmbeddingClient) -> None:
        self.db = db
        self.embeddings = embeddings

    async def process_source(self, source_id: str) -> None:
        """Embed a source's full content and store the vector.

        1. Load the row; abort without writing if it is missing or empty.
        2. Claim it (``processing``) unless another run already holds it.
        3. Embed the whole ``content`` string in one request.
        4. Store vector, ``active`` and ``processed_at`` in one update.

        Any failure in 2-4 marks the source ``failed`` with the error message.
        """
        source = await self.db.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found")
        if not source.content:
            raise SourceNotReadyError(f"Source {source_id} has no content")

        try:
            claimed = await self.db.claim_for_processing(source_id)
        except PersistenceError as exc:
            await self._fail(source_id, exc)
            raise
        if not claimed:
            raise SourceBusyError(f"Source {source_id} is already being processed")

        logger.info("Processing source %s (%d chars)", source_id, len(source.content))

        try:
            embedding = await self.embeddings.generate_embedding(source.content)
            logger.info(
                "Updating source %s with embedding of length %d", source_id, len(embedding)
            )
            await self.db.mark_active(source_id, embedding)
        except Exception as exc:
            await self._fail(source_id, exc)
            raise

        logger.info("Source %s is active", source_id)

    async def _fail(self, source_id: str, error: Exception) -> None:
        message = str(error) or type(error).__name__
        logger.error("Processing source %s failed: %s", source_id, message)
        try:
            await self.db.mark_failed(source_id, message)
        except PersistenceError:
            # The original error is still raised by the caller.
            logger.exception(
                "Could not mark source %s as failed; it stays in processing", source_id
            )
