"""Gemini embedding provider — Google Generative Language API via httpx."""

from __future__ import annotations

import logging

import httpx

from onescript.config import settings
from onescript.embeddings.base import EmbeddingVector
from onescript.errors import (
    RETRYABLE_STATUS_CODES,
    PermanentProviderError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)


class GeminiEmbeddingProvider:
    """Embedding provider using Gemini's ``embedContent`` endpoint."""

    name: str = "Gemini"

    def __init__(
        self,
        model: str | None = None,
        task_type: str | None = None,
        dimensions: int | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.model = model or settings.embedding_model
        self.task_type = task_type or settings.embedding_task_type
        self.dimensions = dimensions if dimensions is not None else settings.embedding_dimensions
        self.base_url = (base_url or settings.embedding_api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.embedding_timeout
        self._transport = transport

    async def embed(self, text: str, api_key: str) -> EmbeddingVector:
        """Embed one text as a retrieval document."""
        url = f"{self.base_url}/models/{self.model}:embedContent"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    headers={
                        "Content-Type": "application/json",
                        "x-goog-api-key": api_key,
                    },
                    json={
                        "model": f"models/{self.model}",
                        "content": {"parts": [{"text": text}]},
                        "taskType": self.task_type,
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise self._classify(exc.response) from exc
        except httpx.HTTPError as exc:
            raise PermanentProviderError(f"{self.name} request failed: {exc}") from exc

        return self._parse_response(response)

    def _classify(self, response: httpx.Response) -> Exception:
        """Map an error response onto the provider error taxonomy."""
        status = response.status_code
        detail = self._error_detail(response)
        message = f"{self.name} API error {status}: {detail}"
        if status in RETRYABLE_STATUS_CODES:
            return TransientProviderError(message, status_code=status)
        return PermanentProviderError(message, status_code=status)

    def _error_detail(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:500] or response.reason_phrase
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message", str(body["error"]))
        return str(body)[:500]

    def _parse_response(self, response: httpx.Response) -> EmbeddingVector:
        try:
            values = response.json()["embedding"]["values"]
        except (ValueError, KeyError, TypeError) as exc:
            raise PermanentProviderError(
                f"{self.name} returned an unexpected response: {exc}"
            ) from exc

        if self.dimensions and len(values) != self.dimensions:
            raise PermanentProviderError(
                f"{self.name} returned {len(values)} dimensions, expected {self.dimensions}"
            )
        logger.debug("Generated embedding with dimension: %d", len(values))
        return [float(v) for v in values]
