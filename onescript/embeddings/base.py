"""Base protocol for embedding providers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

EmbeddingVector = list[float]


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Interface that all embedding providers must implement.

    Implementations raise ``TransientProviderError`` for rate limiting or
    temporary unavailability and ``PermanentProviderError`` for anything else.
    """

    name: str

    async def embed(self, text: str, api_key: str) -> EmbeddingVector:
        """Return the embedding vector for a single text."""
        ...
