"""Rate-limited, retrying embedding client."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable

from onescript.config import Settings, settings as default_settings
from onescript.embeddings.base import EmbeddingProvider, EmbeddingVector
from onescript.embeddings.rate_limiter import RateLimiter, Sleep
from onescript.errors import (
    RETRYABLE_STATUS_CODES,
    ConfigurationError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)


def is_retryable(exc: Exception) -> bool:
    """True for rate limiting or temporary unavailability, by type, status or marker."""
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, PermanentProviderError):
        return False
    if getattr(exc, "status_code", None) in RETRYABLE_STATUS_CODES:
        return True
    return "429" in str(exc)


class EmbeddingClient:
    """Generates embeddings through a shared RateLimiter.

    Every request occupies one limiter slot for its whole retry sequence, so
    backoff waits delay the queue as well as the caller.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        limiter: RateLimiter,
        settings: Settings | None = None,
        api_key: str | None = None,
        sleep: Sleep = asyncio.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.provider = provider
        self.limiter = limiter
        self.settings = settings or default_settings
        self._api_key = api_key
        self._sleep = sleep
        self._jitter = jitter

    async def generate_embedding(self, text: str) -> EmbeddingVector:
        """Return the embedding for ``text``.

        Raises ConfigurationError before touching the network when no
        credential is configured, and ProviderError once the provider has
        failed for good.
        """
        api_key = self._resolve_api_key()
        if not api_key:
            raise ConfigurationError("ONESCRIPT_GOOGLE_API_KEY is not defined")

        return await self.limiter.submit(lambda: self._embed_with_retry(text, api_key))

    def _resolve_api_key(self) -> str:
        # Read fresh from the environment on every call.
        if self._api_key is not None:
            return self._api_key
        return Settings().google_api_key

    def backoff_delay(self, attempt: int) -> float:
        """Wait before retrying after the 0-indexed ``attempt`` failed."""
        base = (2 ** attempt) * self.settings.backoff_base
        return base + self._jitter(0, self.settings.backoff_jitter)

    async def _embed_with_retry(self, text: str, api_key: str) -> EmbeddingVector:
        max_attempts = self.settings.max_attempts
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            try:
                vector = await self.provider.embed(text, api_key)
            except Exception as exc:
                if not is_retryable(exc):
                    if isinstance(exc, ProviderError):
                        raise
                    raise PermanentProviderError(
                        f"{self.provider.name} embedding failed: {exc}"
                    ) from exc
                last_error = exc
                if attempt == max_attempts - 1:
                    break
                wait = self.backoff_delay(attempt)
                logger.warning(
                    "%s API error (%s). Retrying in %dms (attempt %d/%d)...",
                    self.provider.name,
                    getattr(exc, "status_code", None) or "limit",
                    round(wait * 1000),
                    attempt + 1,
                    max_attempts,
                )
                await self._sleep(wait)
                continue

            logger.info(
                "Generated embedding with dimension %d after %d attempt(s)",
                len(vector), attempt + 1,
            )
            return vector

        logger.error(
            "%s embedding failed after %d attempts: %s",
            self.provider.name, max_attempts, last_error,
        )
        raise ProviderError(
            f"Embedding failed after {max_attempts} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        ) from last_error
