"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations

RETRYABLE_STATUS_CODES = {429, 503}


class OneScriptError(Exception):
    """Base class for all OneScript errors."""


class ConfigurationError(OneScriptError):
    """A required setting (e.g. the provider credential) is missing."""


class ProviderError(OneScriptError):
    """The embedding provider failed and the client gave up."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Rate limited (429) or temporarily unavailable (503). Worth retrying."""


class PermanentProviderError(ProviderError):
    """Any other provider failure. Never retried."""


class PersistenceError(OneScriptError):
    """A read or write against the backing store failed."""


class SourceNotFoundError(OneScriptError):
    """No knowledge source exists with the given id."""


class SourceNotReadyError(OneScriptError):
    """The knowledge source has no content to embed."""


class SourceBusyError(OneScriptError):
    """Another invocation already holds the source in ``processing``."""
