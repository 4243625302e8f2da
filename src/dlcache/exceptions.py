"""
Custom exception hierarchy for the download cache.

All exceptions inherit from DLCacheError, which provides optional context
for structured error handling and logging.

Only InvalidArgumentError and FetchError ever reach callers of
DownloadCache.get(); store and transform faults are absorbed and logged.
"""

from __future__ import annotations

from typing import Any


class DLCacheError(Exception):
    """Base exception for all download cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(DLCacheError):
    """Raised when configuration is invalid or missing.

    Examples:
        - FETCH_BACKEND=browser without BROWSER_ENDPOINT
        - Unwritable CACHE_DIR at startup
    """

    pass


class InvalidArgumentError(DLCacheError):
    """Raised when the caller supplies an unusable request (e.g. empty URL).

    Never retried: the request itself is wrong.
    """

    pass


class StoreError(DLCacheError):
    """Base class for persisted artifact store faults.

    Context should include:
        - key: The cache key involved
        - path: The blob path on disk
    """

    pass


class StoreReadError(StoreError):
    """Raised when a cached blob is missing, unreadable, or not valid gzip."""

    pass


class StoreWriteError(StoreError):
    """Raised when a blob cannot be compressed and persisted."""

    pass


class FetchError(DLCacheError):
    """Raised when retrieving the resource fails.

    Context should include:
        - url: The identifier that was being fetched
        - kind: One of "transport", "timeout", "status", "empty", "too_large"
        - status_code: HTTP status code if applicable
    """

    pass


class TransformError(DLCacheError):
    """Raised when content transformation fails.

    The pipeline treats this as fail-open and caches the raw bytes instead.
    """

    pass
