"""Exception taxonomy for static-publisher.

Storage failures carry a ``retryable`` flag set by the provider that raised
them. The retry loop only consults that flag; it never inspects SDK types.
"""

from __future__ import annotations

# HTTP statuses that signal a transient condition on the backend
RETRYABLE_HTTP_STATUSES = frozenset({408, 409, 423, 429, 500, 502, 503, 504})


class PublisherError(Exception):
    """Base class for all static-publisher errors."""


class ConfigError(PublisherError):
    """Project configuration or credentials are missing or invalid."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class StorageBackendError(PublisherError):
    """A storage backend call failed.

    Attributes:
        retryable: True if the same call may succeed when attempted again.
        reason: Short classification used in retry logs (e.g. "HTTP 503", "transport").
    """

    def __init__(self, message: str, *, retryable: bool = False, reason: str | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.reason = reason


class FetchError(StorageBackendError):
    """An HTTP call to a storage API returned a non-success status."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(
            message,
            retryable=status in RETRYABLE_HTTP_STATUSES,
            reason=f"HTTP {status}",
        )
        self.status = status


class ChunkMissingError(StorageBackendError):
    """A chunked object is missing one of its chunk keys."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Missing chunk {key}", retryable=False, reason="chunk missing")
        self.key = key


class StorageListingError(PublisherError):
    """The storage provider cannot enumerate keys for a prefix."""


class IndexLoadError(PublisherError):
    """A collection index could not be loaded or decoded."""


class AssetNotAvailableError(PublisherError):
    """An asset listed in the index could not be read from storage."""


def is_retryable(err: BaseException) -> bool:
    """Return True if ``err`` was classified retryable by its provider."""
    return isinstance(err, StorageBackendError) and err.retryable
