"""Enumerations for the static-publisher data model."""

from enum import Enum


class ContentEncoding(str, Enum):
    """Compressed encodings a variant may be stored in.

    The identity variant has no encoding and is represented by ``None``.
    """

    BROTLI = "br"
    GZIP = "gzip"


class BackendKind(str, Enum):
    """Which storage backend a project publishes to. Selected once per run."""

    KV_STORE = "kv-store"  # Remote KV-style HTTP API
    S3 = "s3"  # S3-compatible object store
    LOCAL = "local"  # Local simulated store for development


class CacheMode(str, Enum):
    """How a served response is cached downstream."""

    EXTENDED = "extended"  # Long-lived, content never changes under this path
    DEFAULT = "default"  # Revalidate on every use
    NEVER = "never"  # Fallback pages (SPA, not found)


def parse_content_encoding(value: str | None) -> ContentEncoding | None:
    """Map a stored encoding name to a ContentEncoding, or None for unknown values."""
    if value is None:
        return None
    try:
        return ContentEncoding(value)
    except ValueError:
        return None
