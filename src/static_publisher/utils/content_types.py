"""Content type detection for published files.

Maps a file extension to a MIME type and whether the format is text. Text
formats are worth precompressing; binary formats are usually compressed
already.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Final

DEFAULT_CONTENT_TYPE: Final = "application/octet-stream"


@dataclass(frozen=True)
class ContentTypeInfo:
    content_type: str
    text: bool


# Extension to (content type, is text)
_EXTENSION_MAP: Final[dict[str, ContentTypeInfo]] = {
    # Text
    ".txt": ContentTypeInfo("text/plain", True),
    ".htm": ContentTypeInfo("text/html", True),
    ".html": ContentTypeInfo("text/html", True),
    ".xml": ContentTypeInfo("application/xml", True),
    ".json": ContentTypeInfo("application/json", True),
    ".map": ContentTypeInfo("application/json", True),
    ".js": ContentTypeInfo("application/javascript", True),
    ".mjs": ContentTypeInfo("application/javascript", True),
    ".css": ContentTypeInfo("text/css", True),
    ".svg": ContentTypeInfo("image/svg+xml", True),
    ".md": ContentTypeInfo("text/markdown", True),
    ".csv": ContentTypeInfo("text/csv", True),
    ".webmanifest": ContentTypeInfo("application/manifest+json", True),
    # Binary
    ".bmp": ContentTypeInfo("image/bmp", False),
    ".png": ContentTypeInfo("image/png", False),
    ".gif": ContentTypeInfo("image/gif", False),
    ".jpg": ContentTypeInfo("image/jpeg", False),
    ".jpeg": ContentTypeInfo("image/jpeg", False),
    ".ico": ContentTypeInfo("image/vnd.microsoft.icon", False),
    ".tif": ContentTypeInfo("image/tiff", False),
    ".tiff": ContentTypeInfo("image/tiff", False),
    ".webp": ContentTypeInfo("image/webp", False),
    ".avif": ContentTypeInfo("image/avif", False),
    ".aac": ContentTypeInfo("audio/aac", False),
    ".mp3": ContentTypeInfo("audio/mpeg", False),
    ".avi": ContentTypeInfo("video/x-msvideo", False),
    ".mp4": ContentTypeInfo("video/mp4", False),
    ".mpeg": ContentTypeInfo("video/mpeg", False),
    ".webm": ContentTypeInfo("video/webm", False),
    ".pdf": ContentTypeInfo("application/pdf", False),
    ".tar": ContentTypeInfo("application/x-tar", False),
    ".zip": ContentTypeInfo("application/zip", False),
    ".eot": ContentTypeInfo("application/vnd.ms-fontobject", False),
    ".otf": ContentTypeInfo("font/otf", False),
    ".ttf": ContentTypeInfo("font/ttf", False),
    ".woff": ContentTypeInfo("font/woff", False),
    ".woff2": ContentTypeInfo("font/woff2", False),
    ".wasm": ContentTypeInfo("application/wasm", False),
}


def detect_content_type(asset_key: str) -> ContentTypeInfo | None:
    """Return the content type for an asset key, or None if unknown.

    Known extensions win; otherwise the platform MIME table is consulted and
    ``text/*`` types are treated as text.
    """
    suffix = PurePosixPath(asset_key).suffix.lower()
    info = _EXTENSION_MAP.get(suffix)
    if info is not None:
        return info

    guessed, _ = mimetypes.guess_type(asset_key, strict=False)
    if guessed is None:
        return None
    return ContentTypeInfo(guessed, guessed.startswith("text/"))
