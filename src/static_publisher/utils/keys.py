"""Storage key grammar.

    <publishId>_index_<collection>          collection index document
    <publishId>_settings_<collection>       collection server settings
    <publishId>_files_sha256_<hex>          identity variant of a content object
    <publishId>_files_sha256_<hex>_<enc>    compressed variant
    <primaryKey>_<n>                        chunk n (n >= 1) of a chunked object

These names are shared with the edge reader and must not change.
"""

from __future__ import annotations

from static_publisher.models.enums import ContentEncoding

SHA256_SCHEME = "sha256_"
SHA256_HEX_LENGTH = 64


def index_prefix(publish_id: str) -> str:
    return f"{publish_id}_index_"


def settings_prefix(publish_id: str) -> str:
    return f"{publish_id}_settings_"


def files_prefix(publish_id: str) -> str:
    return f"{publish_id}_files_"


def index_key(publish_id: str, collection_name: str) -> str:
    return index_prefix(publish_id) + collection_name


def settings_key(publish_id: str, collection_name: str) -> str:
    return settings_prefix(publish_id) + collection_name


def content_key(publish_id: str, content_hash: str, encoding: ContentEncoding | None = None) -> str:
    """Key of the stored object for one variant of a content hash."""
    key = f"{files_prefix(publish_id)}{SHA256_SCHEME}{content_hash}"
    if encoding is not None:
        key = f"{key}_{encoding.value}"
    return key


def chunk_key(primary_key: str, chunk_index: int) -> str:
    """Key of a chunk. Chunk 0 lives under the primary key itself."""
    if chunk_index == 0:
        return primary_key
    return f"{primary_key}_{chunk_index}"


def content_hash_id(publish_id: str, key: str) -> str | None:
    """Canonical content id (``sha256_<hex>``) of a content object key.

    Variant and chunk suffixes are stripped. Returns None if the key is not a
    content key or uses an addressing scheme we do not know.
    """
    prefix = files_prefix(publish_id)
    if not key.startswith(prefix):
        return None
    asset_id = key[len(prefix):]
    if not asset_id.startswith(SHA256_SCHEME):
        return None
    asset_id = asset_id[: len(SHA256_SCHEME) + SHA256_HEX_LENGTH]
    if len(asset_id) != len(SHA256_SCHEME) + SHA256_HEX_LENGTH:
        return None
    return asset_id


def hash_id(content_hash: str) -> str:
    """Canonical content id for an identity hash, matching ``content_hash_id``."""
    return f"{SHA256_SCHEME}{content_hash}"
