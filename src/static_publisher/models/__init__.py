"""Data model for static-publisher."""

from static_publisher.models.assets import AssetEntry, AssetVariantMetadata, CollectionIndex
from static_publisher.models.collection import IndexMetadata, ServerSettings
from static_publisher.models.enums import (
    BackendKind,
    CacheMode,
    ContentEncoding,
    parse_content_encoding,
)
from static_publisher.models.metadata import MetadataMap, build_metadata

__all__ = [
    "AssetEntry",
    "AssetVariantMetadata",
    "BackendKind",
    "CacheMode",
    "CollectionIndex",
    "ContentEncoding",
    "IndexMetadata",
    "MetadataMap",
    "ServerSettings",
    "build_metadata",
    "parse_content_encoding",
]
