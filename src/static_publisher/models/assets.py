"""Asset, variant and collection index models.

An AssetEntry is one logical file inside one collection. Its bytes live in
storage as content-addressed objects, one per variant (identity plus each
compressed encoding that turned out smaller). A CollectionIndex maps asset
keys to entries and is stored as a single JSON document.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError
from pydantic.alias_generators import to_camel

from static_publisher.errors import IndexLoadError
from static_publisher.models.enums import ContentEncoding, parse_content_encoding
from static_publisher.models.metadata import MetadataMap, build_metadata


@dataclass(frozen=True)
class AssetVariantMetadata:
    """Metadata of one stored variant blob.

    ``hash`` is the hex sha256 of the bytes actually stored (compressed bytes
    for a compressed variant) and is the identity of the blob.
    """

    size: int
    hash: str
    content_encoding: ContentEncoding | None = None
    num_chunks: int | None = None

    @property
    def is_chunked(self) -> bool:
        return self.num_chunks is not None and self.num_chunks > 1

    def to_metadata(self) -> dict[str, str]:
        return build_metadata(
            contentEncoding=self.content_encoding.value if self.content_encoding else None,
            size=self.size,
            hash=self.hash,
            numChunks=self.num_chunks if self.is_chunked else None,
        )

    @classmethod
    def from_metadata(cls, metadata: MetadataMap | None) -> AssetVariantMetadata | None:
        """Decode variant metadata read from storage.

        Returns None when required fields are missing or malformed, or when
        the stored encoding is not one we know.
        """
        if metadata is None:
            return None

        hash_value = metadata.get("hash")
        size = _parse_int(metadata.get("size"))
        if not hash_value or size is None:
            return None

        content_encoding = None
        encoding_value = metadata.get("contentEncoding")
        if encoding_value:
            content_encoding = parse_content_encoding(encoding_value)
            if content_encoding is None:
                return None

        num_chunks = None
        if metadata.get("numChunks") is not None:
            num_chunks = _parse_int(metadata.get("numChunks"))
            if num_chunks is None:
                return None

        return cls(
            size=size,
            hash=hash_value,
            content_encoding=content_encoding,
            num_chunks=num_chunks,
        )


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


class AssetEntry(BaseModel):
    """One logical file within one collection."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    key: str  # Public asset path, e.g. "/index.html"
    hash: str  # Hex sha256 of the identity bytes; the content address
    size: int
    content_type: str
    last_modified_time: int = 0  # Unix seconds
    variants: list[ContentEncoding] = Field(default_factory=list)
    static: bool = False  # Long-lived and cacheable

    def has_variant(self, encoding: ContentEncoding | None) -> bool:
        return encoding is None or encoding in self.variants


class CollectionIndex(RootModel[dict[str, AssetEntry]]):
    """Mapping of asset key to AssetEntry for one collection."""

    root: dict[str, AssetEntry] = Field(default_factory=dict)

    def __iter__(self) -> Iterator[str]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __contains__(self, asset_key: object) -> bool:
        return asset_key in self.root

    def get(self, asset_key: str) -> AssetEntry | None:
        return self.root.get(asset_key)

    def add(self, entry: AssetEntry) -> None:
        self.root[entry.key] = entry

    def entries(self) -> list[AssetEntry]:
        return list(self.root.values())

    def referenced_hashes(self) -> set[str]:
        """Content hashes referenced by any asset in this index.

        Variant objects are addressed by the identity hash plus an encoding
        suffix, so the identity hash covers every variant of an asset.
        """
        return {entry.hash for entry in self.root.values()}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> CollectionIndex:
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise IndexLoadError(f"Invalid collection index document: {e}") from e

    @classmethod
    def from_entries(cls, entries: list[AssetEntry]) -> CollectionIndex:
        return cls({entry.key: entry for entry in entries})

