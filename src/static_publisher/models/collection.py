"""Per-collection documents: index metadata and server settings."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from static_publisher.models.enums import ContentEncoding
from static_publisher.models.metadata import MetadataMap, build_metadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexMetadata:
    """Metadata stored alongside a collection index document.

    Both times are unix seconds. A collection without ``expiration_time``
    never expires.
    """

    published_time: int | None = None
    expiration_time: int | None = None

    def to_metadata(self) -> dict[str, str]:
        return build_metadata(
            publishedTime=self.published_time,
            expirationTime=self.expiration_time,
        )

    @classmethod
    def from_metadata(cls, metadata: MetadataMap | None) -> IndexMetadata:
        if metadata is None:
            return cls()
        return cls(
            published_time=_parse_time(metadata.get("publishedTime")),
            expiration_time=_parse_time(metadata.get("expirationTime")),
        )


def _parse_time(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


class ServerSettings(BaseModel):
    """Serving behaviour for one collection.

    Written next to the index at publish time and read by the edge server.
    ``static_items`` entries are exact paths, directory prefixes (ending in
    "/"), or regular expressions written as ``re:/pattern/flags``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    public_dir_prefix: str = ""
    static_items: list[str] = Field(default_factory=list)
    allowed_encodings: list[ContentEncoding] = Field(
        default_factory=lambda: [ContentEncoding.BROTLI, ContentEncoding.GZIP]
    )
    spa_file: str | None = None
    not_found_page_file: str | None = None
    auto_ext: list[str] = Field(default_factory=list)
    auto_index: list[str] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def is_static_item(self, pathname: str) -> bool:
        """True if a request path is listed in ``static_items``.

        Exact entries match the whole path, entries ending in "/" match by
        prefix, and ``re:/pattern/flags`` entries are regular expressions.
        Unparsable regular expressions are skipped.
        """
        for item in self.static_items:
            if item.startswith("re:"):
                pattern = _compile_static_pattern(item[3:])
                if pattern is not None and pattern.search(pathname):
                    return True
            elif item.endswith("/"):
                if pathname.startswith(item):
                    return True
            elif item == pathname:
                return True
        return False

    def request_path_for(self, asset_key: str) -> str:
        """Request path that maps to ``asset_key`` once ``public_dir_prefix`` is prepended."""
        if self.public_dir_prefix and asset_key.startswith(self.public_dir_prefix):
            return asset_key[len(self.public_dir_prefix):]
        return asset_key


_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_REGEX_LITERAL = re.compile(r"/(.*?)/([a-z]*)$", re.IGNORECASE)


def _compile_static_pattern(value: str) -> re.Pattern[str] | None:
    match = _REGEX_LITERAL.match(value)
    if match is None:
        logger.warning("Cannot parse static item pattern '%s', skipping", value)
        return None
    flags = 0
    for flag in match.group(2).lower():
        flags |= _REGEX_FLAGS.get(flag, 0)
    try:
        return re.compile(match.group(1), flags)
    except re.error:
        logger.warning("Invalid static item pattern '%s', skipping", value)
        return None
