"""Serve one published collection straight from storage.

``PublisherServer`` resolves a request path to an AssetEntry, negotiates the
variant to send, evaluates conditional headers and shapes the response. It
is transport-agnostic: the FastAPI app in ``static_publisher.app`` adapts it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from email.utils import formatdate

import httpx

from static_publisher.errors import AssetNotAvailableError, IndexLoadError
from static_publisher.models.assets import AssetEntry, AssetVariantMetadata, CollectionIndex
from static_publisher.models.collection import ServerSettings
from static_publisher.models.enums import CacheMode, ContentEncoding
from static_publisher.serving.negotiation import find_accept_encodings_groups, select_variant
from static_publisher.serving.preconditions import (
    HEADERS_PRESERVED_ON_304,
    evaluate_preconditions,
)
from static_publisher.storage.base import StorageEntry, StorageProvider
from static_publisher.utils.keys import content_key, index_key, settings_key

logger = logging.getLogger(__name__)

COLLECTION_HEADER = "X-Publisher-Server-Collection"
EXTENDED_CACHE_CONTROL = "max-age=31536000"

# A miss right after the index named the object means "not visible yet"
FETCH_RETRIES = 3
FETCH_RETRY_DELAY = 0.25


@dataclass
class ServedResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class _LoadedVariant:
    metadata: AssetVariantMetadata
    entry: StorageEntry


def request_accepts_html(accept: str | None) -> bool:
    if not accept:
        return True
    media_types = {part.split(";")[0].strip().lower() for part in accept.split(",")}
    return bool(media_types & {"text/html", "text/*", "*/*"})


class PublisherServer:
    """Serves assets of one collection.

    Settings and index are read once and cached for the life of the instance;
    create a new instance to pick up a newly published index.
    """

    def __init__(
        self,
        provider: StorageProvider,
        publish_id: str,
        collection_name: str,
        *,
        collection_header: str | None = COLLECTION_HEADER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self.publish_id = publish_id
        self.collection_name = collection_name
        self.collection_header = collection_header
        self._sleep = sleep
        self._settings: ServerSettings | None = None
        self._index: CollectionIndex | None = None

    async def load_settings(self) -> ServerSettings | None:
        if self._settings is None:
            key = settings_key(self.publish_id, self.collection_name)
            entry = await self._provider.get_entry(key)
            if entry is None or entry.data is None:
                logger.error("Settings not found at %s; the collection may not be published", key)
                return None
            self._settings = ServerSettings.model_validate_json(entry.data)
        return self._settings

    async def load_index(self) -> CollectionIndex | None:
        if self._index is None:
            key = index_key(self.publish_id, self.collection_name)
            entry = await self._provider.get_entry(key)
            if entry is None or entry.data is None:
                logger.error("Index not found at %s; the collection may not be published", key)
                return None
            self._index = CollectionIndex.from_json(entry.data)
        return self._index

    async def match_asset(self, asset_key: str, apply_auto: bool = False) -> AssetEntry | None:
        """Find the asset for a key, optionally trying autoExt and autoIndex."""
        settings = await self.load_settings()
        index = await self.load_index()
        if settings is None or index is None:
            return None

        if not asset_key.endswith("/"):
            if (asset := index.get(asset_key)) is not None:
                return asset
            if apply_auto:
                for ext in settings.auto_ext:
                    if (asset := index.get(asset_key + ext)) is not None:
                        return asset

        if apply_auto and settings.auto_index:
            as_dir = asset_key.rstrip("/") + "/"
            for index_file in settings.auto_index:
                if (asset := index.get(as_dir + index_file)) is not None:
                    return asset

        return None

    async def fetch_with_retry(self, key: str, *, info_only: bool = False) -> StorageEntry:
        """Read an object the index says exists, tolerating late visibility.

        Raises:
            AssetNotAvailableError: If the object is still missing after retries.
        """
        for attempt in range(FETCH_RETRIES + 1):
            if attempt > 0:
                await self._sleep(attempt * FETCH_RETRY_DELAY)
            if info_only:
                entry = await self._provider.get_entry_info(key)
            else:
                entry = await self._provider.get_entry(key)
            if entry is not None:
                return entry
            logger.debug("Object %s not visible yet (attempt %d)", key, attempt + 1)
        raise AssetNotAvailableError(f"Object {key} is listed in the index but not in storage")

    async def _load_variant(
        self,
        asset: AssetEntry,
        encoding: ContentEncoding | None,
        info_only: bool,
    ) -> _LoadedVariant | None:
        key = content_key(self.publish_id, asset.hash, encoding)
        entry = await self.fetch_with_retry(key, info_only=info_only)
        metadata = AssetVariantMetadata.from_metadata(entry.metadata)
        if metadata is None:
            logger.warning("Object %s has no usable variant metadata", key)
            return None
        return _LoadedVariant(metadata=metadata, entry=entry)

    async def find_variant(
        self,
        asset: AssetEntry,
        groups: list[list[ContentEncoding]],
        *,
        info_only: bool = False,
    ) -> _LoadedVariant:
        for group in groups:
            loaded: dict[str, _LoadedVariant] = {}
            for encoding in group:
                if not asset.has_variant(encoding):
                    continue
                variant = await self._load_variant(asset, encoding, info_only)
                if variant is not None:
                    loaded[encoding.value] = variant
            chosen = select_variant(
                {name: variant.metadata.size for name, variant in loaded.items()},
                [[encoding.value for encoding in group]],
            )
            if chosen is not None:
                return loaded[chosen]

        identity = await self._load_variant(asset, None, info_only)
        if identity is None:
            raise AssetNotAvailableError(f"Identity variant of {asset.key} is unreadable")
        return identity

    async def serve_asset(
        self,
        method: str,
        request_headers: Mapping[str, str],
        asset: AssetEntry,
        *,
        status: int = 200,
        cache: CacheMode = CacheMode.DEFAULT,
    ) -> ServedResponse:
        request_headers = httpx.Headers(request_headers)
        settings = await self.load_settings()
        allowed = settings.allowed_encodings if settings is not None else []

        headers = {"Content-Type": asset.content_type}
        vary = ["Accept-Encoding"]
        if self.collection_header:
            headers[self.collection_header] = self.collection_name
            vary.append(self.collection_header)
        headers["Vary"] = ", ".join(vary)

        if cache == CacheMode.EXTENDED:
            headers["Cache-Control"] = EXTENDED_CACHE_CONTROL
        elif cache == CacheMode.NEVER:
            headers["Cache-Control"] = "no-store"
        else:
            headers["Cache-Control"] = "no-cache"

        groups = find_accept_encodings_groups(request_headers.get("Accept-Encoding"), allowed)
        head_only = method.upper() == "HEAD"
        variant = await self.find_variant(asset, groups, info_only=head_only)

        if variant.metadata.content_encoding is not None:
            headers["Content-Encoding"] = variant.metadata.content_encoding.value
        headers["ETag"] = f'"{variant.metadata.hash}"'
        if asset.last_modified_time != 0:
            headers["Last-Modified"] = formatdate(asset.last_modified_time, usegmt=True)

        etag = headers["ETag"]
        if not evaluate_preconditions(method, request_headers, etag, asset.last_modified_time):
            preserved = {
                name: value for name, value in headers.items() if name in HEADERS_PRESERVED_ON_304
            }
            return ServedResponse(status=304, headers=preserved)

        if head_only:
            headers["Content-Length"] = str(variant.metadata.size)
            return ServedResponse(status=status, headers=headers)
        return ServedResponse(status=status, headers=headers, body=variant.entry.data or b"")

    async def serve_request(
        self,
        method: str,
        path: str,
        request_headers: Mapping[str, str],
    ) -> ServedResponse | None:
        """Serve a GET or HEAD request for a decoded ``path``.

        Returns None when nothing matches, which callers answer with a 404.

        Raises:
            AssetNotAvailableError: If the index names an object storage lacks.
        """
        if method.upper() not in ("GET", "HEAD"):
            return None

        settings = await self.load_settings()
        if settings is None:
            return ServedResponse(
                status=500,
                headers={"Content-Type": "text/plain"},
                body=b"Settings not found. You may need to publish your application.",
            )

        asset = await self.match_asset(settings.public_dir_prefix + path, apply_auto=True)
        if asset is not None:
            cache = CacheMode.EXTENDED if asset.static else CacheMode.DEFAULT
            return await self.serve_asset(method, request_headers, asset, cache=cache)

        if not request_accepts_html(httpx.Headers(request_headers).get("Accept")):
            return None

        index = await self.load_index()
        if index is None:
            raise IndexLoadError(f"Index for collection '{self.collection_name}' not found")

        # Fallback pages are raw asset keys, not relative to publicDirPrefix
        if settings.spa_file and (asset := index.get(settings.spa_file)) is not None:
            return await self.serve_asset(method, request_headers, asset, cache=CacheMode.NEVER)
        not_found = settings.not_found_page_file
        if not_found and (asset := index.get(not_found)) is not None:
            return await self.serve_asset(
                method, request_headers, asset, status=404, cache=CacheMode.NEVER
            )
        return None
