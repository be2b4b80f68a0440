"""Storage provider for a remote KV store reached over its HTTP API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import httpx

from static_publisher.errors import FetchError, StorageBackendError
from static_publisher.models.metadata import MetadataMap
from static_publisher.storage.base import StorageEntry, StorageProvider

logger = logging.getLogger(__name__)

# Largest value the KV store accepts in a single write
KV_STORE_CHUNK_SIZE = 20 * 1024 * 1024

DEFAULT_API_BASE_URL = "https://api.fastly.com"

_STORES_PATH = "/resources/stores/kv"


def mask_token(token: str) -> str:
    """Show only the first four characters of an API token."""
    return token[:4] + "*" * max(0, len(token) - 4)


class KvStoreProvider(StorageProvider):
    """KV store backend.

    Keys are listed with cursor pagination; object metadata travels as a JSON
    string in the ``metadata`` header. The store id is looked up by name once.
    """

    name = "KV Store"

    def __init__(
        self,
        store_name: str,
        api_token: str,
        *,
        base_url: str = DEFAULT_API_BASE_URL,
        chunk_threshold: int = KV_STORE_CHUNK_SIZE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        **pool_options: Any,
    ) -> None:
        super().__init__(**pool_options)
        self.store_name = store_name
        self.chunk_threshold = chunk_threshold
        self._store_id: str | None = None
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Fastly-Key": api_token, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise StorageBackendError(
                f"{operation}: {e}", retryable=True, reason="transport"
            ) from e
        if response.is_error:
            raise FetchError(
                f"{operation} failed: HTTP {response.status_code}", response.status_code
            )
        return response

    async def _get_paginated(
        self,
        url: str,
        operation: str,
        params: dict[str, str] | None = None,
    ) -> list[Any]:
        results: list[Any] = []
        query = dict(params or {})
        while True:
            response = await self._request("GET", url, operation, params=query)
            body = response.json()
            results.extend(body.get("data") or [])
            cursor = (body.get("meta") or {}).get("next_cursor")
            if not cursor:
                return results
            query["cursor"] = cursor

    async def _resolve_store_id(self) -> str | None:
        if self._store_id is None:
            stores = await self._get_paginated(_STORES_PATH, "Listing KV Stores")
            for store in stores:
                if store.get("name") == self.store_name:
                    self._store_id = store["id"]
                    break
            else:
                logger.warning("KV Store '%s' not found", self.store_name)
        return self._store_id

    async def _require_store_id(self) -> str:
        store_id = await self._resolve_store_id()
        if store_id is None:
            raise StorageBackendError(f"KV Store '{self.store_name}' not found")
        return store_id

    @staticmethod
    def _item_url(store_id: str, key: str) -> str:
        return f"{_STORES_PATH}/{quote(store_id, safe='')}/keys/{quote(key, safe='')}"

    async def list_keys(self, prefix: str) -> list[str] | None:
        store_id = await self._resolve_store_id()
        if store_id is None:
            return None
        keys = await self._get_paginated(
            f"{_STORES_PATH}/{quote(store_id, safe='')}/keys",
            f"Listing keys for KV Store [{store_id}] {self.store_name}",
            {"prefix": prefix},
        )
        # The API filters by prefix; filter again so a lenient server cannot leak keys
        return [key for key in keys if key.startswith(prefix)]

    async def _fetch_entry(self, key: str, *, info_only: bool) -> StorageEntry | None:
        store_id = await self._require_store_id()
        try:
            response = await self._request(
                "HEAD" if info_only else "GET",
                self._item_url(store_id, key),
                f"Reading item [{key}]",
            )
        except FetchError as e:
            if e.status == 404:
                return None
            raise

        provider_metadata = {}
        if generation := response.headers.get("generation"):
            provider_metadata["generation"] = generation
        return StorageEntry(
            data=None if info_only else response.content,
            metadata=MetadataMap.from_json(response.headers.get("metadata")),
            provider_metadata=provider_metadata,
        )

    async def _put_entry(self, key: str, data: bytes, metadata: Mapping[str, str] | None) -> None:
        store_id = await self._require_store_id()
        headers = {"Content-Type": "application/octet-stream"}
        if metadata is not None:
            headers["metadata"] = MetadataMap(metadata).to_json()
        await self._request(
            "PUT",
            self._item_url(store_id, key),
            f"Submitting item [{key}]",
            content=data,
            headers=headers,
        )

    async def _remove_entry(self, key: str) -> None:
        store_id = await self._require_store_id()
        try:
            await self._request("DELETE", self._item_url(store_id, key), f"Deleting item [{key}]")
        except FetchError as e:
            if e.status != 404:
                raise
