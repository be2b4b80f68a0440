"""Local simulated KV store for development.

The store is a JSON key file mapping each key to a content file and its
metadata string, the layout local edge simulators read:

    {"<key>": {"file": "content/<key>", "metadata": "{...}"}}

Content files live next to the key file. The same chunk threshold as the
remote KV store applies, so chunking can be exercised locally. Content files
are written per object; the key file is rewritten once per batch, single
write or delete.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any
from urllib.parse import quote

from static_publisher.models.metadata import MetadataMap
from static_publisher.storage.base import StorageEntry, StorageProvider, StorageProviderBatch
from static_publisher.storage.kv_store import KV_STORE_CHUNK_SIZE
from static_publisher.storage.retry import BatchResult

logger = logging.getLogger(__name__)

STORE_FILE_NAME = "kvstore.json"
CONTENT_DIR_NAME = "kvstore-content"


class LocalStorageProvider(StorageProvider):
    name = "local KV Store"

    def __init__(
        self,
        store_dir: Path,
        *,
        chunk_threshold: int = KV_STORE_CHUNK_SIZE,
        **pool_options: Any,
    ) -> None:
        super().__init__(**pool_options)
        self.store_dir = store_dir
        self.store_file = store_dir / STORE_FILE_NAME
        self.content_dir = store_dir / CONTENT_DIR_NAME
        self.chunk_threshold = chunk_threshold
        self._entries: dict[str, dict[str, str]] | None = None
        self._dirty = False

    def _load(self) -> dict[str, dict[str, str]]:
        if self._entries is None:
            if self.store_file.exists():
                self._entries = json.loads(self.store_file.read_text(encoding="utf-8"))
            else:
                self._entries = {}
        return self._entries

    def _write_store_file(self, text: str) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.store_file.with_suffix(".tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(self.store_file)

    async def flush(self) -> None:
        """Write the key file if anything changed since the last flush."""
        if not self._dirty:
            return
        text = json.dumps(self._load(), indent=2)
        self._dirty = False
        await asyncio.to_thread(self._write_store_file, text)

    async def aclose(self) -> None:
        await self.flush()

    async def submit_entry(
        self,
        key: str,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        await super().submit_entry(key, data, metadata)
        await self.flush()

    async def delete_entry(self, key: str) -> None:
        await super().delete_entry(key)
        await self.flush()

    async def apply_batch(self, batch: StorageProviderBatch) -> BatchResult:
        try:
            return await super().apply_batch(batch)
        finally:
            await self.flush()

    async def delete_keys(self, keys: Sequence[str]) -> BatchResult:
        try:
            return await super().delete_keys(keys)
        finally:
            await self.flush()

    def _content_path(self, key: str) -> Path:
        return self.content_dir / quote(key, safe="")

    async def list_keys(self, prefix: str) -> list[str] | None:
        return sorted(key for key in self._load() if key.startswith(prefix))

    async def _fetch_entry(self, key: str, *, info_only: bool) -> StorageEntry | None:
        item = self._load().get(key)
        if item is None:
            return None
        data = None
        if not info_only:
            path = self.store_dir / item["file"]
            if not path.exists():
                logger.warning("Local store entry %s points at missing file %s", key, path)
                return None
            data = await asyncio.to_thread(path.read_bytes)
        return StorageEntry(data=data, metadata=MetadataMap.from_json(item.get("metadata")))

    async def _put_entry(self, key: str, data: bytes, metadata: Mapping[str, str] | None) -> None:
        path = self._content_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, data)

        item = {"file": path.relative_to(self.store_dir).as_posix()}
        if metadata is not None:
            item["metadata"] = MetadataMap(metadata).to_json()
        self._load()[key] = item
        self._dirty = True

    async def _remove_entry(self, key: str) -> None:
        item = self._load().pop(key, None)
        if item is None:
            return
        self._dirty = True
        (self.store_dir / item["file"]).unlink(missing_ok=True)
