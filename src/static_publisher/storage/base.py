"""Storage provider contract.

A provider stores opaque bytes plus a flat string metadata map under string
keys. Backends implement the four raw operations; chunking, dedup probing
and pooled batch upload are shared here so every backend behaves the same.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from static_publisher.errors import StorageBackendError
from static_publisher.models.assets import AssetVariantMetadata
from static_publisher.models.metadata import MetadataMap
from static_publisher.storage.chunking import (
    calculate_num_chunks,
    expand_chunked_entries,
    read_chunked,
)
from static_publisher.storage.retry import (
    DEFAULT_INITIAL_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENT,
    BackoffDeadline,
    BatchResult,
    attempt_with_retries,
    concurrent_parallel,
    default_classifier,
)

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
T = TypeVar("T")


@dataclass
class StorageEntry:
    """An object read from storage.

    ``data`` is None when only the entry info (metadata) was requested.
    ``provider_metadata`` holds backend details such as an ETag or generation.
    """

    data: bytes | None
    metadata: MetadataMap | None
    provider_metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StorageProviderBatchEntry:
    key: str
    file_path: Path
    size: int
    metadata: dict[str, str] | None = None
    write: bool = True


@dataclass
class StorageProviderBatch:
    entries: list[StorageProviderBatchEntry] = field(default_factory=list)

    def add(self, entry: StorageProviderBatchEntry) -> None:
        self.entries.append(entry)

    def __len__(self) -> int:
        return len(self.entries)


class StorageProvider(ABC):
    """Base class for storage backends.

    Subclasses implement ``list_keys``, ``_fetch_entry``, ``_put_entry``,
    ``_remove_entry``, and may override ``classify_error``. ``chunk_threshold`` is the
    largest object the backend accepts in one write; None means unbounded.
    """

    name: str = "storage"
    chunk_threshold: int | None = None

    def __init__(
        self,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_retry_delay: float = DEFAULT_INITIAL_DELAY,
        backoff: BackoffDeadline | None = None,
    ) -> None:
        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self.initial_retry_delay = initial_retry_delay
        self.backoff = backoff or BackoffDeadline()

    # ── Backend operations ───────────────────────────────────────────────────

    @abstractmethod
    async def list_keys(self, prefix: str) -> list[str] | None:
        """All keys starting with ``prefix``, or None if the backend cannot list."""

    @abstractmethod
    async def _fetch_entry(self, key: str, *, info_only: bool) -> StorageEntry | None:
        """Read one raw object (no chunk reassembly). None if absent."""

    @abstractmethod
    async def _put_entry(self, key: str, data: bytes, metadata: Mapping[str, str] | None) -> None:
        """Create or overwrite one raw object."""

    @abstractmethod
    async def _remove_entry(self, key: str) -> None:
        """Delete one raw object. Absent keys are not an error."""

    def classify_error(self, err: BaseException) -> str | None:
        """Reason string if ``err`` is worth retrying, else None."""
        return default_classifier(err)

    async def aclose(self) -> None:
        """Release network resources held by the provider."""

    # ── Shared behaviour ─────────────────────────────────────────────────────

    def calculate_num_chunks(self, size: int) -> int:
        return calculate_num_chunks(size, self.chunk_threshold)

    async def get_entry(self, key: str) -> StorageEntry | None:
        """Read an object, reassembling it if it was stored in chunks."""
        entry = await self._fetch_entry(key, info_only=False)
        if entry is None or entry.data is None:
            return entry

        variant = AssetVariantMetadata.from_metadata(entry.metadata)
        if variant is not None and variant.is_chunked:
            assert variant.num_chunks is not None
            entry.data = await read_chunked(
                lambda chunk: self._fetch_entry(chunk, info_only=False),
                key,
                entry.data,
                variant.num_chunks,
            )
        return entry

    async def get_entry_info(self, key: str) -> StorageEntry | None:
        return await self._fetch_entry(key, info_only=True)

    async def submit_entry(
        self,
        key: str,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Write a single object. Objects above the chunk threshold are refused."""
        if self.chunk_threshold is not None and len(data) > self.chunk_threshold:
            raise StorageBackendError(
                f"Object {key} is {len(data)} bytes, over the {self.name} limit of "
                f"{self.chunk_threshold} bytes for a single write"
            )
        await self._put_entry(key, data, metadata)

    async def delete_entry(self, key: str) -> None:
        await self._remove_entry(key)

    async def existing_variant(self, key: str) -> AssetVariantMetadata | None:
        """Variant metadata if a complete object is already stored under ``key``.

        Only metadata is consulted. An object counts as present when its
        declared chunk count matches what its size implies for this backend.
        """
        entry = await self.with_retries(lambda: self.get_entry_info(key))
        if entry is None:
            return None
        variant = AssetVariantMetadata.from_metadata(entry.metadata)
        if variant is None:
            return None
        if (variant.num_chunks or 1) != self.calculate_num_chunks(variant.size):
            return None
        return variant

    async def with_retries(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Call ``fn`` with this provider's retry policy and shared backoff."""
        return await attempt_with_retries(
            fn,
            backoff=self.backoff,
            classify=self.classify_error,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_retry_delay,
        )

    async def run_concurrently(
        self,
        items: Sequence[ItemT],
        fn: Callable[[ItemT], Awaitable[None]],
        key: Callable[[ItemT], str],
    ) -> BatchResult:
        return await concurrent_parallel(
            items,
            fn,
            key=key,
            backoff=self.backoff,
            classify=self.classify_error,
            max_concurrent=self.max_concurrent,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_retry_delay,
        )

    async def apply_batch(self, batch: StorageProviderBatch) -> BatchResult:
        """Upload every entry marked ``write``, chunking the large ones."""
        entries = [entry for entry in batch.entries if entry.write]
        if self.chunk_threshold is not None:
            entries = await asyncio.to_thread(expand_chunked_entries, entries, self.chunk_threshold)

        logger.info("Uploading %d objects to %s", len(entries), self.name)

        async def upload(entry: StorageProviderBatchEntry) -> None:
            data = await asyncio.to_thread(entry.file_path.read_bytes)
            await self._put_entry(entry.key, data, entry.metadata)
            logger.info("Submitted %s", entry.key)

        return await self.run_concurrently(entries, upload, key=lambda entry: entry.key)

    async def delete_keys(self, keys: Sequence[str]) -> BatchResult:
        async def delete(key: str) -> None:
            await self._remove_entry(key)
            logger.info("Deleted %s", key)

        return await self.run_concurrently(keys, delete, key=lambda key: key)
