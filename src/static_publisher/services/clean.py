"""Mark-and-sweep garbage collection of published storage.

Mark: load every collection index and collect the content hashes they
reference. Sweep: delete content objects whose hash is unreferenced, plus
settings documents of collections that no longer have a live index.

Any index that cannot be loaded aborts the run before anything is deleted.
Running clean concurrently with a publish or another clean is not safe.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from static_publisher.errors import IndexLoadError, StorageListingError
from static_publisher.models.assets import CollectionIndex
from static_publisher.models.collection import IndexMetadata
from static_publisher.storage.base import StorageProvider
from static_publisher.storage.retry import BatchResult
from static_publisher.utils.expiration import is_expired
from static_publisher.utils.keys import (
    content_hash_id,
    files_prefix,
    hash_id,
    index_key,
    index_prefix,
    settings_prefix,
)

logger = logging.getLogger(__name__)


@dataclass
class CleanResult:
    """Outcome of a clean run. In a dry run ``deleted`` lists what would go."""

    live_collections: list[str] = field(default_factory=list)
    expired_collections: list[str] = field(default_factory=list)
    kept: int = 0
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dry_run: bool = False


@dataclass
class _LoadedCollection:
    name: str
    index: CollectionIndex
    metadata: IndexMetadata


class CleanService:
    """Reclaims storage not referenced by any live collection.

    Usage:
        service = CleanService(provider, publish_id, "live")
        result = await service.clean(delete_expired_collections=True)
    """

    def __init__(
        self,
        provider: StorageProvider,
        publish_id: str,
        default_collection_name: str,
    ) -> None:
        self._provider = provider
        self._publish_id = publish_id
        self._default_collection_name = default_collection_name

    async def _list(self, prefix: str, what: str) -> list[str]:
        keys = await self._provider.with_retries(lambda: self._provider.list_keys(prefix))
        if keys is None:
            raise StorageListingError(f"Can't query {what} in storage")
        return keys

    async def _load_collection(self, name: str) -> _LoadedCollection:
        key = index_key(self._publish_id, name)
        entry = await self._provider.with_retries(lambda: self._provider.get_entry(key))
        if entry is None or entry.data is None:
            raise IndexLoadError(f"Can't load index {key}")
        return _LoadedCollection(
            name=name,
            index=CollectionIndex.from_json(entry.data),
            metadata=IndexMetadata.from_metadata(entry.metadata),
        )

    async def clean(
        self,
        *,
        delete_expired_collections: bool = False,
        dry_run: bool = False,
    ) -> CleanResult:
        """Run one mark-and-sweep pass.

        Raises:
            StorageListingError: If any key listing is not possible.
            IndexLoadError: If any collection index cannot be loaded.
        """
        result = CleanResult(dry_run=dry_run)
        to_delete: list[str] = []

        # Mark
        prefix = index_prefix(self._publish_id)
        names = [key[len(prefix):] for key in await self._list(prefix, "indexes")]
        collections = await asyncio.gather(*(self._load_collection(name) for name in names))

        referenced: set[str] = set()
        for collection in collections:
            expiration = collection.metadata.expiration_time
            if (
                collection.name != self._default_collection_name
                and expiration is not None
                and is_expired(expiration)
            ):
                if not delete_expired_collections:
                    logger.warning(
                        "Collection '%s' is expired; use --delete-expired-collections to delete it",
                        collection.name,
                    )
                else:
                    logger.info("Marking expired collection '%s' for deletion", collection.name)
                    result.expired_collections.append(collection.name)
                    to_delete.append(index_key(self._publish_id, collection.name))
                    continue

            result.live_collections.append(collection.name)
            referenced.update(hash_id(h) for h in collection.index.referenced_hashes())

        live = set(result.live_collections)

        # Sweep: settings documents without a live index
        prefix = settings_prefix(self._publish_id)
        for key in await self._list(prefix, "settings"):
            if key[len(prefix):] not in live:
                logger.info("Settings %s do not match a live index, marking for deletion", key)
                to_delete.append(key)

        # Sweep: content objects nobody references
        for key in await self._list(files_prefix(self._publish_id), "content"):
            content_id = content_hash_id(self._publish_id, key)
            if content_id is None:
                # Unknown addressing scheme; not ours to judge
                continue
            if content_id in referenced:
                result.kept += 1
            else:
                logger.info("%s is not in use, marking for deletion", key)
                to_delete.append(key)

        if dry_run:
            for key in to_delete:
                logger.info("[DRY RUN] Would delete %s", key)
            result.deleted = to_delete
            return result

        batch_result: BatchResult = await self._provider.delete_keys(to_delete)
        result.deleted = batch_result.succeeded
        result.failed = batch_result.failed_keys
        logger.info(
            "Clean complete: %d deleted, %d failed, %d content objects kept",
            len(result.deleted),
            len(result.failed),
            result.kept,
        )
        return result
