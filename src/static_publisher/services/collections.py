"""Collection management: list, delete, promote, update expiration.

A collection exists while its index document exists. Deleting one removes
only the index; content and settings are reclaimed by the next clean.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from static_publisher.errors import IndexLoadError, PublisherError, StorageListingError
from static_publisher.models.collection import IndexMetadata
from static_publisher.storage.base import StorageProvider
from static_publisher.utils.expiration import UNCHANGED, is_expired
from static_publisher.utils.keys import index_key, index_prefix, settings_key

logger = logging.getLogger(__name__)


class DefaultCollectionError(PublisherError):
    """The default collection cannot be deleted."""


@dataclass(frozen=True)
class CollectionInfo:
    name: str
    is_default: bool
    published_time: int | None
    expiration_time: int | None

    @property
    def expired(self) -> bool:
        # The default collection never expires
        if self.is_default or self.expiration_time is None:
            return False
        return is_expired(self.expiration_time)


class CollectionService:
    """Manages the collections of one publish id.

    Usage:
        service = CollectionService(provider, publish_id, "live")
        collections = await service.list_collections()
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

    async def collection_names(self) -> list[str]:
        """Names of all collections that have an index.

        Raises:
            StorageListingError: If the provider cannot list keys.
        """
        prefix = index_prefix(self._publish_id)
        keys = await self._provider.with_retries(lambda: self._provider.list_keys(prefix))
        if keys is None:
            raise StorageListingError("Can't query indexes in storage")
        return sorted(key[len(prefix):] for key in keys)

    async def list_collections(self) -> list[CollectionInfo]:
        collections = []
        for name in await self.collection_names():
            key = index_key(self._publish_id, name)
            entry = await self._provider.with_retries(lambda: self._provider.get_entry_info(key))
            if entry is None:
                # Deleted between listing and reading
                logger.warning("Index %s disappeared while listing", key)
                continue
            metadata = IndexMetadata.from_metadata(entry.metadata)
            collections.append(
                CollectionInfo(
                    name=name,
                    is_default=name == self._default_collection_name,
                    published_time=metadata.published_time,
                    expiration_time=metadata.expiration_time,
                )
            )
        return collections

    async def delete_collection(self, name: str) -> bool:
        """Delete a collection's index. Returns False if it did not exist.

        Raises:
            DefaultCollectionError: If ``name`` is the default collection.
        """
        if name == self._default_collection_name:
            raise DefaultCollectionError(f"Cannot delete default collection: {name}")

        if name not in await self.collection_names():
            logger.warning("Collection '%s' not found", name)
            return False

        key = index_key(self._publish_id, name)
        await self._provider.with_retries(lambda: self._provider.delete_entry(key))
        logger.info("Deleted index %s", key)
        return True

    async def promote_collection(
        self,
        source: str,
        target: str,
        expiration_time: int | None | object = UNCHANGED,
    ) -> None:
        """Copy the index and settings of ``source`` to ``target``.

        The target keeps the source's published time and, unless a new one is
        given, its expiration.

        Raises:
            IndexLoadError: If the source index or settings are missing.
        """
        source_index_key = index_key(self._publish_id, source)
        source_settings_key = settings_key(self._publish_id, source)
        index_entry = await self._provider.with_retries(
            lambda: self._provider.get_entry(source_index_key)
        )
        if index_entry is None or index_entry.data is None:
            raise IndexLoadError(f"Index for collection '{source}' not found")
        settings_entry = await self._provider.with_retries(
            lambda: self._provider.get_entry(source_settings_key)
        )
        if settings_entry is None or settings_entry.data is None:
            raise IndexLoadError(f"Settings for collection '{source}' not found")

        metadata = self._updated_metadata(
            IndexMetadata.from_metadata(index_entry.metadata), expiration_time
        )
        if target == self._default_collection_name and metadata.expiration_time is not None:
            logger.warning("Expiration time is not enforced for the default collection")

        target_index_key = index_key(self._publish_id, target)
        target_settings_key = settings_key(self._publish_id, target)
        index_data, settings_data = index_entry.data, settings_entry.data
        # Settings first so the target never has an index without settings
        await self._provider.with_retries(
            lambda: self._provider.submit_entry(target_settings_key, settings_data)
        )
        await self._provider.with_retries(
            lambda: self._provider.submit_entry(
                target_index_key, index_data, metadata.to_metadata()
            )
        )
        logger.info("Promoted collection '%s' to '%s'", source, target)

    async def update_expiration(self, name: str, expiration_time: int | None) -> None:
        """Rewrite a collection's index with a new expiration (None: never).

        Raises:
            IndexLoadError: If the collection's index is missing.
        """
        key = index_key(self._publish_id, name)
        entry = await self._provider.with_retries(lambda: self._provider.get_entry(key))
        if entry is None or entry.data is None:
            raise IndexLoadError(f"Index for collection '{name}' not found")

        current = IndexMetadata.from_metadata(entry.metadata)
        metadata = self._updated_metadata(current, expiration_time)
        if name == self._default_collection_name and expiration_time is not None:
            logger.warning("Expiration time is not enforced for the default collection")

        data = entry.data
        await self._provider.with_retries(
            lambda: self._provider.submit_entry(key, data, metadata.to_metadata())
        )
        logger.info("Updated expiration of collection '%s'", name)

    @staticmethod
    def _updated_metadata(
        current: IndexMetadata,
        expiration_time: int | None | object,
    ) -> IndexMetadata:
        published_time = current.published_time
        if published_time is None:
            published_time = int(time.time())
        if expiration_time is UNCHANGED:
            expiration_time = current.expiration_time
        assert expiration_time is None or isinstance(expiration_time, int)
        return IndexMetadata(published_time=published_time, expiration_time=expiration_time)
