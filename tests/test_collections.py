"""Tests for listing, deleting, promoting and expiring collections."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from conftest import PUBLISH_ID, PublishSite, write_site

from static_publisher.errors import IndexLoadError, StorageListingError
from static_publisher.models.collection import IndexMetadata
from static_publisher.services.collections import (
    CollectionInfo,
    CollectionService,
    DefaultCollectionError,
)
from static_publisher.storage.local import LocalStorageProvider
from static_publisher.utils.keys import index_key, settings_key


@pytest.fixture
def collections(provider: LocalStorageProvider) -> CollectionService:
    return CollectionService(provider, PUBLISH_ID, "live")


async def index_metadata(provider: LocalStorageProvider, name: str) -> IndexMetadata:
    entry = await provider.get_entry_info(index_key(PUBLISH_ID, name))
    assert entry is not None
    return IndexMetadata.from_metadata(entry.metadata)


class TestListCollections:
    async def test_lists_published_collections(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
    ) -> None:
        await publish_site(provider, "live")
        await publish_site(provider, "staging", expiration_time=2_000_000_000)

        infos = await collections.list_collections()
        assert [info.name for info in infos] == ["live", "staging"]
        live, staging = infos
        assert live.is_default
        assert live.published_time is not None
        assert not staging.is_default
        assert staging.expiration_time == 2_000_000_000

    async def test_empty(self, collections: CollectionService) -> None:
        assert await collections.list_collections() == []

    async def test_unlistable_storage(
        self, provider: LocalStorageProvider, collections: CollectionService
    ) -> None:
        with patch.object(provider, "list_keys", AsyncMock(return_value=None)):
            with pytest.raises(StorageListingError):
                await collections.collection_names()


class TestCollectionInfo:
    def test_expired(self) -> None:
        info = CollectionInfo("staging", False, published_time=1, expiration_time=2)
        assert info.expired

    def test_default_collection_never_expires(self) -> None:
        info = CollectionInfo("live", True, published_time=1, expiration_time=2)
        assert not info.expired

    def test_no_expiration(self) -> None:
        info = CollectionInfo("staging", False, published_time=1, expiration_time=None)
        assert not info.expired


class TestDeleteCollection:
    async def test_default_collection_is_protected(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
    ) -> None:
        await publish_site(provider, "live")
        with pytest.raises(DefaultCollectionError):
            await collections.delete_collection("live")
        assert await provider.get_entry_info(index_key(PUBLISH_ID, "live")) is not None

    async def test_delete_removes_only_the_index(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
    ) -> None:
        await publish_site(provider, "staging")

        assert await collections.delete_collection("staging") is True
        assert await provider.get_entry_info(index_key(PUBLISH_ID, "staging")) is None
        # Settings are reclaimed by the next clean
        assert await provider.get_entry_info(settings_key(PUBLISH_ID, "staging")) is not None
        assert await collections.delete_collection("staging") is False


class TestPromoteCollection:
    """Tests for copying a collection to another name."""

    async def test_promote_copies_index_and_settings(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
    ) -> None:
        await publish_site(provider, "staging", expiration_time=2_000_000_000)
        await collections.promote_collection("staging", "preview")

        for make_key in (index_key, settings_key):
            source = await provider.get_entry(make_key(PUBLISH_ID, "staging"))
            target = await provider.get_entry(make_key(PUBLISH_ID, "preview"))
            assert source is not None and target is not None
            assert target.data == source.data

        source_metadata = await index_metadata(provider, "staging")
        target_metadata = await index_metadata(provider, "preview")
        assert target_metadata.published_time == source_metadata.published_time
        assert target_metadata.expiration_time == 2_000_000_000

    async def test_promote_with_new_expiration(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
    ) -> None:
        await publish_site(provider, "staging", expiration_time=2_000_000_000)
        await collections.promote_collection("staging", "preview", 2_100_000_000)
        assert (await index_metadata(provider, "preview")).expiration_time == 2_100_000_000

        await collections.promote_collection("staging", "forever", None)
        assert (await index_metadata(provider, "forever")).expiration_time is None

    async def test_promote_over_existing_collection(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
        tmp_path: Path,
    ) -> None:
        await publish_site(provider, "live")
        root = write_site(tmp_path / "next", {"index.html": b"<html>next</html>"})
        await publish_site(provider, "staging", root_dir=root)
        staging = await provider.get_entry(index_key(PUBLISH_ID, "staging"))

        await collections.promote_collection("staging", "live")
        live = await provider.get_entry(index_key(PUBLISH_ID, "live"))
        assert staging is not None and live is not None
        assert live.data == staging.data

    async def test_missing_source(self, collections: CollectionService) -> None:
        with pytest.raises(IndexLoadError):
            await collections.promote_collection("nope", "live")


class TestUpdateExpiration:
    async def test_set_and_remove_expiration(
        self,
        provider: LocalStorageProvider,
        publish_site: PublishSite,
        collections: CollectionService,
    ) -> None:
        await publish_site(provider, "staging")
        published = (await index_metadata(provider, "staging")).published_time
        before = await provider.get_entry(index_key(PUBLISH_ID, "staging"))

        await collections.update_expiration("staging", 2_000_000_000)
        metadata = await index_metadata(provider, "staging")
        assert metadata.expiration_time == 2_000_000_000
        assert metadata.published_time == published

        await collections.update_expiration("staging", None)
        assert (await index_metadata(provider, "staging")).expiration_time is None

        after = await provider.get_entry(index_key(PUBLISH_ID, "staging"))
        assert before is not None and after is not None
        assert after.data == before.data

    async def test_missing_collection(self, collections: CollectionService) -> None:
        with pytest.raises(IndexLoadError):
            await collections.update_expiration("nope", None)
