"""Tests for choosing a storage provider from the rc file."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from static_publisher.config import PublisherRc, S3Config, Settings
from static_publisher.errors import ConfigError
from static_publisher.models.enums import BackendKind
from static_publisher.storage import (
    KvStoreProvider,
    LocalStorageProvider,
    S3StorageProvider,
    load_storage_provider,
)


@pytest.fixture
def app_settings() -> Settings:
    return Settings(_env_file=None).model_copy(
        update={
            "fastly_api_token": None,
            "aws_profile": None,
            "aws_access_key_id": None,
            "aws_secret_access_key": None,
        }
    )


def kv_rc() -> PublisherRc:
    return PublisherRc(publish_id="pid", backend=BackendKind.KV_STORE, kv_store_name="site")


class TestLoadStorageProvider:
    def test_local(self, tmp_path: Path, app_settings: Settings) -> None:
        rc = PublisherRc(publish_id="pid", backend=BackendKind.LOCAL)
        provider = load_storage_provider(rc, tmp_path, app_settings=app_settings)
        assert isinstance(provider, LocalStorageProvider)
        assert provider.store_dir == tmp_path / "static-publisher" / "local-store"
        assert provider.chunk_threshold == app_settings.kv_chunk_size

    def test_local_flag_overrides_backend(self, tmp_path: Path, app_settings: Settings) -> None:
        provider = load_storage_provider(kv_rc(), tmp_path, local=True, app_settings=app_settings)
        assert isinstance(provider, LocalStorageProvider)

    def test_kv_store_needs_a_token(self, tmp_path: Path, app_settings: Settings) -> None:
        with pytest.raises(ConfigError, match="FASTLY_API_TOKEN"):
            load_storage_provider(kv_rc(), tmp_path, app_settings=app_settings)

    async def test_kv_store(self, tmp_path: Path, app_settings: Settings) -> None:
        provider = load_storage_provider(
            kv_rc(), tmp_path, fastly_api_token="token", app_settings=app_settings
        )
        assert isinstance(provider, KvStoreProvider)
        assert provider.store_name == "site"
        await provider.aclose()

    def test_s3_credentials_from_flags(self, tmp_path: Path, app_settings: Settings) -> None:
        rc = PublisherRc(
            publish_id="pid",
            backend=BackendKind.S3,
            s3=S3Config(bucket="site-bucket", region="eu-west-1"),
        )
        client = MagicMock()
        with patch(
            "static_publisher.storage.create_s3_client", return_value=client
        ) as create_client:
            provider = load_storage_provider(
                rc, tmp_path, aws_profile="deploy", app_settings=app_settings
            )

        assert isinstance(provider, S3StorageProvider)
        assert provider.bucket == "site-bucket"
        create_client.assert_called_once_with(
            region="eu-west-1",
            endpoint=None,
            profile="deploy",
            access_key_id=None,
            secret_access_key=None,
        )
