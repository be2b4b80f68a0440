"""Storage backends for static-publisher."""

from __future__ import annotations

import logging
from pathlib import Path

from static_publisher.config import PublisherRc, Settings, settings
from static_publisher.errors import ConfigError
from static_publisher.models.enums import BackendKind
from static_publisher.storage.base import (
    StorageEntry,
    StorageProvider,
    StorageProviderBatch,
    StorageProviderBatchEntry,
)
from static_publisher.storage.kv_store import KvStoreProvider, mask_token
from static_publisher.storage.local import LocalStorageProvider
from static_publisher.storage.retry import BackoffDeadline, BatchResult
from static_publisher.storage.s3 import S3StorageProvider, create_s3_client

logger = logging.getLogger(__name__)

__all__ = [
    "BackoffDeadline",
    "BatchResult",
    "KvStoreProvider",
    "LocalStorageProvider",
    "S3StorageProvider",
    "StorageEntry",
    "StorageProvider",
    "StorageProviderBatch",
    "StorageProviderBatchEntry",
    "load_storage_provider",
]


def load_storage_provider(
    rc: PublisherRc,
    project_dir: Path,
    *,
    local: bool = False,
    fastly_api_token: str | None = None,
    aws_profile: str | None = None,
    aws_access_key_id: str | None = None,
    aws_secret_access_key: str | None = None,
    app_settings: Settings = settings,
) -> StorageProvider:
    """Build the provider selected by the rc file.

    Command-line credentials win over environment settings. ``local`` swaps
    any backend for the local simulated store under the working directory.

    Raises:
        ConfigError: If the backend's credentials or settings are missing.
    """
    pool_options = {
        "max_concurrent": app_settings.max_concurrent,
        "max_attempts": app_settings.max_attempts,
        "initial_retry_delay": app_settings.initial_retry_delay,
    }
    backend = BackendKind.LOCAL if local else rc.backend

    match backend:
        case BackendKind.LOCAL:
            store_dir = project_dir / rc.working_dir / "local-store"
            logger.info("Using local simulated store at %s", store_dir)
            return LocalStorageProvider(
                store_dir,
                chunk_threshold=app_settings.kv_chunk_size,
                **pool_options,
            )

        case BackendKind.KV_STORE:
            token = fastly_api_token or app_settings.fastly_api_token
            if not token:
                raise ConfigError(
                    "Fastly API token not provided. Set FASTLY_API_TOKEN to a token with "
                    "write access to the KV Store, or pass --fastly-api-token."
                )
            assert rc.kv_store_name is not None
            logger.info("Using KV Store '%s' (token %s)", rc.kv_store_name, mask_token(token))
            return KvStoreProvider(
                rc.kv_store_name,
                token,
                base_url=app_settings.kv_api_base_url,
                chunk_threshold=app_settings.kv_chunk_size,
                timeout=app_settings.http_timeout,
                **pool_options,
            )

        case BackendKind.S3:
            assert rc.s3 is not None
            logger.info(
                "Using S3 bucket '%s' in %s (endpoint %s)",
                rc.s3.bucket,
                rc.s3.region,
                rc.s3.endpoint or "default",
            )
            client = create_s3_client(
                region=rc.s3.region,
                endpoint=rc.s3.endpoint,
                profile=aws_profile or app_settings.aws_profile,
                access_key_id=aws_access_key_id or app_settings.aws_access_key_id,
                secret_access_key=aws_secret_access_key or app_settings.aws_secret_access_key,
            )
            return S3StorageProvider(client, rc.s3.bucket, **pool_options)
