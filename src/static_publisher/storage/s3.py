"""Storage provider for S3 and S3-compatible object stores.

boto3 is synchronous, so every call runs in a worker thread. Objects have no
practical size limit here, so nothing is ever chunked.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ProfileNotFound,
    ReadTimeoutError,
)

from static_publisher.errors import RETRYABLE_HTTP_STATUSES, ConfigError
from static_publisher.models.metadata import MetadataMap
from static_publisher.storage.base import StorageEntry, StorageProvider
from static_publisher.storage.kv_store import mask_token

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_THROTTLING_CODES = frozenset(
    {"Throttling", "ThrottlingException", "SlowDown", "RequestLimitExceeded", "RequestTimeout"}
)
_TRANSPORT_ERRORS = (
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


def _error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


def _error_status(err: ClientError) -> int | None:
    return err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def _is_not_found(err: Exception) -> bool:
    return isinstance(err, ClientError) and _error_code(err) in _NOT_FOUND_CODES


def create_s3_client(
    *,
    region: str,
    endpoint: str | None = None,
    profile: str | None = None,
    access_key_id: str | None = None,
    secret_access_key: str | None = None,
) -> Any:
    """Build an S3 client from explicit keys, a named profile, or the default chain."""
    try:
        session = boto3.session.Session(
            profile_name=profile,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
    except ProfileNotFound as e:
        raise ConfigError(f"AWS profile '{profile}' not found") from e
    credentials = session.get_credentials()
    if credentials is None:
        raise ConfigError(
            "S3 credentials not provided. Pass --aws-access-key-id and --aws-secret-access-key, "
            "--aws-profile, or configure the default AWS credential chain."
        )
    logger.info("S3 credentials: %s", mask_token(credentials.access_key))
    return session.client(
        "s3",
        region_name=region,
        endpoint_url=endpoint,
        config=Config(
            signature_version="s3v4",
            # Retries are handled by the shared backoff
            retries={"max_attempts": 1, "mode": "standard"},
            s3={"addressing_style": "path"} if endpoint else None,
        ),
    )


class S3StorageProvider(StorageProvider):
    name = "S3"
    chunk_threshold = None

    def __init__(self, client: Any, bucket: str, **pool_options: Any) -> None:
        super().__init__(**pool_options)
        self._s3 = client
        self.bucket = bucket

    def classify_error(self, err: BaseException) -> str | None:
        if isinstance(err, ClientError):
            code = _error_code(err)
            if code in _THROTTLING_CODES or _error_status(err) in RETRYABLE_HTTP_STATUSES:
                return f"S3 error [{code}]"
            return None
        if isinstance(err, _TRANSPORT_ERRORS):
            return "transport"
        return super().classify_error(err)

    async def list_keys(self, prefix: str) -> list[str] | None:
        def _list() -> list[str] | None:
            keys: list[str] = []
            params: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix, "MaxKeys": 1000}
            while True:
                try:
                    response = self._s3.list_objects_v2(**params)
                except ClientError as e:
                    if _error_code(e) == "NoSuchBucket":
                        logger.warning("S3 bucket '%s' does not exist", self.bucket)
                        return None
                    raise
                keys.extend(item["Key"] for item in response.get("Contents", []))
                if not response.get("IsTruncated"):
                    return keys
                params["ContinuationToken"] = response["NextContinuationToken"]

        return await asyncio.to_thread(_list)

    async def _fetch_entry(self, key: str, *, info_only: bool) -> StorageEntry | None:
        def _fetch() -> StorageEntry | None:
            try:
                if info_only:
                    response = self._s3.head_object(Bucket=self.bucket, Key=key)
                    data = None
                else:
                    response = self._s3.get_object(Bucket=self.bucket, Key=key)
                    data = response["Body"].read()
            except ClientError as e:
                if _is_not_found(e):
                    return None
                raise
            provider_metadata = {}
            if etag := response.get("ETag"):
                provider_metadata["etag"] = etag
            return StorageEntry(
                data=data,
                metadata=MetadataMap(response.get("Metadata") or {}),
                provider_metadata=provider_metadata,
            )

        return await asyncio.to_thread(_fetch)

    async def _put_entry(self, key: str, data: bytes, metadata: Mapping[str, str] | None) -> None:
        await asyncio.to_thread(
            self._s3.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            Metadata=dict(metadata or {}),
        )

    async def _remove_entry(self, key: str) -> None:
        # DeleteObject succeeds for absent keys
        await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=key)
