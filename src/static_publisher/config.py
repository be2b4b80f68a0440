"""Configuration for static-publisher.

Process-wide settings (credentials, API endpoints, tuning) come from the
environment. Per-project settings live in two JSON files in the project
directory: ``static-publish.rc.json`` and ``publish-content.config.json``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from static_publisher.errors import ConfigError
from static_publisher.models.collection import ServerSettings
from static_publisher.models.enums import BackendKind, ContentEncoding
from static_publisher.utils.files import compile_exclusions

RC_FILE_NAME = "static-publish.rc.json"
PUBLISH_CONTENT_CONFIG_FILE_NAME = "publish-content.config.json"

ModelT = TypeVar("ModelT", bound=BaseModel)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="STATIC_PUBLISHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # KV store HTTP API
    fastly_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STATIC_PUBLISHER_FASTLY_API_TOKEN", "FASTLY_API_TOKEN"),
    )
    kv_api_base_url: str = "https://api.fastly.com"
    kv_chunk_size: int = 20 * 1024 * 1024  # Objects larger than this are split
    http_timeout: float = 30.0

    # S3; unset values fall back to the AWS default credential chain
    aws_profile: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    # ── Upload pool ──────────────────────────────────────────────────────────
    max_concurrent: int = 12

    # Attempts per unit of work, including the first one
    max_attempts: int = 5

    # Seconds; the shared backoff after attempt N is N * initial_retry_delay
    initial_retry_delay: float = 60.0

    log_level: str = "INFO"


settings = Settings()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class S3Config(_CamelModel):
    region: str = "us-east-1"
    bucket: str
    endpoint: str | None = None  # For S3-compatible services


class PublisherRc(_CamelModel):
    """Contents of ``static-publish.rc.json``."""

    publish_id: str
    backend: BackendKind = BackendKind.KV_STORE
    kv_store_name: str | None = None
    s3: S3Config | None = None
    default_collection_name: str = "live"
    working_dir: str = "static-publisher"


class PublishContentConfig(_CamelModel):
    """Contents of ``publish-content.config.json``."""

    root_dir: str = "./public"
    exclude_dirs: list[str] = Field(default_factory=lambda: ["./node_modules"])
    exclude_dot_files: bool = True
    include_well_known: bool = True
    content_compression: list[ContentEncoding] = Field(
        default_factory=lambda: [ContentEncoding.BROTLI, ContentEncoding.GZIP]
    )
    server: ServerSettings = Field(default_factory=ServerSettings)

    @field_validator("exclude_dirs")
    @classmethod
    def _check_exclude_dirs(cls, value: list[str]) -> list[str]:
        compile_exclusions(value)
        return value


def _format_validation_errors(e: ValidationError) -> list[str]:
    messages = []
    for error in e.errors():
        location = ".".join(str(part) for part in error["loc"]) or "(root)"
        messages.append(f"{location}: {error['msg']}")
    return messages


def _load_json_model(path: Path, model: type[ModelT]) -> ModelT:
    if not path.exists():
        raise ConfigError(f"{path.name} not found in {path.parent}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Unable to read {path.name}: {e}") from e
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = _format_validation_errors(e)
        raise ConfigError(f"{path.name} has errors", errors) from e


def load_publisher_rc(path: Path) -> PublisherRc:
    """Load the rc file. Raises ConfigError if missing or invalid."""
    rc = _load_json_model(path, PublisherRc)
    if rc.backend == BackendKind.KV_STORE and not rc.kv_store_name:
        raise ConfigError(f"{path.name} has errors", ["kvStoreName: required for kv-store backend"])
    if rc.backend == BackendKind.S3 and rc.s3 is None:
        raise ConfigError(f"{path.name} has errors", ["s3: required for s3 backend"])
    return rc


def save_publisher_rc(path: Path, rc: PublisherRc) -> None:
    path.write_text(
        rc.model_dump_json(by_alias=True, exclude_none=True, indent=2) + "\n",
        encoding="utf-8",
    )


def load_publish_content_config(path: Path) -> PublishContentConfig:
    """Load the publish config. A missing file means all defaults."""
    if not path.exists():
        return PublishContentConfig()
    return _load_json_model(path, PublishContentConfig)
