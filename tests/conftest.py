"""Shared pytest fixtures for static-publisher tests."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

from static_publisher.models.collection import ServerSettings
from static_publisher.services.publish import PublishOptions, PublishResult, PublishService
from static_publisher.storage.local import LocalStorageProvider
from static_publisher.utils.files import FileWalkOptions

PUBLISH_ID = "testPublishId"

# Small enough that the larger test files get chunked
CHUNK_THRESHOLD = 4096

FIXED_MTIME = 1_700_000_000

SITE_FILES: dict[str, bytes] = {
    "index.html": b"<html><body>" + b"hello world " * 800 + b"</body></html>",
    "about/index.html": b"<html><body>" + b"about us " * 60 + b"</body></html>",
    "404.html": b"<h1>Not found</h1>" * 20,
    "assets/app.js": b"console.log('hi');\n" * 40,
    "logo.png": bytes(range(256)) * 2,
    "tiny.txt": b"hi",
    ".secret": b"do not publish",
    ".well-known/security.txt": b"Contact: mailto:security@example.com",
    "node_modules/dep/index.js": b"module.exports = 1;",
}


def write_site(root: Path, files: dict[str, bytes]) -> Path:
    for name, data in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        os.utime(path, (FIXED_MTIME, FIXED_MTIME))
    return root


def make_provider(store_dir: Path, **kwargs: Any) -> LocalStorageProvider:
    options: dict[str, Any] = {
        "chunk_threshold": CHUNK_THRESHOLD,
        "max_concurrent": 4,
        "max_attempts": 3,
        "initial_retry_delay": 0.0,
    }
    options.update(kwargs)
    return LocalStorageProvider(store_dir, **options)


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
async def provider(store_dir: Path) -> AsyncGenerator[LocalStorageProvider, None]:
    """Local store with a small chunk threshold and no retry delay."""
    local = make_provider(store_dir)
    yield local
    await local.aclose()


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """A small content tree with text, binary, hidden and excluded files."""
    return write_site(tmp_path / "public", SITE_FILES)


@pytest.fixture
def server_settings() -> ServerSettings:
    return ServerSettings(
        static_items=["/assets/"],
        auto_ext=[".html"],
        auto_index=["index.html"],
        not_found_page_file="/404.html",
    )


PublishSite = Callable[..., Awaitable[PublishResult]]


@pytest.fixture
def publish_site(
    tmp_path: Path,
    site: Path,
    server_settings: ServerSettings,
) -> PublishSite:
    """Factory fixture that publishes a content tree as a collection."""

    async def _publish(
        provider: LocalStorageProvider,
        collection_name: str = "live",
        *,
        root_dir: Path | None = None,
        server: ServerSettings | None = None,
        expiration_time: int | None = None,
        overwrite: bool = False,
    ) -> PublishResult:
        options = PublishOptions(
            root_dir=root_dir or site,
            working_dir=tmp_path / "work",
            collection_name=collection_name,
            server=server or server_settings,
            walk=FileWalkOptions(exclude_dirs=["./node_modules"]),
            expiration_time=expiration_time,
            overwrite=overwrite,
        )
        return await PublishService(provider, PUBLISH_ID).publish(options)

    return _publish
