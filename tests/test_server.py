"""Tests for serving a published collection from storage."""

from __future__ import annotations

from email.utils import formatdate
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import brotli
import pytest
from conftest import FIXED_MTIME, PUBLISH_ID, PublishSite

from static_publisher.errors import AssetNotAvailableError
from static_publisher.models.collection import ServerSettings
from static_publisher.serving.server import (
    COLLECTION_HEADER,
    PublisherServer,
    request_accepts_html,
)
from static_publisher.storage.base import StorageEntry
from static_publisher.storage.local import LocalStorageProvider
from static_publisher.utils.hashing import hash_bytes
from static_publisher.utils.keys import content_key

HTML = {"Accept": "text/html,application/xhtml+xml,*/*;q=0.8"}


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_server(provider: LocalStorageProvider, sleeps: list[float]):
    """Factory for servers that record retry sleeps instead of sleeping."""

    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(collection_name: str = "live") -> PublisherServer:
        return PublisherServer(provider, PUBLISH_ID, collection_name, sleep=sleep)

    return _make


@pytest.fixture
async def server(provider: LocalStorageProvider, publish_site: PublishSite, make_server):
    result = await publish_site(provider)
    assert result.ok
    return make_server()


class TestRequestAcceptsHtml:
    @pytest.mark.parametrize(
        ("accept", "expected"),
        [
            (None, True),
            ("text/html", True),
            ("text/*", True),
            ("*/*", True),
            ("application/json, text/html;q=0.9", True),
            ("application/json", False),
            ("image/png,image/*", False),
        ],
    )
    def test_accepts(self, accept: str | None, expected: bool) -> None:
        assert request_accepts_html(accept) is expected


class TestMatchAsset:
    async def test_exact(self, server: PublisherServer) -> None:
        asset = await server.match_asset("/logo.png")
        assert asset is not None
        assert asset.key == "/logo.png"

    async def test_auto_ext_and_index_only_when_applied(self, server: PublisherServer) -> None:
        assert await server.match_asset("/404") is None
        asset = await server.match_asset("/404", apply_auto=True)
        assert asset is not None and asset.key == "/404.html"

    @pytest.mark.parametrize(
        ("path", "key"),
        [
            ("/", "/index.html"),
            ("/about", "/about/index.html"),
            ("/about/", "/about/index.html"),
        ],
    )
    async def test_auto_index(self, server: PublisherServer, path: str, key: str) -> None:
        asset = await server.match_asset(path, apply_auto=True)
        assert asset is not None
        assert asset.key == key

    async def test_trailing_slash_never_matches_a_file(self, server: PublisherServer) -> None:
        assert await server.match_asset("/logo.png/", apply_auto=True) is None


class TestServeRequest:
    """Tests for the full request path."""

    async def test_identity_response(self, server: PublisherServer, site: Path) -> None:
        response = await server.serve_request("GET", "/logo.png", {})
        assert response is not None
        data = (site / "logo.png").read_bytes()

        assert response.status == 200
        assert response.body == data
        assert response.headers["Content-Type"] == "image/png"
        assert response.headers["ETag"] == f'"{hash_bytes(data).hash}"'
        assert response.headers["Last-Modified"] == formatdate(FIXED_MTIME, usegmt=True)
        assert response.headers["Cache-Control"] == "no-cache"
        assert response.headers["Vary"] == f"Accept-Encoding, {COLLECTION_HEADER}"
        assert response.headers[COLLECTION_HEADER] == "live"
        assert "Content-Encoding" not in response.headers

    async def test_chunked_index_page(self, server: PublisherServer, site: Path) -> None:
        response = await server.serve_request("GET", "/", {})
        assert response is not None
        assert response.status == 200
        assert response.body == (site / "index.html").read_bytes()

    async def test_compressed_variant(self, server: PublisherServer, site: Path) -> None:
        response = await server.serve_request("GET", "/about", {"Accept-Encoding": "gzip, br"})
        assert response is not None
        assert response.headers["Content-Encoding"] == "br"
        assert brotli.decompress(response.body) == (site / "about/index.html").read_bytes()
        assert response.headers["ETag"] == f'"{hash_bytes(response.body).hash}"'

    async def test_refused_encoding_falls_back(self, server: PublisherServer) -> None:
        response = await server.serve_request(
            "GET", "/about", {"Accept-Encoding": "br;q=0, gzip;q=0.5"}
        )
        assert response is not None
        assert response.headers["Content-Encoding"] == "gzip"

    async def test_static_items_are_cached(self, server: PublisherServer) -> None:
        response = await server.serve_request("GET", "/assets/app.js", {})
        assert response is not None
        assert response.headers["Cache-Control"] == "max-age=31536000"

    async def test_head(self, server: PublisherServer) -> None:
        response = await server.serve_request("HEAD", "/logo.png", {})
        assert response is not None
        assert response.status == 200
        assert response.body == b""
        assert response.headers["Content-Length"] == "512"

    async def test_other_methods_are_not_served(self, server: PublisherServer) -> None:
        assert await server.serve_request("POST", "/logo.png", {}) is None

    async def test_not_found_page(self, server: PublisherServer, site: Path) -> None:
        response = await server.serve_request("GET", "/missing", HTML)
        assert response is not None
        assert response.status == 404
        assert response.body == (site / "404.html").read_bytes()
        assert response.headers["Cache-Control"] == "no-store"

    async def test_no_fallback_for_non_html_requests(self, server: PublisherServer) -> None:
        assert await server.serve_request("GET", "/missing", {"Accept": "image/png"}) is None

    async def test_unpublished_collection(self, make_server) -> None:
        response = await make_server("nope").serve_request("GET", "/", {})
        assert response is not None
        assert response.status == 500
        assert b"Settings not found" in response.body


class TestConditionalRequests:
    async def test_matching_etag(self, server: PublisherServer) -> None:
        first = await server.serve_request("GET", "/about", {"Accept-Encoding": "br"})
        assert first is not None

        second = await server.serve_request(
            "GET", "/about", {"Accept-Encoding": "br", "If-None-Match": first.headers["ETag"]}
        )
        assert second is not None
        assert second.status == 304
        assert second.body == b""
        assert second.headers == {
            "ETag": first.headers["ETag"],
            "Vary": first.headers["Vary"],
            "Cache-Control": first.headers["Cache-Control"],
        }

    async def test_etag_of_another_variant(self, server: PublisherServer) -> None:
        identity = await server.serve_request("GET", "/about", {})
        assert identity is not None

        response = await server.serve_request(
            "GET", "/about", {"Accept-Encoding": "br", "If-None-Match": identity.headers["ETag"]}
        )
        assert response is not None
        assert response.status == 200

    async def test_not_modified_since(self, server: PublisherServer) -> None:
        since = formatdate(FIXED_MTIME, usegmt=True)
        response = await server.serve_request("GET", "/logo.png", {"If-Modified-Since": since})
        assert response is not None
        assert response.status == 304

    async def test_modified_since(self, server: PublisherServer) -> None:
        since = formatdate(FIXED_MTIME - 60, usegmt=True)
        response = await server.serve_request("GET", "/logo.png", {"If-Modified-Since": since})
        assert response is not None
        assert response.status == 200


class TestServerSettings:
    """Tests for collection settings that change how paths resolve."""

    async def test_public_dir_prefix(
        self, provider: LocalStorageProvider, publish_site: PublishSite, make_server, site: Path
    ) -> None:
        settings = ServerSettings(public_dir_prefix="/about", auto_index=["index.html"])
        await publish_site(provider, server=settings)

        response = await make_server().serve_request("GET", "/", {})
        assert response is not None
        assert response.body == (site / "about/index.html").read_bytes()

    async def test_spa_file(
        self, provider: LocalStorageProvider, publish_site: PublishSite, make_server, site: Path
    ) -> None:
        settings = ServerSettings(spa_file="/index.html", not_found_page_file="/404.html")
        await publish_site(provider, server=settings)

        response = await make_server().serve_request("GET", "/app/route", HTML)
        assert response is not None
        assert response.status == 200
        assert response.body == (site / "index.html").read_bytes()
        assert response.headers["Cache-Control"] == "no-store"

    async def test_non_html_spa_file_is_not_served(
        self, provider: LocalStorageProvider, publish_site: PublishSite, make_server
    ) -> None:
        await publish_site(provider, server=ServerSettings(spa_file="/logo.png"))

        assert await make_server().serve_request("GET", "/nope", HTML) is None

    async def test_no_collection_header(
        self, provider: LocalStorageProvider, publish_site: PublishSite
    ) -> None:
        await publish_site(provider)
        server = PublisherServer(provider, PUBLISH_ID, "live", collection_header=None)

        response = await server.serve_request("GET", "/logo.png", {})
        assert response is not None
        assert response.headers["Vary"] == "Accept-Encoding"
        assert COLLECTION_HEADER not in response.headers


class TestMissingContent:
    """Tests for objects the index names but storage does not have."""

    async def test_missing_object(
        self,
        server: PublisherServer,
        provider: LocalStorageProvider,
        site: Path,
        sleeps: list[float],
    ) -> None:
        data = (site / "logo.png").read_bytes()
        await provider.delete_entry(content_key(PUBLISH_ID, hash_bytes(data).hash))

        with pytest.raises(AssetNotAvailableError):
            await server.serve_request("GET", "/logo.png", {})
        assert sleeps == [0.25, 0.5, 0.75]

    async def test_late_visibility(self) -> None:
        entry = StorageEntry(data=b"late", metadata=None)
        provider = MagicMock()
        provider.get_entry = AsyncMock(side_effect=[None, None, entry])
        sleeps: list[float] = []

        async def sleep(delay: float) -> None:
            sleeps.append(delay)

        server = PublisherServer(provider, PUBLISH_ID, "live", sleep=sleep)
        assert await server.fetch_with_retry("key") is entry
        assert sleeps == [0.25, 0.5]
        assert provider.get_entry.await_count == 3

    async def test_info_only(self) -> None:
        entry = StorageEntry(data=None, metadata=None)
        provider = MagicMock()
        provider.get_entry_info = AsyncMock(return_value=entry)
        provider.get_entry = AsyncMock()

        server = PublisherServer(provider, PUBLISH_ID, "live")
        assert await server.fetch_with_retry("key", info_only=True) is entry
        provider.get_entry.assert_not_awaited()
