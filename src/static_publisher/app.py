"""FastAPI application serving one published collection."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from static_publisher import __version__
from static_publisher.errors import AssetNotAvailableError, IndexLoadError
from static_publisher.serving.server import PublisherServer
from static_publisher.storage.base import StorageProvider


def create_app(provider: StorageProvider, publish_id: str, collection_name: str) -> FastAPI:
    """Build an app that answers every GET/HEAD from ``collection_name``."""
    server = PublisherServer(provider, publish_id, collection_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan handler."""
        yield
        await provider.aclose()

    app = FastAPI(
        title="static-publisher",
        description="Serves static content published to key-value storage",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.server = server

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    @app.exception_handler(AssetNotAvailableError)
    @app.exception_handler(IndexLoadError)
    async def storage_inconsistent(request: Request, exc: Exception) -> Response:
        return PlainTextResponse(str(exc), status_code=500)

    @app.api_route("/{path:path}", methods=["GET", "HEAD"], include_in_schema=False)
    async def serve(path: str, request: Request) -> Response:
        served = await server.serve_request(request.method, "/" + path, request.headers)
        if served is None:
            return PlainTextResponse("Not Found", status_code=404)
        return Response(content=served.body, status_code=served.status, headers=served.headers)

    return app
