"""CLI for static-publisher.

Commands:
    init                             - Create static-publish.rc.json with a new publish id
    publish-content                  - Publish the content directory as a collection
    clean                            - Delete storage no live collection references
    collections list                 - List collections and their expiration
    collections delete               - Delete a collection's index
    collections promote              - Copy a collection to another name
    collections update-expiration    - Change or remove a collection's expiration
    serve                            - Serve a collection over HTTP
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from static_publisher.app import create_app
from static_publisher.config import (
    PUBLISH_CONTENT_CONFIG_FILE_NAME,
    RC_FILE_NAME,
    PublishContentConfig,
    PublisherRc,
    S3Config,
    load_publish_content_config,
    load_publisher_rc,
    save_publisher_rc,
    settings,
)
from static_publisher.errors import ConfigError, PublisherError
from static_publisher.models.enums import BackendKind
from static_publisher.services import (
    CleanService,
    CollectionService,
    PublishOptions,
    PublishService,
)
from static_publisher.storage import load_storage_provider
from static_publisher.storage.base import StorageProvider
from static_publisher.utils.expiration import UNCHANGED, calc_expiration_time, format_unix_time
from static_publisher.utils.files import FileWalkOptions
from static_publisher.utils.ids import create_publish_id

app = typer.Typer(
    name="static-publisher",
    help="Publish static content to key-value storage as switchable collections",
    no_args_is_help=True,
)
collections_app = typer.Typer(help="Manage published collections", no_args_is_help=True)
app.add_typer(collections_app, name="collections")

console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


@app.callback()
def configure_logging(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log every storage operation")
    ] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ── Shared options ───────────────────────────────────────────────────────────

ProjectDirOption = Annotated[
    Path, typer.Option("--project-dir", "-C", help="Directory containing static-publish.rc.json")
]
LocalOption = Annotated[
    bool,
    typer.Option("--local", help="Use the local simulated store instead of the configured backend"),
]
FastlyTokenOption = Annotated[
    str | None,
    typer.Option("--fastly-api-token", help="KV Store API token (default: FASTLY_API_TOKEN)"),
]
AwsProfileOption = Annotated[str | None, typer.Option("--aws-profile", help="AWS profile for S3")]
AwsAccessKeyOption = Annotated[
    str | None, typer.Option("--aws-access-key-id", help="AWS access key id")
]
AwsSecretKeyOption = Annotated[
    str | None, typer.Option("--aws-secret-access-key", help="AWS secret access key")
]
ExpiresInOption = Annotated[
    str | None,
    typer.Option("--expires-in", help="Expire after a duration from now, e.g. 7d, 1h30m"),
]
ExpiresAtOption = Annotated[
    str | None, typer.Option("--expires-at", help="Expire at an ISO 8601 timestamp")
]
ExpiresNeverOption = Annotated[
    bool, typer.Option("--expires-never", help="Never expire")
]
CollectionNameOption = Annotated[
    str | None, typer.Option("--collection-name", help="Collection name (default: the rc default)")
]


@dataclass
class BackendOptions:
    local: bool = False
    fastly_api_token: str | None = None
    aws_profile: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None


def fail(message: str, errors: list[str] | None = None) -> typer.Exit:
    console.print(f"[red]Error:[/red] {message}")
    for error in errors or []:
        console.print(f"  • {error}")
    return typer.Exit(1)


def load_rc(project_dir: Path) -> PublisherRc:
    try:
        return load_publisher_rc(project_dir / RC_FILE_NAME)
    except ConfigError as e:
        raise fail(str(e), e.errors) from e


def open_provider(rc: PublisherRc, project_dir: Path, backend: BackendOptions) -> StorageProvider:
    try:
        return load_storage_provider(
            rc,
            project_dir,
            local=backend.local,
            fastly_api_token=backend.fastly_api_token,
            aws_profile=backend.aws_profile,
            aws_access_key_id=backend.aws_access_key_id,
            aws_secret_access_key=backend.aws_secret_access_key,
        )
    except ConfigError as e:
        raise fail(str(e), e.errors) from e


def resolve_expiration(
    expires_in: str | None,
    expires_at: str | None,
    expires_never: bool = False,
) -> int | None | object:
    try:
        return calc_expiration_time(
            expires_in=expires_in, expires_at=expires_at, expires_never=expires_never
        )
    except ValueError as e:
        raise fail(f"Cannot process expiration time: {e}") from e


# ── init ─────────────────────────────────────────────────────────────────────


@app.command()
def init(
    project_dir: ProjectDirOption = Path("."),
    backend: Annotated[
        BackendKind, typer.Option("--backend", help="Storage backend to publish to")
    ] = BackendKind.KV_STORE,
    kv_store_name: Annotated[
        str | None, typer.Option("--kv-store-name", help="KV Store name (kv-store backend)")
    ] = None,
    s3_bucket: Annotated[
        str | None, typer.Option("--s3-bucket", help="Bucket (s3 backend)")
    ] = None,
    s3_region: Annotated[str, typer.Option("--s3-region", help="Bucket region")] = "us-east-1",
    s3_endpoint: Annotated[
        str | None, typer.Option("--s3-endpoint", help="Endpoint of an S3-compatible service")
    ] = None,
    default_collection_name: Annotated[
        str, typer.Option("--default-collection-name", help="Collection served by default")
    ] = "live",
    root_dir: Annotated[
        str, typer.Option("--root-dir", help="Content directory, relative to the project")
    ] = "./public",
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing rc file with a new publish id"),
    ] = False,
):
    """Create the project files with a freshly generated publish id."""
    rc_path = project_dir / RC_FILE_NAME
    if rc_path.exists() and not force:
        console.print(
            f"[red]Error:[/red] {RC_FILE_NAME} already exists in {project_dir}. "
            "A new publish id orphans everything already published; use --force to replace it."
        )
        raise typer.Exit(1)

    if backend == BackendKind.KV_STORE and not kv_store_name:
        raise fail("--kv-store-name is required for the kv-store backend")
    if backend == BackendKind.S3 and not s3_bucket:
        raise fail("--s3-bucket is required for the s3 backend")

    s3 = None
    if s3_bucket:
        s3 = S3Config(bucket=s3_bucket, region=s3_region, endpoint=s3_endpoint)
    rc = PublisherRc(
        publish_id=create_publish_id(),
        backend=backend,
        kv_store_name=kv_store_name,
        s3=s3,
        default_collection_name=default_collection_name,
    )
    project_dir.mkdir(parents=True, exist_ok=True)
    save_publisher_rc(rc_path, rc)

    config_path = project_dir / PUBLISH_CONTENT_CONFIG_FILE_NAME
    if not config_path.exists():
        config = PublishContentConfig(root_dir=root_dir)
        config_path.write_text(
            config.model_dump_json(by_alias=True, exclude_none=True, indent=2) + "\n",
            encoding="utf-8",
        )

    console.print(
        Panel(
            "\n".join(
                [
                    f"[bold]Publish ID:[/bold] {rc.publish_id}",
                    f"[bold]Backend:[/bold] {rc.backend.value}",
                    f"[bold]Default collection:[/bold] {rc.default_collection_name}",
                    f"[bold]Content:[/bold] {root_dir}",
                ]
            ),
            title=f"Created {RC_FILE_NAME}",
        )
    )


# ── publish-content ──────────────────────────────────────────────────────────


@app.command("publish-content")
def publish_content(
    project_dir: ProjectDirOption = Path("."),
    collection_name: CollectionNameOption = None,
    config: Annotated[
        Path | None, typer.Option("--config", help=f"Path to {PUBLISH_CONTENT_CONFIG_FILE_NAME}")
    ] = None,
    root_dir: Annotated[
        Path | None, typer.Option("--root-dir", help="Override the content directory")
    ] = None,
    overwrite: Annotated[
        bool, typer.Option("--overwrite", help="Upload objects even if storage already has them")
    ] = False,
    expires_in: ExpiresInOption = None,
    expires_at: ExpiresAtOption = None,
    expires_never: ExpiresNeverOption = False,
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """Publish the content directory as a collection."""
    rc = load_rc(project_dir)
    try:
        content_config = load_publish_content_config(
            config or project_dir / PUBLISH_CONTENT_CONFIG_FILE_NAME
        )
    except ConfigError as e:
        raise fail(str(e), e.errors) from e

    name = collection_name or rc.default_collection_name
    expiration = resolve_expiration(expires_in, expires_at, expires_never)
    if expiration is UNCHANGED:
        expiration = None
    if name == rc.default_collection_name and expiration is not None:
        console.print(
            "[yellow]Note:[/yellow] expiration is not enforced for the default collection"
        )

    content_root = root_dir or project_dir / content_config.root_dir
    if not content_root.is_dir():
        raise fail(f"Content directory does not exist: {content_root}")

    options = PublishOptions(
        root_dir=content_root,
        working_dir=project_dir / rc.working_dir,
        collection_name=name,
        content_compression=content_config.content_compression,
        server=content_config.server,
        walk=FileWalkOptions(
            exclude_dirs=content_config.exclude_dirs,
            exclude_dot_files=content_config.exclude_dot_files,
            include_well_known=content_config.include_well_known,
        ),
        expiration_time=expiration,
        overwrite=overwrite,
    )
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )

    async def _publish():
        provider = open_provider(rc, project_dir, backend)
        try:
            return await PublishService(provider, rc.publish_id).publish(options)
        except PublisherError as e:
            raise fail(str(e)) from e
        finally:
            await provider.aclose()

    result = run_async(_publish())

    table = Table(title=f"Collection '{result.collection_name}'")
    table.add_column("Assets", justify="right")
    table.add_column("Uploaded", justify="right")
    table.add_column("Already stored", justify="right")
    table.add_column("Failed", justify="right")
    table.add_row(
        str(result.assets), str(result.uploaded), str(result.deduped), str(len(result.failed))
    )
    console.print(table)

    if not result.ok:
        for key in result.failed:
            console.print(f"  [red]FAILED[/red] {key}")
        console.print(
            "[red]Error:[/red] Some uploads failed; the collection index was not updated. "
            "Run publish-content again to retry."
        )
        raise typer.Exit(1)

    console.print(
        f"[green]Published[/green] collection '{result.collection_name}' "
        f"(expires: {format_unix_time(expiration)})"
    )


# ── clean ────────────────────────────────────────────────────────────────────


@app.command()
def clean(
    project_dir: ProjectDirOption = Path("."),
    delete_expired_collections: Annotated[
        bool,
        typer.Option("--delete-expired-collections", help="Also delete expired collection indexes"),
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show what would be deleted without deleting")
    ] = False,
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """Delete content and settings that no live collection references."""
    rc = load_rc(project_dir)
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )

    async def _clean():
        provider = open_provider(rc, project_dir, backend)
        try:
            service = CleanService(provider, rc.publish_id, rc.default_collection_name)
            return await service.clean(
                delete_expired_collections=delete_expired_collections, dry_run=dry_run
            )
        except PublisherError as e:
            raise fail(str(e)) from e
        finally:
            await provider.aclose()

    result = run_async(_clean())

    panel_content = [
        f"[bold]Live collections:[/bold] {', '.join(result.live_collections) or '-'}",
        f"[bold]Expired collections removed:[/bold] {', '.join(result.expired_collections) or '-'}",
        f"[bold]Content objects kept:[/bold] {result.kept}",
        f"[bold]{'Would delete' if result.dry_run else 'Deleted'}:[/bold] {len(result.deleted)}",
    ]
    if result.failed:
        panel_content.append(f"[bold red]Failed:[/bold red] {len(result.failed)}")
    console.print(Panel("\n".join(panel_content), title="Dry run" if dry_run else "Clean"))


# ── collections ──────────────────────────────────────────────────────────────


@collections_app.command("list")
def list_collections(
    project_dir: ProjectDirOption = Path("."),
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """List published collections."""
    rc = load_rc(project_dir)
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )

    async def _list():
        provider = open_provider(rc, project_dir, backend)
        try:
            service = CollectionService(provider, rc.publish_id, rc.default_collection_name)
            return await service.list_collections()
        except PublisherError as e:
            raise fail(str(e)) from e
        finally:
            await provider.aclose()

    collections = run_async(_list())
    if not collections:
        console.print("[yellow]No collections published.[/yellow]")
        return

    table = Table(title=f"Collections for publish id {rc.publish_id}")
    table.add_column("Name")
    table.add_column("Published")
    table.add_column("Expires")
    for info in collections:
        name = f"{info.name} [bold](default)[/bold]" if info.is_default else info.name
        expires = format_unix_time(info.expiration_time)
        if info.expired:
            expires = f"[red]{expires} (expired)[/red]"
        table.add_row(name, format_unix_time(info.published_time), expires)
    console.print(table)


@collections_app.command("delete")
def delete_collection(
    collection_name: Annotated[str, typer.Option("--collection-name", help="Collection to delete")],
    project_dir: ProjectDirOption = Path("."),
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """Delete a collection. Its content is reclaimed by the next clean."""
    rc = load_rc(project_dir)
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )

    async def _delete():
        provider = open_provider(rc, project_dir, backend)
        try:
            service = CollectionService(provider, rc.publish_id, rc.default_collection_name)
            return await service.delete_collection(collection_name)
        except PublisherError as e:
            raise fail(str(e)) from e
        finally:
            await provider.aclose()

    if not run_async(_delete()):
        console.print(f"[yellow]Collection '{collection_name}' not found.[/yellow]")
        return
    console.print(f"[green]Deleted[/green] collection '{collection_name}'")
    console.print("Run clean to remove content no other collection uses.")


@collections_app.command("promote")
def promote_collection(
    collection_name: Annotated[str, typer.Option("--collection-name", help="Collection to copy")],
    to: Annotated[str, typer.Option("--to", help="Target collection name")],
    expires_in: ExpiresInOption = None,
    expires_at: ExpiresAtOption = None,
    project_dir: ProjectDirOption = Path("."),
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """Copy a collection's index and settings to another collection name."""
    rc = load_rc(project_dir)
    expiration = resolve_expiration(expires_in, expires_at)
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )

    async def _promote():
        provider = open_provider(rc, project_dir, backend)
        try:
            service = CollectionService(provider, rc.publish_id, rc.default_collection_name)
            await service.promote_collection(collection_name, to, expiration)
        except PublisherError as e:
            raise fail(str(e)) from e
        finally:
            await provider.aclose()

    run_async(_promote())
    console.print(f"[green]Promoted[/green] collection '{collection_name}' to '{to}'")


@collections_app.command("update-expiration")
def update_expiration(
    collection_name: Annotated[str, typer.Option("--collection-name", help="Collection to update")],
    expires_in: ExpiresInOption = None,
    expires_at: ExpiresAtOption = None,
    expires_never: ExpiresNeverOption = False,
    project_dir: ProjectDirOption = Path("."),
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """Set or remove a collection's expiration."""
    rc = load_rc(project_dir)
    expiration = resolve_expiration(expires_in, expires_at, expires_never)
    if expiration is UNCHANGED:
        raise fail("One of --expires-in, --expires-at or --expires-never is required")
    assert expiration is None or isinstance(expiration, int)
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )

    async def _update():
        provider = open_provider(rc, project_dir, backend)
        try:
            service = CollectionService(provider, rc.publish_id, rc.default_collection_name)
            await service.update_expiration(collection_name, expiration)
        except PublisherError as e:
            raise fail(str(e)) from e
        finally:
            await provider.aclose()

    run_async(_update())
    console.print(
        f"[green]Updated[/green] collection '{collection_name}' "
        f"(expires: {format_unix_time(expiration)})"
    )


# ── serve ────────────────────────────────────────────────────────────────────


@app.command()
def serve(
    collection_name: CollectionNameOption = None,
    host: Annotated[str, typer.Option("--host", help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", help="Port to listen on")] = 8000,
    project_dir: ProjectDirOption = Path("."),
    local: LocalOption = False,
    fastly_api_token: FastlyTokenOption = None,
    aws_profile: AwsProfileOption = None,
    aws_access_key_id: AwsAccessKeyOption = None,
    aws_secret_access_key: AwsSecretKeyOption = None,
):
    """Serve a published collection over HTTP."""
    rc = load_rc(project_dir)
    backend = BackendOptions(
        local, fastly_api_token, aws_profile, aws_access_key_id, aws_secret_access_key
    )
    provider = open_provider(rc, project_dir, backend)
    name = collection_name or rc.default_collection_name

    console.print(f"Serving collection '{name}' on http://{host}:{port}")
    uvicorn.run(
        create_app(provider, rc.publish_id, name),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
