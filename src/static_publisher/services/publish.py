"""Publish a local file tree as a collection.

Flow:
1. Walk the root directory; hash every file and decide its content type
2. For each variant (identity plus configured compressions) reuse a copy
   already seen this run, or one already in storage, or stage a new upload
3. Upload staged variants through the provider's pool (chunking as needed)
4. Only if every upload succeeded, write the settings document and then the
   index document. The index write is the moment the collection switches.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from static_publisher.errors import StorageBackendError
from static_publisher.models.assets import AssetEntry, AssetVariantMetadata, CollectionIndex
from static_publisher.models.collection import IndexMetadata, ServerSettings
from static_publisher.models.enums import ContentEncoding
from static_publisher.storage.base import (
    StorageProvider,
    StorageProviderBatch,
    StorageProviderBatchEntry,
)
from static_publisher.utils.content_types import DEFAULT_CONTENT_TYPE, detect_content_type
from static_publisher.utils.files import FileWalkOptions, asset_key_for, enumerate_files
from static_publisher.utils.hashing import SizeAndHash, hash_file, write_variant_file
from static_publisher.utils.keys import content_key, index_key, settings_key

logger = logging.getLogger(__name__)

CONTENT_DIR_NAME = "content"


@dataclass
class PublishOptions:
    """What to publish and where."""

    root_dir: Path
    working_dir: Path
    collection_name: str
    content_compression: list[ContentEncoding] = field(
        default_factory=lambda: [ContentEncoding.BROTLI, ContentEncoding.GZIP]
    )
    server: ServerSettings = field(default_factory=ServerSettings)
    walk: FileWalkOptions = field(default_factory=FileWalkOptions)
    expiration_time: int | None = None
    overwrite: bool = False  # Upload even when storage already has the object


@dataclass
class PublishResult:
    """Result of a publish run."""

    collection_name: str
    assets: int = 0
    uploaded: int = 0
    deduped: int = 0
    failed: list[str] = field(default_factory=list)
    index_written: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and self.index_written


def _is_key_or_chunk_of(candidate: str, key: str) -> bool:
    if candidate == key:
        return True
    suffix = candidate[len(key) + 1:]
    return candidate.startswith(key + "_") and suffix.isdigit()


def checked_fallback_pages(server: ServerSettings, index: CollectionIndex) -> ServerSettings:
    """Drop ``spa_file``/``not_found_page_file`` unless they are HTML assets in ``index``."""
    updates: dict[str, None] = {}
    for field_name in ("spa_file", "not_found_page_file"):
        asset_key = getattr(server, field_name)
        if asset_key is None:
            continue
        asset = index.get(asset_key)
        if asset is None:
            logger.warning(
                "%s %s is not in the published files, ignoring it", field_name, asset_key
            )
            updates[field_name] = None
        elif asset.content_type != "text/html":
            logger.warning(
                "%s %s is %s, not text/html, ignoring it", field_name, asset_key, asset.content_type
            )
            updates[field_name] = None
    if not updates:
        return server
    return server.model_copy(update=updates)


class PublishService:
    """Publishes file trees into one storage provider under one publish id.

    Usage:
        service = PublishService(provider, publish_id)
        result = await service.publish(options)
    """

    def __init__(self, provider: StorageProvider, publish_id: str) -> None:
        self._provider = provider
        self._publish_id = publish_id

    async def _probe_existing(self, key: str) -> AssetVariantMetadata | None:
        try:
            return await self._provider.existing_variant(key)
        except StorageBackendError as e:
            # An unreadable probe is treated as absent; the upload overwrites it
            logger.warning("Could not check for existing %s (%s), will upload", key, e)
            return None

    async def _stage_variant(
        self,
        source: Path,
        base: SizeAndHash,
        encoding: ContentEncoding | None,
        content_dir: Path,
    ) -> tuple[AssetVariantMetadata, Path]:
        file_name = base.hash if encoding is None else f"{base.hash}_{encoding.value}"
        variant_path = content_dir / file_name

        if encoding is None:
            # A staged copy is reused only if it still hashes to its name
            if variant_path.exists():
                staged = await asyncio.to_thread(hash_file, variant_path)
                if staged != base:
                    logger.warning("Staged copy %s is damaged, staging again", variant_path)
                    await asyncio.to_thread(write_variant_file, source, variant_path, None)
            else:
                await asyncio.to_thread(write_variant_file, source, variant_path, None)
            size_and_hash = base
        else:
            # Compression is deterministic, so compressed copies are always rebuilt
            await asyncio.to_thread(write_variant_file, source, variant_path, encoding)
            size_and_hash = await asyncio.to_thread(hash_file, variant_path)

        num_chunks = self._provider.calculate_num_chunks(size_and_hash.size)
        metadata = AssetVariantMetadata(
            size=size_and_hash.size,
            hash=size_and_hash.hash,
            content_encoding=encoding,
            num_chunks=num_chunks if num_chunks > 1 else None,
        )
        return metadata, variant_path

    async def publish(self, options: PublishOptions) -> PublishResult:
        """Publish ``options.root_dir`` as ``options.collection_name``.

        Returns:
            PublishResult. ``index_written`` is False when any upload failed,
            in which case the previously published index stays in place.
        """
        result = PublishResult(collection_name=options.collection_name)
        root_dir = options.root_dir.resolve()
        content_dir = options.working_dir / CONTENT_DIR_NAME
        content_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Scanning %s", root_dir)
        files = await asyncio.to_thread(enumerate_files, root_dir, options.walk)

        batch = StorageProviderBatch()
        index = CollectionIndex()
        # Variants already resolved this run, keyed on (identity hash, encoding)
        known: dict[tuple[str, ContentEncoding | None], AssetVariantMetadata] = {}

        for file_path in files:
            asset_key = asset_key_for(root_dir, file_path)
            type_info = detect_content_type(asset_key)
            if type_info is None:
                logger.debug("Unknown file type %s, treating as binary", asset_key)
                content_type, compressions = DEFAULT_CONTENT_TYPE, []
            else:
                content_type = type_info.content_type
                compressions = list(options.content_compression) if type_info.text else []

            base = await asyncio.to_thread(hash_file, file_path)
            last_modified_time = int(file_path.stat().st_mtime)
            logger.info("File %s - %d bytes, sha256: %s", asset_key, base.size, base.hash)

            kept_variants: list[ContentEncoding] = []
            for encoding in [None, *compressions]:
                key = content_key(self._publish_id, base.hash, encoding)
                metadata = known.get((base.hash, encoding))

                if metadata is not None:
                    logger.debug("%s is identical to an object seen this run", key)
                else:
                    if not options.overwrite:
                        metadata = await self._probe_existing(key)
                    if metadata is not None:
                        logger.info("Found %s in storage", key)
                        result.deduped += 1
                    else:
                        metadata, variant_path = await self._stage_variant(
                            file_path, base, encoding, content_dir
                        )
                        batch.add(
                            StorageProviderBatchEntry(
                                key=key,
                                file_path=variant_path,
                                size=metadata.size,
                                metadata=metadata.to_metadata(),
                            )
                        )
                    known[(base.hash, encoding)] = metadata

                # Compressed variants are only worth serving if they are smaller
                if encoding is not None and metadata.size < base.size:
                    kept_variants.append(encoding)

            index.add(
                AssetEntry(
                    key=asset_key,
                    hash=base.hash,
                    size=base.size,
                    content_type=content_type,
                    last_modified_time=last_modified_time,
                    variants=kept_variants,
                    static=options.server.is_static_item(
                        options.server.request_path_for(asset_key)
                    ),
                )
            )

        result.assets = len(index)
        logger.info("Scan complete: %d assets, %d objects to upload", len(index), len(batch))

        batch_result = await self._provider.apply_batch(batch)
        failed_keys = batch_result.failed_keys
        result.failed = [
            entry.key
            for entry in batch.entries
            if any(_is_key_or_chunk_of(failed, entry.key) for failed in failed_keys)
        ]
        result.uploaded = len(batch) - len(result.failed)

        if result.failed:
            logger.error(
                "%d uploads failed; not writing index for collection '%s'",
                len(result.failed),
                options.collection_name,
            )
            return result

        await self._write_collection(
            options.collection_name,
            index,
            checked_fallback_pages(options.server, index),
            IndexMetadata(published_time=int(time.time()), expiration_time=options.expiration_time),
        )
        result.index_written = True
        return result

    async def _write_collection(
        self,
        collection_name: str,
        index: CollectionIndex,
        server: ServerSettings,
        index_metadata: IndexMetadata,
    ) -> None:
        settings_doc_key = settings_key(self._publish_id, collection_name)
        await self._provider.with_retries(
            lambda: self._provider.submit_entry(settings_doc_key, server.to_json().encode())
        )
        logger.info("Saved server settings to %s", settings_doc_key)

        index_doc_key = index_key(self._publish_id, collection_name)
        await self._provider.with_retries(
            lambda: self._provider.submit_entry(
                index_doc_key,
                index.to_json().encode(),
                index_metadata.to_metadata(),
            )
        )
        logger.info("Saved index with %d assets to %s", len(index), index_doc_key)
