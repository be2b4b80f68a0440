"""Splitting large objects into chunks and putting them back together.

A chunked object keeps chunk 0 under its primary key; chunk ``n`` lives under
``<primaryKey>_<n>``. Chunk files are cut once into ``<file>_chunks/<n>`` next
to the variant file and reused by later runs when they still look right.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

from static_publisher.errors import ChunkMissingError
from static_publisher.utils.keys import chunk_key

if TYPE_CHECKING:
    from static_publisher.storage.base import StorageEntry, StorageProviderBatchEntry

logger = logging.getLogger(__name__)

# Metadata that describes the whole object and only belongs on chunk 0
_PRIMARY_ONLY_FIELDS = ("hash", "size", "numChunks")


def calculate_num_chunks(size: int, chunk_size: int | None) -> int:
    if chunk_size is None or size <= chunk_size:
        return 1
    return math.ceil(size / chunk_size)


def _expected_chunk_size(size: int, chunk_size: int, index: int, num_chunks: int) -> int:
    if index < num_chunks - 1:
        return chunk_size
    return size - chunk_size * (num_chunks - 1)


def _chunks_look_good(chunks_dir: Path, size: int, chunk_size: int, num_chunks: int) -> bool:
    if not chunks_dir.is_dir():
        return False
    if len(list(chunks_dir.iterdir())) != num_chunks:
        return False
    for index in range(num_chunks):
        chunk_path = chunks_dir / str(index)
        if not chunk_path.is_file():
            return False
        if chunk_path.stat().st_size != _expected_chunk_size(size, chunk_size, index, num_chunks):
            return False
    return True


def write_chunk_files(file_path: Path, size: int, chunk_size: int) -> list[Path]:
    """Cut ``file_path`` into chunk files, reusing existing ones if they match."""
    num_chunks = calculate_num_chunks(size, chunk_size)
    chunks_dir = file_path.with_name(file_path.name + "_chunks")

    if _chunks_look_good(chunks_dir, size, chunk_size, num_chunks):
        logger.debug("Reusing %d existing chunks for %s", num_chunks, file_path.name)
        return [chunks_dir / str(index) for index in range(num_chunks)]

    shutil.rmtree(chunks_dir, ignore_errors=True)
    chunks_dir.mkdir(parents=True)

    paths = []
    with file_path.open("rb") as f:
        for index in range(num_chunks):
            chunk_path = chunks_dir / str(index)
            chunk_path.write_bytes(f.read(chunk_size))
            paths.append(chunk_path)

    logger.info("Split %s (%d bytes) into %d chunks", file_path.name, size, num_chunks)
    return paths


def expand_chunked_entries(
    entries: list[StorageProviderBatchEntry],
    chunk_size: int,
) -> list[StorageProviderBatchEntry]:
    """Replace every entry above ``chunk_size`` with one entry per chunk.

    Every chunk write carries ``chunkIndex``. Chunks after the first get the
    ``_<n>`` key suffix and lose the whole-object fields.
    """
    expanded: list[StorageProviderBatchEntry] = []
    for entry in entries:
        if entry.size <= chunk_size:
            expanded.append(entry)
            continue

        chunk_paths = write_chunk_files(entry.file_path, entry.size, chunk_size)
        num_chunks = len(chunk_paths)
        for index, chunk_path in enumerate(chunk_paths):
            metadata = dict(entry.metadata or {})
            metadata["chunkIndex"] = str(index)
            if index != 0:
                for name in _PRIMARY_ONLY_FIELDS:
                    metadata.pop(name, None)
            expanded.append(
                dataclasses.replace(
                    entry,
                    key=chunk_key(entry.key, index),
                    file_path=chunk_path,
                    size=_expected_chunk_size(entry.size, chunk_size, index, num_chunks),
                    metadata=metadata,
                )
            )
    return expanded


async def read_chunked(
    fetch: Callable[[str], Awaitable[StorageEntry | None]],
    primary_key: str,
    first: bytes,
    num_chunks: int,
) -> bytes:
    """Concatenate chunk 0 (already read) with chunks 1..n-1 in order."""
    parts = [first]
    for index in range(1, num_chunks):
        key = chunk_key(primary_key, index)
        chunk = await fetch(key)
        if chunk is None or chunk.data is None:
            raise ChunkMissingError(key)
        parts.append(chunk.data)
    return b"".join(parts)
