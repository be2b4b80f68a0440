"""Content hashing and compressed variant production."""

from __future__ import annotations

import gzip
import hashlib
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

import brotli

from static_publisher.models.enums import ContentEncoding

# Read files in 1 MiB blocks when hashing
_READ_BLOCK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class SizeAndHash:
    size: int
    hash: str  # Hex sha256


def hash_bytes(data: bytes) -> SizeAndHash:
    return SizeAndHash(size=len(data), hash=hashlib.sha256(data).hexdigest())


def hash_file(path: Path) -> SizeAndHash:
    """Compute the size and sha256 of a file without loading it whole."""
    digest = hashlib.sha256()
    size = 0
    with path.open("rb") as f:
        while block := f.read(_READ_BLOCK_SIZE):
            digest.update(block)
            size += len(block)
    return SizeAndHash(size=size, hash=digest.hexdigest())


def compress_bytes(data: bytes, encoding: ContentEncoding) -> bytes:
    if encoding == ContentEncoding.BROTLI:
        return brotli.compress(data)
    # mtime=0 keeps gzip output deterministic so the hash is stable across runs
    return gzip.compress(data, mtime=0)


def write_variant_file(source: Path, target: Path, encoding: ContentEncoding | None) -> None:
    """Write the identity copy or a compressed copy of ``source`` to ``target``.

    The file appears at ``target`` only once complete. Chunks previously cut
    from an older file at ``target`` are removed.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".partial")
    if encoding is None:
        shutil.copyfile(source, partial)
    else:
        partial.write_bytes(compress_bytes(source.read_bytes(), encoding))
    os.replace(partial, target)
    shutil.rmtree(target.with_name(target.name + "_chunks"), ignore_errors=True)
