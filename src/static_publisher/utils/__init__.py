"""Utility modules for static-publisher."""

from static_publisher.utils.content_types import ContentTypeInfo, detect_content_type
from static_publisher.utils.files import FileWalkOptions, asset_key_for, enumerate_files
from static_publisher.utils.hashing import SizeAndHash, hash_bytes, hash_file

__all__ = [
    "ContentTypeInfo",
    "FileWalkOptions",
    "SizeAndHash",
    "asset_key_for",
    "detect_content_type",
    "enumerate_files",
    "hash_bytes",
    "hash_file",
]
