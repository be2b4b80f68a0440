"""Tests for the storage key grammar."""

from static_publisher.models.enums import ContentEncoding
from static_publisher.utils.keys import (
    chunk_key,
    content_hash_id,
    content_key,
    hash_id,
    index_key,
    settings_key,
)

HEX = "a" * 64


class TestKeys:
    def test_document_keys(self) -> None:
        assert index_key("pid", "live") == "pid_index_live"
        assert settings_key("pid", "live") == "pid_settings_live"

    def test_content_keys(self) -> None:
        assert content_key("pid", HEX) == f"pid_files_sha256_{HEX}"
        assert content_key("pid", HEX, ContentEncoding.BROTLI) == f"pid_files_sha256_{HEX}_br"

    def test_chunk_keys(self) -> None:
        assert chunk_key("k", 0) == "k"
        assert chunk_key("k", 3) == "k_3"


class TestContentHashId:
    """Tests for mapping stored content keys back to their content id."""

    def test_identity_key(self) -> None:
        assert content_hash_id("pid", content_key("pid", HEX)) == hash_id(HEX)

    def test_variant_and_chunk_suffixes_are_stripped(self) -> None:
        key = content_key("pid", HEX, ContentEncoding.GZIP)
        assert content_hash_id("pid", key) == hash_id(HEX)
        assert content_hash_id("pid", chunk_key(key, 2)) == hash_id(HEX)

    def test_other_publish_id(self) -> None:
        assert content_hash_id("pid", content_key("other", HEX)) is None

    def test_unknown_scheme(self) -> None:
        assert content_hash_id("pid", "pid_files_md5_" + "a" * 32) is None

    def test_truncated_hash(self) -> None:
        assert content_hash_id("pid", "pid_files_sha256_abc") is None
