"""Tests for conditional request evaluation."""

import httpx
import pytest

from static_publisher.serving.preconditions import (
    check_if_modified_since,
    check_if_none_match,
    evaluate_preconditions,
    parse_if_modified_since,
    parse_if_none_match,
)

ETAG = '"abc"'
# Sun, 06 Nov 1994 08:49:37 GMT
MODIFIED = 784_111_777


class TestIfNoneMatch:
    def test_parse(self) -> None:
        assert parse_if_none_match('"xyz", "abc"') == ['"xyz"', '"abc"']
        assert parse_if_none_match(" * ") == ["*"]
        assert parse_if_none_match(None) == []
        assert parse_if_none_match("") == []

    def test_match_means_not_modified(self) -> None:
        assert check_if_none_match(ETAG, ['"xyz"', '"abc"']) is False

    def test_wildcard(self) -> None:
        assert check_if_none_match(ETAG, ["*"]) is False

    def test_no_match(self) -> None:
        assert check_if_none_match(ETAG, ['"xyz"']) is True

    def test_weak_tags_never_match(self) -> None:
        assert check_if_none_match(ETAG, ['W/"abc"']) is True


class TestIfModifiedSince:
    def test_parse(self) -> None:
        assert parse_if_modified_since("Sun, 06 Nov 1994 08:49:37 GMT") == MODIFIED

    @pytest.mark.parametrize("value", [None, "", "yesterday", "Sun, 99 Foo 1994"])
    def test_unparsable(self, value: str | None) -> None:
        assert parse_if_modified_since(value) is None

    def test_check(self) -> None:
        assert check_if_modified_since(MODIFIED, MODIFIED) is False
        assert check_if_modified_since(MODIFIED, MODIFIED + 1) is False
        assert check_if_modified_since(MODIFIED, MODIFIED - 1) is True


class TestEvaluatePreconditions:
    def _evaluate(self, headers: dict[str, str], method: str = "GET") -> bool:
        return evaluate_preconditions(method, httpx.Headers(headers), ETAG, MODIFIED)

    def test_no_conditional_headers(self) -> None:
        assert self._evaluate({}) is True

    def test_matching_etag(self) -> None:
        assert self._evaluate({"if-none-match": '"xyz", "abc"'}) is False

    def test_not_modified_since(self) -> None:
        assert self._evaluate({"If-Modified-Since": "Sun, 06 Nov 1994 08:49:37 GMT"}) is False
        assert self._evaluate(
            {"If-Modified-Since": "Sun, 06 Nov 1994 08:49:37 GMT"}, method="HEAD"
        ) is False

    def test_modified_since(self) -> None:
        assert self._evaluate({"If-Modified-Since": "Sun, 06 Nov 1994 08:49:36 GMT"}) is True

    def test_if_none_match_takes_precedence(self) -> None:
        headers = {
            "If-None-Match": '"other"',
            "If-Modified-Since": "Sun, 06 Nov 1994 08:49:37 GMT",
        }
        assert self._evaluate(headers) is True

    def test_unparsable_date_serves(self) -> None:
        assert self._evaluate({"If-Modified-Since": "not a date"}) is True
