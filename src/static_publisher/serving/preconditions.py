"""Conditional request evaluation (RFC 9110 section 13.2.2).

Only GET and HEAD are served, so the If-Match and If-Unmodified-Since steps
never apply and If-Range is not supported.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from email.utils import parsedate_to_datetime

# Headers a 304 must carry if the 200 would have (RFC 9110 section 15.4.5)
HEADERS_PRESERVED_ON_304 = ("Content-Location", "ETag", "Vary", "Cache-Control", "Expires")


def parse_if_none_match(value: str | None) -> list[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(",") if tag.strip()]


def check_if_none_match(etag: str, tags: Sequence[str]) -> bool:
    """False when ``*`` or ``etag`` is listed.

    Comparison is exact; weak tags are never issued, so a weak tag in the
    header never matches.
    """
    if "*" in tags:
        return False
    return etag not in tags


def parse_if_modified_since(value: str | None) -> int | None:
    """Unix seconds of an HTTP-date, or None if absent or unparsable."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return int(parsed.timestamp())


def check_if_modified_since(last_modified_time: int, if_modified_since: int) -> bool:
    """False when the representation is not newer than the given date."""
    return last_modified_time > if_modified_since


def evaluate_preconditions(
    method: str,
    headers: Mapping[str, str],
    etag: str,
    last_modified_time: int,
) -> bool:
    """True to serve the representation, False to answer 304 Not Modified.

    ``headers`` must look up names case-insensitively. If-None-Match governs
    whenever present; If-Modified-Since is consulted only without it.
    """
    tags = parse_if_none_match(headers.get("If-None-Match"))
    if tags:
        return check_if_none_match(etag, tags)

    if method.upper() not in ("GET", "HEAD"):
        return True
    since = parse_if_modified_since(headers.get("If-Modified-Since"))
    if since is None:
        return True
    return check_if_modified_since(last_modified_time, since)
