"""Content negotiation over stored variants."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence

from static_publisher.models.enums import ContentEncoding, parse_content_encoding


def _parse_q_value(params: list[str]) -> int:
    """q value of one Accept-Encoding member, times 1000."""
    for param in params:
        name, _, value = param.strip().partition("=")
        if name.strip().lower() != "q":
            continue
        try:
            q = float(value)
        except ValueError:
            q = 1.0
        if math.isnan(q) or q > 1:
            q = 1.0
        if q < 0:
            q = 0.0
        # q values carry at most 3 decimal digits
        return math.floor(q * 1000)
    return 1000


def find_accept_encodings_groups(
    header: str | None,
    allowed: Sequence[ContentEncoding],
) -> list[list[ContentEncoding]]:
    """Group the allowed encodings a client accepts by q value, best first.

    ``br;q=1, gzip;q=0.5`` with both allowed gives ``[[br], [gzip]]``.
    Encodings with q=0 are refused by the client and dropped.
    """
    if not allowed or not header or not header.strip():
        return []

    groups: dict[int, list[ContentEncoding]] = {}
    for member in header.split(","):
        name, *params = member.split(";")
        encoding = parse_content_encoding(name.strip().lower())
        if encoding is None or encoding not in allowed:
            continue
        q = _parse_q_value(params)
        if q == 0:
            continue
        group = groups.setdefault(q, [])
        if encoding not in group:
            group.append(encoding)

    return [groups[q] for q in sorted(groups, reverse=True)]


def select_variant(
    sizes: Mapping[str, int],
    groups: Sequence[Sequence[str]],
) -> str | None:
    """Pick the encoding to serve from the available compressed variants.

    ``sizes`` maps each available compressed encoding to its stored size.
    The first group with any available encoding wins, and within it the
    smallest variant (earlier in the group on ties). None means identity.
    """
    for group in groups:
        best: str | None = None
        for encoding in group:
            size = sizes.get(encoding)
            if size is None:
                continue
            if best is None or size < sizes[best]:
                best = encoding
        if best is not None:
            return best
    return None
