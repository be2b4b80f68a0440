"""Collection expiration times.

Expirations are stored as unix seconds. ``None`` means "never expires" and
``UNCHANGED`` (returned when no option is given) leaves the current value.
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Final

_DURATION_SECONDS: Final[dict[str, float]] = {
    "w": 604_800,
    "d": 86_400,
    "h": 3_600,
    "m": 60,
    "s": 1,
    "ms": 0.001,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|[wdhms])")


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


UNCHANGED: Final = _Unchanged()


def parse_duration(value: str) -> float:
    """Parse a duration like ``7d``, ``1d2h30m`` or ``150ms`` into seconds."""
    total = 0.0
    matched = 0
    for match in _DURATION_PART.finditer(value):
        if match.start() != matched:
            break
        total += float(match.group(1)) * _DURATION_SECONDS[match.group(2)]
        matched = match.end()
    if matched != len(value) or not value:
        raise ValueError(f"Invalid duration format: '{value}'")
    return total


def parse_timestamp(value: str) -> int:
    """Parse an ISO 8601 timestamp into unix seconds. Naive values are UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid expiresAt value: '{value}'") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def calc_expiration_time(
    *,
    expires_in: str | None = None,
    expires_at: str | None = None,
    expires_never: bool = False,
    now: float | None = None,
) -> int | None | _Unchanged:
    """Resolve the mutually exclusive expiration options."""
    given = [x for x in (expires_in, expires_at, expires_never or None) if x is not None]
    if len(given) > 1:
        raise ValueError("Only one of expires-in, expires-at or expires-never may be provided")

    if expires_never:
        return None
    if expires_in is not None:
        current = time.time() if now is None else now
        return int(current + parse_duration(expires_in))
    if expires_at is not None:
        return parse_timestamp(expires_at)
    return UNCHANGED


def is_expired(expiration_time: int, now: float | None = None) -> bool:
    current = int(time.time() if now is None else now)
    return expiration_time < current


def format_unix_time(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
