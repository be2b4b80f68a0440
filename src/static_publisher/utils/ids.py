"""Publish id generation."""

from __future__ import annotations

from uuid import UUID, uuid4

_ID_SYMBOLS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def uuid_to_string(value: UUID) -> str:
    """Render a UUID in base 62 so it is short and safe inside storage keys."""
    number = value.int
    result = ""
    while True:
        number, remainder = divmod(number, len(_ID_SYMBOLS))
        result = _ID_SYMBOLS[remainder] + result
        if number == 0:
            break
    return result


def create_publish_id() -> str:
    return uuid_to_string(uuid4())
