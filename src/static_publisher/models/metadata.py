"""Flat string metadata maps attached to stored objects.

Backends disagree on key casing: S3 lowercases user metadata keys, while the
KV store and the local simulation keep them as written. Every reader goes
through ``MetadataMap.get`` so lookups are case-insensitive in one place.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from typing import Any


class MetadataMap(Mapping[str, str]):
    """Immutable ``str -> str`` map with case-insensitive lookup.

    ``get("numChunks")`` tries the exact key, then the lowercase key, then any
    key that matches case-insensitively. Iteration yields keys as stored.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, str] = {}
        for key, value in (values or {}).items():
            # Non-string scalars are coerced on read; nested values are dropped
            if isinstance(value, bool):
                self._values[str(key)] = "true" if value else "false"
            elif isinstance(value, (str, int, float)):
                self._values[str(key)] = str(value)
        self._folded = {key.lower(): value for key, value in self._values.items()}

    def __getitem__(self, key: str) -> str:
        if key in self._values:
            return self._values[key]
        return self._folded[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"MetadataMap({self._values!r})"

    def to_dict(self) -> dict[str, str]:
        return dict(self._values)

    def to_json(self) -> str:
        return json.dumps(self._values, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str | None) -> MetadataMap | None:
        """Parse a JSON object into a MetadataMap.

        Returns None if the text is empty, not JSON, or not a JSON object.
        """
        if not text:
            return None
        try:
            obj = json.loads(text)
        except ValueError:
            return None
        if not isinstance(obj, dict):
            return None
        return cls(obj)


def build_metadata(**fields: Any) -> dict[str, str]:
    """Build a flat metadata dict, skipping fields whose value is None."""
    return {key: str(value) for key, value in fields.items() if value is not None}
