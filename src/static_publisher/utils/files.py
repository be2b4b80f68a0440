"""Local file tree walking for publish runs."""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class FileWalkOptions:
    """Which files under the root directory are published.

    ``exclude_dirs`` entries are matched against the root-relative path
    (always starting with "/"): a plain string excludes that path and
    everything under it, ``re:<pattern>`` is a regular expression search.
    """

    exclude_dirs: Sequence[str] = field(default_factory=tuple)
    exclude_dot_files: bool = True
    include_well_known: bool = True


def compile_exclusions(exclude_dirs: Sequence[str]) -> list[str | re.Pattern[str]]:
    """Turn ``exclude_dirs`` entries into path prefixes and compiled patterns.

    Raises:
        ValueError: A ``re:`` entry is not a valid regular expression.
    """
    exclusions: list[str | re.Pattern[str]] = []
    for entry in exclude_dirs:
        if entry.startswith("re:"):
            try:
                exclusions.append(re.compile(entry[3:]))
            except re.error as e:
                raise ValueError(f"Invalid excludeDirs pattern {entry!r}: {e}") from e
        else:
            exclusions.append("/" + entry.removeprefix("./").strip("/"))
    return exclusions


def _is_excluded(relative: str, exclusions: Sequence[str | re.Pattern[str]]) -> bool:
    for exclusion in exclusions:
        if isinstance(exclusion, re.Pattern):
            if exclusion.search(relative):
                return True
        elif relative == exclusion or relative.startswith(exclusion + "/"):
            return True
    return False


def enumerate_files(root: Path, options: FileWalkOptions | None = None) -> list[Path]:
    """List publishable files under ``root``, sorted for deterministic runs."""
    options = options or FileWalkOptions()
    exclusions = compile_exclusions(options.exclude_dirs)
    return sorted(_walk(root.resolve(), root.resolve(), options, exclusions))


def _walk(
    root: Path,
    directory: Path,
    options: FileWalkOptions,
    exclusions: Sequence[str | re.Pattern[str]],
) -> Iterator[Path]:
    for entry in directory.iterdir():
        relative = asset_key_for(root, entry)
        if _is_excluded(relative, exclusions):
            continue

        if options.exclude_dot_files and entry.name.startswith("."):
            if not (options.include_well_known and entry.name == ".well-known"):
                continue

        if entry.is_dir():
            yield from _walk(root, entry, options, exclusions)
        elif entry.is_file():
            yield entry


def asset_key_for(root: Path, path: Path) -> str:
    """Public asset key of a file: its root-relative POSIX path with a leading slash."""
    return "/" + path.resolve().relative_to(root.resolve()).as_posix()
