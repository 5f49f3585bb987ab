"""Utility helpers for walking a vault folder."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

SUPPORTED_SUFFIXES = (".md", ".pdf")


def is_hidden(relative: Path) -> bool:
    """True when any component of ``relative`` starts with a dot."""
    return any(part.startswith(".") for part in relative.parts)


def iter_document_paths(root: Path, suffixes: Iterable[str] = SUPPORTED_SUFFIXES) -> Iterator[Path]:
    """Yield document files under ``root`` in sorted order, skipping hidden entries."""
    wanted = {suffix.lower() for suffix in suffixes}
    for item in sorted(root.rglob("*")):
        if not item.is_file() or item.suffix.lower() not in wanted:
            continue
        if is_hidden(item.relative_to(root)):
            continue
        yield item


def to_relative(root: Path, path: Path) -> str:
    """POSIX path of ``path`` relative to ``root``, the key used across the index."""
    return path.relative_to(root).as_posix()
