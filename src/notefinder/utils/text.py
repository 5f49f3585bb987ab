"""Text helpers for preparing embedding input and display excerpts."""

from __future__ import annotations

from typing import Iterable

CONTENT_MAX_CHARS = 3000
EXCERPT_CHARS = 150
HEADING_SEPARATOR = " • "


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())


def truncate(text: str, max_chars: int = CONTENT_MAX_CHARS) -> str:
    return text[:max_chars]


def make_excerpt(text: str, max_chars: int = EXCERPT_CHARS) -> str:
    """First ``max_chars`` characters on a single line."""
    return text[:max_chars].replace("\n", " ")


def join_headings(headings: Iterable[str]) -> str:
    """Embedding input for the heading collection."""
    return "\n".join(headings)


def headings_excerpt(headings: Iterable[str]) -> str:
    return HEADING_SEPARATOR.join(headings)
