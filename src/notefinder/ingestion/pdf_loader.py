"""PDF text and outline extraction.

Uses PyMuPDF (fitz) for fast PDF text extraction.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List

import fitz  # PyMuPDF

from notefinder.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def iter_text_parts(path: Path) -> Iterator[str]:
    """Yield text content from a PDF file page by page."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        LOGGER.error("Failed to open PDF %s: %s", path, exc)
        return

    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover - damaged page
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized + "\n"
    finally:
        doc.close()


def extract_text(path: Path, *, max_chars: int | None = None) -> str:
    """Concatenate page text, stopping once ``max_chars`` are collected."""
    parts: List[str] = []
    collected = 0
    for part in iter_text_parts(path):
        parts.append(part)
        collected += len(part)
        if max_chars is not None and collected >= max_chars:
            break
    text = "".join(parts)
    return text if max_chars is None else text[:max_chars]


def get_pdf_headings(path: Path) -> List[str]:
    """Outline (bookmark) titles, in document order."""
    try:
        doc = fitz.open(path)
    except Exception as exc:
        LOGGER.error("Failed to open PDF %s: %s", path, exc)
        return []
    try:
        return [title.strip() for _level, title, _page in doc.get_toc() if title.strip()]
    finally:
        doc.close()
