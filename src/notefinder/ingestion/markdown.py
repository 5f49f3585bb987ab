"""Markdown structure helpers."""

from __future__ import annotations

import re
from typing import List

_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")


def extract_headings(text: str) -> List[str]:
    """Return ATX heading texts in order, ignoring lines inside fenced code blocks."""
    headings: List[str] = []
    fence: str | None = None
    for line in text.splitlines():
        match = _FENCE_RE.match(line)
        if match:
            marker = match.group(1)
            if fence is None:
                fence = marker[0] * len(marker)
            elif marker[0] == fence[0] and len(marker) >= len(fence):
                fence = None
            continue
        if fence is not None:
            continue
        heading = _HEADING_RE.match(line)
        if heading:
            title = heading.group(2).strip()
            if title:
                headings.append(title)
    return headings
