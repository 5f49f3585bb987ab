"""Semantic search interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Sequence

import numpy as np

from notefinder.config import AppConfig
from notefinder.embedding.protocol import EmbeddingMode
from notefinder.embedding.service import InferenceService
from notefinder.index.storage import EmbeddingStore
from notefinder.models import Collection, EmbeddingRecord
from notefinder.utils.text import headings_excerpt

LOGGER = logging.getLogger(__name__)

DEFAULT_TOP_K = 5

SOURCE_NAMES: Dict[Collection, str] = {
    Collection.TITLES: "title",
    Collection.HEADINGS: "heading",
    Collection.CONTENT: "content",
}


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over the product of L2 norms; 0.0 when either vector is zero."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have same length ({va.size} != {vb.size})")
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


@dataclass(slots=True)
class SearchResult:
    path: str
    score: float
    title: str
    excerpt: str
    source: str


def _file_title(path: str) -> str:
    return PurePosixPath(path).stem


def _describe(collection: Collection, record: EmbeddingRecord) -> tuple[str, str]:
    if collection is Collection.TITLES:
        return record.title, record.title
    if collection is Collection.HEADINGS:
        return _file_title(record.path), headings_excerpt(record.headings)
    return _file_title(record.path), record.excerpt


class SemanticSearch:
    """High-level API to query the embedding store."""

    def __init__(self, service: InferenceService, store: EmbeddingStore, config: AppConfig) -> None:
        self.service = service
        self.store = store
        self.config = config

    def search_by_embedding(
        self,
        query: Sequence[float],
        *,
        top_k: int = DEFAULT_TOP_K,
        exclude_path: str | None = None,
        min_score: float = 0.0,
    ) -> List[SearchResult]:
        matches: List[SearchResult] = []
        for collection in self.config.enabled_collections():
            for path, record in self.store.records(collection).items():
                if exclude_path is not None and path == exclude_path:
                    continue
                title, excerpt = _describe(collection, record)
                matches.append(
                    SearchResult(
                        path=path,
                        score=cosine_similarity(query, record.embedding),
                        title=title,
                        excerpt=excerpt,
                        source=SOURCE_NAMES[collection],
                    )
                )

        best_by_path: Dict[str, SearchResult] = {}
        for result in matches:
            existing = best_by_path.get(result.path)
            if existing is None or result.score > existing.score:
                best_by_path[result.path] = result

        merged = sorted(best_by_path.values(), key=lambda r: r.score, reverse=True)
        LOGGER.debug("Found %s unique results from %s matches", len(merged), len(matches))

        if min_score > 0:
            merged = [result for result in merged if result.score >= min_score]
        return merged[:top_k]

    async def search_by_text(
        self,
        text: str,
        *,
        top_k: int = DEFAULT_TOP_K,
        exclude_path: str | None = None,
        min_score: float = 0.0,
    ) -> List[SearchResult]:
        embedding = await self.service.generate_embedding(text, EmbeddingMode.QUERY)
        if embedding is None:
            LOGGER.warning("Could not embed query, returning no results")
            return []
        return self.search_by_embedding(embedding, top_k=top_k, exclude_path=exclude_path, min_score=min_score)

    async def suggest_related(self, text: str, *, exclude_path: str | None = None) -> List[SearchResult]:
        """Notes similar to ``text``, for a "related notes" view."""
        if not self.config.enabled_collections():
            LOGGER.debug("No collection enabled, no suggestions")
            return []
        if len(text.strip()) < self.config.min_text_length:
            LOGGER.debug("Text too short for suggestions (%s chars)", len(text.strip()))
            return []
        return await self.search_by_text(
            text, top_k=self.config.max_suggestions, exclude_path=exclude_path
        )
