"""Tests for semantic search."""

from __future__ import annotations

import math
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from notefinder.config import AppConfig
from notefinder.embedding.protocol import EmbeddingMode
from notefinder.index.search import SemanticSearch, cosine_similarity
from notefinder.index.storage import EmbeddingStore
from notefinder.models import Collection, ContentEmbedding, HeadingEmbedding, TitleEmbedding


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(vault_path=tmp_path, index_content=True)


@pytest.fixture
def store(config: AppConfig) -> EmbeddingStore:
    store = EmbeddingStore(config.db_path)
    store.set_record(Collection.TITLES, TitleEmbedding("notes/a.md", [1.0, 0.0], 1.0, "Alpha"))
    store.set_record(Collection.TITLES, TitleEmbedding("notes/b.md", [0.0, 1.0], 1.0, "Beta"))
    store.set_record(Collection.HEADINGS, HeadingEmbedding("notes/b.md", [0.8, 0.6], 1.0, ["Setup", "Usage"]))
    store.set_record(Collection.CONTENT, ContentEmbedding("notes/c.md", [0.6, 0.8], 1.0, "Gamma body"))
    return store


@pytest.fixture
def service() -> MagicMock:
    service = MagicMock()
    service.generate_embedding = AsyncMock(return_value=[1.0, 0.0])
    return service


@pytest.fixture
def searcher(service, store, config) -> SemanticSearch:
    return SemanticSearch(service, store, config)


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical(self) -> None:
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)

    def test_opposite(self) -> None:
        assert cosine_similarity([1.0, 1.0], [-2.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_vector(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0

    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_bounds(self) -> None:
        vectors = [[0.3, -1.2, 5.0], [1e-3, 2.0, -0.5], [7.0, 7.0, 7.0], [-1.0, 0.0, 0.0]]
        for a in vectors:
            for b in vectors:
                score = cosine_similarity(a, b)
                assert -1.0 <= score <= 1.0
                assert not math.isnan(score)


class TestSearchByEmbedding:
    """Tests for search_by_embedding."""

    def test_best_score_per_path(self, searcher) -> None:
        """b.md matches by title (0.0) and heading (0.8); only the heading hit is kept."""
        results = searcher.search_by_embedding([1.0, 0.0], top_k=10)

        assert [r.path for r in results] == ["notes/a.md", "notes/b.md", "notes/c.md"]
        b = results[1]
        assert b.score == pytest.approx(0.8)
        assert b.source == "heading"
        assert b.title == "b"
        assert b.excerpt == "Setup • Usage"

    def test_title_result_fields(self, searcher) -> None:
        (first,) = searcher.search_by_embedding([1.0, 0.0], top_k=1)
        assert first.title == "Alpha"
        assert first.excerpt == "Alpha"
        assert first.source == "title"

    def test_content_result_fields(self, searcher) -> None:
        results = searcher.search_by_embedding([0.6, 0.8], top_k=10)
        content = next(r for r in results if r.path == "notes/c.md")
        assert content.source == "content"
        assert content.title == "c"
        assert content.excerpt == "Gamma body"

    def test_exclude_path(self, searcher) -> None:
        results = searcher.search_by_embedding([1.0, 0.0], top_k=10, exclude_path="notes/a.md")
        assert "notes/a.md" not in [r.path for r in results]

    def test_min_score_and_top_k(self, searcher) -> None:
        results = searcher.search_by_embedding([1.0, 0.0], top_k=10, min_score=0.7)
        assert [r.path for r in results] == ["notes/a.md", "notes/b.md"]

        assert len(searcher.search_by_embedding([1.0, 0.0], top_k=2)) == 2

    def test_disabled_collections_are_ignored(self, searcher, config) -> None:
        config.index_headings = False
        config.index_content = False

        results = searcher.search_by_embedding([1.0, 0.0], top_k=10)

        assert {r.source for r in results} == {"title"}
        assert len(results) == 2

    def test_mismatched_dimension_raises(self, searcher) -> None:
        with pytest.raises(ValueError):
            searcher.search_by_embedding([1.0, 0.0, 0.0])


class TestSearchByText:
    """Tests for search_by_text and suggestions."""

    @pytest.mark.asyncio
    async def test_embeds_in_query_mode(self, searcher, service) -> None:
        results = await searcher.search_by_text("find alpha", top_k=1)

        service.generate_embedding.assert_awaited_once_with("find alpha", EmbeddingMode.QUERY)
        assert results[0].path == "notes/a.md"

    @pytest.mark.asyncio
    async def test_failed_embedding_returns_empty(self, searcher, service) -> None:
        service.generate_embedding.return_value = None
        assert await searcher.search_by_text("anything") == []

    @pytest.mark.asyncio
    async def test_suggest_related_short_text(self, searcher, service) -> None:
        assert await searcher.suggest_related("too short") == []
        service.generate_embedding.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_suggest_related_excludes_source(self, searcher, config) -> None:
        config.max_suggestions = 1
        text = "A long enough note body about alpha topics. " * 3

        results = await searcher.suggest_related(text, exclude_path="notes/a.md")

        assert len(results) == 1
        assert results[0].path == "notes/b.md"

    @pytest.mark.asyncio
    async def test_suggest_related_nothing_enabled(self, searcher, config, service) -> None:
        config.index_titles = config.index_headings = config.index_content = False
        assert await searcher.suggest_related("x" * 100) == []
        service.generate_embedding.assert_not_awaited()
