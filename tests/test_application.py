"""Tests for the NoteFinder application root."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notefinder.application import NoteFinder
from notefinder.config import AppConfig, save_config
from notefinder.embedding.service import ServiceStatus
from notefinder.models import Collection, TitleEmbedding


def _client() -> MagicMock:
    client = MagicMock()
    client.initialize = AsyncMock(return_value=True)
    client.is_worker_ready.return_value = True
    client.generate_embedding = AsyncMock(return_value=[1.0, 0.0])
    client.close = AsyncMock()
    return client


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    (tmp_path / "alpha.md").write_text("# Alpha\n" + "Alpha is about gardening and soil. " * 3, encoding="utf-8")
    (tmp_path / "beta.md").write_text("# Beta\nshort", encoding="utf-8")
    return tmp_path


@pytest.fixture
def finder(vault: Path) -> NoteFinder:
    return NoteFinder(AppConfig(vault_path=vault), client=_client())


class TestWiring:
    """Tests for construction and startup."""

    def test_from_vault_reads_settings(self, vault: Path) -> None:
        config = AppConfig(vault_path=vault, max_suggestions=3, index_content=True)
        save_config(config)

        finder = NoteFinder.from_vault(vault, client=_client())

        assert finder.config.max_suggestions == 3
        assert finder.config.index_content is True
        assert finder.config.vault_path == vault.resolve()

    def test_components_share_state(self, finder: NoteFinder) -> None:
        assert finder.engine.store is finder.store
        assert finder.search.store is finder.store
        assert finder.coordinator.engine is finder.engine
        assert finder.service.client is finder.client

    @pytest.mark.asyncio
    async def test_start_without_model(self, finder: NoteFinder) -> None:
        await finder.start()

        finder.client.initialize.assert_not_awaited()
        assert finder.service.is_ready() is False
        assert finder.config.db_path.exists()

    @pytest.mark.asyncio
    async def test_close_before_start_leaves_database_alone(self, finder: NoteFinder) -> None:
        finder.config.db_path.parent.mkdir(parents=True)
        finder.config.db_path.write_text("sentinel", encoding="utf-8")

        await finder.close()

        assert finder.config.db_path.read_text(encoding="utf-8") == "sentinel"
        finder.client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, finder: NoteFinder) -> None:
        async with finder:
            await finder.start(auto_load=False)
        finder.client.close.assert_awaited()


class TestRelated:
    """Tests for related_to."""

    @pytest.mark.asyncio
    async def test_related_excludes_source(self, finder: NoteFinder) -> None:
        await finder.start(auto_load=False, check_consistency=False)
        finder.service.set_state(ServiceStatus.READY, "ok", persist=False)
        finder.store.set_record(Collection.TITLES, TitleEmbedding("alpha.md", [1.0, 0.0], 1.0, "alpha"))
        finder.store.set_record(Collection.TITLES, TitleEmbedding("beta.md", [0.9, 0.1], 1.0, "beta"))

        results = await finder.related_to("alpha.md")

        assert [r.path for r in results] == ["beta.md"]

    @pytest.mark.asyncio
    async def test_short_note_has_no_suggestions(self, finder: NoteFinder) -> None:
        finder.service.set_state(ServiceStatus.READY, "ok", persist=False)
        assert await finder.related_to("beta.md") == []

    @pytest.mark.asyncio
    async def test_unknown_note(self, finder: NoteFinder) -> None:
        assert await finder.related_to("missing.md") == []


class TestReset:
    """Tests for soft and hard reset."""

    @pytest.mark.asyncio
    async def test_soft_reset_keeps_model_and_settings(self, finder: NoteFinder) -> None:
        await finder.start(auto_load=False)
        finder.store.set_record(Collection.TITLES, TitleEmbedding("alpha.md", [1.0], 1.0, "alpha"))
        finder.store.save()
        model_file = finder.config.model_dir / "config.json"
        model_file.parent.mkdir(parents=True)
        model_file.write_text("{}", encoding="utf-8")
        finder.config.index_content = True

        await finder.soft_reset()

        assert finder.store.get_stats().total_notes == 0
        raw = json.loads(finder.config.db_path.read_text(encoding="utf-8"))
        assert raw["titles"] == {}
        assert model_file.exists()
        assert finder.config.index_content is True

    @pytest.mark.asyncio
    async def test_soft_reset_stops_indexing_first(self, finder: NoteFinder) -> None:
        await finder.start(auto_load=False)
        finder.store.set_indexing_state(Collection.TITLES, is_indexing=True)

        with patch("notefinder.application.RESET_SETTLE_SECONDS", 0), patch.object(
            finder.engine, "cancel_background_indexing", AsyncMock()
        ) as cancel:
            await finder.soft_reset()

        cancel.assert_awaited_once()
        assert finder.store.is_any_indexing() is False

    @pytest.mark.asyncio
    async def test_hard_reset_restores_defaults(self, finder: NoteFinder) -> None:
        await finder.start(auto_load=False)
        model_file = finder.config.model_dir / "onnx" / "model_quantized.onnx"
        model_file.parent.mkdir(parents=True)
        model_file.write_bytes(b"weights")
        finder.config.index_titles = False
        finder.config.index_content = True
        finder.config.max_suggestions = 2
        finder.service.set_state(ServiceStatus.READY, "AI model loaded in worker")

        await finder.hard_reset()

        assert not model_file.exists()
        finder.client.close.assert_awaited()
        assert finder.config.index_titles is True
        assert finder.config.index_content is False
        assert finder.config.max_suggestions == AppConfig().max_suggestions
        assert finder.service.status is ServiceStatus.NOT_CONFIGURED
        assert finder.service.message == "Reset complete"
        saved = json.loads(finder.config.settings_path.read_text(encoding="utf-8"))
        assert saved["service_status"] == "not-configured"
        assert finder.config.db_path.exists()
