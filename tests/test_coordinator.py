"""Tests for the change coordinator and startup consistency check."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from notefinder.config import AppConfig
from notefinder.coordinator import Coordinator, DebouncedTasks
from notefinder.errors import IndexingBusyError
from notefinder.index.storage import EmbeddingStore
from notefinder.models import Collection, Document, HeadingEmbedding, TitleEmbedding

DELAY = 0.01


def _docs(*paths: str) -> list[Document]:
    return [Document(path=p, title=Path(p).stem, mtime=1.0) for p in paths]


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(vault_path=tmp_path)


@pytest.fixture
def store(config: AppConfig) -> EmbeddingStore:
    store = EmbeddingStore(config.db_path)
    store.load()
    return store


@pytest.fixture
def repository() -> MagicMock:
    repository = MagicMock()
    repository.get_document.side_effect = lambda path: Document(path=path, title=Path(path).stem, mtime=1.0)
    repository.list_documents.return_value = _docs("a.md", "b.md")
    return repository


@pytest.fixture
def engine() -> MagicMock:
    engine = MagicMock()
    engine.update_note_if_needed = AsyncMock(return_value=True)
    engine.remove_note = AsyncMock(return_value=True)
    engine.index_note = AsyncMock()
    engine.index_specific_type = AsyncMock()
    return engine


@pytest.fixture
def service() -> MagicMock:
    service = MagicMock()
    service.is_ready.return_value = True
    return service


@pytest.fixture
def coordinator(repository, engine, store, service, config) -> Coordinator:
    return Coordinator(repository, engine, store, service, config, debounce_seconds=DELAY)


class TestDebouncedTasks:
    """Tests for DebouncedTasks."""

    @pytest.mark.asyncio
    async def test_runs_after_delay(self) -> None:
        calls = []

        async def callback() -> None:
            calls.append("ran")

        tasks = DebouncedTasks(DELAY)
        task = tasks.schedule("a.md", callback)
        assert "a.md" in tasks
        await task

        assert calls == ["ran"]
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending(self) -> None:
        calls = []

        async def first() -> None:
            calls.append("first")

        async def second() -> None:
            calls.append("second")

        tasks = DebouncedTasks(DELAY)
        stale = tasks.schedule("a.md", first)
        fresh = tasks.schedule("a.md", second)
        await fresh

        assert stale.cancelled()
        assert calls == ["second"]

    @pytest.mark.asyncio
    async def test_cancel(self) -> None:
        callback = AsyncMock()
        tasks = DebouncedTasks(DELAY)
        tasks.schedule("a.md", callback)
        tasks.schedule("b.md", callback)

        assert tasks.pending() == ["a.md", "b.md"]
        assert tasks.cancel("a.md") is True
        assert tasks.cancel("a.md") is False
        tasks.cancel_all()
        await asyncio.sleep(DELAY * 3)

        callback.assert_not_awaited()
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self) -> None:
        tasks = DebouncedTasks(0)
        task = tasks.schedule("a.md", AsyncMock(side_effect=RuntimeError("boom")))
        await task
        assert "a.md" not in tasks


class TestChangeHandling:
    """Tests for file change handlers."""

    @pytest.mark.asyncio
    async def test_modified_is_debounced(self, coordinator, engine) -> None:
        await coordinator.handle_modified("a.md")
        await coordinator.handle_modified("a.md")
        await coordinator.handle_created("a.md")
        assert coordinator.debouncer.pending() == ["a.md"]

        await asyncio.sleep(DELAY * 5)

        engine.update_note_if_needed.assert_awaited_once()
        assert engine.update_note_if_needed.await_args.args[0].path == "a.md"

    @pytest.mark.asyncio
    async def test_auto_index_disabled(self, coordinator, config) -> None:
        config.auto_index = False
        await coordinator.handle_modified("a.md")
        assert len(coordinator.debouncer) == 0

    @pytest.mark.asyncio
    async def test_update_skipped_when_not_ready(self, coordinator, engine, service) -> None:
        service.is_ready.return_value = False
        await coordinator.schedule_update("a.md")
        engine.update_note_if_needed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_skipped_for_vanished_file(self, coordinator, engine, repository) -> None:
        repository.get_document.side_effect = None
        repository.get_document.return_value = None
        await coordinator.schedule_update("a.md")
        engine.update_note_if_needed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_cancels_pending_update(self, coordinator, engine) -> None:
        await coordinator.handle_modified("a.md")
        await coordinator.handle_deleted("a.md")
        await asyncio.sleep(DELAY * 3)

        engine.remove_note.assert_awaited_once_with("a.md")
        engine.update_note_if_needed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rename_moves_index_entry(self, coordinator, engine) -> None:
        await coordinator.handle_renamed("old.md", "new.md")

        engine.remove_note.assert_awaited_once_with("old.md")
        engine.index_note.assert_awaited_once()
        assert engine.index_note.await_args.args[0].path == "new.md"


class TestCheckConsistency:
    """Tests for check_consistency."""

    @pytest.mark.asyncio
    async def test_clean_first_run_is_skipped(self, coordinator, engine) -> None:
        assert await coordinator.check_consistency() == []
        engine.index_specific_type.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interrupted_run_is_resumed(self, coordinator, engine, store) -> None:
        store.set_indexing_state(Collection.TITLES, is_indexing=True, progress=1, total=2)
        store.set_record(Collection.TITLES, TitleEmbedding("a.md", [1.0], 1.0, "a"))
        store.set_record(Collection.HEADINGS, HeadingEmbedding("a.md", [1.0], 1.0, ["H"]))
        store.set_record(Collection.HEADINGS, HeadingEmbedding("b.md", [1.0], 1.0, ["H"]))

        reindexed = await coordinator.check_consistency()

        assert reindexed == [Collection.TITLES]
        assert store.is_any_indexing() is False
        engine.index_specific_type.assert_awaited_once_with(Collection.TITLES)

    @pytest.mark.asyncio
    async def test_incomplete_collection_is_completed(self, coordinator, engine, store) -> None:
        store.set_record(Collection.TITLES, TitleEmbedding("a.md", [1.0], 1.0, "a"))
        store.set_record(Collection.TITLES, TitleEmbedding("b.md", [1.0], 1.0, "b"))
        store.set_record(Collection.HEADINGS, HeadingEmbedding("a.md", [1.0], 1.0, ["H"]))

        reindexed = await coordinator.check_consistency()

        assert reindexed == [Collection.HEADINGS]

    @pytest.mark.asyncio
    async def test_consistent_store_is_left_alone(self, coordinator, engine, store) -> None:
        for path in ("a.md", "b.md"):
            store.set_record(Collection.TITLES, TitleEmbedding(path, [1.0], 1.0, path))
            store.set_record(Collection.HEADINGS, HeadingEmbedding(path, [1.0], 1.0, ["H"]))

        assert await coordinator.check_consistency() == []
        engine.index_specific_type.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_locks_released_even_when_not_ready(self, coordinator, engine, store, service) -> None:
        service.is_ready.return_value = False
        store.set_indexing_state(Collection.HEADINGS, is_indexing=True)

        assert await coordinator.check_consistency() == []
        assert store.is_any_indexing() is False
        engine.index_specific_type.assert_not_awaited()
        assert store.db_path.exists()

    @pytest.mark.asyncio
    async def test_failed_recovery_continues(self, coordinator, engine, store) -> None:
        store.set_indexing_state(Collection.TITLES, is_indexing=True)
        engine.index_specific_type.side_effect = [IndexingBusyError("busy"), None]

        reindexed = await coordinator.check_consistency()

        assert reindexed == [Collection.HEADINGS]
        assert engine.index_specific_type.await_count == 2
