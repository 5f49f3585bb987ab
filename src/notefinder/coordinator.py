"""Reacts to vault changes and keeps the index consistent across restarts."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

from notefinder.config import AppConfig
from notefinder.embedding.service import InferenceService
from notefinder.errors import NoteFinderError
from notefinder.index.indexer import IndexingEngine
from notefinder.index.storage import EmbeddingStore
from notefinder.models import Collection
from notefinder.vault.repository import DocumentRepository

LOGGER = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 5.0


class DebouncedTasks:
    """One pending delayed callback per key; scheduling again replaces the previous one."""

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, key: str, callback: Callable[[], Awaitable[None]]) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(self._run(key, callback))
        self._tasks[key] = task
        return task

    async def _run(self, key: str, callback: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.sleep(self.delay)
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Deferred update failed for %s: %s", key, exc)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    def cancel(self, key: str) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def pending(self) -> List[str]:
        return sorted(self._tasks)

    def __contains__(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


class Coordinator:
    """Glue between repository notifications, the indexing engine and the store."""

    def __init__(
        self,
        repository: DocumentRepository,
        engine: IndexingEngine,
        store: EmbeddingStore,
        service: InferenceService,
        config: AppConfig,
        *,
        debounce_seconds: float = DEBOUNCE_SECONDS,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.store = store
        self.service = service
        self.config = config
        self.debouncer = DebouncedTasks(debounce_seconds)

    # -- change notifications ------------------------------------------------------

    def schedule_update(self, path: str) -> asyncio.Task:
        return self.debouncer.schedule(path, lambda: self._update(path))

    async def _update(self, path: str) -> None:
        if not self.service.is_ready():
            LOGGER.debug("Service not ready, skipping update of %s", path)
            return
        doc = await asyncio.to_thread(self.repository.get_document, path)
        if doc is None:
            LOGGER.debug("%s no longer exists, skipping update", path)
            return
        if await self.engine.update_note_if_needed(doc):
            LOGGER.info("Auto-updated: %s", path)

    async def handle_created(self, path: str) -> None:
        await self.handle_modified(path)

    async def handle_modified(self, path: str) -> None:
        if not self.config.auto_index:
            return
        self.schedule_update(path)

    async def handle_deleted(self, path: str) -> None:
        self.debouncer.cancel(path)
        try:
            await self.engine.remove_note(path)
        except NoteFinderError as exc:
            LOGGER.warning("Failed to remove %s: %s", path, exc)

    async def handle_renamed(self, old_path: str, new_path: str) -> None:
        LOGGER.info("File renamed: %s -> %s", old_path, new_path)
        self.debouncer.cancel(old_path)
        try:
            await self.engine.remove_note(old_path)
            doc = await asyncio.to_thread(self.repository.get_document, new_path)
            if doc is not None:
                await self.engine.index_note(doc)
        except NoteFinderError as exc:
            LOGGER.warning("Failed to handle rename of %s: %s", old_path, exc)

    # -- startup -------------------------------------------------------------------

    async def check_consistency(self) -> List[Collection]:
        """Resume or complete indexing interrupted by a crash; returns the re-indexed collections."""
        stats = self.store.get_stats()
        states = self.store.indexing_states()
        locked = {collection for collection, state in states.items() if state.is_indexing}

        if not locked and stats.total_notes == 0:
            LOGGER.info("Clean first run, skipping consistency check")
            return []

        if locked:
            LOGGER.info("Releasing locks: %s", ", ".join(sorted(c.value for c in locked)))
            self.store.release_all_locks()

        ready = self.service.is_ready()
        total = len(await asyncio.to_thread(self.repository.list_documents))
        reindexed: List[Collection] = []

        for collection in self.config.enabled_collections():
            count = stats.count_for(collection)
            if collection in locked or count == 0:
                reason = "starting indexing"
            elif count < total:
                reason = f"completing ({count}/{total})"
            else:
                LOGGER.info("%s: consistent", collection.value)
                continue

            if not ready:
                LOGGER.warning("%s: needs indexing but the model is not ready", collection.value)
                continue

            LOGGER.info("%s: %s", collection.value, reason)
            try:
                await self.engine.index_specific_type(collection)
            except NoteFinderError as exc:
                LOGGER.error("%s: recovery failed: %s", collection.value, exc)
                continue
            reindexed.append(collection)

        self.store.save()
        LOGGER.info("Consistency check complete")
        return reindexed

    async def close(self) -> None:
        self.debouncer.cancel_all()
