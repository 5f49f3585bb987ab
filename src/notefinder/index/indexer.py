"""Paced, cancellable embedding passes over the document repository."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping

from notefinder.config import AppConfig
from notefinder.embedding.protocol import EmbeddingMode
from notefinder.embedding.service import InferenceService
from notefinder.errors import IndexingBusyError
from notefinder.events import EventHub, IndexingUpdate
from notefinder.index.storage import EmbeddingStore
from notefinder.models import (
    COLLECTIONS,
    Collection,
    ContentEmbedding,
    Document,
    HeadingEmbedding,
    TitleEmbedding,
)
from notefinder.utils.text import join_headings, make_excerpt, truncate
from notefinder.vault.repository import DocumentRepository

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[Collection, int, int], None]

EMBEDDED = "embedded"
SKIPPED = "skipped"
REMOVED = "removed"
FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PacingParams:
    chunk_size: int
    delay: float
    save_every: int


INDEXING_PARAMS: Dict[Collection, PacingParams] = {
    Collection.TITLES: PacingParams(chunk_size=25, delay=0.005, save_every=25),
    Collection.HEADINGS: PacingParams(chunk_size=5, delay=0.01, save_every=15),
    Collection.CONTENT: PacingParams(chunk_size=2, delay=0.05, save_every=5),
}


@dataclass(slots=True)
class IndexStats:
    embedded: int = 0
    skipped: int = 0
    removed: int = 0
    failed: int = 0
    cancelled: bool = False

    def increment(self, status: str) -> None:
        if status == EMBEDDED:
            self.embedded += 1
        elif status == SKIPPED:
            self.skipped += 1
        elif status == REMOVED:
            self.removed += 1
        else:
            self.failed += 1

    @property
    def processed(self) -> int:
        return self.embedded + self.skipped + self.removed + self.failed


class IndexingEngine:
    """Coordinates document embedding and persistence for the three collections."""

    def __init__(
        self,
        repository: DocumentRepository,
        service: InferenceService,
        store: EmbeddingStore,
        config: AppConfig,
        *,
        events: EventHub | None = None,
        params: Mapping[Collection, PacingParams] = INDEXING_PARAMS,
        cancel_grace: float = 0.1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.service = service
        self.store = store
        self.config = config
        self.events = events
        self.params = dict(params)
        self.cancel_grace = cancel_grace
        self._clock = clock
        self._cancel_requested = False
        self._indexers: Dict[Collection, Callable[[Document], Awaitable[str]]] = {
            Collection.TITLES: self._index_title,
            Collection.HEADINGS: self._index_headings,
            Collection.CONTENT: self._index_content,
        }

    # -- per-document --------------------------------------------------------------

    def _is_current(self, collection: Collection, doc: Document) -> bool:
        existing = self.store.get_record(collection, doc.path)
        return existing is not None and existing.last_modified == doc.mtime

    async def _embed(self, text: str) -> list | None:
        return await self.service.generate_embedding(text, EmbeddingMode.PASSAGE)

    async def _index_title(self, doc: Document) -> str:
        if self._is_current(Collection.TITLES, doc):
            return SKIPPED
        embedding = await self._embed(doc.title)
        if embedding is None:
            return FAILED
        self.store.set_record(
            Collection.TITLES,
            TitleEmbedding(path=doc.path, embedding=embedding, last_modified=doc.mtime, title=doc.title),
        )
        return EMBEDDED

    async def _index_headings(self, doc: Document) -> str:
        if self._is_current(Collection.HEADINGS, doc):
            return SKIPPED
        headings = await asyncio.to_thread(self.repository.get_headings, doc)
        if not headings:
            # No headings left: the record must not linger.
            return REMOVED if self.store.remove_record(Collection.HEADINGS, doc.path) else SKIPPED
        embedding = await self._embed(join_headings(headings))
        if embedding is None:
            return FAILED
        self.store.set_record(
            Collection.HEADINGS,
            HeadingEmbedding(path=doc.path, embedding=embedding, last_modified=doc.mtime, headings=headings),
        )
        return EMBEDDED

    async def _index_content(self, doc: Document) -> str:
        if self._is_current(Collection.CONTENT, doc):
            return SKIPPED
        text = await asyncio.to_thread(self.repository.read_text, doc)
        if not text.strip():
            return REMOVED if self.store.remove_record(Collection.CONTENT, doc.path) else SKIPPED
        embedding = await self._embed(truncate(text))
        if embedding is None:
            return FAILED
        self.store.set_record(
            Collection.CONTENT,
            ContentEmbedding(path=doc.path, embedding=embedding, last_modified=doc.mtime, excerpt=make_excerpt(text)),
        )
        return EMBEDDED

    async def _index_one(self, collection: Collection, doc: Document) -> str:
        try:
            status = await self._indexers[collection](doc)
        except Exception as exc:
            LOGGER.error("Failed to index %s for %s: %s", collection.value, doc.path, exc)
            return FAILED
        if status == FAILED:
            LOGGER.warning("No %s embedding for %s", collection.value, doc.path)
        return status

    async def index_note(self, doc: Document, *, save: bool = True) -> IndexStats:
        """Bring every enabled collection up to date for one document."""
        stats = IndexStats()
        for collection in self.config.enabled_collections():
            stats.increment(await self._index_one(collection, doc))
        if save and (stats.embedded or stats.removed):
            self.store.save()
        LOGGER.debug("Indexed %s: %s", doc.path, stats)
        return stats

    async def update_note_if_needed(self, doc: Document) -> bool:
        """Re-index ``doc`` when it has no record in any enabled collection or one is stale."""
        records = [self.store.get_record(c, doc.path) for c in self.config.enabled_collections()]
        existing = [record for record in records if record is not None]
        if existing and all(record.last_modified == doc.mtime for record in existing):
            LOGGER.debug("%s is up to date", doc.path)
            return False
        await self.index_note(doc)
        return True

    async def remove_note(self, path: str) -> bool:
        if not self.store.remove_path(path):
            return False
        self.store.save()
        LOGGER.info("Removed %s from index", path)
        if self.events is not None:
            self.events.emit_stats_refresh()
        return True

    # -- full passes ---------------------------------------------------------------

    def _emit(self, collection: Collection, is_active: bool, progress: int, total: int) -> None:
        if self.events is not None:
            self.events.emit_indexing_update(IndexingUpdate(collection, is_active, progress, total))

    def _release(self, collection: Collection) -> None:
        self.store.set_indexing_state(collection, is_indexing=False, progress=0, total=0)

    async def index_specific_type(
        self, collection: Collection, on_progress: ProgressCallback | None = None
    ) -> IndexStats:
        """Run one full pass for ``collection`` under the global indexing lock."""
        collection = Collection(collection)
        params = self.params[collection]

        # Check and take the lock with no await in between.
        if self.store.is_any_indexing():
            raise IndexingBusyError("Indexing already in progress")
        self.store.set_indexing_state(
            collection, is_indexing=True, progress=0, total=0, last_heartbeat=self._clock()
        )
        self._cancel_requested = False

        try:
            documents = await asyncio.to_thread(self.repository.list_documents)
        except (Exception, asyncio.CancelledError):
            LOGGER.error("Indexing %s aborted while listing documents", collection.value)
            self._release(collection)
            raise
        total = len(documents)
        self.store.set_indexing_state(collection, total=total)
        self.store.save()
        self._emit(collection, True, 0, total)
        LOGGER.info("Indexing %s: %s documents", collection.value, total)

        stats = IndexStats()
        since_save = 0
        try:
            for offset in range(0, total, params.chunk_size):
                if self._cancel_requested:
                    LOGGER.info("Indexing %s cancelled at %s/%s", collection.value, offset, total)
                    self._release(collection)
                    self.store.save()
                    self._emit(collection, False, offset, total)
                    stats.cancelled = True
                    return stats

                await asyncio.sleep(params.delay)
                chunk = documents[offset : offset + params.chunk_size]
                for doc in chunk:
                    stats.increment(await self._index_one(collection, doc))

                done = offset + len(chunk)
                since_save += len(chunk)
                self.store.set_indexing_state(collection, progress=done, last_heartbeat=self._clock())
                if since_save >= params.save_every:
                    self.store.save()
                    since_save = 0
                    self._emit(collection, True, done, total)
                if on_progress is not None:
                    on_progress(collection, done, total)
        except (Exception, asyncio.CancelledError):
            LOGGER.error("Indexing %s aborted", collection.value)
            self._release(collection)
            self.store.save()
            raise

        self.store.set_indexing_state(
            collection, is_indexing=False, progress=0, total=0, last_indexed=self._clock()
        )
        self.store.save()
        self._emit(collection, False, total, total)
        if self.events is not None:
            self.events.emit_stats_refresh()
        LOGGER.info(
            "Indexing %s complete: %s embedded, %s skipped, %s failed",
            collection.value,
            stats.embedded,
            stats.skipped,
            stats.failed,
        )
        return stats

    async def index_all(self, on_progress: ProgressCallback | None = None) -> Dict[Collection, IndexStats]:
        """Run a full pass for each enabled collection, in order."""
        results: Dict[Collection, IndexStats] = {}
        for collection in self.config.enabled_collections():
            stats = await self.index_specific_type(collection, on_progress)
            results[collection] = stats
            if stats.cancelled:
                break
        return results

    # -- cancellation --------------------------------------------------------------

    @property
    def is_indexing(self) -> bool:
        return self.store.is_any_indexing()

    def cancel_background_indexing(self) -> asyncio.Task:
        """Ask the running pass to stop; locks are force-cleared after a grace period."""
        LOGGER.info("Cancelling background indexing")
        self._cancel_requested = True
        return asyncio.get_running_loop().create_task(self._release_after_grace())

    async def _release_after_grace(self) -> None:
        await asyncio.sleep(self.cancel_grace)
        self.store.release_all_locks()
        self.store.save()
        for collection in COLLECTIONS:
            state = self.store.get_indexing_state(collection)
            self._emit(collection, False, state.progress, state.total)
        LOGGER.info("Indexing locks released")
