"""JSON envelope holding the three embedding collections and their indexing states."""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator

from notefinder.errors import StorageError
from notefinder.models import (
    COLLECTIONS,
    Collection,
    EmbeddingRecord,
    IndexingState,
    StoreStats,
    record_from_dict,
    record_to_dict,
)

LOGGER = logging.getLogger(__name__)

DATABASE_VERSION = "2.0.0"
STALE_LOCK_SECONDS = 30.0


class EmbeddingStore:
    """Persistence layer for title, heading and content embeddings.

    Records are keyed by document path and kept in memory; ``save`` writes the
    whole envelope. Timestamps come from ``clock`` (seconds since the epoch).
    """

    def __init__(self, db_path: Path, *, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self._collections: Dict[Collection, Dict[str, EmbeddingRecord]] = {}
        self._states: Dict[Collection, IndexingState] = {}
        self.version = DATABASE_VERSION
        self.last_update = 0.0
        self._clear()

    def _clear(self) -> None:
        self.version = DATABASE_VERSION
        self.last_update = self._clock()
        self._collections = {collection: {} for collection in COLLECTIONS}
        self._states = {collection: IndexingState() for collection in COLLECTIONS}

    # -- lifecycle -----------------------------------------------------------------

    def load(self) -> None:
        """Read the envelope from disk, resetting on absence, corruption or version drift."""
        if not self.db_path.exists():
            LOGGER.info("Database not found at %s, creating new", self.db_path)
            self.reset()
            return

        try:
            raw = json.loads(self.db_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Unreadable database %s (%s), resetting", self.db_path, exc)
            self.reset()
            return

        if not isinstance(raw, dict) or raw.get("version") != DATABASE_VERSION:
            LOGGER.info("Old database version detected, resetting")
            self.reset()
            return

        try:
            self._restore(raw)
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Malformed database %s (%s), resetting", self.db_path, exc)
            self.reset()
            return

        self._recover_stale_locks()
        LOGGER.info("Database loaded from %s", self.db_path)

    def _restore(self, raw: Dict[str, Any]) -> None:
        collections = {
            collection: {
                path: record_from_dict(collection, data)
                for path, data in raw.get(collection.value, {}).items()
            }
            for collection in COLLECTIONS
        }
        raw_states = raw.get("indexing_states", {})
        states = {
            collection: IndexingState.from_dict(raw_states.get(collection.value, {}))
            for collection in COLLECTIONS
        }
        self.version = raw["version"]
        self.last_update = float(raw.get("last_update", 0.0))
        self._collections = collections
        self._states = states

    def _recover_stale_locks(self) -> None:
        now = self._clock()
        for collection, state in self._states.items():
            if state.is_indexing and now - state.last_heartbeat > STALE_LOCK_SECONDS:
                LOGGER.info("Auto-reset stale %s indexing", collection.value)
                state.is_indexing = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"version": self.version, "last_update": self.last_update}
        for collection in COLLECTIONS:
            data[collection.value] = {
                path: record_to_dict(record)
                for path, record in self._collections[collection].items()
            }
        data["indexing_states"] = {
            collection.value: self._states[collection].to_dict() for collection in COLLECTIONS
        }
        return data

    @contextmanager
    def _atomic_write(self) -> Iterator[Path]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.db_path.with_suffix(self.db_path.suffix + ".tmp")
        try:
            yield tmp
            os.replace(tmp, self.db_path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

    def save(self) -> None:
        self.last_update = self._clock()
        payload = json.dumps(self.to_dict())
        try:
            with self._atomic_write() as tmp:
                tmp.write_text(payload, encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Unable to write {self.db_path}: {exc}") from exc
        LOGGER.debug("Database saved to %s", self.db_path)

    def reset(self) -> None:
        """Discard every record and persist the empty envelope."""
        self._clear()
        self.save()
        LOGGER.info("Database reset complete")

    def delete_file(self) -> bool:
        """Remove the envelope from disk without touching memory."""
        if self.db_path.exists():
            self.db_path.unlink()
            return True
        return False

    # -- records -------------------------------------------------------------------

    def get_record(self, collection: Collection, path: str) -> EmbeddingRecord | None:
        return self._collections[collection].get(path)

    def set_record(self, collection: Collection, record: EmbeddingRecord) -> None:
        self._collections[collection][record.path] = record

    def remove_record(self, collection: Collection, path: str) -> bool:
        return self._collections[collection].pop(path, None) is not None

    def records(self, collection: Collection) -> Dict[str, EmbeddingRecord]:
        return self._collections[collection]

    def remove_path(self, path: str) -> bool:
        """Drop ``path`` from all collections; True if anything was removed."""
        removed = False
        for collection in COLLECTIONS:
            removed = self.remove_record(collection, path) or removed
        return removed

    # -- indexing state ------------------------------------------------------------

    def get_indexing_state(self, collection: Collection) -> IndexingState:
        return self._states[collection]

    def set_indexing_state(self, collection: Collection, **changes: Any) -> None:
        state = self._states[collection]
        for key, value in changes.items():
            if not hasattr(state, key):
                raise AttributeError(f"IndexingState has no field {key!r}")
            setattr(state, key, value)

    def indexing_states(self) -> Dict[Collection, IndexingState]:
        """Copies of the current states, safe to hold across awaits."""
        return {
            collection: IndexingState.from_dict(state.to_dict())
            for collection, state in self._states.items()
        }

    def is_any_indexing(self) -> bool:
        return any(state.is_indexing for state in self._states.values())

    def release_all_locks(self) -> None:
        for state in self._states.values():
            state.is_indexing = False

    # -- reporting -----------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        all_paths = set()
        for collection in COLLECTIONS:
            all_paths.update(self._collections[collection])

        active: Collection | None = None
        active_state = IndexingState()
        for collection in COLLECTIONS:
            if self._states[collection].is_indexing:
                active = collection
                active_state = self._states[collection]
                break

        size_kb = round(len(json.dumps(self.to_dict())) / 1024)
        return StoreStats(
            titles_indexed=len(self._collections[Collection.TITLES]),
            headings_indexed=len(self._collections[Collection.HEADINGS]),
            content_indexed=len(self._collections[Collection.CONTENT]),
            total_notes=len(all_paths),
            database_size_kb=size_kb,
            last_update=datetime.fromtimestamp(self.last_update).strftime("%Y-%m-%d %H:%M:%S"),
            is_indexing=active is not None,
            current_indexing_type=active,
            current_indexing_progress=active_state.progress,
            total_indexing_items=active_state.total,
        )
