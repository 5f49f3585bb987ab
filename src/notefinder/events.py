"""Typed notifications for progress, readiness and worker health."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from notefinder.models import Collection

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IndexingUpdate:
    collection: Collection
    is_active: bool
    progress: int
    total: int


class EventListener:
    """Base observer. Override only the hooks you care about."""

    def on_indexing_update(self, update: IndexingUpdate) -> None:
        pass

    def on_stats_refresh(self) -> None:
        pass

    def on_service_state_changed(self, status: str, message: str) -> None:
        pass

    def on_worker_disabled(self, message: str) -> None:
        pass


class EventHub:
    """Fans notifications out to subscribed listeners.

    A failing listener is logged and skipped so one broken consumer
    cannot stall indexing or state transitions.
    """

    def __init__(self) -> None:
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _dispatch(self, hook: str, *args: object) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, hook)(*args)
            except Exception as exc:
                LOGGER.warning("Listener %r failed in %s: %s", listener, hook, exc)

    def emit_indexing_update(self, update: IndexingUpdate) -> None:
        LOGGER.debug(
            "Update: %s %s/%s (active=%s)",
            update.collection.value,
            update.progress,
            update.total,
            update.is_active,
        )
        self._dispatch("on_indexing_update", update)

    def emit_stats_refresh(self) -> None:
        self._dispatch("on_stats_refresh")

    def emit_service_state_changed(self, status: str, message: str) -> None:
        self._dispatch("on_service_state_changed", status, message)

    def emit_worker_disabled(self, message: str) -> None:
        self._dispatch("on_worker_disabled", message)
