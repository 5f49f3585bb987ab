"""Filesystem change notifications for a vault folder.

Wraps ``watchfiles.awatch`` and turns its raw change batches into
created/modified/deleted/renamed events keyed by vault-relative path.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Protocol, Tuple

from watchfiles import Change, awatch

from notefinder.vault.repository import FolderRepository

LOGGER = logging.getLogger(__name__)

CREATED = "created"
MODIFIED = "modified"
DELETED = "deleted"
RENAMED = "renamed"


@dataclass(frozen=True, slots=True)
class FileEvent:
    kind: str
    path: str
    old_path: str | None = None


class ChangeHandler(Protocol):
    async def handle_created(self, path: str) -> None: ...

    async def handle_modified(self, path: str) -> None: ...

    async def handle_deleted(self, path: str) -> None: ...

    async def handle_renamed(self, old_path: str, new_path: str) -> None: ...


def classify_changes(
    repository: FolderRepository, changes: Iterable[Tuple[Change, str]]
) -> List[FileEvent]:
    """Map one ``awatch`` batch to events; a lone delete+add of the same suffix is a rename."""
    relevant = sorted(
        ((change, Path(raw)) for change, raw in changes if repository.supports(Path(raw))),
        key=lambda item: (str(item[1]), item[0].value),
    )
    added = [path for change, path in relevant if change == Change.added]
    deleted = [path for change, path in relevant if change == Change.deleted]

    if len(added) == 1 and len(deleted) == 1 and added[0].suffix.lower() == deleted[0].suffix.lower():
        new_path, old_path = added[0], deleted[0]
        events = [FileEvent(RENAMED, repository.relative_path(new_path), repository.relative_path(old_path))]
        for change, path in relevant:
            if change == Change.modified and path not in (new_path, old_path):
                events.append(FileEvent(MODIFIED, repository.relative_path(path)))
        return events

    events: List[FileEvent] = []
    seen = set()
    for change, path in relevant:
        kind = {Change.added: CREATED, Change.modified: MODIFIED, Change.deleted: DELETED}[change]
        event = FileEvent(kind, repository.relative_path(path))
        if event not in seen:
            seen.add(event)
            events.append(event)
    return events


async def dispatch_event(handler: ChangeHandler, event: FileEvent) -> None:
    LOGGER.debug("File event: %s %s", event.kind, event.path)
    if event.kind == CREATED:
        await handler.handle_created(event.path)
    elif event.kind == MODIFIED:
        await handler.handle_modified(event.path)
    elif event.kind == DELETED:
        await handler.handle_deleted(event.path)
    elif event.kind == RENAMED:
        await handler.handle_renamed(event.old_path, event.path)


async def watch_repository(
    repository: FolderRepository,
    handler: ChangeHandler,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Forward vault changes to ``handler`` until ``stop_event`` is set."""
    LOGGER.info("Watching %s", repository.root)
    async for changes in awatch(
        repository.root,
        watch_filter=lambda _change, raw: repository.supports(Path(raw)),
        stop_event=stop_event,
        ignore_permission_denied=True,
    ):
        for event in classify_changes(repository, changes):
            try:
                await dispatch_event(handler, event)
            except Exception as exc:
                LOGGER.error("Failed to handle %s for %s: %s", event.kind, event.path, exc)
    LOGGER.info("Stopped watching %s", repository.root)
