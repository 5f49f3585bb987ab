"""Application root wiring every NoteFinder component together."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import List

from notefinder.config import CACHE_DIR_NAME, SETTINGS_FILE, AppConfig, load_config
from notefinder.config import save_config as write_config
from notefinder.coordinator import Coordinator
from notefinder.embedding.assets import ProgressCallback
from notefinder.embedding.client import InferenceClient
from notefinder.embedding.service import InferenceService, ServiceStatus
from notefinder.events import EventHub
from notefinder.index.indexer import IndexingEngine
from notefinder.index.search import SearchResult, SemanticSearch
from notefinder.index.storage import EmbeddingStore
from notefinder.vault.repository import DocumentRepository, FolderRepository

LOGGER = logging.getLogger(__name__)

RESET_SETTLE_SECONDS = 0.5


class NoteFinder:
    """Owns one instance of each component and passes them to each other explicitly."""

    def __init__(
        self,
        config: AppConfig,
        *,
        repository: DocumentRepository | None = None,
        client: InferenceClient | None = None,
        events: EventHub | None = None,
        log_level: int = logging.INFO,
    ) -> None:
        self.config = config
        self.events = events or EventHub()
        self.repository = repository or FolderRepository(config.vault_path)
        self.store = EmbeddingStore(config.db_path)
        self.client = client or InferenceClient(config.model_dir, events=self.events, log_level=log_level)
        self.service = InferenceService(self.client, config, events=self.events, save_config=self.save_config)
        self.engine = IndexingEngine(self.repository, self.service, self.store, config, events=self.events)
        self.search = SemanticSearch(self.service, self.store, config)
        self.coordinator = Coordinator(self.repository, self.engine, self.store, self.service, config)
        self._loaded = False

    @classmethod
    def from_vault(cls, vault_path: Path, **kwargs) -> "NoteFinder":
        """Build an app for ``vault_path``, reading ``<vault>/.notefinder/settings.json`` if present."""
        vault_path = Path(vault_path).resolve()
        config = load_config(vault_path / CACHE_DIR_NAME / SETTINGS_FILE, vault_path=vault_path)
        return cls(config, **kwargs)

    def save_config(self) -> None:
        write_config(self.config)

    async def start(self, *, auto_load: bool = True, check_consistency: bool = True) -> None:
        """Load the index, bring the model up if it is on disk and recover interrupted passes."""
        self.store.load()
        self._loaded = True
        if auto_load:
            await self.service.auto_load()
        self.log_initial_check()
        if check_consistency:
            await self.coordinator.check_consistency()

    def log_initial_check(self) -> None:
        stats = self.store.get_stats()
        LOGGER.info(
            "AI ready: %s | notes indexed: %s | database size: %s KB",
            self.service.is_ready(),
            stats.total_notes,
            stats.database_size_kb,
        )

    async def setup_model(self, progress: ProgressCallback | None = None) -> bool:
        return await self.service.setup(progress)

    async def related_to(self, path: str) -> List[SearchResult]:
        """Suggestions for the note at ``path`` (vault-relative), excluding itself."""
        doc = await asyncio.to_thread(self.repository.get_document, path)
        if doc is None:
            LOGGER.warning("Unknown note: %s", path)
            return []
        text = await asyncio.to_thread(self.repository.read_text, doc)
        return await self.search.suggest_related(text, exclude_path=doc.path)

    async def _stop_indexing(self) -> None:
        if self.store.is_any_indexing():
            await self.engine.cancel_background_indexing()
            await asyncio.sleep(RESET_SETTLE_SECONDS)

    async def soft_reset(self) -> None:
        """Delete the embeddings database, keeping the model and settings."""
        LOGGER.info("Starting soft reset")
        await self._stop_indexing()
        self.store.delete_file()
        self.store.reset()
        LOGGER.info("Soft reset complete")

    async def hard_reset(self) -> None:
        """Delete the whole cache directory (model included) and restore default settings."""
        LOGGER.info("Starting hard reset")
        await self._stop_indexing()
        await self.coordinator.close()
        await self.client.close()
        if self.config.cache_dir.exists():
            shutil.rmtree(self.config.cache_dir)

        defaults = AppConfig(vault_path=self.config.vault_path)
        self.config.index_titles = defaults.index_titles
        self.config.index_headings = defaults.index_headings
        self.config.index_content = defaults.index_content
        self.config.min_text_length = defaults.min_text_length
        self.config.max_suggestions = defaults.max_suggestions
        self.config.auto_index = defaults.auto_index

        self.store.reset()
        self.service.set_state(ServiceStatus.NOT_CONFIGURED, "Reset complete")
        LOGGER.info("Hard reset complete")

    async def close(self) -> None:
        await self.coordinator.close()
        if self._loaded:
            self.store.save()
        await self.service.close()

    async def __aenter__(self) -> "NoteFinder":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
