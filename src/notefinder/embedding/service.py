"""Model acquisition and the readiness state machine around the inference client."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Sequence

from notefinder.config import AppConfig
from notefinder.embedding.assets import (
    REQUIRED_ASSETS,
    ModelAsset,
    ProgressCallback,
    download_assets,
    ensure_model_folders,
    missing_assets,
)
from notefinder.embedding.client import InferenceClient
from notefinder.embedding.protocol import EmbeddingMode
from notefinder.errors import InferenceError, ModelDownloadError
from notefinder.events import EventHub, EventListener

LOGGER = logging.getLogger(__name__)

TEST_SENTENCE = "This is a test for semantic embedding generation"


class ServiceStatus(str, Enum):
    NOT_CONFIGURED = "not-configured"
    READY = "ready"
    ERROR = "error"


class InferenceService(EventListener):
    """Downloads the model if needed, drives the client and tracks readiness.

    ``status`` is persisted through ``save_config`` so the last known state
    survives restarts; ``is_ready`` additionally requires a live worker.
    """

    def __init__(
        self,
        client: InferenceClient,
        config: AppConfig,
        *,
        events: EventHub | None = None,
        save_config: Callable[[], None] | None = None,
        assets: Sequence[ModelAsset] = REQUIRED_ASSETS,
    ) -> None:
        self.client = client
        self.config = config
        self.events = events
        self._save_config = save_config
        self.assets = tuple(assets)
        try:
            self.status = ServiceStatus(config.service_status)
        except ValueError:
            self.status = ServiceStatus.NOT_CONFIGURED
        self.message = config.service_message
        if events is not None:
            events.subscribe(self)

    def on_worker_disabled(self, message: str) -> None:
        self.set_state(ServiceStatus.ERROR, message)

    # -- state ---------------------------------------------------------------------

    def set_state(self, status: ServiceStatus, message: str, *, persist: bool = True) -> None:
        LOGGER.info("STATE: %s -> %s (%s)", self.status.value, status.value, message)
        self.status = status
        self.message = message

        if persist:
            self.config.service_status = status.value
            self.config.service_message = message
            if self._save_config is not None:
                try:
                    self._save_config()
                except OSError as exc:
                    LOGGER.warning("Failed to persist state: %s", exc)

        if self.events is not None:
            self.events.emit_service_state_changed(status.value, message)

    def is_ready(self) -> bool:
        return self.status is ServiceStatus.READY and self.client.is_worker_ready()

    def get_status(self) -> dict:
        return {"status": self.status.value, "message": self.message}

    # -- setup ---------------------------------------------------------------------

    def is_model_downloaded(self) -> bool:
        model_dir = self.config.model_dir
        ensure_model_folders(model_dir)
        missing = missing_assets(model_dir, self.assets)
        for asset in missing:
            LOGGER.info("Missing model file: %s", asset.name)
        return not missing

    def download_model(self, progress: ProgressCallback | None = None) -> bool:
        LOGGER.info("Starting model download into %s", self.config.model_dir)
        try:
            download_assets(
                self.config.model_dir,
                repo_id=self.config.model_repo,
                assets=self.assets,
                progress=progress,
            )
        except ModelDownloadError as exc:
            LOGGER.error("Download failed: %s", exc)
            return False
        LOGGER.info("All model files downloaded successfully")
        return True

    async def initialize_client(self) -> bool:
        LOGGER.info("Initializing AI worker")
        if await self.client.initialize():
            return True
        self.set_state(ServiceStatus.ERROR, "Init failed: worker initialization failed")
        return False

    def load_model(self) -> bool:
        if self.client.is_worker_ready():
            self.set_state(ServiceStatus.READY, "AI model loaded in worker")
            return True
        self.set_state(ServiceStatus.ERROR, "Load failed: worker not ready after initialization")
        return False

    async def setup(self, progress: ProgressCallback | None = None) -> bool:
        """Full activation: assets on disk, worker up, model confirmed."""
        if not await asyncio.to_thread(self.is_model_downloaded):
            if not await asyncio.to_thread(self.download_model, progress):
                self.set_state(ServiceStatus.ERROR, "Download failed: model files could not be fetched")
                return False
        if not await self.initialize_client():
            return False
        return self.load_model()

    async def auto_load(self) -> bool:
        """Bring the worker up at startup when the model is already on disk."""
        if not self.is_model_downloaded():
            LOGGER.info("Model not downloaded, skipping auto-load")
            return False
        LOGGER.info("Model already downloaded, auto-loading")
        if not await self.initialize_client():
            return False
        return self.load_model()

    # -- embeddings ----------------------------------------------------------------

    async def generate_embedding(
        self, text: str, mode: EmbeddingMode = EmbeddingMode.PASSAGE
    ) -> List[float] | None:
        if not self.is_ready():
            LOGGER.warning("AI not ready")
            return None
        try:
            embedding = await self.client.generate_embedding(text, mode)
        except InferenceError as exc:
            LOGGER.error("Embedding generation failed: %s", exc)
            return None
        LOGGER.debug("Embedding generated (%s dims)", len(embedding))
        return embedding

    async def generate_embeddings_batch(
        self, texts: Sequence[str], mode: EmbeddingMode = EmbeddingMode.PASSAGE
    ) -> List[List[float]] | None:
        if not self.is_ready():
            LOGGER.warning("AI not ready for batch")
            return None
        try:
            embeddings = await self.client.generate_embeddings_batch(texts, mode)
        except InferenceError as exc:
            LOGGER.error("Batch embedding generation failed: %s", exc)
            return None
        LOGGER.debug("Batch generated: %s embeddings", len(embeddings))
        return embeddings

    async def test_inference(self) -> List[float] | None:
        embedding = await self.generate_embedding(TEST_SENTENCE)
        if embedding is None:
            LOGGER.error("Inference test failed")
        else:
            LOGGER.info("Inference test: %s dims, first 3 = %s", len(embedding), embedding[:3])
        return embedding

    async def close(self) -> None:
        await self.client.close()
