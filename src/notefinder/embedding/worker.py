"""Inference worker: runs in a child process and owns the embedding model.

The worker receives the model files over its pipe, writes them to a private
scratch directory, loads the model from there and then answers embedding
requests until it is told to shut down or the pipe closes.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any, Callable, Dict

from notefinder.embedding.protocol import (
    AllFilesReceived,
    BatchProgress,
    BatchResult,
    EmbeddingResult,
    GenerateEmbedding,
    GenerateEmbeddingsBatch,
    ModelLoaded,
    ReceiveFile,
    RequestKind,
    WorkerError,
)

LOGGER = logging.getLogger(__name__)

ModelFactory = Callable[[Path], Any]

BATCH_SLICE = 16


def _default_model_factory(model_path: Path) -> Any:
    from notefinder.embedding.encoder import EmbeddingConfig, EmbeddingModel

    return EmbeddingModel(EmbeddingConfig(model_path=model_path))


class InferenceWorker:
    def __init__(self, conn: Connection, model_factory: ModelFactory | None = None) -> None:
        self._conn = conn
        self._model_factory = model_factory or _default_model_factory
        self._workdir = Path(tempfile.mkdtemp(prefix="notefinder-model-"))
        self._received: Dict[str, int] = {}
        self._expected = 0
        self._model: Any = None

    def serve(self) -> None:
        LOGGER.info("AI worker starting")
        try:
            while True:
                try:
                    request = self._conn.recv()
                except (EOFError, OSError):
                    break
                if request.kind is RequestKind.SHUTDOWN:
                    break
                self.handle(request)
        finally:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._conn.close()
            LOGGER.info("AI worker stopped")

    def handle(self, request: Any) -> None:
        if request.kind is RequestKind.RECEIVE_FILE:
            self._receive_file(request)
        elif request.kind is RequestKind.GENERATE_EMBEDDING:
            self._generate_embedding(request)
        elif request.kind is RequestKind.GENERATE_EMBEDDINGS_BATCH:
            self._generate_batch(request)
        else:
            self._conn.send(WorkerError(error=f"Unsupported request: {request.kind}"))

    def _receive_file(self, request: ReceiveFile) -> None:
        target = self._workdir / request.name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(request.data)
        self._received[request.name] = len(request.data)
        self._expected = request.total
        LOGGER.debug("File cached: %s (%s/%s)", request.name, len(self._received), request.total)

        if len(self._received) >= self._expected:
            LOGGER.info("All model files received")
            self._conn.send(AllFilesReceived())
            self._load_model()

    def _load_model(self) -> bool:
        try:
            self._model = self._model_factory(self._workdir)
        except Exception as exc:
            LOGGER.error("Failed to load model: %s", exc)
            self._conn.send(WorkerError(error=f"Pipeline loading failed: {exc}"))
            return False
        LOGGER.info("Model loaded")
        self._conn.send(ModelLoaded(dimension=int(getattr(self._model, "dimension", 0))))
        return True

    def _ensure_model(self) -> None:
        if self._model is not None:
            return
        if self._expected == 0 or len(self._received) < self._expected:
            raise RuntimeError("Model files not received")
        if not self._load_model():
            raise RuntimeError("Model failed to load")

    def _generate_embedding(self, request: GenerateEmbedding) -> None:
        start = time.perf_counter()
        try:
            self._ensure_model()
            vector = self._model.embed([request.text], request.mode)[0]
        except Exception as exc:
            LOGGER.error("Embedding %s failed: %s", request.request_id, exc)
            self._conn.send(EmbeddingResult(request_id=request.request_id, success=False, error=str(exc)))
            return

        elapsed = int((time.perf_counter() - start) * 1000)
        LOGGER.debug("Embedding generated in %sms", elapsed)
        self._conn.send(
            EmbeddingResult(
                request_id=request.request_id,
                success=True,
                embedding=[float(x) for x in vector],
                time_ms=elapsed,
            )
        )

    def _generate_batch(self, request: GenerateEmbeddingsBatch) -> None:
        start = time.perf_counter()
        try:
            self._ensure_model()
            texts = list(request.texts)
            vectors: list = []
            for offset in range(0, len(texts), BATCH_SLICE):
                vectors.extend(self._model.embed(texts[offset : offset + BATCH_SLICE], request.mode))
                done = min(offset + BATCH_SLICE, len(texts))
                self._conn.send(BatchProgress(request_id=request.request_id, current=done, total=len(texts)))
        except Exception as exc:
            LOGGER.error("Batch %s failed: %s", request.request_id, exc)
            self._conn.send(BatchResult(request_id=request.request_id, success=False, error=str(exc)))
            return

        self._conn.send(
            BatchResult(
                request_id=request.request_id,
                success=True,
                embeddings=[[float(x) for x in vector] for vector in vectors],
                time_ms=int((time.perf_counter() - start) * 1000),
            )
        )


def run_worker(conn: Connection, model_factory: ModelFactory | None = None) -> None:
    InferenceWorker(conn, model_factory).serve()


def worker_main(conn: Connection, log_level: int = logging.INFO) -> None:
    """Entry point for the spawned process."""
    logging.basicConfig(level=log_level, format="[%(levelname)s] worker: %(message)s")
    run_worker(conn)
