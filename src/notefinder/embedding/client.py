"""Client side of the inference worker.

Owns the single worker process: spawns it, ships the model files, waits for
the model to load and then correlates embedding requests with responses by
request id. A closed pipe means the worker died; pending requests are
rejected and a bounded, backed-off restart is attempted.
"""

from __future__ import annotations

import asyncio
import logging
import math
import multiprocessing
import time
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence

from notefinder.embedding.assets import REQUIRED_ASSETS, ModelAsset
from notefinder.embedding.protocol import (
    EmbeddingMode,
    GenerateEmbedding,
    GenerateEmbeddingsBatch,
    ReceiveFile,
    ResponseKind,
    Shutdown,
    new_request_id,
)
from notefinder.embedding.worker import worker_main
from notefinder.errors import (
    InferenceError,
    InferenceTimeoutError,
    ProtocolError,
    WorkerCrashedError,
    WorkerNotReadyError,
)
from notefinder.events import EventHub

LOGGER = logging.getLogger(__name__)

MAX_RESTART_ATTEMPTS = 3
MIN_RESTART_INTERVAL = 5.0
RESTART_WINDOW = 60.0
BASE_BACKOFF = 2.0
MAX_BACKOFF = 10.0
REAP_TIMEOUT = 2.0

DISABLED_MESSAGE = (
    "AI worker failed multiple times. Run 'notefinder reset-worker' or re-run setup."
)


def restart_backoff(attempts: int) -> float:
    return min(BASE_BACKOFF * 2**attempts, MAX_BACKOFF)


class InferenceClient:
    """Request/response façade over one inference worker process."""

    def __init__(
        self,
        model_dir: Path,
        *,
        assets: Sequence[ModelAsset] = REQUIRED_ASSETS,
        events: EventHub | None = None,
        request_timeout: float = 10.0,
        batch_timeout: float = 30.0,
        ready_timeout: float = 300.0,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        log_level: int = logging.INFO,
    ) -> None:
        self.model_dir = Path(model_dir)
        self.assets = tuple(assets)
        self.events = events
        self.request_timeout = request_timeout
        self.batch_timeout = batch_timeout
        self.ready_timeout = ready_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._log_level = log_level

        self._process: Any = None
        self._conn: Connection | None = None
        self._reader: asyncio.Task | None = None
        self._ready = False
        self._load_error: str | None = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._send_lock = asyncio.Lock()
        self._restart_task: asyncio.Task | None = None
        self._reapers: set[asyncio.Task] = set()
        self._closing = False

        self.dimension = 0
        self.restart_attempts = 0
        self.last_restart_at: float | None = None
        self.disabled = False

    # -- lifecycle -----------------------------------------------------------------

    def is_worker_ready(self) -> bool:
        return self._ready and self._process is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _spawn(self) -> tuple[Any, Connection]:
        ctx = multiprocessing.get_context("spawn")
        parent_conn, child_conn = ctx.Pipe()
        process = ctx.Process(
            target=worker_main,
            args=(child_conn, self._log_level),
            name="notefinder-inference",
            daemon=True,
        )
        process.start()
        child_conn.close()
        return process, parent_conn

    async def initialize(self) -> bool:
        """Start the worker and wait until its model is loaded."""
        if self._process is not None:
            LOGGER.info("Worker is already initialized")
            return self._ready

        LOGGER.info("Initializing inference worker...")
        try:
            self._closing = False
            self._process, self._conn = self._spawn()
            self._ready = False
            self._load_error = None
            # Reader goes up before any file is sent so no response is missed.
            self._reader = asyncio.create_task(self._read_loop(self._conn))
            await self._transfer_assets()
            ready = await self._wait_for_ready()
        except Exception as exc:
            LOGGER.error("Worker initialization error: %s", exc)
            await self._teardown()
            return False

        if ready:
            LOGGER.info("Worker initialized and ready")
        else:
            LOGGER.error("Worker not ready: %s", self._load_error or "timed out")
            await self._teardown()
        return ready

    async def _transfer_assets(self) -> None:
        total = len(self.assets)
        for index, asset in enumerate(self.assets, start=1):
            data = await asyncio.to_thread((self.model_dir / asset.name).read_bytes)
            await self._send(ReceiveFile(name=asset.name, data=data, is_binary=asset.is_binary, total=total))
            LOGGER.debug("File %s/%s sent: %s", index, total, asset.name)
        LOGGER.info("%s model files sent to worker", total)

    async def _wait_for_ready(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.ready_timeout
        while not self._ready:
            if self._load_error is not None or self._process is None:
                return False
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)
        return True

    async def _teardown(self) -> None:
        process, conn, reader = self._process, self._conn, self._reader
        self._process = None
        self._conn = None
        self._reader = None
        self._ready = False
        self._reject_all(WorkerCrashedError("Worker shut down"))

        if process is not None:
            if process.is_alive():
                process.terminate()
            await asyncio.to_thread(process.join, 5.0)
        if reader is not None and reader is not asyncio.current_task():
            await asyncio.wait([reader], timeout=5.0)
        if conn is not None:
            conn.close()

    async def close(self) -> None:
        """Ask the worker to exit, then make sure it is gone."""
        self._closing = True
        self._cancel_restart()
        if self._conn is not None:
            try:
                await self._send(Shutdown())
            except OSError as exc:
                LOGGER.debug("Shutdown message not delivered: %s", exc)
            if self._process is not None:
                await asyncio.to_thread(self._process.join, 2.0)
        await self._teardown()
        if self._reapers:
            await asyncio.wait(list(self._reapers), timeout=REAP_TIMEOUT)
        LOGGER.info("Inference worker shut down")

    async def force_reset(self) -> bool:
        """Manual recovery: kill whatever is running, forget crash history, start over."""
        LOGGER.info("Force reset requested")
        self._cancel_restart()
        await self._teardown()
        self.restart_attempts = 0
        self.last_restart_at = None
        self.disabled = False
        return await self.initialize()

    # -- messaging -----------------------------------------------------------------

    async def _send(self, message: Any) -> None:
        conn = self._conn
        if conn is None:
            raise WorkerNotReadyError("Worker not running")
        async with self._send_lock:
            await asyncio.to_thread(conn.send, message)

    async def _read_loop(self, conn: Connection) -> None:
        while True:
            try:
                message = await asyncio.to_thread(conn.recv)
            except (EOFError, OSError) as exc:
                if conn is self._conn and not self._closing:
                    self._handle_crash(f"pipe closed ({exc.__class__.__name__})")
                return
            if conn is not self._conn:
                return
            try:
                self._dispatch(message)
            except ProtocolError as exc:
                LOGGER.error("%s", exc)

    def _dispatch(self, message: Any) -> None:
        kind = getattr(message, "kind", None)
        if kind is ResponseKind.ALL_FILES_RECEIVED:
            LOGGER.info("Worker has all files")
        elif kind is ResponseKind.MODEL_LOADED:
            LOGGER.info("Model loaded in worker (%s dims)", message.dimension)
            self.dimension = message.dimension
            self._ready = True
        elif kind is ResponseKind.EMBEDDING_RESULT:
            self._settle(message.request_id, message.success, message.embedding, message.error)
        elif kind is ResponseKind.BATCH_RESULT:
            self._settle(message.request_id, message.success, message.embeddings, message.error)
        elif kind is ResponseKind.BATCH_PROGRESS:
            LOGGER.debug("Batch progress: %s/%s", message.current, message.total)
        elif kind is ResponseKind.ERROR:
            LOGGER.error("Worker error: %s", message.error)
            if not self._ready:
                self._load_error = message.error
            self._reject_all(InferenceError(message.error))
        else:
            raise ProtocolError(f"Unhandled worker message: {message!r}")

    def _settle(self, request_id: str, success: bool, value: Any, error: str | None) -> None:
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            LOGGER.debug("Dropping response for unknown request %s", request_id)
            return
        if success:
            future.set_result(value)
        else:
            future.set_exception(InferenceError(error or "Embedding failed"))

    def _reject_all(self, error: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(error)

    async def _request(self, message: Any, timeout: float, label: str) -> Any:
        if not self.is_worker_ready():
            raise WorkerNotReadyError("Worker not ready -> call initialize() first")

        future = asyncio.get_running_loop().create_future()
        self._pending[message.request_id] = future
        try:
            await self._send(message)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise InferenceTimeoutError(f"Timeout {label} ({timeout:g}s)") from None
        except OSError as exc:
            raise WorkerCrashedError(f"Worker unreachable: {exc}") from exc
        finally:
            self._pending.pop(message.request_id, None)

    async def generate_embedding(
        self, text: str, mode: EmbeddingMode = EmbeddingMode.PASSAGE
    ) -> List[float]:
        LOGGER.debug("Embedding request (%s): %r", mode.value, text[:50])
        message = GenerateEmbedding(request_id=new_request_id("embed"), text=text, mode=mode)
        return await self._request(message, self.request_timeout, "embedding")

    async def generate_embeddings_batch(
        self, texts: Sequence[str], mode: EmbeddingMode = EmbeddingMode.PASSAGE
    ) -> List[List[float]]:
        LOGGER.debug("Batch request: %s texts", len(texts))
        message = GenerateEmbeddingsBatch(request_id=new_request_id("batch"), texts=list(texts), mode=mode)
        return await self._request(message, self.batch_timeout, "batch embedding")

    # -- crash recovery ------------------------------------------------------------

    def _handle_crash(self, reason: str) -> None:
        LOGGER.error("Worker crashed: %s", reason)
        self._reject_all(WorkerCrashedError(f"Worker crashed: {reason}"))
        self._ready = False
        self._discard_process()

        now = self._clock()
        since_last = math.inf if self.last_restart_at is None else now - self.last_restart_at

        if since_last > RESTART_WINDOW:
            self.restart_attempts = 0

        if self.restart_attempts >= MAX_RESTART_ATTEMPTS:
            LOGGER.error("Max restart attempts reached. Worker disabled.")
            self.disabled = True
            if self.events is not None:
                self.events.emit_worker_disabled(DISABLED_MESSAGE)
            return

        if since_last < MIN_RESTART_INTERVAL:
            LOGGER.warning("Too soon to restart worker, skipping")
            return

        delay = restart_backoff(self.restart_attempts)
        self.restart_attempts += 1
        self.last_restart_at = now
        LOGGER.info(
            "Restart attempt %s/%s in %.0fms",
            self.restart_attempts,
            MAX_RESTART_ATTEMPTS,
            delay * 1000,
        )
        self._schedule_restart(delay)

    def _discard_process(self) -> None:
        process, conn = self._process, self._conn
        self._process = None
        self._conn = None
        self._reader = None
        if process is not None:
            if process.is_alive():
                process.terminate()
            self._reap(process)
        if conn is not None:
            conn.close()

    def _reap(self, process: Any) -> None:
        """Join a discarded worker off the event loop so it does not linger as a zombie."""
        task = asyncio.get_running_loop().create_task(asyncio.to_thread(process.join, REAP_TIMEOUT))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    def _schedule_restart(self, delay: float) -> None:
        self._cancel_restart()
        self._restart_task = asyncio.get_running_loop().create_task(self._restart_after(delay))

    def _cancel_restart(self) -> None:
        task, self._restart_task = self._restart_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _restart_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if await self.initialize():
            LOGGER.info("Worker restarted successfully")
            self.restart_attempts = 0
        else:
            LOGGER.error("Worker restart failed")
