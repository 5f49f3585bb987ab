"""Messages exchanged with the inference worker.

Every message is a frozen dataclass tagged with a ``kind`` class attribute.
Requests travel client -> worker, responses worker -> client. Embedding
requests and their results share a ``request_id`` for correlation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, List, Optional, Union


class EmbeddingMode(str, Enum):
    """Asymmetric E5 convention: stored text is a passage, search input a query."""

    QUERY = "query"
    PASSAGE = "passage"


class RequestKind(str, Enum):
    RECEIVE_FILE = "receive-file"
    GENERATE_EMBEDDING = "generate-embedding"
    GENERATE_EMBEDDINGS_BATCH = "generate-embeddings-batch"
    SHUTDOWN = "shutdown"


class ResponseKind(str, Enum):
    ALL_FILES_RECEIVED = "all-files-received"
    MODEL_LOADED = "model-loaded"
    EMBEDDING_RESULT = "embedding-result"
    BATCH_RESULT = "batch-result"
    BATCH_PROGRESS = "batch-progress"
    ERROR = "error"


# -- requests ----------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiveFile:
    kind: ClassVar[RequestKind] = RequestKind.RECEIVE_FILE
    name: str
    data: bytes
    is_binary: bool
    total: int


@dataclass(frozen=True)
class GenerateEmbedding:
    kind: ClassVar[RequestKind] = RequestKind.GENERATE_EMBEDDING
    request_id: str
    text: str
    mode: EmbeddingMode = EmbeddingMode.PASSAGE


@dataclass(frozen=True)
class GenerateEmbeddingsBatch:
    kind: ClassVar[RequestKind] = RequestKind.GENERATE_EMBEDDINGS_BATCH
    request_id: str
    texts: List[str]
    mode: EmbeddingMode = EmbeddingMode.PASSAGE


@dataclass(frozen=True)
class Shutdown:
    kind: ClassVar[RequestKind] = RequestKind.SHUTDOWN


Request = Union[ReceiveFile, GenerateEmbedding, GenerateEmbeddingsBatch, Shutdown]


# -- responses ---------------------------------------------------------------------


@dataclass(frozen=True)
class AllFilesReceived:
    kind: ClassVar[ResponseKind] = ResponseKind.ALL_FILES_RECEIVED


@dataclass(frozen=True)
class ModelLoaded:
    kind: ClassVar[ResponseKind] = ResponseKind.MODEL_LOADED
    dimension: int = 0


@dataclass(frozen=True)
class EmbeddingResult:
    kind: ClassVar[ResponseKind] = ResponseKind.EMBEDDING_RESULT
    request_id: str
    success: bool
    embedding: Optional[List[float]] = None
    error: Optional[str] = None
    time_ms: int = 0


@dataclass(frozen=True)
class BatchResult:
    kind: ClassVar[ResponseKind] = ResponseKind.BATCH_RESULT
    request_id: str
    success: bool
    embeddings: Optional[List[List[float]]] = None
    error: Optional[str] = None
    time_ms: int = 0


@dataclass(frozen=True)
class BatchProgress:
    kind: ClassVar[ResponseKind] = ResponseKind.BATCH_PROGRESS
    request_id: str
    current: int
    total: int


@dataclass(frozen=True)
class WorkerError:
    kind: ClassVar[ResponseKind] = ResponseKind.ERROR
    error: str


Response = Union[AllFilesReceived, ModelLoaded, EmbeddingResult, BatchResult, BatchProgress, WorkerError]


def new_request_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"
