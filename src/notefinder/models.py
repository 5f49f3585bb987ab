"""Core NoteFinder data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List


class Collection(str, Enum):
    """The three embedding granularities."""

    TITLES = "titles"
    HEADINGS = "headings"
    CONTENT = "content"


COLLECTIONS: tuple[Collection, ...] = (Collection.TITLES, Collection.HEADINGS, Collection.CONTENT)


@dataclass(slots=True)
class Document:
    """Minimal metadata describing a document in the vault."""

    path: str
    title: str
    mtime: float


@dataclass(slots=True)
class TitleEmbedding:
    path: str
    embedding: List[float]
    last_modified: float
    title: str


@dataclass(slots=True)
class HeadingEmbedding:
    path: str
    embedding: List[float]
    last_modified: float
    headings: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ContentEmbedding:
    path: str
    embedding: List[float]
    last_modified: float
    excerpt: str = ""


EmbeddingRecord = TitleEmbedding | HeadingEmbedding | ContentEmbedding

RECORD_TYPES: Dict[Collection, type] = {
    Collection.TITLES: TitleEmbedding,
    Collection.HEADINGS: HeadingEmbedding,
    Collection.CONTENT: ContentEmbedding,
}


def record_from_dict(collection: Collection, data: Dict[str, Any]) -> EmbeddingRecord:
    return RECORD_TYPES[collection](**data)


def record_to_dict(record: EmbeddingRecord) -> Dict[str, Any]:
    return asdict(record)


@dataclass(slots=True)
class IndexingState:
    """Progress bookkeeping for one collection; doubles as the global lock."""

    is_indexing: bool = False
    progress: int = 0
    total: int = 0
    last_indexed: float = 0.0
    last_heartbeat: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexingState":
        return cls(
            is_indexing=bool(data.get("is_indexing", False)),
            progress=int(data.get("progress", 0)),
            total=int(data.get("total", 0)),
            last_indexed=float(data.get("last_indexed", 0.0)),
            last_heartbeat=float(data.get("last_heartbeat") or 0.0),
        )


@dataclass(slots=True)
class StoreStats:
    titles_indexed: int
    headings_indexed: int
    content_indexed: int
    total_notes: int
    database_size_kb: int
    last_update: str
    is_indexing: bool
    current_indexing_type: Collection | None
    current_indexing_progress: int
    total_indexing_items: int

    def count_for(self, collection: Collection) -> int:
        return {
            Collection.TITLES: self.titles_indexed,
            Collection.HEADINGS: self.headings_indexed,
            Collection.CONTENT: self.content_indexed,
        }[collection]
