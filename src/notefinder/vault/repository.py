"""Access to the documents being indexed."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Protocol

from notefinder.ingestion.markdown import extract_headings
from notefinder.ingestion.pdf_loader import extract_text, get_pdf_headings
from notefinder.models import Document
from notefinder.utils.files import SUPPORTED_SUFFIXES, is_hidden, iter_document_paths, to_relative
from notefinder.utils.text import CONTENT_MAX_CHARS

LOGGER = logging.getLogger(__name__)


class DocumentRepository(Protocol):
    """What the indexer and coordinator need from a document source."""

    def list_documents(self) -> List[Document]: ...

    def get_document(self, path: str) -> Document | None: ...

    def read_text(self, document: Document) -> str: ...

    def get_headings(self, document: Document) -> List[str]: ...


class FolderRepository:
    """Markdown and PDF files under a root folder, keyed by POSIX relative path."""

    def __init__(self, root: Path, suffixes: Iterable[str] = SUPPORTED_SUFFIXES) -> None:
        self.root = Path(root).resolve()
        self.suffixes = tuple(suffix.lower() for suffix in suffixes)

    def _absolute(self, path: str) -> Path:
        return self.root / path

    def _document(self, absolute: Path) -> Document:
        return Document(
            path=to_relative(self.root, absolute),
            title=absolute.stem,
            mtime=absolute.stat().st_mtime,
        )

    def supports(self, path: Path) -> bool:
        """True for files this repository would enumerate."""
        path = Path(path)
        if path.suffix.lower() not in self.suffixes:
            return False
        try:
            relative = path.resolve().relative_to(self.root)
        except ValueError:
            return False
        return not is_hidden(relative)

    def relative_path(self, path: Path) -> str:
        return to_relative(self.root, Path(path).resolve())

    def list_documents(self) -> List[Document]:
        documents = []
        for absolute in iter_document_paths(self.root, self.suffixes):
            try:
                documents.append(self._document(absolute))
            except OSError as exc:
                LOGGER.warning("Skipping %s: %s", absolute, exc)
        return documents

    def get_document(self, path: str) -> Document | None:
        absolute = self._absolute(path)
        if not absolute.is_file() or not self.supports(absolute):
            return None
        return self._document(absolute)

    def read_text(self, document: Document) -> str:
        absolute = self._absolute(document.path)
        if absolute.suffix.lower() == ".pdf":
            return extract_text(absolute, max_chars=CONTENT_MAX_CHARS)
        return absolute.read_text(encoding="utf-8", errors="replace")

    def get_headings(self, document: Document) -> List[str]:
        absolute = self._absolute(document.path)
        if absolute.suffix.lower() == ".pdf":
            return get_pdf_headings(absolute)
        return extract_headings(absolute.read_text(encoding="utf-8", errors="replace"))
