"""Tests for the folder-backed document repository."""

from __future__ import annotations

import os
from pathlib import Path

import fitz
import pytest

from notefinder.vault.repository import FolderRepository


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    (tmp_path / "daily").mkdir()
    (tmp_path / "daily" / "monday.md").write_text("# Monday\n\nGym\n## Work\n", encoding="utf-8")
    (tmp_path / "ideas.md").write_text("plain text idea", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    (tmp_path / ".notefinder").mkdir()
    (tmp_path / ".notefinder" / "cache.md").write_text("# hidden", encoding="utf-8")

    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "Quarterly report body")
    doc.set_toc([[1, "Summary", 1]])
    doc.save(tmp_path / "report.pdf")
    doc.close()
    return tmp_path


class TestFolderRepository:
    """Tests for FolderRepository."""

    def test_list_documents(self, vault: Path) -> None:
        repo = FolderRepository(vault)

        documents = repo.list_documents()

        assert [d.path for d in documents] == ["daily/monday.md", "ideas.md", "report.pdf"]
        assert documents[0].title == "monday"
        assert documents[0].mtime == (vault / "daily" / "monday.md").stat().st_mtime

    def test_get_document(self, vault: Path) -> None:
        repo = FolderRepository(vault)

        assert repo.get_document("ideas.md").title == "ideas"
        assert repo.get_document("missing.md") is None
        assert repo.get_document("notes.txt") is None
        assert repo.get_document(".notefinder/cache.md") is None

    def test_mtime_tracks_modification(self, vault: Path) -> None:
        repo = FolderRepository(vault)
        os.utime(vault / "ideas.md", (1000.0, 2000.0))
        assert repo.get_document("ideas.md").mtime == 2000.0

    def test_read_text(self, vault: Path) -> None:
        repo = FolderRepository(vault)

        assert repo.read_text(repo.get_document("ideas.md")) == "plain text idea"
        assert "Quarterly report body" in repo.read_text(repo.get_document("report.pdf"))

    def test_read_text_tolerates_bad_encoding(self, vault: Path) -> None:
        (vault / "latin.md").write_bytes(b"caf\xe9")
        repo = FolderRepository(vault)
        assert repo.read_text(repo.get_document("latin.md")).startswith("caf")

    def test_get_headings(self, vault: Path) -> None:
        repo = FolderRepository(vault)

        assert repo.get_headings(repo.get_document("daily/monday.md")) == ["Monday", "Work"]
        assert repo.get_headings(repo.get_document("ideas.md")) == []
        assert repo.get_headings(repo.get_document("report.pdf")) == ["Summary"]

    def test_supports(self, vault: Path, tmp_path_factory) -> None:
        repo = FolderRepository(vault)
        outside = tmp_path_factory.mktemp("elsewhere") / "note.md"

        assert repo.supports(vault / "new.md") is True
        assert repo.supports(vault / "REPORT.PDF") is True
        assert repo.supports(vault / "image.png") is False
        assert repo.supports(vault / ".trash" / "old.md") is False
        assert repo.supports(outside) is False

    def test_relative_path(self, vault: Path) -> None:
        repo = FolderRepository(vault)
        assert repo.relative_path(vault / "daily" / "monday.md") == "daily/monday.md"
