"""Tests for the file record / insight repository."""

from __future__ import annotations

import uuid

import pytest

from cortex.db.models import FileStatus, Insight
from cortex.db.repository import Repository


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


def _insight(file_id: int, title="T", category="knowledge", lens="general", **kw) -> Insight:
    return Insight(
        id=kw.pop("id", uuid.uuid4().hex),
        file_id=file_id,
        title=title,
        content=kw.pop("content", "body"),
        category=category,
        lens=lens,
        confidence=kw.pop("confidence", 0.5),
        tags=kw.pop("tags", ["a", "b"]),
        related_concepts=kw.pop("related_concepts", ["c"]),
    )


# ------------------------------------------------------------------
# File records
# ------------------------------------------------------------------


def test_ensure_file_creates_pending(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    assert record.id is not None
    assert record.status is FileStatus.PENDING
    assert record.is_duplicate is False
    assert record.created_at is not None


def test_ensure_file_returns_existing_untouched(repo):
    first = repo.ensure_file("/n/a.md", "notes", "general")
    repo.set_status(first.id, FileStatus.INDEXED)
    again = repo.ensure_file("/n/a.md", "other", "architect")
    assert again.id == first.id
    assert again.status is FileStatus.INDEXED
    assert again.source_id == "notes"


def test_get_file_missing(repo):
    assert repo.get_file("/nope") is None
    assert repo.get_file_by_id(999) is None


def test_mark_processing_sets_metadata_and_clears_error(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    repo.set_status(record.id, FileStatus.ERROR, "boom")
    repo.mark_processing(record.id, "docs", "architect", is_duplicate=True)
    updated = repo.get_file("/n/a.md")
    assert updated.status is FileStatus.PROCESSING
    assert updated.error is None
    assert updated.source_id == "docs"
    assert updated.lens == "architect"
    assert updated.is_duplicate is True


def test_set_status_with_error(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    repo.set_status(record.id, FileStatus.ERROR, "ExtractionFailed: nope")
    assert repo.get_file_by_id(record.id).error == "ExtractionFailed: nope"
    assert [r.path for r in repo.list_errors()] == ["/n/a.md"]


def test_list_and_count_files_by_status_and_source(repo):
    a = repo.ensure_file("/n/a.md", "notes", "general")
    repo.ensure_file("/n/b.md", "notes", "general")
    repo.ensure_file("/d/c.md", "docs", "architect")
    repo.set_status(a.id, FileStatus.INDEXED)

    assert repo.count_files() == 3
    assert repo.count_files(FileStatus.PENDING) == 2
    assert [r.path for r in repo.list_files(source_id="notes")] == ["/n/a.md", "/n/b.md"]
    assert [r.path for r in repo.list_files(FileStatus.PENDING, "notes")] == ["/n/b.md"]


def test_reset_processing(repo):
    a = repo.ensure_file("/n/a.md", "notes", "general")
    b = repo.ensure_file("/n/b.md", "notes", "general")
    repo.mark_processing(a.id, "notes", "general", False)
    repo.set_status(b.id, FileStatus.INDEXED)
    assert repo.reset_processing() == 1
    assert repo.get_file("/n/a.md").status is FileStatus.PENDING
    assert repo.get_file("/n/b.md").status is FileStatus.INDEXED


def test_mark_pending_filters_by_source(repo):
    a = repo.ensure_file("/n/a.md", "notes", "general")
    c = repo.ensure_file("/d/c.md", "docs", "general")
    repo.set_status(a.id, FileStatus.INDEXED)
    repo.set_status(c.id, FileStatus.INDEXED)
    assert repo.mark_pending("notes") == ["/n/a.md"]
    assert repo.get_file("/n/a.md").status is FileStatus.PENDING
    assert repo.get_file("/d/c.md").status is FileStatus.INDEXED


def test_delete_file_cascades_to_insights(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    repo.add_insight(_insight(record.id))
    repo.add_insight(_insight(record.id))
    repo.delete_file(record.id)
    assert repo.get_file("/n/a.md") is None
    assert repo.count_insights() == 0


# ------------------------------------------------------------------
# Insights
# ------------------------------------------------------------------


def test_add_and_get_insight_roundtrips_lists(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    insight = _insight(record.id, id="abc", tags=["x", "y"], related_concepts=["z"])
    repo.add_insight(insight)
    loaded = repo.get_insight("abc")
    assert loaded.title == "T"
    assert loaded.tags == ["x", "y"]
    assert loaded.related_concepts == ["z"]
    assert loaded.created_at is not None


def test_get_insights_skips_missing(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    repo.add_insight(_insight(record.id, id="one"))
    assert set(repo.get_insights(["one", "gone"])) == {"one"}
    assert repo.get_insights([]) == {}


def test_list_insights_filters(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    repo.add_insight(_insight(record.id, title="k", category="knowledge", lens="general"))
    repo.add_insight(_insight(record.id, title="p", category="pattern", lens="architect"))
    repo.add_insight(_insight(record.id, title="i", category="idea", lens="architect"))

    assert {i.title for i in repo.list_insights(lens="architect")} == {"p", "i"}
    assert [i.title for i in repo.list_insights(category="pattern")] == ["p"]
    assert [i.title for i in repo.list_insights(lens="architect", category="idea")] == ["i"]


def test_list_insights_newest_first_with_paging(repo):
    record = repo.ensure_file("/n/a.md", "notes", "general")
    for title in ("first", "second", "third"):
        repo.add_insight(_insight(record.id, title=title))
    assert [i.title for i in repo.list_insights(limit=2)] == ["third", "second"]
    assert [i.title for i in repo.list_insights(limit=2, offset=2)] == ["first"]


def test_delete_insights_by_file_returns_ids(repo):
    a = repo.ensure_file("/n/a.md", "notes", "general")
    b = repo.ensure_file("/n/b.md", "notes", "general")
    repo.add_insight(_insight(a.id, id="a1"))
    repo.add_insight(_insight(a.id, id="a2"))
    repo.add_insight(_insight(b.id, id="b1"))
    assert sorted(repo.delete_insights_by_file(a.id)) == ["a1", "a2"]
    assert repo.insight_ids() == {"b1"}
    assert repo.count_insights(b.id) == 1
