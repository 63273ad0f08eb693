from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from resumable_upload.db import Base, make_engine
from resumable_upload.domain import FileMetadata
from resumable_upload.registry import DatabaseFileRegistry, FileRegistry, MemoryFileRegistry


def _metadata(content_hash: str, name: str = "report.pdf", category: str | None = "invoices", path: str = "") -> FileMetadata:
    return FileMetadata(
        original_name=name,
        stored_path=path or f"files/{content_hash}_1700000000000",
        size_bytes=42,
        content_hash=content_hash,
        business_category=category,
    )


def _database_registry(tmp_path: Path) -> DatabaseFileRegistry:
    from resumable_upload import models  # noqa: F401

    engine = make_engine(f"sqlite:///{tmp_path / 'registry.db'}")
    Base.metadata.create_all(bind=engine)
    return DatabaseFileRegistry(sessionmaker(bind=engine, autoflush=False))


@pytest.fixture(params=["memory", "database"])
def registry(request, tmp_path: Path) -> FileRegistry:
    if request.param == "memory":
        return MemoryFileRegistry()
    return _database_registry(tmp_path)


def test_publish_assigns_id_and_is_findable(registry: FileRegistry) -> None:
    published = registry.publish(_metadata("aaa"))

    assert published.id
    assert registry.find_by_hash("aaa") == published
    assert registry.find_by_id(published.id) == published
    assert published.created_at.tzinfo is not None


def test_publish_same_hash_returns_first_record(registry: FileRegistry) -> None:
    first = registry.publish(_metadata("aaa", path="files/aaa_1"))
    second = registry.publish(_metadata("aaa", path="files/aaa_2"))

    assert second.id == first.id
    assert second.stored_path == "files/aaa_1"
    assert registry.count() == 1


def test_blank_keys_match_nothing(registry: FileRegistry) -> None:
    registry.publish(_metadata("aaa"))

    assert registry.find_by_hash("") is None
    assert registry.find_by_hash("   ") is None
    assert registry.find_by_id("") is None
    assert registry.list_by_category(" ") == []
    assert registry.list_by_name_substring("") == []
    assert registry.delete("") is False


def test_listing_and_counting(registry: FileRegistry) -> None:
    registry.publish(_metadata("aaa", name="Q1 Report.pdf", category="invoices"))
    registry.publish(_metadata("bbb", name="holiday.jpg", category="photos"))
    registry.publish(_metadata("ccc", name="q2_report.PDF", category="invoices"))

    assert {item.content_hash for item in registry.list_by_category("invoices")} == {"aaa", "ccc"}
    assert {item.content_hash for item in registry.list_by_name_substring("REPORT")} == {"aaa", "ccc"}
    assert registry.list_by_name_substring("%") == []
    assert registry.count() == 3
    assert registry.count_by_category("photos") == 1
    assert registry.count_by_category("missing") == 0


def test_delete_removes_record_and_hash_lookup(registry: FileRegistry) -> None:
    published = registry.publish(_metadata("aaa"))

    assert registry.delete(published.id) is True
    assert registry.delete(published.id) is False
    assert registry.find_by_hash("aaa") is None
    assert registry.count() == 0
