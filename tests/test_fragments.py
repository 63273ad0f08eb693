from pathlib import Path

import pytest

from resumable_upload.errors import MissingFragment, StorageIOError
from resumable_upload.fragments import FragmentStore
from resumable_upload.storage import LocalBlobStore


class _BrokenStorage:
    def write(self, key: str, data: bytes):
        raise OSError("disk full")

    def list_keys(self, prefix: str = "") -> list[str]:
        return [f"{prefix}0", f"{prefix}1"]

    def delete_key(self, key: str) -> None:
        raise OSError("read-only filesystem")


def test_save_is_keyed_by_hash_and_index(tmp_path: Path) -> None:
    store = FragmentStore(LocalBlobStore(str(tmp_path)))

    key = store.save("abc", 2, b"payload")
    assert key == "fragments/abc/2"
    assert (tmp_path / "fragments" / "abc" / "2").read_bytes() == b"payload"

    store.save("abc", 2, b"payload")
    assert store.storage.list_keys("fragments/abc/") == ["fragments/abc/2"]


def test_read_all_yields_in_index_order(tmp_path: Path) -> None:
    store = FragmentStore(LocalBlobStore(str(tmp_path)))
    for index in (2, 0, 1, 10, 3, 4, 5, 6, 7, 8, 9):
        store.save("abc", index, f"<{index}>".encode())

    blocks = list(store.read_all("abc", 11))
    assert b"".join(blocks) == b"".join(f"<{i}>".encode() for i in range(11))


def test_read_all_reports_first_gap_before_yielding(tmp_path: Path) -> None:
    store = FragmentStore(LocalBlobStore(str(tmp_path)))
    store.save("abc", 0, b"a")
    store.save("abc", 3, b"d")

    with pytest.raises(MissingFragment) as exc_info:
        store.read_all("abc", 4)
    assert exc_info.value.index == 1
    assert exc_info.value.file_hash == "abc"


def test_purge_removes_only_that_hash(tmp_path: Path) -> None:
    store = FragmentStore(LocalBlobStore(str(tmp_path)))
    store.save("abc", 0, b"a")
    store.save("abc", 1, b"b")
    store.save("other", 0, b"c")

    assert store.purge("abc") == 2
    assert store.list_hashes() == {"other"}


def test_save_failure_surfaces_as_storage_error() -> None:
    store = FragmentStore(_BrokenStorage())
    with pytest.raises(StorageIOError):
        store.save("abc", 0, b"a")


def test_purge_failure_is_logged_not_raised(caplog) -> None:
    caplog.set_level("INFO", logger="rus.upload")
    store = FragmentStore(_BrokenStorage())

    assert store.purge("abc") == 0
    failures = [record for record in caplog.records if "fragment_purge_failed" in record.getMessage()]
    assert len(failures) == 2
    assert all(record.levelname == "WARNING" for record in failures)
