import hashlib

import pytest

from resumable_upload.domain import Fragment
from resumable_upload.errors import FragmentIntegrityError, FragmentTooLarge, InvalidFragmentIndex
from resumable_upload.validator import ChunkValidator


def _fragment(payload: bytes, index: int = 0, fragment_hash: str | None = None) -> Fragment:
    return Fragment(
        file_hash="f" * 32,
        index=index,
        fragment_hash=fragment_hash if fragment_hash is not None else hashlib.md5(payload).hexdigest(),
        payload=payload,
    )


def test_valid_fragment_passes() -> None:
    ChunkValidator(max_fragment_size=16).validate(_fragment(b"abcd", index=2), total_count=3)


def test_declared_hash_is_case_insensitive() -> None:
    payload = b"abcd"
    ChunkValidator().validate(_fragment(payload, fragment_hash=hashlib.md5(payload).hexdigest().upper()), 1)


def test_empty_payload_rejected() -> None:
    with pytest.raises(FragmentTooLarge):
        ChunkValidator().validate(_fragment(b""), total_count=1)


def test_oversized_payload_rejected() -> None:
    with pytest.raises(FragmentTooLarge) as exc_info:
        ChunkValidator(max_fragment_size=3).validate(_fragment(b"abcd"), total_count=1)
    assert exc_info.value.error_code == "fragment_too_large"


@pytest.mark.parametrize("index,total_count", [(-1, 3), (3, 3), (0, 0)])
def test_index_out_of_bounds_rejected(index: int, total_count: int) -> None:
    with pytest.raises(InvalidFragmentIndex):
        ChunkValidator().validate(_fragment(b"abcd", index=index), total_count=total_count)


def test_size_checked_before_index() -> None:
    with pytest.raises(FragmentTooLarge):
        ChunkValidator(max_fragment_size=1).validate(_fragment(b"abcd", index=9), total_count=3)


def test_checksum_mismatch_rejected() -> None:
    with pytest.raises(FragmentIntegrityError):
        ChunkValidator().validate(_fragment(b"abcd", fragment_hash=hashlib.md5(b"abce").hexdigest()), 1)
