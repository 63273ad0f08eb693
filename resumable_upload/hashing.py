import hashlib

from resumable_upload.config import settings
from resumable_upload.errors import InvalidFileHash

_HEX_DIGITS = frozenset("0123456789abcdef")


def new_hasher(algorithm: str | None = None):
    return hashlib.new(algorithm or settings.hash_algorithm)


def digest(data: bytes, algorithm: str | None = None) -> str:
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


def same_digest(actual: str, declared: str | None) -> bool:
    if not declared:
        return False
    return actual.lower() == declared.strip().lower()


def normalize_file_hash(value: str | None, algorithm: str | None = None) -> str:
    """Canonical lowercase hex form of a file hash, used for every key derived from it."""
    normalized = (value or "").strip().lower()
    expected_length = new_hasher(algorithm).digest_size * 2
    if len(normalized) != expected_length or not _HEX_DIGITS.issuperset(normalized):
        raise InvalidFileHash(
            f"file hash must be {expected_length} hex characters", file_hash=value or None
        )
    return normalized
