from resumable_upload.config import settings
from resumable_upload.domain import Fragment
from resumable_upload.errors import FragmentIntegrityError, FragmentTooLarge, InvalidFragmentIndex
from resumable_upload.hashing import digest, same_digest


class ChunkValidator:
    """Stateless checks applied to a fragment before anything is stored."""

    def __init__(self, max_fragment_size: int | None = None, algorithm: str | None = None) -> None:
        self.max_fragment_size = max_fragment_size or settings.max_fragment_size_bytes
        self.algorithm = algorithm

    def validate(self, fragment: Fragment, total_count: int) -> None:
        if not fragment.payload:
            raise FragmentTooLarge("fragment payload is empty", file_hash=fragment.file_hash)
        if fragment.byte_length > self.max_fragment_size:
            raise FragmentTooLarge(
                f"fragment is {fragment.byte_length} bytes, limit is {self.max_fragment_size}",
                file_hash=fragment.file_hash,
            )
        if total_count < 1 or fragment.index < 0 or fragment.index >= total_count:
            raise InvalidFragmentIndex(
                f"fragment index {fragment.index} out of bounds for total count {total_count}",
                file_hash=fragment.file_hash,
            )
        if not same_digest(digest(fragment.payload, self.algorithm), fragment.fragment_hash):
            raise FragmentIntegrityError("fragment checksum mismatch", file_hash=fragment.file_hash)
