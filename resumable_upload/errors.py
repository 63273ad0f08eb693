class UploadError(Exception):
    """Base class for upload engine failures.

    `error_code` is stable and machine readable; `file_hash` is attached when
    the failure belongs to a specific upload session.
    """

    error_code = "upload_error"

    def __init__(self, message: str, file_hash: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.file_hash = file_hash

    def to_dict(self) -> dict:
        return {"detail": self.message, "error_code": self.error_code, "file_hash": self.file_hash}


class FragmentTooLarge(UploadError):
    error_code = "fragment_too_large"


class InvalidFragmentIndex(UploadError):
    error_code = "invalid_fragment_index"


class FragmentIntegrityError(UploadError):
    error_code = "fragment_integrity_error"


class InvalidFileHash(UploadError):
    error_code = "invalid_file_hash"


class MissingFragment(UploadError):
    error_code = "missing_fragment"

    def __init__(self, file_hash: str, index: int) -> None:
        super().__init__(f"fragment {index} is missing", file_hash=file_hash)
        self.index = index


class IncompleteUpload(UploadError):
    error_code = "incomplete_upload"


class MergeIntegrityError(UploadError):
    error_code = "merge_integrity_error"


class StorageIOError(UploadError):
    error_code = "storage_io_error"


class SessionExpired(UploadError):
    error_code = "session_expired"


class TotalCountMismatch(UploadError):
    error_code = "total_count_mismatch"

    def __init__(self, file_hash: str, recorded: int, declared: int) -> None:
        super().__init__(
            f"total count {declared} disagrees with recorded total count {recorded}",
            file_hash=file_hash,
        )
        self.recorded = recorded
        self.declared = declared


# Errors a caller can fix by resubmitting different input.
VALIDATION_ERRORS = (
    InvalidFileHash,
    FragmentTooLarge,
    InvalidFragmentIndex,
    FragmentIntegrityError,
    TotalCountMismatch,
)
