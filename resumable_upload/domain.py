import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Fragment:
    file_hash: str
    index: int
    fragment_hash: str
    payload: bytes

    @property
    def byte_length(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class FileMetadata:
    original_name: str
    stored_path: str
    size_bytes: int
    content_hash: str
    business_category: str | None = None
    id: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "original_name": self.original_name,
            "stored_path": self.stored_path,
            "size_bytes": self.size_bytes,
            "content_hash": self.content_hash,
            "business_category": self.business_category,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Arrival:
    arrived_count: int
    total_count: int

    @property
    def is_complete(self) -> bool:
        return self.total_count > 0 and self.arrived_count >= self.total_count


@dataclass(frozen=True)
class Progress:
    arrived_count: int
    total_count: int

    @property
    def percent(self) -> float:
        if self.total_count <= 0:
            return 0.0
        return round(self.arrived_count / self.total_count * 100, 2)

    @property
    def started(self) -> bool:
        return self.total_count > 0


class MergeState(str, enum.Enum):
    collecting = "COLLECTING"
    merging = "MERGING"
    published = "PUBLISHED"
    merge_failed = "MERGE_FAILED"


@dataclass(frozen=True)
class MergeResult:
    state: MergeState
    metadata: FileMetadata | None = None
    error: Exception | None = None


class OutcomeStatus(str, enum.Enum):
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    rejected = "rejected"


@dataclass(frozen=True)
class InProgress:
    arrived_count: int
    total_count: int
    status: OutcomeStatus = OutcomeStatus.in_progress

    @property
    def message(self) -> str:
        return f"fragment stored, {self.arrived_count}/{self.total_count} arrived"


@dataclass(frozen=True)
class Completed:
    metadata: FileMetadata
    deduplicated: bool = False
    status: OutcomeStatus = OutcomeStatus.completed

    @property
    def message(self) -> str:
        if self.deduplicated:
            return "file already exists"
        return "file merged and published"


@dataclass(frozen=True)
class Failed:
    reason: str
    error_code: str
    status: OutcomeStatus = OutcomeStatus.failed

    @property
    def message(self) -> str:
        return self.reason


@dataclass(frozen=True)
class Rejected:
    reason: str
    error_code: str
    status: OutcomeStatus = OutcomeStatus.rejected

    @property
    def message(self) -> str:
        return self.reason


UploadOutcome = InProgress | Completed | Failed | Rejected


class VerifyStatus(str, enum.Enum):
    existing = "existing"
    resume = "resume"
    new_upload = "new_upload"


@dataclass(frozen=True)
class AlreadyExists:
    metadata: FileMetadata
    status: VerifyStatus = VerifyStatus.existing


@dataclass(frozen=True)
class Resumable:
    progress: Progress
    arrived_indices: list[int]
    status: VerifyStatus = VerifyStatus.resume


@dataclass(frozen=True)
class StartFresh:
    status: VerifyStatus = VerifyStatus.new_upload


VerifyOutcome = AlreadyExists | Resumable | StartFresh
