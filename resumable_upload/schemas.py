from datetime import datetime

from pydantic import BaseModel, Field

from resumable_upload.domain import FileMetadata, Progress


class FileMetadataResponse(BaseModel):
    id: str | None
    original_name: str
    stored_path: str
    size_bytes: int
    content_hash: str
    business_category: str | None = None
    created_at: datetime

    @classmethod
    def from_metadata(cls, metadata: FileMetadata) -> "FileMetadataResponse":
        return cls(**metadata.to_dict())


class FragmentUploadResponse(BaseModel):
    file_hash: str
    fragment_index: int
    status: str
    message: str
    arrived_count: int | None = None
    total_count: int | None = None
    file_metadata: FileMetadataResponse | None = None
    error_code: str | None = None


class ProgressResponse(BaseModel):
    file_hash: str
    arrived_count: int
    total_count: int
    percent: float
    status: str

    @classmethod
    def from_progress(cls, file_hash: str, progress: Progress) -> "ProgressResponse":
        return cls(
            file_hash=file_hash,
            arrived_count=progress.arrived_count,
            total_count=progress.total_count,
            percent=progress.percent,
            status="uploading" if progress.started else "not_started",
        )


class VerifyRequest(BaseModel):
    file_hash: str = Field(min_length=1, max_length=128)
    file_name: str = Field(min_length=1)
    file_size: int = Field(ge=0)
    total_count: int | None = Field(default=None, gt=0)


class VerifyResponse(BaseModel):
    file_hash: str
    status: str
    message: str
    file_metadata: FileMetadataResponse | None = None
    arrived_indices: list[int] | None = None
    progress: ProgressResponse | None = None


class StatsResponse(BaseModel):
    total_files: int
    business_category: str | None = None
    category_files: int | None = None


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
    request_id: str | None = None
    file_hash: str | None = None
    trace_id: str | None = None
