import dataclasses
import logging

from resumable_upload.coordination import CoordinationStore, build_coordination_store
from resumable_upload.domain import (
    AlreadyExists,
    Completed,
    Failed,
    FileMetadata,
    Fragment,
    InProgress,
    MergeState,
    Progress,
    Rejected,
    Resumable,
    StartFresh,
    UploadOutcome,
    VerifyOutcome,
)
from resumable_upload.errors import VALIDATION_ERRORS, UploadError
from resumable_upload.events import audit_event, log_event
from resumable_upload.fragments import FragmentStore
from resumable_upload.hashing import normalize_file_hash
from resumable_upload.merger import Merger
from resumable_upload.metrics import (
    dedup_hits_total,
    fragment_bytes_total,
    fragments_accepted_total,
    fragments_rejected_total,
)
from resumable_upload.registry import FileRegistry, build_registry
from resumable_upload.sessions import SessionTracker
from resumable_upload.storage import BlobStore, build_storage
from resumable_upload.validator import ChunkValidator

logger = logging.getLogger("rus.upload")


class UploadCoordinator:
    def __init__(
        self,
        validator: ChunkValidator,
        fragments: FragmentStore,
        sessions: SessionTracker,
        merger: Merger,
        registry: FileRegistry,
        storage: BlobStore,
    ) -> None:
        self.validator = validator
        self.fragments = fragments
        self.sessions = sessions
        self.merger = merger
        self.registry = registry
        self.storage = storage

    def accept_fragment(
        self,
        fragment: Fragment,
        total_count: int,
        file_name: str | None = None,
        business_category: str | None = None,
    ) -> UploadOutcome:
        """Store one fragment and merge the file once every index has arrived.

        Storage failures propagate as StorageIOError: a fragment is only
        acknowledged after it has been durably written.
        """
        try:
            fragment = dataclasses.replace(fragment, file_hash=self._file_hash(fragment.file_hash))
            self.validator.validate(fragment, total_count)
        except VALIDATION_ERRORS as exc:
            return self._rejected(fragment, exc)

        existing = self.registry.find_by_hash(fragment.file_hash)
        if existing:
            dedup_hits_total.inc()
            return Completed(metadata=existing, deduplicated=True)

        try:
            self.sessions.reserve(fragment.file_hash, total_count)
        except VALIDATION_ERRORS as exc:
            return self._rejected(fragment, exc)

        self.fragments.save(fragment.file_hash, fragment.index, fragment.payload)
        attributes = {
            key: value
            for key, value in (("file_name", file_name), ("business_category", business_category))
            if value
        }
        try:
            arrival = self.sessions.record_arrival(fragment.file_hash, fragment.index, total_count, attributes)
        except VALIDATION_ERRORS as exc:
            return self._rejected(fragment, exc)
        fragments_accepted_total.inc()
        fragment_bytes_total.inc(fragment.byte_length)
        audit_event(
            {
                "action": "fragment_accepted",
                "file_hash": fragment.file_hash,
                "fragment_index": fragment.index,
                "arrived_count": arrival.arrived_count,
                "total_count": arrival.total_count,
            }
        )

        if not arrival.is_complete:
            return InProgress(arrived_count=arrival.arrived_count, total_count=arrival.total_count)

        result = self.merger.merge_once(fragment.file_hash)
        if result.state == MergeState.published and result.metadata:
            return Completed(metadata=result.metadata)
        if result.state == MergeState.merge_failed:
            error = result.error
            if isinstance(error, UploadError):
                return Failed(reason=error.message, error_code=error.error_code)
            return Failed(reason=str(error), error_code="merge_failed")

        # Another caller holds the merge marker; report what is visible now.
        published = self.registry.find_by_hash(fragment.file_hash)
        if published:
            return Completed(metadata=published)
        return InProgress(arrived_count=arrival.arrived_count, total_count=arrival.total_count)

    def _file_hash(self, file_hash: str) -> str:
        return normalize_file_hash(file_hash, self.validator.algorithm)

    def _rejected(self, fragment: Fragment, exc: UploadError) -> Rejected:
        fragments_rejected_total.labels(reason=exc.error_code).inc()
        log_event(
            logger,
            {
                "event": "fragment_rejected",
                "file_hash": fragment.file_hash,
                "fragment_index": fragment.index,
                "error_code": exc.error_code,
                "detail": exc.message,
            },
        )
        return Rejected(reason=exc.message, error_code=exc.error_code)

    def verify(self, file_hash: str, declared_total_count: int | None = None) -> VerifyOutcome:
        file_hash = self._file_hash(file_hash)
        existing = self.registry.find_by_hash(file_hash)
        if existing:
            dedup_hits_total.inc()
            return AlreadyExists(metadata=existing)

        progress = self.sessions.get_progress(file_hash)
        if progress.arrived_count > 0:
            if declared_total_count is not None and declared_total_count != progress.total_count:
                log_event(
                    logger,
                    {
                        "event": "verify_total_count_differs",
                        "file_hash": file_hash,
                        "recorded_total_count": progress.total_count,
                        "declared_total_count": declared_total_count,
                    },
                    level=logging.WARNING,
                )
            return Resumable(progress=progress, arrived_indices=self.sessions.get_arrived_indices(file_hash))
        return StartFresh()

    def progress(self, file_hash: str) -> Progress:
        return self.sessions.get_progress(self._file_hash(file_hash))

    def arrived_indices(self, file_hash: str) -> list[int]:
        return self.sessions.get_arrived_indices(self._file_hash(file_hash))

    def file_info(self, file_hash: str) -> FileMetadata | None:
        return self.registry.find_by_hash(self._file_hash(file_hash))

    def list_files(self, business_category: str | None = None, name: str | None = None) -> list[FileMetadata]:
        if business_category and business_category.strip():
            return self.registry.list_by_category(business_category)
        if name and name.strip():
            return self.registry.list_by_name_substring(name)
        return []

    def stats(self, business_category: str | None = None) -> dict:
        payload: dict = {"total_files": self.registry.count()}
        if business_category:
            payload["business_category"] = business_category
            payload["category_files"] = self.registry.count_by_category(business_category)
        return payload

    def delete_file(self, file_id: str) -> bool:
        metadata = self.registry.find_by_id(file_id)
        if metadata is None or not self.registry.delete(file_id):
            return False
        try:
            self.storage.delete_key(metadata.stored_path)
        except Exception as exc:
            log_event(
                logger,
                {"event": "file_blob_delete_failed", "file_id": file_id, "key": metadata.stored_path, "detail": str(exc)},
                level=logging.WARNING,
            )
        audit_event({"action": "file_deleted", "file_id": file_id, "file_hash": metadata.content_hash})
        return True


def build_coordinator(
    storage: BlobStore | None = None,
    store: CoordinationStore | None = None,
    registry: FileRegistry | None = None,
) -> UploadCoordinator:
    storage = storage or build_storage()
    store = store or build_coordination_store()
    registry = registry or build_registry()
    fragments = FragmentStore(storage)
    sessions = SessionTracker(store)
    merger = Merger(store, storage, fragments, sessions, registry)
    return UploadCoordinator(
        validator=ChunkValidator(),
        fragments=fragments,
        sessions=sessions,
        merger=merger,
        registry=registry,
        storage=storage,
    )
