import logging
import time
import uuid
from collections.abc import Iterable, Iterator

from resumable_upload.config import settings
from resumable_upload.coordination import CoordinationStore
from resumable_upload.domain import FileMetadata, MergeResult, MergeState
from resumable_upload.errors import (
    IncompleteUpload,
    MergeIntegrityError,
    MissingFragment,
    SessionExpired,
    StorageIOError,
    UploadError,
)
from resumable_upload.events import audit_event, log_event
from resumable_upload.fragments import FragmentStore
from resumable_upload.hashing import new_hasher, same_digest
from resumable_upload.metrics import merge_duration_seconds, merges_total
from resumable_upload.registry import FileRegistry
from resumable_upload.sessions import SessionTracker
from resumable_upload.storage import BlobStore
from resumable_upload.tracing import tracer

MERGE_KEY = "upload:merge:"
MERGE_ATTEMPTS_KEY = "upload:merge_attempts:"
FILES_PREFIX = "files"

logger = logging.getLogger("rus.upload")


class _DigestingReader:
    def __init__(self, blocks: Iterable[bytes], algorithm: str | None) -> None:
        self._blocks = blocks
        self._hasher = new_hasher(algorithm)
        self.size_bytes = 0

    def __iter__(self) -> Iterator[bytes]:
        for block in self._blocks:
            self._hasher.update(block)
            self.size_bytes += len(block)
            yield block

    def hexdigest(self) -> str:
        return self._hasher.hexdigest()


class Merger:
    """Reassembles a complete session into one blob, at most once per file hash.

    The merge marker in the coordination store is the only serialization
    point. Whoever sets it runs COLLECTING -> MERGING -> PUBLISHED or
    MERGE_FAILED; everyone else gets COLLECTING back immediately.
    """

    def __init__(
        self,
        store: CoordinationStore,
        storage: BlobStore,
        fragments: FragmentStore,
        sessions: SessionTracker,
        registry: FileRegistry,
        algorithm: str | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.fragments = fragments
        self.sessions = sessions
        self.registry = registry
        self.algorithm = algorithm

    def output_key(self, file_hash: str) -> str:
        return f"{FILES_PREFIX}/{file_hash}_{int(time.time() * 1000)}"

    def merge_in_progress(self, file_hash: str) -> bool:
        return self.store.exists(MERGE_KEY + file_hash)

    def merge_once(self, file_hash: str) -> MergeResult:
        marker_key = MERGE_KEY + file_hash
        if not self.store.set_if_absent(marker_key, uuid.uuid4().hex, settings.merge_lease_seconds):
            log_event(logger, {"event": "merge_skipped", "file_hash": file_hash, "reason": "merge_in_progress"})
            return MergeResult(state=MergeState.collecting)

        start = time.perf_counter()
        attempt = self.store.incr(MERGE_ATTEMPTS_KEY + file_hash, self.sessions.ttl_seconds)
        log_event(logger, {"event": "merge_started", "file_hash": file_hash, "attempt": attempt})
        with tracer.start_as_current_span("merge_fragments") as span:
            span.set_attribute("upload.file_hash", file_hash)
            span.set_attribute("upload.merge_attempt", attempt)
            try:
                metadata = self._merge(file_hash)
            except IncompleteUpload as exc:
                # Keep the marker briefly so a burst of late duplicates does not re-read everything.
                self.store.expire(marker_key, settings.incomplete_merge_lease_seconds)
                return self._failed(file_hash, exc, start)
            except UploadError as exc:
                self.store.delete(marker_key)
                return self._failed(file_hash, exc, start)
            span.set_attribute("upload.size_bytes", metadata.size_bytes)

        self.fragments.purge(file_hash)
        self.sessions.clear(file_hash)
        self.store.delete(marker_key, MERGE_ATTEMPTS_KEY + file_hash)
        merges_total.labels(outcome=MergeState.published.value).inc()
        merge_duration_seconds.observe(time.perf_counter() - start)
        audit_event(
            {
                "action": "file_published",
                "file_hash": file_hash,
                "file_id": metadata.id,
                "size_bytes": metadata.size_bytes,
                "stored_path": metadata.stored_path,
            }
        )
        return MergeResult(state=MergeState.published, metadata=metadata)

    def _merge(self, file_hash: str) -> FileMetadata:
        total_count = self.sessions.total_count(file_hash)
        if total_count is None:
            raise SessionExpired("upload session expired before merge", file_hash=file_hash)
        attributes = self.sessions.attributes(file_hash)

        try:
            blocks = self.fragments.read_all(file_hash, total_count)
        except MissingFragment as exc:
            raise IncompleteUpload(str(exc), file_hash=file_hash) from exc

        output_key = self.output_key(file_hash)
        reader = _DigestingReader(blocks, self.algorithm)
        try:
            self.storage.write_stream(output_key, reader)
        except MissingFragment as exc:
            raise IncompleteUpload(str(exc), file_hash=file_hash) from exc
        except UploadError:
            raise
        except Exception as exc:
            raise StorageIOError(f"failed to write merged file: {exc}", file_hash=file_hash) from exc

        actual = reader.hexdigest()
        if not same_digest(actual, file_hash):
            self._discard_output(file_hash, output_key)
            raise MergeIntegrityError(
                f"merged file digest {actual} does not match {file_hash}", file_hash=file_hash
            )

        candidate = FileMetadata(
            original_name=attributes.get("file_name") or output_key.rsplit("/", 1)[-1],
            stored_path=output_key,
            size_bytes=reader.size_bytes,
            content_hash=file_hash,
            business_category=attributes.get("business_category"),
        )
        try:
            metadata = self.registry.publish(candidate)
        except Exception as exc:
            self._discard_output(file_hash, output_key)
            raise StorageIOError(f"failed to publish file metadata: {exc}", file_hash=file_hash) from exc
        if metadata.stored_path != output_key:
            # Another writer registered this content first; keep theirs.
            self._discard_output(file_hash, output_key)
        return metadata

    def _discard_output(self, file_hash: str, output_key: str) -> None:
        try:
            self.storage.delete_key(output_key)
        except Exception as exc:
            log_event(
                logger,
                {"event": "merge_output_cleanup_failed", "file_hash": file_hash, "key": output_key, "detail": str(exc)},
                level=logging.WARNING,
            )

    def _failed(self, file_hash: str, exc: UploadError, start: float) -> MergeResult:
        merges_total.labels(outcome=exc.error_code).inc()
        merge_duration_seconds.observe(time.perf_counter() - start)
        log_event(
            logger,
            {
                "event": "merge_failed",
                "file_hash": file_hash,
                "error_code": exc.error_code,
                "detail": exc.message,
            },
            level=logging.WARNING,
        )
        return MergeResult(state=MergeState.merge_failed, error=exc)
