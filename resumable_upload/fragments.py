import logging
import time
from collections.abc import Iterator

from resumable_upload.errors import MissingFragment, StorageIOError
from resumable_upload.events import log_event
from resumable_upload.metrics import fragment_write_latency_seconds
from resumable_upload.storage import BlobStore

FRAGMENT_PREFIX = "fragments"

logger = logging.getLogger("rus.upload")


class FragmentStore:
    """Fragment blobs keyed by (file hash, index). No business rules live here."""

    def __init__(self, storage: BlobStore) -> None:
        self.storage = storage

    def fragment_key(self, file_hash: str, index: int) -> str:
        return f"{FRAGMENT_PREFIX}/{file_hash}/{index}"

    def save(self, file_hash: str, index: int, payload: bytes) -> str:
        key = self.fragment_key(file_hash, index)
        start = time.perf_counter()
        try:
            self.storage.write(key, payload)
        except Exception as exc:
            raise StorageIOError(f"failed to store fragment {index}: {exc}", file_hash=file_hash) from exc
        fragment_write_latency_seconds.observe(time.perf_counter() - start)
        return key

    def read_all(self, file_hash: str, total_count: int) -> Iterator[bytes]:
        """Check that every fragment exists, then return a lazy in-order reader.

        Raises MissingFragment for the lowest absent index before any bytes are
        produced.
        """
        keys = [self.fragment_key(file_hash, index) for index in range(total_count)]
        try:
            present = set(self.storage.list_keys(f"{FRAGMENT_PREFIX}/{file_hash}/"))
        except Exception as exc:
            raise StorageIOError(f"failed to list fragments: {exc}", file_hash=file_hash) from exc
        for index, key in enumerate(keys):
            if key not in present:
                raise MissingFragment(file_hash, index)
        return self._iter_blocks(file_hash, keys)

    def _iter_blocks(self, file_hash: str, keys: list[str]) -> Iterator[bytes]:
        for index, key in enumerate(keys):
            try:
                yield self.storage.read(key)
            except FileNotFoundError as exc:
                raise MissingFragment(file_hash, index) from exc
            except Exception as exc:
                raise StorageIOError(f"failed to read fragment {index}: {exc}", file_hash=file_hash) from exc

    def list_hashes(self) -> set[str]:
        hashes: set[str] = set()
        for key in self.storage.list_keys(f"{FRAGMENT_PREFIX}/"):
            parts = key.split("/")
            if len(parts) == 3:
                hashes.add(parts[1])
        return hashes

    def purge(self, file_hash: str) -> int:
        deleted = 0
        try:
            keys = self.storage.list_keys(f"{FRAGMENT_PREFIX}/{file_hash}/")
        except Exception as exc:
            log_event(
                logger,
                {"event": "fragment_purge_failed", "file_hash": file_hash, "detail": str(exc)},
                level=logging.WARNING,
            )
            return deleted
        for key in keys:
            try:
                self.storage.delete_key(key)
                deleted += 1
            except Exception as exc:
                log_event(
                    logger,
                    {"event": "fragment_purge_failed", "file_hash": file_hash, "key": key, "detail": str(exc)},
                    level=logging.WARNING,
                )
        return deleted
