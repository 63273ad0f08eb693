import json
import logging

from resumable_upload.config import settings
from resumable_upload.coordination import CoordinationStore
from resumable_upload.domain import Arrival, Progress, utc_now
from resumable_upload.errors import SessionExpired, TotalCountMismatch
from resumable_upload.events import log_event

SESSION_KEY = "upload:session:"
TOTAL_KEY = "upload:total:"
CREATED_KEY = "upload:created:"
ATTRIBUTES_KEY = "upload:attributes:"

logger = logging.getLogger("rus.upload")


class SessionTracker:
    """Which fragment indices have arrived for a file hash.

    State lives only in the coordination store; nothing is cached between
    calls. Sessions expire passively after `ttl_seconds` without arrivals.
    """

    def __init__(self, store: CoordinationStore, ttl_seconds: int | None = None) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds or settings.session_ttl_seconds

    def _keys(self, file_hash: str) -> tuple[str, str, str, str]:
        return SESSION_KEY + file_hash, TOTAL_KEY + file_hash, CREATED_KEY + file_hash, ATTRIBUTES_KEY + file_hash

    def total_count(self, file_hash: str) -> int | None:
        recorded = self.store.get(TOTAL_KEY + file_hash)
        return int(recorded) if recorded is not None else None

    def check_total(self, file_hash: str, total_count: int) -> None:
        recorded = self.total_count(file_hash)
        if recorded is not None and recorded != total_count:
            log_event(
                logger,
                {
                    "event": "total_count_mismatch",
                    "file_hash": file_hash,
                    "recorded_total_count": recorded,
                    "declared_total_count": total_count,
                },
                level=logging.WARNING,
            )
            raise TotalCountMismatch(file_hash, recorded, total_count)

    def reserve(self, file_hash: str, total_count: int) -> None:
        """Create the session before its first fragment is written.

        Maintenance treats fragments without a session as expired, so the
        total must exist before any fragment blob does.
        """
        _, total_key, created_key, _ = self._keys(file_hash)
        if self.store.set_if_absent(total_key, str(total_count), self.ttl_seconds):
            self.store.set_if_absent(created_key, utc_now().isoformat(), self.ttl_seconds)
            return
        self.check_total(file_hash, total_count)
        self.store.expire(total_key, self.ttl_seconds)

    def record_arrival(
        self, file_hash: str, index: int, total_count: int, attributes: dict | None = None
    ) -> Arrival:
        """Add `index` to the session and report how many distinct indices arrived.

        `attributes` (file name, business category) are kept from the first
        arrival that supplies them.
        """
        session_key, total_key, created_key, attributes_key = self._keys(file_hash)
        if self.store.set_if_absent(total_key, str(total_count), self.ttl_seconds):
            self.store.set_if_absent(created_key, utc_now().isoformat(), self.ttl_seconds)
        else:
            recorded = self.store.get(total_key)
            if recorded is None:
                raise SessionExpired("upload session expired while recording arrival", file_hash=file_hash)
            if int(recorded) != total_count:
                raise TotalCountMismatch(file_hash, int(recorded), total_count)
        if attributes:
            self.store.set_if_absent(attributes_key, json.dumps(attributes, sort_keys=True), self.ttl_seconds)

        arrived_count = self.store.set_add(session_key, str(index), self.ttl_seconds)
        for key in (total_key, created_key, attributes_key):
            self.store.expire(key, self.ttl_seconds)
        return Arrival(arrived_count=arrived_count, total_count=total_count)

    def get_progress(self, file_hash: str) -> Progress:
        total = self.total_count(file_hash)
        if total is None:
            return Progress(arrived_count=0, total_count=0)
        return Progress(arrived_count=len(self.store.set_members(SESSION_KEY + file_hash)), total_count=total)

    def get_arrived_indices(self, file_hash: str) -> list[int]:
        return sorted(int(member) for member in self.store.set_members(SESSION_KEY + file_hash))

    def attributes(self, file_hash: str) -> dict:
        raw = self.store.get(ATTRIBUTES_KEY + file_hash)
        return json.loads(raw) if raw else {}

    def created_at(self, file_hash: str) -> str | None:
        return self.store.get(CREATED_KEY + file_hash)

    def exists(self, file_hash: str) -> bool:
        return self.store.exists(TOTAL_KEY + file_hash) or self.store.exists(SESSION_KEY + file_hash)

    def clear(self, file_hash: str) -> None:
        self.store.delete(*self._keys(file_hash))
