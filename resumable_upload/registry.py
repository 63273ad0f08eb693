import dataclasses
import threading
import uuid
from datetime import timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from resumable_upload.config import settings
from resumable_upload.db import SessionLocal
from resumable_upload.domain import FileMetadata
from resumable_upload.models import StoredFile


class FileRegistry:
    """Content hash -> metadata index for completed files.

    Blank lookup keys never match anything.
    """

    def find_by_hash(self, content_hash: str) -> FileMetadata | None:
        raise NotImplementedError

    def find_by_id(self, file_id: str) -> FileMetadata | None:
        raise NotImplementedError

    def publish(self, metadata: FileMetadata) -> FileMetadata:
        raise NotImplementedError

    def delete(self, file_id: str) -> bool:
        raise NotImplementedError

    def list_by_category(self, category: str) -> list[FileMetadata]:
        raise NotImplementedError

    def list_by_name_substring(self, fragment: str) -> list[FileMetadata]:
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def count_by_category(self, category: str) -> int:
        raise NotImplementedError


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class MemoryFileRegistry(FileRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._files: dict[str, FileMetadata] = {}
        self._hash_index: dict[str, str] = {}

    def find_by_hash(self, content_hash: str) -> FileMetadata | None:
        if _blank(content_hash):
            return None
        with self._lock:
            file_id = self._hash_index.get(content_hash)
            return self._files.get(file_id) if file_id else None

    def find_by_id(self, file_id: str) -> FileMetadata | None:
        if _blank(file_id):
            return None
        with self._lock:
            return self._files.get(file_id)

    def publish(self, metadata: FileMetadata) -> FileMetadata:
        with self._lock:
            existing_id = self._hash_index.get(metadata.content_hash)
            if existing_id:
                return self._files[existing_id]
            if not metadata.id:
                metadata = dataclasses.replace(metadata, id=str(uuid.uuid4()))
            self._files[metadata.id] = metadata
            self._hash_index[metadata.content_hash] = metadata.id
            return metadata

    def delete(self, file_id: str) -> bool:
        if _blank(file_id):
            return False
        with self._lock:
            metadata = self._files.pop(file_id, None)
            if metadata is None:
                return False
            self._hash_index.pop(metadata.content_hash, None)
            return True

    def list_by_category(self, category: str) -> list[FileMetadata]:
        if _blank(category):
            return []
        with self._lock:
            return [item for item in self._files.values() if item.business_category == category]

    def list_by_name_substring(self, fragment: str) -> list[FileMetadata]:
        if _blank(fragment):
            return []
        keyword = fragment.lower()
        with self._lock:
            return [item for item in self._files.values() if keyword in item.original_name.lower()]

    def count(self) -> int:
        with self._lock:
            return len(self._files)

    def count_by_category(self, category: str) -> int:
        return len(self.list_by_category(category))


def _to_metadata(row: StoredFile) -> FileMetadata:
    created_at = row.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; rows are always written in UTC.
        created_at = created_at.replace(tzinfo=timezone.utc)
    return FileMetadata(
        id=row.id,
        original_name=row.original_name,
        stored_path=row.stored_path,
        size_bytes=row.size_bytes,
        content_hash=row.content_hash,
        business_category=row.business_category,
        created_at=created_at,
    )


class DatabaseFileRegistry(FileRegistry):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def find_by_hash(self, content_hash: str) -> FileMetadata | None:
        if _blank(content_hash):
            return None
        with self._session_factory() as db:
            row = db.scalar(select(StoredFile).where(StoredFile.content_hash == content_hash))
            return _to_metadata(row) if row else None

    def find_by_id(self, file_id: str) -> FileMetadata | None:
        if _blank(file_id):
            return None
        with self._session_factory() as db:
            row = db.get(StoredFile, file_id)
            return _to_metadata(row) if row else None

    def publish(self, metadata: FileMetadata) -> FileMetadata:
        existing = self.find_by_hash(metadata.content_hash)
        if existing:
            return existing
        with self._session_factory() as db:
            row = StoredFile(
                original_name=metadata.original_name,
                stored_path=metadata.stored_path,
                size_bytes=metadata.size_bytes,
                content_hash=metadata.content_hash,
                business_category=metadata.business_category,
                created_at=metadata.created_at,
            )
            if metadata.id:
                row.id = metadata.id
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Lost a concurrent publish for the same hash.
                db.rollback()
                winner = db.scalar(select(StoredFile).where(StoredFile.content_hash == metadata.content_hash))
                if winner is None:
                    raise
                return _to_metadata(winner)
            db.refresh(row)
            return _to_metadata(row)

    def delete(self, file_id: str) -> bool:
        if _blank(file_id):
            return False
        with self._session_factory() as db:
            row = db.get(StoredFile, file_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def list_by_category(self, category: str) -> list[FileMetadata]:
        if _blank(category):
            return []
        with self._session_factory() as db:
            rows = db.scalars(
                select(StoredFile).where(StoredFile.business_category == category).order_by(StoredFile.created_at)
            ).all()
            return [_to_metadata(row) for row in rows]

    def list_by_name_substring(self, fragment: str) -> list[FileMetadata]:
        if _blank(fragment):
            return []
        with self._session_factory() as db:
            rows = db.scalars(
                select(StoredFile)
                .where(func.lower(StoredFile.original_name).contains(fragment.lower(), autoescape=True))
                .order_by(StoredFile.created_at)
            ).all()
            return [_to_metadata(row) for row in rows]

    def count(self) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count(StoredFile.id))) or 0

    def count_by_category(self, category: str) -> int:
        if _blank(category):
            return 0
        with self._session_factory() as db:
            return db.scalar(select(func.count(StoredFile.id)).where(StoredFile.business_category == category)) or 0


def build_registry() -> FileRegistry:
    backend = settings.registry_backend.lower()
    if backend == "memory":
        return MemoryFileRegistry()
    if backend == "database":
        return DatabaseFileRegistry(SessionLocal)
    raise ValueError(f"unsupported registry backend: {settings.registry_backend}")
