import os
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from resumable_upload.config import settings

MIN_MULTIPART_PART_SIZE = 5 * 1024 * 1024


@dataclass(frozen=True)
class StorageWriteResult:
    key: str
    size_bytes: int
    etag: str | None = None


class BlobStore:
    def write(self, key: str, data: bytes) -> StorageWriteResult:
        raise NotImplementedError

    def write_stream(self, key: str, blocks: Iterable[bytes]) -> StorageWriteResult:
        raise NotImplementedError

    def read(self, key: str) -> bytes:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def list_keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError

    def delete_key(self, key: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / key

    def write(self, key: str, data: bytes) -> StorageWriteResult:
        return self.write_stream(key, (data,))

    def write_stream(self, key: str, blocks: Iterable[bytes]) -> StorageWriteResult:
        full_path = self._path(key)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        # Readers never observe a half-written blob.
        tmp_path = full_path.with_name(f"{full_path.name}.{uuid.uuid4().hex}.tmp")
        size = 0
        try:
            with tmp_path.open("wb") as handle:
                for block in blocks:
                    handle.write(block)
                    size += len(block)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, full_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return StorageWriteResult(key=key, size_bytes=size)

    def read(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list_keys(self, prefix: str = "") -> list[str]:
        base = self.root / prefix if prefix else self.root
        if not base.exists():
            return []
        root = self.root
        return sorted(
            str(path.relative_to(root)).replace("\\", "/")
            for path in base.rglob("*")
            if path.is_file() and not path.name.endswith(".tmp")
        )

    def delete_key(self, key: str) -> None:
        target = self._path(key)
        if target.exists():
            target.unlink()


class S3BlobStore(BlobStore):
    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket must be set for s3-compatible backends")
        import boto3

        self.bucket = bucket
        client_kwargs = {"region_name": region}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if access_key_id and secret_access_key:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key
        self.client = boto3.client("s3", **client_kwargs)

    def write(self, key: str, data: bytes) -> StorageWriteResult:
        result = self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        return StorageWriteResult(key=key, size_bytes=len(data), etag=result.get("ETag"))

    def write_stream(self, key: str, blocks: Iterable[bytes]) -> StorageWriteResult:
        multipart_upload_id = self.client.create_multipart_upload(Bucket=self.bucket, Key=key)["UploadId"]
        parts: list[dict] = []
        buffer = bytearray()
        size = 0

        def _flush() -> None:
            part_number = len(parts) + 1
            result = self.client.upload_part(
                Bucket=self.bucket,
                Key=key,
                PartNumber=part_number,
                UploadId=multipart_upload_id,
                Body=bytes(buffer),
            )
            parts.append({"PartNumber": part_number, "ETag": result.get("ETag")})
            buffer.clear()

        try:
            for block in blocks:
                buffer.extend(block)
                size += len(block)
                # Every part except the last must meet the S3 minimum part size.
                if len(buffer) >= MIN_MULTIPART_PART_SIZE:
                    _flush()
            if buffer or not parts:
                _flush()
            self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=multipart_upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException:
            self.client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=multipart_upload_id)
            raise
        return StorageWriteResult(key=key, size_bytes=size)

    def read(self, key: str) -> bytes:
        obj = self.client.get_object(Bucket=self.bucket, Key=key)
        return obj["Body"].read()

    def exists(self, key: str) -> bool:
        response = self.client.list_objects_v2(Bucket=self.bucket, Prefix=key, MaxKeys=1)
        return any(item.get("Key") == key for item in response.get("Contents", []))

    def list_keys(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        continuation_token = None
        while True:
            params = {"Bucket": self.bucket, "Prefix": prefix}
            if continuation_token:
                params["ContinuationToken"] = continuation_token
            response = self.client.list_objects_v2(**params)
            for item in response.get("Contents", []):
                key = item.get("Key")
                if key:
                    keys.append(key)
            if not response.get("IsTruncated"):
                break
            continuation_token = response.get("NextContinuationToken")
        return keys

    def delete_key(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)


def build_storage() -> BlobStore:
    backend = settings.storage_backend.lower()
    if backend == "local":
        return LocalBlobStore(settings.storage_root)
    if backend == "s3":
        return S3BlobStore(settings.s3_bucket, settings.aws_region)
    if backend == "r2":
        if not settings.r2_bucket:
            raise ValueError("r2_bucket must be set when storage_backend=r2")
        endpoint_url = settings.r2_endpoint_url
        if not endpoint_url:
            if not settings.r2_account_id:
                raise ValueError("set r2_endpoint_url or r2_account_id when storage_backend=r2")
            endpoint_url = f"https://{settings.r2_account_id}.r2.cloudflarestorage.com"

        return S3BlobStore(
            bucket=settings.r2_bucket,
            region="auto",
            endpoint_url=endpoint_url,
            access_key_id=settings.r2_access_key_id or None,
            secret_access_key=settings.r2_secret_access_key or None,
        )
    raise ValueError(f"unsupported storage backend: {settings.storage_backend}")
