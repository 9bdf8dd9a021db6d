"""Object store interface and its S3 implementation.

S3ObjectStore talks to any S3-compatible service (AWS, Cloudflare R2,
MinIO) through aioboto3.  Each operation opens a short-lived client from
one lazily-created session; snapshot traffic is a handful of calls per
conversation, so no client is kept open between operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import aioboto3

from sandbox_persist._logging import get_logger
from sandbox_persist.exceptions import SnapshotPersistError, SnapshotStoreError, StoreConfigError
from sandbox_persist.models import SnapshotObject, UploadedPart
from sandbox_persist.settings import Settings

logger = get_logger(__name__)

ARCHIVE_CONTENT_TYPE = "application/gzip"


@runtime_checkable
class MultipartUpload(Protocol):
    """An open multipart session. Must end in exactly one complete() or abort()."""

    key: str
    upload_id: str

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart: ...

    async def complete(self, parts: list[UploadedPart]) -> None: ...

    async def abort(self) -> None: ...


@runtime_checkable
class ObjectStore(Protocol):
    """Object store surface used by the snapshot engine."""

    async def get(self, key: str) -> bytes | None:
        """Object body, or None when the key does not exist."""
        ...

    async def put(self, key: str, data: bytes, metadata: dict[str, str]) -> None: ...

    async def list(self, prefix: str) -> list[SnapshotObject]: ...

    async def create_multipart_upload(self, key: str, metadata: dict[str, str]) -> MultipartUpload: ...

    async def presign_get(self, key: str, expires_in: int) -> str:
        """Time-limited GET URL for ``key``. Treat the result as a secret."""
        ...


class S3ObjectStore:
    """ObjectStore backed by an S3-compatible bucket (aioboto3).

    Example:
        ```python
        store = S3ObjectStore(Settings(s3_bucket="chat-snapshots"))
        await store.put("snapshots/u1/c1/2026-01-02T03-04-05-678Z.tar.gz", data, {})
        ```
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self._session: aioboto3.Session | None = None

    @property
    def bucket(self) -> str:
        if not self.settings.s3_bucket:
            raise StoreConfigError("Object store disabled (s3_bucket not configured)")
        return self.settings.s3_bucket

    def _client(self):  # type: ignore[no-untyped-def]
        """S3 client context manager from aioboto3 (untyped library)."""
        if self._session is None:
            self._session = aioboto3.Session()

        return self._session.client(  # type: ignore[no-any-return]
            "s3",
            region_name=self.settings.effective_region,
            endpoint_url=self.settings.effective_endpoint_url,
            aws_access_key_id=self.settings.s3_access_key_id,
            aws_secret_access_key=self.settings.s3_secret_access_key,
        )

    async def get(self, key: str) -> bytes | None:
        bucket = self.bucket
        try:
            async with self._client() as s3:  # type: ignore[union-attr]
                try:
                    response = await s3.get_object(Bucket=bucket, Key=key)
                except s3.exceptions.NoSuchKey:
                    return None
                async with response["Body"] as stream:
                    return await stream.read()  # type: ignore[no-any-return]
        except SnapshotPersistError:
            raise
        except Exception as e:
            raise SnapshotStoreError(f"S3 get failed: {e}", context={"key": key}) from e

    async def put(self, key: str, data: bytes, metadata: dict[str, str]) -> None:
        bucket = self.bucket
        try:
            async with self._client() as s3:  # type: ignore[union-attr]
                await s3.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=data,
                    ContentType=ARCHIVE_CONTENT_TYPE,
                    Metadata=metadata,
                )
        except Exception as e:
            raise SnapshotStoreError(f"S3 put failed: {e}", context={"key": key, "size": len(data)}) from e

    async def list(self, prefix: str) -> list[SnapshotObject]:
        bucket = self.bucket
        objects: list[SnapshotObject] = []
        try:
            async with self._client() as s3:  # type: ignore[union-attr]
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                    for item in page.get("Contents", []):
                        uploaded: datetime | None = item.get("LastModified")
                        objects.append(SnapshotObject(key=item["Key"], size=item.get("Size", 0), uploaded=uploaded))
        except Exception as e:
            raise SnapshotStoreError(f"S3 list failed: {e}", context={"prefix": prefix}) from e
        return objects

    async def create_multipart_upload(self, key: str, metadata: dict[str, str]) -> S3MultipartUpload:
        bucket = self.bucket
        try:
            async with self._client() as s3:  # type: ignore[union-attr]
                response = await s3.create_multipart_upload(
                    Bucket=bucket,
                    Key=key,
                    ContentType=ARCHIVE_CONTENT_TYPE,
                    Metadata=metadata,
                )
        except Exception as e:
            raise SnapshotStoreError(f"S3 multipart initiation failed: {e}", context={"key": key}) from e

        logger.debug("Multipart upload created", extra={"key": key, "upload_id": response["UploadId"]})
        return S3MultipartUpload(self, key, response["UploadId"])

    async def presign_get(self, key: str, expires_in: int) -> str:
        bucket = self.bucket
        try:
            async with self._client() as s3:  # type: ignore[union-attr]
                return await s3.generate_presigned_url(  # type: ignore[no-any-return]
                    "get_object",
                    Params={"Bucket": bucket, "Key": key},
                    ExpiresIn=expires_in,
                )
        except Exception as e:
            raise SnapshotStoreError(f"Presigning failed: {e}", context={"key": key}) from e


class S3MultipartUpload:
    """One multipart session on an S3ObjectStore."""

    def __init__(self, store: S3ObjectStore, key: str, upload_id: str):
        self._store = store
        self.key = key
        self.upload_id = upload_id

    def _context(self, **extra: Any) -> dict[str, Any]:
        return {"key": self.key, "upload_id": self.upload_id, **extra}

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart:
        try:
            async with self._store._client() as s3:  # type: ignore[union-attr]
                response = await s3.upload_part(
                    Bucket=self._store.bucket,
                    Key=self.key,
                    UploadId=self.upload_id,
                    PartNumber=part_number,
                    Body=data,
                )
        except Exception as e:
            raise SnapshotStoreError(
                f"S3 upload_part failed: {e}", context=self._context(part_number=part_number, size=len(data))
            ) from e
        return UploadedPart(part_number=part_number, etag=response["ETag"])

    async def complete(self, parts: list[UploadedPart]) -> None:
        try:
            async with self._store._client() as s3:  # type: ignore[union-attr]
                await s3.complete_multipart_upload(
                    Bucket=self._store.bucket,
                    Key=self.key,
                    UploadId=self.upload_id,
                    MultipartUpload={"Parts": [{"PartNumber": p.part_number, "ETag": p.etag} for p in parts]},
                )
        except Exception as e:
            raise SnapshotStoreError(
                f"S3 complete_multipart_upload failed: {e}", context=self._context(part_count=len(parts))
            ) from e

    async def abort(self) -> None:
        try:
            async with self._store._client() as s3:  # type: ignore[union-attr]
                await s3.abort_multipart_upload(Bucket=self._store.bucket, Key=self.key, UploadId=self.upload_id)
        except Exception as e:
            raise SnapshotStoreError(f"S3 abort_multipart_upload failed: {e}", context=self._context()) from e
