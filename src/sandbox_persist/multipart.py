"""Multipart upload of a large archive, one chunk at a time.

Lifecycle of one upload:
    split -> create session -> upload parts 1..N in order -> verify size -> complete

Any failure after the session exists aborts it exactly once, so no
half-written object or dangling session is left in the store.  Chunk
files are removed from the unit whatever the outcome.
"""

from __future__ import annotations

from sandbox_persist import constants
from sandbox_persist._logging import get_logger
from sandbox_persist.chunking import cleanup_chunks, read_chunk, split_into_chunks
from sandbox_persist.exceptions import ChunkSplitError, PartUploadError, TransferError
from sandbox_persist.models import TransferResult, UploadedPart
from sandbox_persist.remote import RemoteUnit
from sandbox_persist.store import MultipartUpload, ObjectStore

logger = get_logger(__name__)


async def _abort_quietly(upload: MultipartUpload) -> None:
    try:
        await upload.abort()
        logger.info("Multipart upload aborted", extra={"key": upload.key, "upload_id": upload.upload_id})
    except Exception as e:  # noqa: BLE001 - original failure is re-raised by the caller
        logger.error(
            "Multipart abort failed",
            extra={"key": upload.key, "upload_id": upload.upload_id, "error": str(e)},
        )


async def upload_multipart(
    unit: RemoteUnit,
    store: ObjectStore,
    source: str,
    key: str,
    metadata: dict[str, str],
    *,
    expected_size: int,
    chunk_size: int = constants.MULTIPART_CHUNK_SIZE,
    chunk_prefix: str = constants.CHUNK_PREFIX,
    expected_parts: int | None = None,
    split_timeout_seconds: float = constants.SPLIT_TIMEOUT_SECONDS,
) -> TransferResult:
    """Upload ``source`` from the unit to ``key`` as a multipart object.

    Args:
        unit: Unit holding the archive
        store: Destination object store
        source: Archive path on the unit
        key: Destination object key
        metadata: Custom metadata for the final object
        expected_size: Archive size measured before the upload; the sum of
            uploaded parts must match it before the object is committed
        chunk_size: Bytes per part
        chunk_prefix: Prefix for chunk files on the unit
        expected_parts: If given, the chunk count split must produce

    Returns:
        Total size and part count of the committed object

    Raises:
        ChunkSplitError: Split failed or produced the wrong number of chunks
        PartUploadError: A part (or the completing call) failed
        TransferError: Uploaded bytes do not add up to expected_size
        SnapshotStoreError: The session could not be created
    """
    try:
        chunks = await split_into_chunks(
            unit,
            source,
            chunk_size=chunk_size,
            prefix=chunk_prefix,
            timeout_seconds=split_timeout_seconds,
        )
        if expected_parts is not None and len(chunks) != expected_parts:
            raise ChunkSplitError(
                f"split produced {len(chunks)} chunks, expected {expected_parts}",
                context={"source": source, "chunk_size": chunk_size, "expected_size": expected_size},
            )

        upload = await store.create_multipart_upload(key, metadata)
        logger.info(
            "Multipart upload started",
            extra={"key": key, "upload_id": upload.upload_id, "part_count": len(chunks), "size": expected_size},
        )

        try:
            parts: list[UploadedPart] = []
            total = 0
            for part_number, chunk_path in enumerate(chunks, start=1):
                try:
                    data = await read_chunk(unit, chunk_path)
                    parts.append(await upload.upload_part(part_number, data))
                except Exception as e:
                    raise PartUploadError(
                        f"Part {part_number}/{len(chunks)} failed: {e}",
                        part_number=part_number,
                        context={"key": key, "chunk_path": chunk_path, "expected_size": expected_size},
                    ) from e
                total += len(data)
                logger.debug(
                    "Part uploaded",
                    extra={"key": key, "part_number": part_number, "part_size": len(data), "uploaded": total},
                )

            if total != expected_size:
                raise TransferError(
                    f"Uploaded {total} bytes but archive is {expected_size} bytes",
                    context={"key": key, "uploaded": total, "expected_size": expected_size, "part_count": len(parts)},
                )

            try:
                await upload.complete(parts)
            except Exception as e:
                raise PartUploadError(
                    f"Completing multipart upload failed: {e}",
                    part_number=None,
                    context={"key": key, "part_count": len(parts)},
                ) from e
        except BaseException:
            await _abort_quietly(upload)
            raise

        logger.info("Multipart upload completed", extra={"key": key, "size": total, "part_count": len(parts)})
        return TransferResult(size=total, part_count=len(parts), streaming=True)
    finally:
        await cleanup_chunks(unit, chunk_prefix)
