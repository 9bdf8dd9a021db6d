"""Moving a finished archive from the unit into the object store.

Small archives go through one base64 read and one put.  Anything over the
streaming threshold would risk the RPC payload ceiling, so it is split
and sent as multipart (see multipart.py).
"""

from __future__ import annotations

import binascii

from sandbox_persist._logging import get_logger
from sandbox_persist.chunking import read_remote_bytes
from sandbox_persist.config import SnapshotConfig
from sandbox_persist.exceptions import BufferedUploadError
from sandbox_persist.models import Buffered, Streaming, TransferResult, TransferStrategy
from sandbox_persist.multipart import upload_multipart
from sandbox_persist.remote import RemoteUnit
from sandbox_persist.store import ObjectStore

logger = get_logger(__name__)


async def upload_buffered(
    unit: RemoteUnit,
    store: ObjectStore,
    source: str,
    key: str,
    metadata: dict[str, str],
    *,
    expected_size: int,
) -> int:
    """Read the whole archive in one RPC and store it with a single put.

    Returns:
        Bytes stored

    Raises:
        BufferedUploadError: Empty or invalid read, or size mismatch
        SnapshotStoreError: The put failed
    """
    try:
        data = await read_remote_bytes(unit, source)
    except binascii.Error as e:
        raise BufferedUploadError(f"Archive {source} is not valid base64", context={"source": source}) from e

    if not data:
        raise BufferedUploadError("Archive read back empty", context={"source": source, "key": key})
    if len(data) != expected_size:
        raise BufferedUploadError(
            f"Read {len(data)} bytes but archive is {expected_size} bytes",
            context={"source": source, "key": key, "read": len(data), "expected_size": expected_size},
        )

    await store.put(key, data, metadata)
    logger.info("Buffered upload completed", extra={"key": key, "size": len(data)})
    return len(data)


async def transfer_archive(
    unit: RemoteUnit,
    store: ObjectStore,
    strategy: TransferStrategy,
    source: str,
    key: str,
    metadata: dict[str, str],
    *,
    expected_size: int,
    config: SnapshotConfig,
) -> TransferResult:
    """Send ``source`` to ``key`` with the already-selected strategy."""
    match strategy:
        case Buffered():
            size = await upload_buffered(unit, store, source, key, metadata, expected_size=expected_size)
            return TransferResult(size=size)
        case Streaming(chunk_size=chunk_size, expected_parts=expected_parts):
            return await upload_multipart(
                unit,
                store,
                source,
                key,
                metadata,
                expected_size=expected_size,
                chunk_size=chunk_size,
                chunk_prefix=config.chunk_prefix,
                expected_parts=expected_parts,
                split_timeout_seconds=config.split_timeout_seconds,
            )
