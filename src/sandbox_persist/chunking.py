"""Splitting archives into chunks on the unit and reading them back.

split's numeric fixed-width suffixes (``-d -a 4``) make lexicographic
order of chunk paths equal to byte order of the source file, so the
sorted path list is also the part order.
"""

from __future__ import annotations

import base64
import binascii
import shlex

from sandbox_persist import constants
from sandbox_persist._logging import get_logger
from sandbox_persist.exceptions import ChunkReadError, ChunkSplitError
from sandbox_persist.remote import RemoteUnit

logger = get_logger(__name__)


def _glob(prefix: str) -> str:
    return f"{shlex.quote(prefix)}*"


async def split_into_chunks(
    unit: RemoteUnit,
    source: str,
    *,
    chunk_size: int,
    prefix: str = constants.CHUNK_PREFIX,
    timeout_seconds: float = constants.SPLIT_TIMEOUT_SECONDS,
    quick_timeout_seconds: float = constants.QUICK_COMMAND_TIMEOUT_SECONDS,
) -> list[str]:
    """Split ``source`` into ``chunk_size``-byte files named ``{prefix}0000``, ``{prefix}0001``...

    Stale chunks from an earlier run are removed first.

    Returns:
        Chunk paths in part order

    Raises:
        ChunkSplitError: split failed or produced no chunks
    """
    await unit.exec(f"rm -f {_glob(prefix)}", timeout_seconds=quick_timeout_seconds)

    split_cmd = (
        f"split -b {chunk_size} -d -a {constants.CHUNK_SUFFIX_LENGTH} {shlex.quote(source)} {shlex.quote(prefix)}"
    )
    result = await unit.exec(split_cmd, timeout_seconds=timeout_seconds)
    if not result.ok:
        raise ChunkSplitError(
            f"split failed with exit code {result.exit_code}",
            context={"source": source, "chunk_size": chunk_size, "stderr": result.stderr[:500]},
        )

    listing = await unit.exec(f"ls -1 {_glob(prefix)}", timeout_seconds=quick_timeout_seconds)
    chunks = sorted(line.strip() for line in listing.stdout.splitlines() if line.strip())
    if not listing.ok or not chunks:
        raise ChunkSplitError(
            "split produced no chunks",
            context={"source": source, "prefix": prefix, "stderr": listing.stderr[:500]},
        )

    logger.debug("Archive split", extra={"source": source, "chunk_count": len(chunks), "chunk_size": chunk_size})
    return chunks


async def cleanup_chunks(
    unit: RemoteUnit,
    prefix: str = constants.CHUNK_PREFIX,
    *,
    timeout_seconds: float = constants.QUICK_COMMAND_TIMEOUT_SECONDS,
) -> None:
    """Remove every chunk file under ``prefix``. Logs failures, never raises."""
    try:
        result = await unit.exec(f"rm -f {_glob(prefix)}", timeout_seconds=timeout_seconds)
    except Exception as e:  # noqa: BLE001 - best-effort cleanup
        logger.warning("Chunk cleanup failed", extra={"prefix": prefix, "error": str(e)})
        return
    if not result.ok:
        logger.warning("Chunk cleanup exited non-zero", extra={"prefix": prefix, "exit_code": result.exit_code})


async def read_remote_bytes(unit: RemoteUnit, path: str) -> bytes:
    """Read ``path`` through the RPC channel as base64 and decode it.

    Raises:
        binascii.Error: The unit returned invalid base64
    """
    encoded = await unit.read_file(path, encoding="base64")
    return base64.b64decode(encoded.strip(), validate=True)


async def read_chunk(unit: RemoteUnit, path: str) -> bytes:
    """Read one chunk. An empty chunk is an error: split never produces one.

    Raises:
        ChunkReadError: Read failed, invalid base64, or zero bytes
    """
    try:
        data = await read_remote_bytes(unit, path)
    except binascii.Error as e:
        raise ChunkReadError(f"Chunk {path} is not valid base64", context={"path": path}) from e

    if not data:
        raise ChunkReadError(f"Chunk {path} read back empty", context={"path": path})
    return data
