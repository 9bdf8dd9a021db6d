"""Object-store-to-unit download through a presigned URL.

The unit fetches the object itself with curl, so restore traffic never
passes through the RPC channel.  The URL carries a signature: it is
written to a disposable curl config file on the unit (``url = "..."``) and
handed over with ``--config FILE``, so it stays out of curl's argv and
out of log records.
"""

from __future__ import annotations

import math
import shlex
import uuid

from sandbox_persist import constants
from sandbox_persist._logging import get_logger, redact_presigned
from sandbox_persist.archive import remove_remote_files
from sandbox_persist.exceptions import PresignedDownloadError
from sandbox_persist.remote import RemoteUnit
from sandbox_persist.store import ObjectStore

logger = get_logger(__name__)


def curl_config(url: str) -> str:
    """curl config file body naming ``url`` as the transfer target."""
    escaped = url.replace("\\", "\\\\").replace('"', '\\"')
    return f'url = "{escaped}"\n'


def build_curl_command(url_file: str, dest: str, *, max_time: float) -> str:
    """Shell command downloading the URL configured in ``url_file`` to ``dest`` atomically.

    ``--max-time`` is rounded up to whole seconds; curl reads 0 as no limit.

    curl writes ``{dest}.tmp`` and only a successful transfer is renamed
    onto ``dest``, so a failed download never leaves a truncated file at
    the destination.
    """
    tmp = f"{dest}.tmp"
    return (
        f"curl --fail --silent --show-error --location --retry 3 --retry-delay 1 "
        f"--max-time {max(1, math.ceil(max_time))} "
        f"--config {shlex.quote(url_file)} -o {shlex.quote(tmp)} "
        f"&& mv {shlex.quote(tmp)} {shlex.quote(dest)}"
    )


async def download_via_presigned_url(
    unit: RemoteUnit,
    store: ObjectStore,
    key: str,
    dest: str,
    *,
    expires_in: int = constants.PRESIGNED_URL_EXPIRY_SECONDS,
    curl_timeout_seconds: float = constants.CURL_TIMEOUT_SECONDS,
    exec_timeout_seconds: float = constants.CURL_TIMEOUT_SECONDS + constants.CURL_EXEC_BUFFER_SECONDS,
    url_file_dir: str = constants.URL_FILE_DIR,
) -> None:
    """Have the unit download ``key`` from the store to ``dest``.

    Raises:
        PresignedDownloadError: curl failed (expired URL, missing object, network)
        SnapshotStoreError: Presigning failed
    """
    url = await store.presign_get(key, expires_in)
    url_file = f"{url_file_dir.rstrip('/')}/presigned-url-{uuid.uuid4().hex}.txt"
    command = build_curl_command(url_file, dest, max_time=curl_timeout_seconds)

    try:
        await unit.write_file(url_file, curl_config(url))
        try:
            result = await unit.exec(command, timeout_seconds=exec_timeout_seconds)
        except Exception as e:
            await remove_remote_files(unit, f"{dest}.tmp")
            raise PresignedDownloadError(
                f"Presigned download did not finish: {redact_presigned(str(e))}",
                context={"key": key, "dest": dest},
            ) from e
    finally:
        await remove_remote_files(unit, url_file)

    if not result.ok:
        await remove_remote_files(unit, f"{dest}.tmp")
        raise PresignedDownloadError(
            f"Presigned download failed with exit code {result.exit_code}",
            context={
                "key": key,
                "dest": dest,
                "exit_code": result.exit_code,
                "stderr": redact_presigned(result.stderr[:500]),
            },
        )

    logger.debug("Presigned download completed", extra={"key": key, "dest": dest})
