"""Archive building and extraction on the remote unit.

All work happens unit-side through tar; only commands and small outputs
cross the RPC channel.  Every path and pattern is shell-quoted.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable

from sandbox_persist import constants
from sandbox_persist._logging import get_logger
from sandbox_persist.exceptions import ArchiveBuildError, ExtractionError, TransferError
from sandbox_persist.remote import RemoteUnit

logger = get_logger(__name__)


def _exclude_args(patterns: Iterable[str]) -> str:
    return " ".join(shlex.quote(f"--exclude={pattern}") for pattern in patterns)


async def find_non_empty_dirs(
    unit: RemoteUnit,
    directories: Iterable[str],
    *,
    timeout_seconds: float = constants.QUICK_COMMAND_TIMEOUT_SECONDS,
) -> list[str]:
    """Return the directories that exist and contain at least one entry, in input order."""
    found: list[str] = []
    for directory in directories:
        quoted = shlex.quote(directory)
        result = await unit.exec(f"test -d {quoted} && ls -A {quoted}", timeout_seconds=timeout_seconds)
        if result.ok and result.stdout.strip():
            found.append(directory)
    return found


async def build_archive(
    unit: RemoteUnit,
    directories: list[str],
    *,
    dest: str,
    excludes: Iterable[str] = (),
    timeout_seconds: float = constants.TAR_TIMEOUT_SECONDS,
) -> None:
    """Create a gzip tar of ``directories`` at ``dest`` on the unit.

    Raises:
        ArchiveBuildError: tar exited non-zero (not retried)
    """
    excludes = list(excludes)
    parts = ["tar", "-czf", shlex.quote(dest)]
    if excludes:
        parts.append(_exclude_args(excludes))
    parts.extend(shlex.quote(d) for d in directories)

    result = await unit.exec(" ".join(parts), timeout_seconds=timeout_seconds)
    if not result.ok:
        raise ArchiveBuildError(
            f"tar failed with exit code {result.exit_code}",
            context={
                "dest": dest,
                "directories": directories,
                "exit_code": result.exit_code,
                "stderr": result.stderr[:500],
            },
        )
    logger.debug("Archive built", extra={"dest": dest, "directories": directories})


async def get_file_size(
    unit: RemoteUnit,
    path: str,
    *,
    timeout_seconds: float = constants.QUICK_COMMAND_TIMEOUT_SECONDS,
) -> int:
    """Byte size of ``path`` on the unit (stat -c %s).

    Raises:
        TransferError: stat failed or printed something that is not a size
    """
    result = await unit.exec(f"stat -c %s {shlex.quote(path)}", timeout_seconds=timeout_seconds)
    output = result.stdout.strip()
    if not result.ok or not output.isdigit():
        raise TransferError(
            f"Could not determine size of {path}",
            context={"path": path, "exit_code": result.exit_code, "stdout": output[:100], "stderr": result.stderr[:500]},
        )
    return int(output)


async def extract_archive(
    unit: RemoteUnit,
    archive: str,
    *,
    root: str = constants.RESTORE_ROOT,
    excludes: Iterable[str] = (),
    timeout_seconds: float = constants.TAR_TIMEOUT_SECONDS,
) -> None:
    """Extract ``archive`` into ``root`` on the unit.

    A failed extraction is not rolled back; files written before the
    failure stay in place.

    Raises:
        ExtractionError: tar exited non-zero
    """
    excludes = list(excludes)
    command = f"cd {shlex.quote(root)} && tar -xzf {shlex.quote(archive)}"
    if excludes:
        command += " " + _exclude_args(excludes)

    result = await unit.exec(command, timeout_seconds=timeout_seconds)
    if not result.ok:
        raise ExtractionError(
            f"tar extraction failed with exit code {result.exit_code}",
            context={"archive": archive, "root": root, "exit_code": result.exit_code, "stderr": result.stderr[:500]},
        )
    logger.debug("Archive extracted", extra={"archive": archive, "root": root})


async def remove_remote_files(
    unit: RemoteUnit,
    *paths: str,
    timeout_seconds: float = constants.QUICK_COMMAND_TIMEOUT_SECONDS,
) -> bool:
    """Best-effort ``rm -f`` on the unit. Logs failures, never raises.

    Returns:
        True if the command ran and exited 0
    """
    if not paths:
        return True
    command = "rm -f " + " ".join(shlex.quote(p) for p in paths)
    try:
        result = await unit.exec(command, timeout_seconds=timeout_seconds)
    except Exception as e:  # noqa: BLE001 - best-effort cleanup
        logger.warning("Remote file cleanup failed", extra={"paths": list(paths), "error": str(e)})
        return False
    if not result.ok:
        logger.warning(
            "Remote file cleanup exited non-zero",
            extra={"paths": list(paths), "exit_code": result.exit_code, "stderr": result.stderr[:200]},
        )
        return False
    return True
