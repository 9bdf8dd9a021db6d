"""Browsing historical snapshots without restoring them.

A snapshot is downloaded once into a deterministic cache file on the
unit and then inspected with ``tar -t`` / ``tar -xO``.  Cache files are
named from a hash of the key, so keys never reach the filesystem as
paths and a repeat preview of the same key skips the download.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import shlex
import uuid

from sandbox_persist import constants
from sandbox_persist._logging import get_logger
from sandbox_persist.archive import remove_remote_files
from sandbox_persist.config import SnapshotConfig
from sandbox_persist.download import download_via_presigned_url
from sandbox_persist.exceptions import (
    InputValidationError,
    RemoteUnitError,
    SnapshotAccessError,
    SnapshotNotFoundError,
    TransferError,
)
from sandbox_persist.models import EntryType, SnapshotEntry, SnapshotFileContent, SnapshotScope
from sandbox_persist.remote import RemoteUnit
from sandbox_persist.store import ObjectStore

logger = get_logger(__name__)

PREVIEW_FILE_PATTERN = "preview-*.tar.gz"


def validate_snapshot_access(snapshot_key: str, scope: SnapshotScope) -> None:
    """Refuse keys outside ``scope``.

    Raises:
        SnapshotAccessError: Key does not live under the scope's prefix
            (or the scope is incomplete)
    """
    if not scope.owns(snapshot_key):
        raise SnapshotAccessError(
            "Access denied to this snapshot",
            context={"snapshot_key": snapshot_key, "chat_id": scope.chat_id},
        )


def is_binary_path(path: str) -> bool:
    return path.lower().endswith(constants.BINARY_EXTENSIONS)


def _normalize_dir(path: str) -> str:
    normalized = path.lstrip("/")
    if normalized and not normalized.endswith("/"):
        normalized += "/"
    return normalized


def parse_tar_listing(output: str, requested_path: str = "/") -> list[SnapshotEntry]:
    """Immediate children of ``requested_path`` in a ``tar -tzf`` listing.

    tar prints member paths without the leading slash; a child is a
    directory if the listing shows anything beneath it or prints it with a
    trailing slash.

    Returns:
        Entries sorted directories first, then by name
    """
    base = _normalize_dir(requested_path)
    entries: dict[str, SnapshotEntry] = {}

    for line in output.splitlines():
        tar_path = line.strip()
        if not tar_path or not tar_path.startswith(base):
            continue
        parts = [p for p in tar_path[len(base) :].split("/") if p]
        if not parts:
            continue

        name = parts[0]
        is_dir = len(parts) > 1 or tar_path.endswith("/")
        existing = entries.get(name)
        if existing is None:
            entries[name] = SnapshotEntry(
                name=name,
                type=EntryType.DIRECTORY if is_dir else EntryType.FILE,
                path="/" + base + name,
            )
        elif is_dir and existing.type is EntryType.FILE:
            entries[name] = existing.model_copy(update={"type": EntryType.DIRECTORY})

    return sorted(entries.values(), key=lambda e: (e.type is not EntryType.DIRECTORY, e.name))


class PreviewCache:
    """Unit-side cache of snapshot archives opened for browsing.

    Example:
        ```python
        cache = PreviewCache(store)
        entries = await cache.list_entries(unit, key, "/workspace")
        readme = await cache.read_file(unit, key, "/workspace/README.md")
        ```
    """

    def __init__(
        self,
        store: ObjectStore,
        config: SnapshotConfig | None = None,
        *,
        cache_dir: str = constants.PREVIEW_CACHE_DIR,
        max_age_minutes: int = constants.PREVIEW_CACHE_MAX_AGE_MINUTES,
        list_timeout_seconds: float = constants.PREVIEW_LIST_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.config = config or SnapshotConfig()
        self.cache_dir = cache_dir.rstrip("/") or "/"
        self.max_age_minutes = max_age_minutes
        self.list_timeout_seconds = list_timeout_seconds

    def cache_path(self, snapshot_key: str) -> str:
        """Deterministic cache file for ``snapshot_key``."""
        digest = hashlib.sha256(snapshot_key.encode()).hexdigest()[:32]
        return f"{self.cache_dir.rstrip('/')}/preview-{digest}.tar.gz"

    async def _prune(self, unit: RemoteUnit) -> None:
        command = (
            f"find {shlex.quote(self.cache_dir)} -name {shlex.quote(PREVIEW_FILE_PATTERN)} "
            f"-mmin +{self.max_age_minutes} -delete 2>/dev/null || true"
        )
        try:
            await unit.exec(command, timeout_seconds=self.config.quick_timeout_seconds * 2)
        except Exception as e:  # noqa: BLE001 - best-effort cleanup
            logger.warning("Preview cache prune failed", extra={"cache_dir": self.cache_dir, "error": str(e)})

    async def cache_snapshot(self, unit: RemoteUnit, snapshot_key: str) -> str:
        """Ensure ``snapshot_key`` is cached on the unit and return its path.

        A cache hit does no download.  On a miss, previews older than
        ``max_age_minutes`` are pruned before the new one is fetched.
        """
        cache_file = self.cache_path(snapshot_key)
        check = await unit.exec(
            f'test -f {shlex.quote(cache_file)} && echo "EXISTS"',
            timeout_seconds=self.config.quick_timeout_seconds,
        )
        if "EXISTS" in check.stdout:
            logger.debug("Preview cache hit", extra={"snapshot_key": snapshot_key, "cache_file": cache_file})
            return cache_file

        await self._prune(unit)
        await unit.exec(f"mkdir -p {shlex.quote(self.cache_dir)}", timeout_seconds=self.config.quick_timeout_seconds)
        await download_via_presigned_url(
            unit,
            self.store,
            snapshot_key,
            cache_file,
            expires_in=self.config.presigned_url_expiry_seconds,
            curl_timeout_seconds=self.config.curl_timeout_seconds,
            exec_timeout_seconds=self.config.curl_exec_timeout_seconds,
            url_file_dir=self.config.url_file_dir,
        )
        logger.info("Snapshot cached for preview", extra={"snapshot_key": snapshot_key, "cache_file": cache_file})
        return cache_file

    async def _list_members(self, unit: RemoteUnit, cache_file: str) -> list[str]:
        result = await unit.exec(f"tar -tzf {shlex.quote(cache_file)}", timeout_seconds=self.list_timeout_seconds)
        if not result.ok:
            raise TransferError(
                "Failed to list snapshot contents",
                context={"cache_file": cache_file, "exit_code": result.exit_code, "stderr": result.stderr[:500]},
            )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def list_entries(self, unit: RemoteUnit, snapshot_key: str, path: str = "/") -> list[SnapshotEntry]:
        """Immediate children of ``path`` inside the snapshot."""
        cache_file = await self.cache_snapshot(unit, snapshot_key)
        members = await self._list_members(unit, cache_file)
        return parse_tar_listing("\n".join(members), path)

    async def read_file(self, unit: RemoteUnit, snapshot_key: str, path: str) -> SnapshotFileContent:
        """Read one file out of the snapshot.

        Text files come back as utf-8, files with a binary extension as base64.

        Raises:
            SnapshotNotFoundError: No such member
            InputValidationError: ``path`` is a directory
        """
        member = path.lstrip("/")
        if not member or member.endswith("/"):
            raise InputValidationError("Path is a directory, not a file", context={"path": path})

        cache_file = await self.cache_snapshot(unit, snapshot_key)
        members = await self._list_members(unit, cache_file)
        if member not in members:
            if f"{member}/" in members or any(m.startswith(f"{member}/") for m in members):
                raise InputValidationError("Path is a directory, not a file", context={"path": path})
            raise SnapshotNotFoundError(
                "File not found in snapshot", context={"path": path, "snapshot_key": snapshot_key}
            )

        extracted = f"{self.cache_dir.rstrip('/')}/extract-{uuid.uuid4().hex}"
        try:
            result = await unit.exec(
                f"tar -xzOf {shlex.quote(cache_file)} {shlex.quote(member)} > {shlex.quote(extracted)}",
                timeout_seconds=self.list_timeout_seconds,
            )
            if not result.ok:
                raise TransferError(
                    "Failed to extract file from snapshot",
                    context={"path": path, "exit_code": result.exit_code, "stderr": result.stderr[:500]},
                )
            try:
                encoded = await unit.read_file(extracted, encoding="base64")
            except RemoteUnitError as e:
                raise TransferError("Failed to read extracted file", context={"path": path}) from e
        finally:
            await remove_remote_files(unit, extracted)

        encoded = "".join(encoded.split())
        if is_binary_path(path):
            return SnapshotFileContent(path=path, content=encoded, encoding="base64")
        try:
            raw = base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            raise TransferError("Extracted file is not valid base64", context={"path": path}) from e
        return SnapshotFileContent(path=path, content=raw.decode("utf-8", errors="replace"), encoding="utf-8")
