"""Snapshot orchestration: create, restore, list and preview snapshots.

SnapshotManager ties the unit-side steps (archive, chunk, download,
extract) to the object store.  Its two top-level operations never raise
for ordinary failures; they return UploadResult / RestoreResult so that
callers outside this package get a success flag plus a reason:

- create_snapshot(): failure means no object was written (multipart
  sessions self-abort, buffered puts are all-or-nothing)
- restore_snapshot(): failure means "start with an empty filesystem"

The one exception is SandboxUnavailableError from the wake gate, which
propagates: the right reaction is to restart the unit, not to carry on.

At most one create or restore may run per unit at a time (both use the
same archive temp path).  Callers serialize; there is no internal lock.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from sandbox_persist._logging import get_logger
from sandbox_persist.archive import (
    build_archive,
    extract_archive,
    find_non_empty_dirs,
    get_file_size,
    remove_remote_files,
)
from sandbox_persist.config import SnapshotConfig
from sandbox_persist.download import download_via_presigned_url
from sandbox_persist.exceptions import SandboxUnavailableError, SnapshotNotFoundError
from sandbox_persist.health import SleepFn, ensure_reachable
from sandbox_persist.models import (
    RestoreResult,
    SnapshotEntry,
    SnapshotFileContent,
    SnapshotMetadata,
    SnapshotObject,
    SnapshotReason,
    SnapshotScope,
    TransferStrategy,
    UploadResult,
    select_strategy,
)
from sandbox_persist.preview import PreviewCache, validate_snapshot_access
from sandbox_persist.remote import RemoteUnit
from sandbox_persist.store import ObjectStore
from sandbox_persist.transfer import transfer_archive

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SnapshotManager:
    """Creates and restores snapshots of a remote unit's filesystem.

    Holds no per-unit state; one manager can serve many units.

    Args:
        store: Object store holding snapshots
        config: Engine configuration (defaults if None)
        clock: Source of "now" for snapshot keys and metadata
        sleep: Delay coroutine used by the wake gate

    Example:
        ```python
        manager = SnapshotManager(S3ObjectStore(Settings()))
        scope = SnapshotScope(chat_id="c1", sender_id="u1", is_group=False)

        result = await manager.create_snapshot(unit, scope, SnapshotReason.MANUAL)
        restored = await manager.restore_snapshot(unit, scope)
        ```
    """

    def __init__(
        self,
        store: ObjectStore,
        config: SnapshotConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.store = store
        self.config = config or SnapshotConfig()
        self.preview = PreviewCache(store, self.config)
        self._clock = clock
        self._sleep = sleep

    # ========================================================================
    # Wake gate
    # ========================================================================

    async def ensure_reachable(self, unit: RemoteUnit) -> None:
        """Wake ``unit`` and confirm it runs commands.

        Raises:
            SandboxUnavailableError: Unit stayed unreachable
        """
        await ensure_reachable(
            unit,
            max_attempts=self.config.health_max_attempts,
            wake_delay=self.config.health_wake_delay_seconds,
            backoff_base=self.config.health_backoff_base_seconds,
            backoff_max=self.config.health_backoff_max_seconds,
            probe_timeout=self.config.health_probe_timeout_seconds,
            sleep=self._sleep,
        )

    # ========================================================================
    # Create
    # ========================================================================

    async def create_snapshot(
        self,
        unit: RemoteUnit,
        scope: SnapshotScope,
        reason: SnapshotReason = SnapshotReason.MANUAL,
        directories: list[str] | None = None,
    ) -> UploadResult:
        """Archive the unit's non-empty snapshot directories and upload them.

        Returns UploadResult(success=True, snapshot_key=None) when every
        candidate directory is empty or missing.

        Args:
            unit: Unit to snapshot
            scope: Ownership scope (determines the key)
            reason: Why the snapshot is taken (stored as metadata)
            directories: Candidate directories (config.directories if None)
        """
        config = self.config
        snapshot_key: str | None = None
        size: int | None = None
        strategy: TransferStrategy | None = None

        try:
            created_at = self._clock()
            snapshot_key = scope.snapshot_key(created_at)

            dirs = await find_non_empty_dirs(
                unit,
                config.directories if directories is None else directories,
                timeout_seconds=config.quick_timeout_seconds,
            )
            if not dirs:
                logger.info("Nothing to snapshot", extra={"chat_id": scope.chat_id, "reason": reason.value})
                return UploadResult(success=True)

            try:
                await build_archive(
                    unit,
                    dirs,
                    dest=config.archive_path,
                    excludes=config.create_excludes,
                    timeout_seconds=config.tar_timeout_seconds,
                )
                size = await get_file_size(unit, config.archive_path, timeout_seconds=config.quick_timeout_seconds)
                strategy = select_strategy(size, config.streaming_threshold, config.chunk_size)

                metadata = SnapshotMetadata(
                    chat_id=scope.chat_id,
                    sender_id=scope.sender_id or "",
                    is_group=bool(scope.is_group),
                    created_at=created_at,
                    reason=reason,
                    size_bytes=size,
                    directories=dirs,
                )
                outcome = await transfer_archive(
                    unit,
                    self.store,
                    strategy,
                    config.archive_path,
                    snapshot_key,
                    metadata.to_custom_metadata(),
                    expected_size=size,
                    config=config,
                )
            finally:
                await remove_remote_files(unit, config.archive_path, timeout_seconds=config.quick_timeout_seconds)

        except Exception as e:
            logger.error(
                "Snapshot failed",
                extra={
                    "chat_id": scope.chat_id,
                    "sender_id": scope.sender_id,
                    "is_group": scope.is_group,
                    "reason": reason.value,
                    "snapshot_key": snapshot_key,
                    "size": size,
                    "strategy": type(strategy).__name__ if strategy else None,
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "error_context": getattr(e, "context", None),
                },
            )
            return UploadResult(success=False, snapshot_key=None, size=size, error=str(e))

        logger.info(
            "Snapshot created",
            extra={
                "snapshot_key": snapshot_key,
                "size": outcome.size,
                "part_count": outcome.part_count,
                "used_streaming": outcome.streaming,
                "directories": dirs,
                "reason": reason.value,
            },
        )
        return UploadResult(
            success=True,
            snapshot_key=snapshot_key,
            size=outcome.size,
            part_count=outcome.part_count,
            used_streaming=outcome.streaming,
        )

    # ========================================================================
    # Restore
    # ========================================================================

    async def restore_snapshot(
        self,
        unit: RemoteUnit,
        scope: SnapshotScope,
        snapshot_key: str | None = None,
    ) -> RestoreResult:
        """Restore a snapshot onto the unit.

        Without ``snapshot_key`` the newest snapshot in ``scope`` is used;
        an empty scope returns RestoreResult(restored=False) without error.
        A failed extraction is not rolled back.

        Raises:
            SandboxUnavailableError: Unit could not be woken
        """
        config = self.config
        key = snapshot_key
        try:
            if key is None:
                latest = await self.latest_snapshot(scope)
                if latest is None:
                    logger.info("No snapshots to restore", extra={"chat_id": scope.chat_id})
                    return RestoreResult(restored=False, reason="no snapshots")
                key = latest.key
            else:
                validate_snapshot_access(key, scope)

            await self.ensure_reachable(unit)

            try:
                await download_via_presigned_url(
                    unit,
                    self.store,
                    key,
                    config.archive_path,
                    expires_in=config.presigned_url_expiry_seconds,
                    curl_timeout_seconds=config.curl_timeout_seconds,
                    exec_timeout_seconds=config.curl_exec_timeout_seconds,
                    url_file_dir=config.url_file_dir,
                )
                await extract_archive(
                    unit,
                    config.archive_path,
                    root=config.restore_root,
                    excludes=config.restore_excludes,
                    timeout_seconds=config.tar_timeout_seconds,
                )
            finally:
                await remove_remote_files(unit, config.archive_path, timeout_seconds=config.quick_timeout_seconds)

        except SandboxUnavailableError:
            raise
        except Exception as e:
            logger.error(
                "Restore failed",
                extra={
                    "chat_id": scope.chat_id,
                    "snapshot_key": key,
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "error_context": getattr(e, "context", None),
                },
            )
            return RestoreResult(restored=False, snapshot_key=key, reason=str(e))

        logger.info("Snapshot restored", extra={"snapshot_key": key, "root": config.restore_root})
        return RestoreResult(restored=True, snapshot_key=key)

    # ========================================================================
    # Catalogue
    # ========================================================================

    async def list_snapshots(self, scope: SnapshotScope) -> list[SnapshotObject]:
        """Snapshots in ``scope``, newest first."""
        objects = await self.store.list(scope.prefix)
        return sorted(objects, key=lambda o: o.key, reverse=True)

    async def latest_snapshot(self, scope: SnapshotScope) -> SnapshotObject | None:
        objects = await self.store.list(scope.prefix)
        return max(objects, key=lambda o: o.key, default=None)

    async def fetch_snapshot(self, snapshot_key: str) -> bytes:
        """Raw archive bytes for ``snapshot_key``.

        Raises:
            SnapshotNotFoundError: No such object
        """
        data = await self.store.get(snapshot_key)
        if data is None:
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_key}", context={"snapshot_key": snapshot_key})
        return data

    # ========================================================================
    # Preview
    # ========================================================================

    async def preview_entries(
        self,
        unit: RemoteUnit,
        scope: SnapshotScope,
        snapshot_key: str,
        path: str = "/",
    ) -> list[SnapshotEntry]:
        """List ``path`` inside a historical snapshot without restoring it."""
        validate_snapshot_access(snapshot_key, scope)
        await self.ensure_reachable(unit)
        return await self.preview.list_entries(unit, snapshot_key, path)

    async def preview_file(
        self,
        unit: RemoteUnit,
        scope: SnapshotScope,
        snapshot_key: str,
        path: str,
    ) -> SnapshotFileContent:
        """Read one file from a historical snapshot without restoring it."""
        validate_snapshot_access(snapshot_key, scope)
        await self.ensure_reachable(unit)
        return await self.preview.read_file(unit, snapshot_key, path)
