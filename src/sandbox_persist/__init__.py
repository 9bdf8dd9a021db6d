"""sandbox-persist: Snapshot and restore the filesystem of ephemeral sandboxes.

Backs up the mutable directories of a remote, possibly-sleeping compute
unit to an S3-compatible object store and restores them onto a fresh unit.
Archives are built unit-side with tar; large archives stream to the store
as multipart uploads, restores are pulled by the unit itself through a
presigned URL.

Quick Start:
    ```python
    from sandbox_persist import S3ObjectStore, Settings, SnapshotManager, SnapshotReason, SnapshotScope

    manager = SnapshotManager(S3ObjectStore(Settings(s3_bucket="chat-snapshots")))
    scope = SnapshotScope(chat_id="c1", sender_id="u1", is_group=False)

    result = await manager.create_snapshot(unit, scope, SnapshotReason.MANUAL)
    if await manager.restore_snapshot(fresh_unit, scope):
        print("restored", result.snapshot_key)
    ```

Any object implementing RemoteUnit (exec / read_file / write_file /
list_processes) can be snapshotted; LocalUnit runs against this host.
"""

from sandbox_persist.config import SnapshotConfig
from sandbox_persist.exceptions import (
    ArchiveBuildError,
    BufferedUploadError,
    ChunkReadError,
    ChunkSplitError,
    ExtractionError,
    InputValidationError,
    InvalidScopeError,
    PartUploadError,
    PermanentError,
    PresignedDownloadError,
    RemoteUnitError,
    SandboxUnavailableError,
    SnapshotAccessError,
    SnapshotNotFoundError,
    SnapshotPersistError,
    SnapshotStoreError,
    StoreConfigError,
    TransferError,
    TransientError,
)
from sandbox_persist.lifecycle import UnitLifecycle
from sandbox_persist.local_unit import LocalUnit
from sandbox_persist.manager import SnapshotManager
from sandbox_persist.models import (
    Buffered,
    RestoreResult,
    SnapshotEntry,
    SnapshotFileContent,
    SnapshotMetadata,
    SnapshotObject,
    SnapshotReason,
    SnapshotScope,
    Streaming,
    UploadResult,
    select_strategy,
)
from sandbox_persist.preview import PreviewCache
from sandbox_persist.remote import RemoteUnit
from sandbox_persist.settings import Settings
from sandbox_persist.store import ObjectStore, S3ObjectStore

__all__ = [
    "ArchiveBuildError",
    "Buffered",
    "BufferedUploadError",
    "ChunkReadError",
    "ChunkSplitError",
    "ExtractionError",
    "InputValidationError",
    "InvalidScopeError",
    "LocalUnit",
    "ObjectStore",
    "PartUploadError",
    "PermanentError",
    "PresignedDownloadError",
    "PreviewCache",
    "RemoteUnit",
    "RemoteUnitError",
    "RestoreResult",
    "S3ObjectStore",
    "SandboxUnavailableError",
    "Settings",
    "SnapshotAccessError",
    "SnapshotConfig",
    "SnapshotEntry",
    "SnapshotFileContent",
    "SnapshotManager",
    "SnapshotMetadata",
    "SnapshotNotFoundError",
    "SnapshotObject",
    "SnapshotPersistError",
    "SnapshotReason",
    "SnapshotScope",
    "SnapshotStoreError",
    "StoreConfigError",
    "Streaming",
    "TransferError",
    "TransientError",
    "UnitLifecycle",
    "UploadResult",
    "select_strategy",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sandbox-persist")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
