"""Exception hierarchy for sandbox-persist.

All exceptions inherit from SnapshotPersistError.

Hierarchy:
    SnapshotPersistError (base)
    ├── TransientError (retryable marker base)
    │   ├── RemoteUnitError          ← exec/read/write transport failure
    │   └── SandboxUnavailableError  ← unit still asleep after the wake gate
    ├── PermanentError (non-retryable marker base)
    │   ├── ArchiveBuildError        ← tar create exited non-zero
    │   └── StoreConfigError         ← bucket / credentials not configured
    ├── TransferError                ← bytes did not make it across
    │   ├── ChunkSplitError
    │   ├── ChunkReadError
    │   ├── PartUploadError
    │   ├── BufferedUploadError
    │   └── PresignedDownloadError
    ├── ExtractionError              ← tar extract exited non-zero
    ├── SnapshotStoreError           ← object store call failed
    ├── SnapshotNotFoundError
    └── InputValidationError (caller-bug marker base)
        ├── InvalidScopeError
        └── SnapshotAccessError

Low-level operations raise these.  SnapshotManager converts them into
UploadResult / RestoreResult objects for callers that only need a
success flag plus a reason.
"""

from __future__ import annotations

from typing import Any


class SnapshotPersistError(Exception):
    """Base exception for all sandbox-persist errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Transient vs Permanent Error Base Classes
# =============================================================================


class TransientError(SnapshotPersistError):
    """Base for errors that may succeed on retry (sleeping unit, flaky transport)."""


class PermanentError(SnapshotPersistError):
    """Base for errors that won't succeed on retry without a change."""


class RemoteUnitError(TransientError):
    """The remote unit did not answer an exec/read/write call.

    Raised by RemoteUnit implementations for transport-level failures,
    as opposed to a command that ran and exited non-zero.
    """


class SandboxUnavailableError(TransientError):
    """The remote unit stayed unreachable through every wake attempt.

    Distinct from generic failures: the unit is most likely asleep or
    wedged.  Callers should restart the unit and retry the operation
    rather than retrying the call in a loop.

    Attributes:
        attempts: Number of wake+probe attempts made
    """

    def __init__(self, message: str, attempts: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx["attempts"] = attempts
        super().__init__(message, ctx)
        self.attempts = attempts


class ArchiveBuildError(PermanentError):
    """tar failed to build the snapshot archive on the remote unit.

    Not retried automatically: a second run over the same tree normally
    fails the same way.
    """


class StoreConfigError(PermanentError):
    """Object store is not configured (missing bucket or signing credentials)."""


# =============================================================================
# Transfer Errors
# =============================================================================


class TransferError(SnapshotPersistError):
    """Moving archive bytes between the unit and the store failed.

    Context carries enough detail (part number, expected size, paths)
    to diagnose which leg of the transfer broke.
    """


class ChunkSplitError(TransferError):
    """Splitting the archive into chunks failed or produced no chunks."""


class ChunkReadError(TransferError):
    """A chunk could not be read back through the RPC channel (or was empty)."""


class PartUploadError(TransferError):
    """A multipart part upload (or the completing call) failed.

    Attributes:
        part_number: 1-based part that failed, None for the complete() call
    """

    def __init__(self, message: str, part_number: int | None, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx["part_number"] = part_number
        super().__init__(message, ctx)
        self.part_number = part_number


class BufferedUploadError(TransferError):
    """Single-shot read+put of a small archive failed."""


class PresignedDownloadError(TransferError):
    """The unit could not download an object through a presigned URL."""


class ExtractionError(SnapshotPersistError):
    """tar failed to extract a snapshot archive.

    The filesystem is left in whatever partial state tar produced; there
    is no rollback.
    """


class SnapshotStoreError(SnapshotPersistError):
    """An object store call (get/put/list/multipart/presign) failed."""


class SnapshotNotFoundError(SnapshotPersistError):
    """Requested snapshot (or path inside a snapshot) does not exist."""


# =============================================================================
# Caller Errors
# =============================================================================


class InputValidationError(SnapshotPersistError):
    """Base for invalid caller input. Nothing was touched; fix input and retry."""


class InvalidScopeError(InputValidationError):
    """Snapshot scope is incomplete (sender_id and is_group are both required)."""


class SnapshotAccessError(InputValidationError):
    """Snapshot key does not belong to the caller's scope."""
