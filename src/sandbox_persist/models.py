"""Data models for sandbox-persist."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from sandbox_persist.exceptions import InvalidScopeError

SNAPSHOT_KEY_ROOT = "snapshots"
SNAPSHOT_KEY_SUFFIX = ".tar.gz"


class SnapshotReason(str, Enum):
    """Why a snapshot was taken (stored in object metadata)."""

    MANUAL = "manual"
    PRE_RESTART = "pre-restart"
    PRE_RESET = "pre-reset"
    SCHEDULED = "scheduled"


def format_iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix.

    Example:
        >>> format_iso_timestamp(datetime(2026, 1, 2, 3, 4, 5, 678901, tzinfo=UTC))
        '2026-01-02T03:04:05.678Z'
    """
    moment = moment.astimezone(UTC)
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"


def format_key_timestamp(moment: datetime) -> str:
    """Key-safe UTC timestamp: ISO-8601 with ms precision, ':' and '.' replaced by '-'.

    Fixed width, so lexicographic order == chronological order.

    Example:
        >>> format_key_timestamp(datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=UTC))
        '2026-01-02T03-04-05-678Z'
    """
    return format_iso_timestamp(moment).replace(":", "-").replace(".", "-")


class SnapshotScope(BaseModel):
    """Ownership scope of a conversation's snapshots.

    Private chats live under ``snapshots/{sender_id}/{chat_id}/``; group
    chats share ``snapshots/groups/{chat_id}/``.  sender_id and is_group
    are both required before any key is derived, so a half-specified scope
    can never read or write another owner's branch.
    """

    model_config = ConfigDict(frozen=True)

    chat_id: str = Field(min_length=1)
    sender_id: str | None = None
    is_group: bool | None = None

    @classmethod
    def for_system(cls, chat_id: str, is_group: bool) -> SnapshotScope:
        """Scope for automated operations (private chats: the chat id is the owner)."""
        return cls(chat_id=chat_id, sender_id=chat_id, is_group=is_group)

    def _require_complete(self, what: str) -> None:
        if self.sender_id is None or self.is_group is None:
            raise InvalidScopeError(
                f"{what} requires sender_id and is_group for chat {self.chat_id} "
                f"(got sender_id={self.sender_id}, is_group={self.is_group})",
                context={"chat_id": self.chat_id, "sender_id": self.sender_id, "is_group": self.is_group},
            )

    @property
    def prefix(self) -> str:
        """Store prefix listing every snapshot in this scope (trailing slash included)."""
        self._require_complete("Snapshot prefix")
        if self.is_group:
            return f"{SNAPSHOT_KEY_ROOT}/groups/{self.chat_id}/"
        return f"{SNAPSHOT_KEY_ROOT}/{self.sender_id}/{self.chat_id}/"

    def snapshot_key(self, moment: datetime | None = None) -> str:
        """Key for a snapshot taken at ``moment`` (defaults to now, UTC)."""
        self._require_complete("Snapshot key")
        timestamp = format_key_timestamp(moment or datetime.now(UTC))
        return f"{self.prefix}{timestamp}{SNAPSHOT_KEY_SUFFIX}"

    def owns(self, snapshot_key: str) -> bool:
        """Whether ``snapshot_key`` lives under this scope."""
        try:
            return snapshot_key.startswith(self.prefix)
        except InvalidScopeError:
            return False


class SnapshotMetadata(BaseModel):
    """Custom metadata written alongside every snapshot object."""

    chat_id: str
    sender_id: str
    is_group: bool
    created_at: datetime
    reason: SnapshotReason
    size_bytes: int = Field(ge=0)
    directories: list[str]

    def to_custom_metadata(self) -> dict[str, str]:
        """Flatten to the string-only map object stores accept."""
        return {
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "is_group": str(self.is_group).lower(),
            "created_at": format_iso_timestamp(self.created_at),
            "reason": self.reason.value,
            "size_bytes": str(self.size_bytes),
            "directories": ",".join(self.directories),
        }


class SnapshotObject(BaseModel):
    """One stored snapshot as returned by a listing."""

    key: str
    size: int = Field(ge=0)
    uploaded: datetime | None = None


class ExecResult(BaseModel):
    """Outcome of one command run on the remote unit."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessInfo(BaseModel):
    """Process entry reported by the remote unit."""

    pid: int
    command: str = ""


class UploadedPart(BaseModel):
    """Receipt for one uploaded multipart part."""

    model_config = ConfigDict(frozen=True)

    part_number: int = Field(ge=1)
    etag: str


class TransferResult(BaseModel):
    """Outcome of moving one archive into the store.

    part_count is only set for multipart uploads; a buffered transfer is a
    single PUT.
    """

    size: int
    part_count: int | None = None
    streaming: bool = False


class UploadResult(BaseModel):
    """Outcome of SnapshotManager.create_snapshot().

    success=True with snapshot_key=None means there was nothing to back up.
    """

    success: bool
    snapshot_key: str | None = None
    size: int | None = None
    part_count: int | None = None
    used_streaming: bool = False
    error: str | None = None


class RestoreResult(BaseModel):
    """Outcome of SnapshotManager.restore_snapshot(). Truthy iff restored."""

    restored: bool
    snapshot_key: str | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.restored


class EntryType(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class SnapshotEntry(BaseModel):
    """Immediate child of a directory inside a snapshot archive."""

    name: str
    type: EntryType
    path: str


class SnapshotFileContent(BaseModel):
    """A single file read out of a snapshot archive."""

    path: str
    content: str
    encoding: str = Field(pattern="^(utf-8|base64)$")


# ============================================================================
# Transfer strategy
# ============================================================================


@dataclass(frozen=True, slots=True)
class Buffered:
    """Read the whole archive in one RPC and put it in one call."""


@dataclass(frozen=True, slots=True)
class Streaming:
    """Split into chunks on the unit and upload them as multipart parts."""

    chunk_size: int
    expected_parts: int


TransferStrategy: TypeAlias = Buffered | Streaming


def select_strategy(size: int, threshold: int, chunk_size: int) -> TransferStrategy:
    """Pick the transfer strategy for an archive of ``size`` bytes.

    The only place the threshold policy lives: ``size <= threshold`` is
    buffered, anything larger streams in ``ceil(size / chunk_size)`` parts.
    """
    if size <= threshold:
        return Buffered()
    return Streaming(chunk_size=chunk_size, expected_parts=math.ceil(size / chunk_size))
