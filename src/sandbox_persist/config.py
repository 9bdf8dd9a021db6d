"""Snapshot engine configuration for sandbox-persist.

SnapshotConfig holds every tunable of the snapshot/restore engine: which
directories are captured, what is excluded, where temp files live on the
unit, transfer sizing and timeouts.

Example:
    ```python
    from sandbox_persist import SnapshotConfig, SnapshotManager

    # Default configuration
    manager = SnapshotManager(store)

    # Larger parts, lower streaming threshold
    config = SnapshotConfig(
        chunk_size=8 * 1024 * 1024,
        streaming_threshold=10 * 1024 * 1024,
    )
    manager = SnapshotManager(store, config)
    ```
"""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sandbox_persist import constants


class SnapshotConfig(BaseModel):
    """Configuration for SnapshotManager.

    Defaults match the production unit layout and S3 part limits.

    Attributes:
        directories: Candidate directories to capture; empty ones are skipped.
        create_excludes: tar --exclude patterns applied when archiving.
        restore_excludes: tar --exclude patterns applied when extracting.
            Relative, since tar strips the leading slash from members.
        archive_path: Archive temp path on the unit (create and restore).
        chunk_prefix: Prefix for split chunk files on the unit.
        chunk_size: Multipart part size. At least 5MB (S3 minimum for
            non-final parts) and small enough that one base64 read stays
            under the RPC payload ceiling.
        streaming_threshold: Archives up to this many bytes use the
            buffered path; larger ones stream as multipart.
        presigned_url_expiry_seconds: Lifetime of presigned download URLs.
        restore_root: Directory archives are extracted into.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    # What to capture
    directories: tuple[str, ...] = Field(
        default=constants.SNAPSHOT_DIRS,
        min_length=1,
        description="Candidate directories to snapshot",
    )
    create_excludes: tuple[str, ...] = Field(
        default=constants.SNAPSHOT_CREATE_EXCLUDES,
        description="Exclude patterns when creating archives",
    )
    restore_excludes: tuple[str, ...] = Field(
        default=constants.SNAPSHOT_RESTORE_EXCLUDES,
        description="Exclude patterns when extracting archives",
    )

    # Paths on the unit
    archive_path: str = Field(default=constants.SNAPSHOT_TMP_PATH)
    chunk_prefix: str = Field(default=constants.CHUNK_PREFIX)
    url_file_dir: str = Field(default=constants.URL_FILE_DIR)
    restore_root: str = Field(default=constants.RESTORE_ROOT)

    # Transfer sizing
    chunk_size: int = Field(
        default=constants.MULTIPART_CHUNK_SIZE,
        ge=constants.MIN_MULTIPART_CHUNK_SIZE,
        description="Multipart part size in bytes",
    )
    streaming_threshold: int = Field(
        default=constants.STREAMING_THRESHOLD,
        ge=0,
        description="Largest archive (bytes) sent through the buffered path",
    )
    presigned_url_expiry_seconds: int = Field(
        default=constants.PRESIGNED_URL_EXPIRY_SECONDS,
        ge=1,
        le=7 * 24 * 3600,
    )

    # Timeouts
    quick_timeout_seconds: float = Field(default=constants.QUICK_COMMAND_TIMEOUT_SECONDS, gt=0)
    tar_timeout_seconds: float = Field(default=constants.TAR_TIMEOUT_SECONDS, gt=0)
    split_timeout_seconds: float = Field(default=constants.SPLIT_TIMEOUT_SECONDS, gt=0)
    curl_timeout_seconds: float = Field(default=constants.CURL_TIMEOUT_SECONDS, gt=0)
    curl_exec_buffer_seconds: float = Field(default=constants.CURL_EXEC_BUFFER_SECONDS, ge=0)

    # Health / wake gate
    health_max_attempts: int = Field(default=constants.HEALTH_CHECK_MAX_ATTEMPTS, ge=1, le=10)
    health_wake_delay_seconds: float = Field(default=constants.HEALTH_CHECK_WAKE_DELAY_SECONDS, ge=0)
    health_backoff_base_seconds: float = Field(default=constants.HEALTH_CHECK_BACKOFF_BASE_SECONDS, ge=0)
    health_backoff_max_seconds: float = Field(default=constants.HEALTH_CHECK_BACKOFF_MAX_SECONDS, ge=0)
    health_probe_timeout_seconds: float = Field(default=constants.HEALTH_CHECK_PROBE_TIMEOUT_SECONDS, gt=0)

    @model_validator(mode="after")
    def _check_rpc_ceiling(self) -> SnapshotConfig:
        encoded = 4 * math.ceil(self.chunk_size / 3)
        if encoded >= constants.RPC_PAYLOAD_CEILING:
            raise ValueError(
                f"chunk_size={self.chunk_size} encodes to {encoded} base64 bytes, "
                f"over the {constants.RPC_PAYLOAD_CEILING}-byte RPC payload ceiling"
            )
        if self.streaming_threshold > constants.RPC_PAYLOAD_CEILING:
            raise ValueError(
                f"streaming_threshold={self.streaming_threshold} exceeds the "
                f"{constants.RPC_PAYLOAD_CEILING}-byte RPC payload ceiling"
            )
        return self

    @property
    def curl_exec_timeout_seconds(self) -> float:
        """Exec budget for a presigned download (curl limit plus retry slack)."""
        return self.curl_timeout_seconds + self.curl_exec_buffer_seconds
