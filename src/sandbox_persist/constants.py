"""Constants for sandbox-persist configuration and limits."""

from typing import Final

# ============================================================================
# Snapshot Directories and Paths
# ============================================================================

SNAPSHOT_DIRS: Final[tuple[str, ...]] = ("/workspace", "/home/claude")
"""Top-level directories captured by a snapshot (only non-empty ones are archived)."""

SNAPSHOT_TMP_PATH: Final[str] = "/tmp/snapshot.tar.gz"
"""Archive temp path on the unit, shared by create and restore (single writer per unit)."""

CHUNK_PREFIX: Final[str] = "/tmp/snapshot_chunk_"
"""Prefix for chunk files produced by split (suffix is a 4-digit sequence number)."""

CHUNK_SUFFIX_LENGTH: Final[int] = 4
"""Width of split's numeric suffix (10000 chunks = ~50GB at 5MB)."""

URL_FILE_DIR: Final[str] = "/tmp"
"""Directory for disposable files holding presigned URLs."""

RESTORE_ROOT: Final[str] = "/"
"""Extraction root; archives hold paths relative to it."""

PREVIEW_CACHE_DIR: Final[str] = "/tmp"
"""Directory holding preview copies of historical snapshots."""

PREVIEW_CACHE_MAX_AGE_MINUTES: Final[int] = 30
"""Preview files older than this are pruned before a new preview download."""

# ============================================================================
# Exclusions
# ============================================================================
# Create-time and restore-time lists are maintained independently: the first
# keeps regenerable or separately-persisted data out of archives, the second
# keeps base-image-owned files from being overwritten by old snapshots.

SNAPSHOT_CREATE_EXCLUDES: Final[tuple[str, ...]] = (
    "/media",
    "/media/*",
    "/home/claude/.memvid",
    "/home/claude/shared/*.mv2",
)
"""Patterns excluded when creating archives (absolute, as passed to tar)."""

SNAPSHOT_RESTORE_EXCLUDES: Final[tuple[str, ...]] = (
    "home/claude/.claude/skills",
    "home/claude/.claude/skills/*",
    "home/claude/.claude/settings.json",
    "home/claude/.claude/scripts",
    "home/claude/.claude/scripts/*",
    "home/claude/CLAUDE.md",
    "workspace/CLAUDE.md",
)
"""Patterns skipped when extracting (relative: tar strips the leading slash)."""

# ============================================================================
# Transfer Sizing
# ============================================================================

MULTIPART_CHUNK_SIZE: Final[int] = 5 * 1024 * 1024
"""Chunk size for multipart upload (5MB = S3 minimum part size except the last)."""

MIN_MULTIPART_CHUNK_SIZE: Final[int] = 5 * 1024 * 1024
"""Smallest non-final part the store accepts."""

STREAMING_THRESHOLD: Final[int] = 25 * 1024 * 1024
"""Archives up to this size go through the buffered path; larger ones stream."""

RPC_PAYLOAD_CEILING: Final[int] = 32 * 1024 * 1024
"""Approximate ceiling for one base64 read/write through the unit's RPC channel.
Chunk sizes are validated against it (5MB binary is ~6.7MB of base64)."""

PRESIGNED_URL_EXPIRY_SECONDS: Final[int] = 300
"""Lifetime of presigned download URLs."""

# ============================================================================
# Timeouts (seconds)
# ============================================================================

QUICK_COMMAND_TIMEOUT_SECONDS: Final[float] = 5.0
"""Budget for test/stat/rm/mkdir style commands."""

TAR_TIMEOUT_SECONDS: Final[float] = 60.0
"""Budget for tar create/extract."""

SPLIT_TIMEOUT_SECONDS: Final[float] = 120.0
"""Budget for splitting a large archive into chunks."""

CURL_TIMEOUT_SECONDS: Final[float] = 120.0
"""curl --max-time for presigned downloads."""

CURL_EXEC_BUFFER_SECONDS: Final[float] = 30.0
"""Extra exec budget on top of curl's own limit (covers --retry delays)."""

PREVIEW_LIST_TIMEOUT_SECONDS: Final[float] = 30.0
"""Budget for listing or extracting single entries from a preview archive."""

# ============================================================================
# Health / Wake Gate
# ============================================================================

HEALTH_CHECK_MAX_ATTEMPTS: Final[int] = 3
"""Total wake+probe attempts before the unit is declared unavailable."""

HEALTH_CHECK_WAKE_DELAY_SECONDS: Final[float] = 0.5
"""Pause after the process listing that wakes the unit, before probing."""

HEALTH_CHECK_BACKOFF_BASE_SECONDS: Final[float] = 1.0
"""First backoff between attempts; doubles each retry (1s, 2s, 4s)."""

HEALTH_CHECK_BACKOFF_MAX_SECONDS: Final[float] = 4.0
"""Cap on the backoff between attempts."""

HEALTH_CHECK_PROBE_TIMEOUT_SECONDS: Final[float] = 10.0
"""Budget for the liveness probe command."""

LIVENESS_PROBE_COMMAND: Final[str] = 'echo "alive"'
"""Trivial command used to confirm exec works."""

# ============================================================================
# Preview
# ============================================================================

BINARY_EXTENSIONS: Final[tuple[str, ...]] = (
    ".tar",
    ".gz",
    ".zip",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".pdf",
    ".exe",
    ".bin",
    ".so",
    ".dylib",
    ".mv2",
    ".wasm",
    ".ico",
    ".webp",
)
"""Extensions returned base64-encoded when reading files out of a preview."""
