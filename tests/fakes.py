"""De-mocked stand-ins for the remote unit and the object store.

FakeRemoteUnit keeps a virtual filesystem and interprets the shell
commands sandbox_persist emits (tar, split, stat, rm, curl, ...) against
it.  Archives are real gzip tars built with tarfile, so create -> restore
round trips compare real bytes.

InMemoryObjectStore mirrors S3 semantics the engine relies on: multipart
objects only appear on complete(), non-final parts must be >= 5MB, and
presigned URLs expire.
"""

from __future__ import annotations

import base64
import fnmatch
import io
import posixpath
import re
import secrets
import shlex
import tarfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

from sandbox_persist.exceptions import RemoteUnitError
from sandbox_persist.models import ExecResult, ProcessInfo, SnapshotObject, UploadedPart

MIN_PART_SIZE = 5 * 1024 * 1024

_OPERATOR_RE = re.compile(r"\s+(&&|\|\||\|)\s+")
_CONFIG_URL_RE = re.compile(r'^url\s*=\s*"((?:[^"\\]|\\.)*)"', re.MULTILINE)


def _config_url(config: str) -> str:
    """The ``url = "..."`` entry of a curl config file."""
    match = _CONFIG_URL_RE.search(config)
    if match is None:
        return ""
    return re.sub(r"\\(.)", r"\1", match.group(1))


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Manually advanced UTC clock shared by the unit and the store."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """asyncio.sleep replacement that records delays and advances the clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


# ============================================================================
# Object store
# ============================================================================


@dataclass
class StoredObject:
    data: bytes
    metadata: dict[str, str]
    uploaded: datetime


@dataclass
class PresignedGrant:
    key: str
    expires_at: datetime


class FakeMultipartUpload:
    def __init__(self, store: InMemoryObjectStore, key: str, metadata: dict[str, str]):
        self.store = store
        self.key = key
        self.metadata = metadata
        self.upload_id = secrets.token_hex(8)
        self.parts: dict[int, bytes] = {}
        self.part_order: list[int] = []
        self.completed_with: list[int] | None = None
        self.abort_count = 0

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart:
        if self.store.fail_part == part_number:
            raise ConnectionError(f"injected failure on part {part_number}")
        self.parts[part_number] = data
        self.part_order.append(part_number)
        return UploadedPart(part_number=part_number, etag=f'"etag-{part_number}"')

    async def complete(self, parts: list[UploadedPart]) -> None:
        numbers = [p.part_number for p in parts]
        missing = [n for n in numbers if n not in self.parts]
        if missing:
            raise ValueError(f"InvalidPart: {missing}")
        for n in numbers[:-1]:
            if len(self.parts[n]) < MIN_PART_SIZE:
                raise ValueError(f"EntityTooSmall: part {n}")
        self.completed_with = numbers
        data = b"".join(self.parts[n] for n in numbers)
        self.store.objects[self.key] = StoredObject(data, dict(self.metadata), self.store.clock())

    async def abort(self) -> None:
        self.abort_count += 1
        self.store.abort_count += 1
        if self.store.fail_abort:
            raise ConnectionError("injected abort failure")
        self.parts.clear()


class InMemoryObjectStore:
    """ObjectStore kept in a dict, with S3-like multipart and presign rules."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock or FakeClock()
        self.objects: dict[str, StoredObject] = {}
        self.uploads: list[FakeMultipartUpload] = []
        self.grants: dict[str, PresignedGrant] = {}
        self.presign_count = 0
        self.put_count = 0
        self.abort_count = 0
        self.fail_part: int | None = None
        self.fail_abort = False

    def add_object(self, key: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        self.objects[key] = StoredObject(data, metadata or {}, self.clock())

    async def get(self, key: str) -> bytes | None:
        obj = self.objects.get(key)
        return obj.data if obj else None

    async def put(self, key: str, data: bytes, metadata: dict[str, str]) -> None:
        self.put_count += 1
        self.objects[key] = StoredObject(data, dict(metadata), self.clock())

    async def list(self, prefix: str) -> list[SnapshotObject]:
        return [
            SnapshotObject(key=k, size=len(o.data), uploaded=o.uploaded)
            for k, o in sorted(self.objects.items())
            if k.startswith(prefix)
        ]

    async def create_multipart_upload(self, key: str, metadata: dict[str, str]) -> FakeMultipartUpload:
        upload = FakeMultipartUpload(self, key, metadata)
        self.uploads.append(upload)
        return upload

    async def presign_get(self, key: str, expires_in: int) -> str:
        self.presign_count += 1
        signature = secrets.token_hex(16)
        self.grants[signature] = PresignedGrant(key, self.clock() + timedelta(seconds=expires_in))
        return f"https://objects.test/{key}?X-Amz-Expires={expires_in}&X-Amz-Signature={signature}"

    def resolve_url(self, url: str) -> bytes | None:
        """What an HTTP GET of ``url`` would return now (None = 403/404)."""
        query = parse_qs(urlparse(url).query)
        signature = query.get("X-Amz-Signature", [""])[0]
        grant = self.grants.get(signature)
        if grant is None or self.clock() > grant.expires_at:
            return None
        obj = self.objects.get(grant.key)
        return obj.data if obj else None


# ============================================================================
# Remote unit
# ============================================================================


@dataclass
class _Output:
    exit_code: int = 0
    stdout: bytes = b""
    stderr: str = ""


@dataclass
class _Failure:
    prefix: str
    result: ExecResult | None = None
    error: BaseException | None = None


@dataclass
class FakeRemoteUnit:
    """Remote unit with an in-memory filesystem and a tiny shell."""

    store: InMemoryObjectStore | None = None
    clock: FakeClock = field(default_factory=FakeClock)
    files: dict[str, bytes] = field(default_factory=dict)
    dirs: set[str] = field(default_factory=lambda: {"/", "/tmp"})
    mtimes: dict[str, float] = field(default_factory=dict)
    commands: list[str] = field(default_factory=list)
    probe_failures: int = 0
    probe_attempts: int = 0
    process_list_calls: int = 0
    downloads: int = 0
    destroyed: bool = False
    on_download: Callable[[], None] | None = None
    read_errors: dict[str, BaseException] = field(default_factory=dict)
    _failures: list[_Failure] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add_dir(self, path: str) -> None:
        path = posixpath.normpath(path)
        while path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)

    def add_file(self, path: str, data: bytes | str) -> None:
        path = posixpath.normpath(path)
        self.add_dir(posixpath.dirname(path))
        self.files[path] = data.encode() if isinstance(data, str) else data
        self.mtimes[path] = self.clock.timestamp()

    def read(self, path: str) -> bytes:
        return self.files[path]

    def exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    def fail_command(self, prefix: str, *, exit_code: int = 1, stderr: str = "injected failure") -> None:
        """Make commands starting with ``prefix`` exit non-zero."""
        self._failures.append(_Failure(prefix, result=ExecResult(exit_code=exit_code, stderr=stderr)))

    def raise_on_command(self, prefix: str, error: BaseException) -> None:
        """Make commands starting with ``prefix`` raise ``error``."""
        self._failures.append(_Failure(prefix, error=error))

    def ran(self, prefix: str) -> list[str]:
        return [c for c in self.commands if c.startswith(prefix)]

    # ------------------------------------------------------------------
    # RemoteUnit protocol
    # ------------------------------------------------------------------

    async def exec(self, command: str, *, timeout_seconds: float) -> ExecResult:
        assert timeout_seconds > 0
        self.commands.append(command)
        for failure in self._failures:
            if command.startswith(failure.prefix):
                if failure.error is not None:
                    raise failure.error
                assert failure.result is not None
                return failure.result

        out = self._run_list(command.replace(" 2>/dev/null", ""))
        return ExecResult(
            exit_code=out.exit_code,
            stdout=out.stdout.decode("utf-8", errors="replace"),
            stderr=out.stderr,
        )

    async def read_file(self, path: str, *, encoding: str = "utf-8") -> str:
        if path in self.read_errors:
            raise self.read_errors[path]
        if path not in self.files:
            raise RemoteUnitError(f"No such file: {path}", context={"path": path})
        data = self.files[path]
        if encoding == "base64":
            return base64.b64encode(data).decode("ascii")
        return data.decode("utf-8")

    async def write_file(self, path: str, content: str, *, encoding: str = "utf-8") -> None:
        data = base64.b64decode(content) if encoding == "base64" else content.encode("utf-8")
        self.add_file(path, data)

    async def list_processes(self) -> list[ProcessInfo]:
        self.process_list_calls += 1
        return [ProcessInfo(pid=1, command="init")]

    async def destroy(self) -> None:
        self.destroyed = True

    # ------------------------------------------------------------------
    # Shell
    # ------------------------------------------------------------------

    def _run_list(self, command: str) -> _Output:
        pieces = _OPERATOR_RE.split(command)
        cwd = ["/"]
        # pipelines bind tighter than && / ||
        segments: list[tuple[str | None, list[str]]] = [(None, [pieces[0]])]
        for op, text in zip(pieces[1::2], pieces[2::2], strict=True):
            if op == "|":
                segments[-1][1].append(text)
            else:
                segments.append((op, [text]))

        result = _Output()
        for op, pipeline in segments:
            if op == "&&" and result.exit_code != 0:
                continue
            if op == "||" and result.exit_code == 0:
                continue
            result = self._run_pipeline(pipeline, cwd)
        return result

    def _run_pipeline(self, pipeline: list[str], cwd: list[str]) -> _Output:
        stdin = b""
        out = _Output()
        for text in pipeline:
            argv = shlex.split(text)
            redirect = None
            if ">" in argv:
                idx = argv.index(">")
                redirect, argv = self._abspath(argv[idx + 1], cwd), argv[:idx]
            out = self._run_simple(argv, stdin, cwd)
            if redirect is not None:
                self.add_file(redirect, out.stdout)
                out = _Output(out.exit_code, stderr=out.stderr)
            stdin = out.stdout
        return out

    def _glob(self, pattern: str) -> list[str]:
        if not any(ch in pattern for ch in "*?["):
            return [pattern]
        return sorted(p for p in self.files if fnmatch.fnmatchcase(p, pattern))

    def _children(self, directory: str) -> list[str]:
        base = directory.rstrip("/") + "/"
        names = {p[len(base) :].split("/")[0] for p in (*self.files, *self.dirs) if p.startswith(base) and p != base}
        return sorted(n for n in names if n)

    def _abspath(self, path: str, cwd: list[str]) -> str:
        return posixpath.normpath(posixpath.join(cwd[0], path))

    def _run_simple(self, argv: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        name, args = argv[0], argv[1:]
        handler = getattr(self, f"_cmd_{name}", None)
        if handler is None:
            return _Output(127, stderr=f"sh: {name}: not found")
        return handler(args, stdin, cwd)  # type: ignore[no-any-return]

    def _cmd_true(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        return _Output()

    def _cmd_echo(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        if args == ["alive"]:
            self.probe_attempts += 1
            if self.probe_failures > 0:
                self.probe_failures -= 1
                raise RemoteUnitError("unit is asleep")
        return _Output(stdout=(" ".join(args) + "\n").encode())

    def _cmd_cd(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        target = self._abspath(args[0], cwd)
        if target not in self.dirs:
            return _Output(2, stderr=f"cd: {target}: No such directory")
        cwd[0] = target
        return _Output()

    def _cmd_test(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        flag, path = args
        ok = path in self.dirs if flag == "-d" else path in self.files
        return _Output(0 if ok else 1)

    def _cmd_ls(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        paths = [p for a in args if not a.startswith("-") for p in self._glob(a)]
        if "-A" in args:
            directory = paths[0]
            if directory not in self.dirs:
                return _Output(2, stderr=f"ls: cannot access '{directory}'")
            return _Output(stdout="".join(f"{n}\n" for n in self._children(directory)).encode())
        found = [p for p in paths if p in self.files]
        if not found:
            return _Output(2, stderr="ls: no such file")
        return _Output(stdout="".join(f"{p}\n" for p in found).encode())

    def _cmd_stat(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        path = args[-1]
        if path not in self.files:
            return _Output(1, stderr=f"stat: cannot stat '{path}'")
        return _Output(stdout=f"{len(self.files[path])}\n".encode())

    def _cmd_rm(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        for arg in args:
            if arg.startswith("-"):
                continue
            for path in self._glob(arg):
                self.files.pop(path, None)
                self.mtimes.pop(path, None)
        return _Output()

    def _cmd_mkdir(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        for arg in args:
            if not arg.startswith("-"):
                self.add_dir(self._abspath(arg, cwd))
        return _Output()

    def _cmd_mv(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        src, dest = (self._abspath(a, cwd) for a in args)
        if src not in self.files:
            return _Output(1, stderr=f"mv: cannot stat '{src}'")
        self.add_file(dest, self.files.pop(src))
        self.mtimes.pop(src, None)
        return _Output()

    def _cmd_split(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        size = int(args[args.index("-b") + 1])
        width = int(args[args.index("-a") + 1])
        src, prefix = args[-2], args[-1]
        if src not in self.files:
            return _Output(1, stderr=f"split: cannot open '{src}'")
        data = self.files[src]
        for index, offset in enumerate(range(0, len(data), size)):
            self.add_file(f"{prefix}{index:0{width}d}", data[offset : offset + size])
        return _Output()

    def _cmd_find(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        directory = args[0].rstrip("/") + "/"
        pattern = args[args.index("-name") + 1]
        max_age_minutes = int(args[args.index("-mmin") + 1].lstrip("+"))
        now = self.clock.timestamp()
        for path in list(self.files):
            if not path.startswith(directory) or not fnmatch.fnmatchcase(posixpath.basename(path), pattern):
                continue
            if now - self.mtimes.get(path, now) > max_age_minutes * 60:
                del self.files[path]
        return _Output()

    def _cmd_curl(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        valued = {"--retry", "--retry-delay", "--max-time", "--config", "-o"}
        url, dest = "", ""
        i = 0
        while i < len(args):
            arg = args[i]
            if arg in valued:
                if arg == "-o":
                    dest = self._abspath(args[i + 1], cwd)
                elif arg == "--config":
                    url = _config_url(self.files.get(self._abspath(args[i + 1], cwd), b"").decode())
                i += 2
                continue
            if not arg.startswith("-"):
                url = arg
            i += 1

        self.downloads += 1
        if self.on_download is not None:
            self.on_download()

        data = self.store.resolve_url(url) if self.store is not None and url else None
        if data is None:
            # curl leaves a partial output file behind
            self.add_file(dest, b"")
            return _Output(22, stderr="curl: (22) The requested URL returned error: 403")
        self.add_file(dest, data)
        return _Output()

    # ------------------------------------------------------------------
    # tar
    # ------------------------------------------------------------------

    @staticmethod
    def _excluded(path: str, patterns: list[str]) -> bool:
        rel = path.lstrip("/")
        for pattern in patterns:
            pat = pattern.lstrip("/")
            if fnmatch.fnmatchcase(rel, pat) or rel.startswith(pat.rstrip("/") + "/"):
                return True
        return False

    def _open_archive(self, path: str) -> tarfile.TarFile | None:
        data = self.files.get(path)
        if not data:
            return None
        try:
            return tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")
        except (tarfile.TarError, OSError, EOFError):
            return None

    def _cmd_tar(self, args: list[str], stdin: bytes, cwd: list[str]) -> _Output:
        flags, archive = args[0].lstrip("-"), self._abspath(args[1], cwd)
        rest = args[2:]
        excludes = [a.split("=", 1)[1] for a in rest if a.startswith("--exclude=")]
        operands = [a for a in rest if not a.startswith("--exclude=")]

        if "c" in flags:
            return self._tar_create(archive, operands, excludes)

        tf = self._open_archive(archive)
        if tf is None:
            return _Output(2, stderr="gzip: stdin: not in gzip format")
        with tf:
            if "t" in flags:
                names = [m.name + "/" if m.isdir() else m.name for m in tf.getmembers()]
                return _Output(stdout="".join(f"{n}\n" for n in names).encode())
            if "O" in flags:
                try:
                    member = tf.getmember(operands[0])
                except KeyError:
                    return _Output(2, stderr=f"tar: {operands[0]}: Not found in archive")
                extracted = tf.extractfile(member)
                return _Output(stdout=extracted.read() if extracted else b"")
            for member in tf.getmembers():
                if self._excluded(member.name, excludes):
                    continue
                target = self._abspath(member.name, cwd)
                if member.isdir():
                    self.add_dir(target)
                elif member.isfile():
                    extracted = tf.extractfile(member)
                    self.add_file(target, extracted.read() if extracted else b"")
        return _Output()

    def _tar_create(self, archive: str, operands: list[str], excludes: list[str]) -> _Output:
        buffer = io.BytesIO()
        mtime = int(self.clock.timestamp())
        with tarfile.open(fileobj=buffer, mode="w:gz", compresslevel=1) as tf:
            for root in operands:
                if root not in self.dirs and root not in self.files:
                    return _Output(2, stderr=f"tar: {root}: Cannot stat")
                entries = sorted(
                    p for p in (*self.dirs, *self.files) if p == root or p.startswith(root.rstrip("/") + "/")
                )
                for path in entries:
                    if self._excluded(path, excludes):
                        continue
                    info = tarfile.TarInfo(path.lstrip("/"))
                    info.mtime = mtime
                    if path in self.dirs:
                        info.type = tarfile.DIRTYPE
                        info.mode = 0o755
                        tf.addfile(info)
                    else:
                        data = self.files[path]
                        info.size = len(data)
                        info.mode = 0o644
                        tf.addfile(info, io.BytesIO(data))
        self.add_file(archive, buffer.getvalue())
        return _Output()
