"""RemoteUnit implementation for the local host.

Lets the engine run from inside the unit itself (the CLI) and gives
integration tests a real shell, real tar and real curl.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import os
import signal

import aiofiles
import psutil

from sandbox_persist._logging import get_logger
from sandbox_persist.exceptions import RemoteUnitError
from sandbox_persist.models import ExecResult, ProcessInfo
from sandbox_persist.remote import FileEncoding

logger = get_logger(__name__)


class LocalUnit:
    """Runs commands through ``/bin/sh -c`` on this host."""

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell

    async def exec(self, command: str, *, timeout_seconds: float) -> ExecResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise RemoteUnitError(f"Failed to start shell: {e}", context={"shell": self.shell}) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
        except TimeoutError:
            await self._kill_group(proc)
            logger.warning("Command timed out", extra={"timeout_seconds": timeout_seconds, "pid": proc.pid})
            raise
        except BaseException:
            if proc.returncode is None:
                await self._kill_group(proc)
            raise

        return ExecResult(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    async def _kill_group(proc: asyncio.subprocess.Process) -> None:
        """SIGKILL the shell and every child in its session."""
        with contextlib.suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
        await proc.wait()

    async def write_file(self, path: str, content: str, *, encoding: FileEncoding = "utf-8") -> None:
        try:
            if encoding == "base64":
                async with aiofiles.open(path, "wb") as f:
                    await f.write(base64.b64decode(content))
            else:
                async with aiofiles.open(path, "w", encoding="utf-8") as f:
                    await f.write(content)
        except OSError as e:
            raise RemoteUnitError(f"Failed to write {path}: {e}", context={"path": path}) from e

    async def read_file(self, path: str, *, encoding: FileEncoding = "utf-8") -> str:
        try:
            if encoding == "base64":
                async with aiofiles.open(path, "rb") as f:
                    return base64.b64encode(await f.read()).decode("ascii")
            async with aiofiles.open(path, encoding="utf-8") as f:
                return await f.read()
        except OSError as e:
            raise RemoteUnitError(f"Failed to read {path}: {e}", context={"path": path}) from e

    async def list_processes(self) -> list[ProcessInfo]:
        def _snapshot() -> list[ProcessInfo]:
            processes: list[ProcessInfo] = []
            for proc in psutil.process_iter(["pid", "name"]):
                processes.append(ProcessInfo(pid=proc.info["pid"], command=proc.info.get("name") or ""))
            return processes

        return await asyncio.to_thread(_snapshot)
