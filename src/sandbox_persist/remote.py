"""Interface to the remote compute unit.

The engine never touches the unit's filesystem directly: every step is a
shell command run through ``exec`` or a file transfer through the unit's
RPC channel.  Implementations raise RemoteUnitError when the call itself
fails (no answer, transport broken); a command that runs and exits
non-zero is reported through ExecResult.exit_code instead.
"""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

from sandbox_persist.models import ExecResult, ProcessInfo

FileEncoding = Literal["utf-8", "base64"]


@runtime_checkable
class RemoteUnit(Protocol):
    """Minimal surface of a remote unit used by the snapshot engine."""

    async def exec(self, command: str, *, timeout_seconds: float) -> ExecResult:
        """Run ``command`` through a POSIX shell, bounded by ``timeout_seconds``.

        Raises:
            RemoteUnitError: Transport failure
            TimeoutError: Command exceeded its budget
        """
        ...

    async def write_file(self, path: str, content: str, *, encoding: FileEncoding = "utf-8") -> None: ...

    async def read_file(self, path: str, *, encoding: FileEncoding = "utf-8") -> str:
        """Read ``path``; with encoding="base64" the returned text is base64 of the raw bytes."""
        ...

    async def list_processes(self) -> list[ProcessInfo]: ...


@runtime_checkable
class DestroyableUnit(RemoteUnit, Protocol):
    """Remote unit that can be torn down."""

    async def destroy(self) -> None: ...
