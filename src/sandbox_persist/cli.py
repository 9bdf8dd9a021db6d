"""Command-line interface for sandbox-persist.

Runs on the unit itself: the local host is the unit (LocalUnit) and the
store comes from SANDBOX_PERSIST_* environment variables.

Usage:
    sbx-persist create --chat c1 --sender u1             # Snapshot /workspace and /home/claude
    sbx-persist restore --chat c1 --sender u1            # Restore the newest snapshot
    sbx-persist list --chat g1 --group --json            # List a group chat's snapshots
    sbx-persist preview KEY /workspace --chat c1 --sender u1
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn

import click

from sandbox_persist import (
    InputValidationError,
    LocalUnit,
    S3ObjectStore,
    SandboxUnavailableError,
    Settings,
    SnapshotManager,
    SnapshotNotFoundError,
    SnapshotPersistError,
    SnapshotReason,
    SnapshotScope,
    StoreConfigError,
    __version__,
)
from sandbox_persist._logging import configure_logging
from sandbox_persist.models import EntryType

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_CLI_ERROR = 2
EXIT_OPERATION_ERROR = 125


def format_error(title: str, message: str, suggestions: list[str] | None = None) -> str:
    """Format an error message following What → Why → Fix pattern."""
    lines = [
        click.style(f"Error: {title}", fg="red", bold=True),
        "",
        f"  {message}",
    ]

    if suggestions:
        lines.extend(["", "  Suggestions:"])
        lines.extend(f"    • {suggestion}" for suggestion in suggestions)

    return "\n".join(lines)


def emit(payload: dict[str, Any] | list[Any], json_output: bool, text: str) -> None:
    if json_output:
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        click.echo(text)


def build_manager() -> SnapshotManager:
    return SnapshotManager(S3ObjectStore(Settings()))


async def guarded(operation: Callable[[], Awaitable[int]]) -> int:
    """Run ``operation`` and map library errors onto exit codes."""
    try:
        return await operation()

    except StoreConfigError as e:
        click.echo(
            format_error(
                "Object store not configured",
                e.message,
                ["Set SANDBOX_PERSIST_S3_BUCKET", "Set SANDBOX_PERSIST_R2_ACCOUNT_ID or SANDBOX_PERSIST_S3_ENDPOINT_URL"],
            ),
            err=True,
        )
        return EXIT_CLI_ERROR

    except InputValidationError as e:
        click.echo(format_error("Invalid input", e.message), err=True)
        return EXIT_CLI_ERROR

    except SandboxUnavailableError as e:
        click.echo(
            format_error("Sandbox unavailable", e.message, ["Restart the sandbox", "Retry the operation"]),
            err=True,
        )
        return EXIT_OPERATION_ERROR

    except SnapshotNotFoundError as e:
        click.echo(format_error("Not found", e.message), err=True)
        return EXIT_OPERATION_ERROR

    except SnapshotPersistError as e:
        click.echo(format_error("Snapshot error", e.message), err=True)
        return EXIT_OPERATION_ERROR


def scope_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach --chat/--sender/--group to a command."""
    func = click.option("--group", "is_group", is_flag=True, help="Chat is a group chat")(func)
    func = click.option("--sender", "sender_id", help="Sender id (defaults to the chat id)")(func)
    func = click.option("--chat", "chat_id", required=True, help="Chat id")(func)
    return func


def make_scope(chat_id: str, sender_id: str | None, is_group: bool) -> SnapshotScope:
    return SnapshotScope(chat_id=chat_id, sender_id=sender_id or chat_id, is_group=is_group)


def finish(exit_code: int) -> NoReturn:
    sys.exit(exit_code)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.version_option(__version__, "-V", "--version", prog_name="sandbox-persist")
def main(quiet: bool, verbose: bool) -> None:
    """Snapshot and restore sandbox filesystems to an S3-compatible store."""
    configure_logging(level="DEBUG" if verbose else None, quiet=quiet)


@main.command()
@scope_options
@click.option(
    "--reason",
    type=click.Choice([r.value for r in SnapshotReason]),
    default=SnapshotReason.MANUAL.value,
    show_default=True,
    help="Reason recorded in snapshot metadata",
)
@click.option("-d", "--dir", "directories", multiple=True, help="Directory to capture (repeatable)")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def create(
    chat_id: str,
    sender_id: str | None,
    is_group: bool,
    reason: str,
    directories: tuple[str, ...],
    json_output: bool,
) -> NoReturn:
    """Snapshot this unit's directories."""
    scope = make_scope(chat_id, sender_id, is_group)

    async def run() -> int:
        result = await build_manager().create_snapshot(
            LocalUnit(), scope, SnapshotReason(reason), list(directories) or None
        )
        if not result.success:
            click.echo(format_error("Snapshot failed", result.error or "unknown error"), err=True)
            return EXIT_OPERATION_ERROR
        text = (
            f"{result.snapshot_key} ({result.size} bytes)" if result.snapshot_key else "Nothing to snapshot"
        )
        emit(result.model_dump(), json_output, text)
        return EXIT_SUCCESS

    finish(asyncio.run(guarded(run)))


@main.command()
@scope_options
@click.option("-k", "--key", "snapshot_key", help="Snapshot key (defaults to the newest)")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def restore(chat_id: str, sender_id: str | None, is_group: bool, snapshot_key: str | None, json_output: bool) -> NoReturn:
    """Restore a snapshot onto this unit."""
    scope = make_scope(chat_id, sender_id, is_group)

    async def run() -> int:
        result = await build_manager().restore_snapshot(LocalUnit(), scope, snapshot_key)
        if result.restored:
            emit(result.model_dump(), json_output, f"Restored {result.snapshot_key}")
            return EXIT_SUCCESS
        if result.reason == "no snapshots":
            emit(result.model_dump(), json_output, "No snapshots to restore")
            return EXIT_SUCCESS
        click.echo(format_error("Restore failed", result.reason or "unknown error"), err=True)
        return EXIT_OPERATION_ERROR

    finish(asyncio.run(guarded(run)))


@main.command(name="list")
@scope_options
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def list_command(chat_id: str, sender_id: str | None, is_group: bool, json_output: bool) -> NoReturn:
    """List snapshots, newest first."""
    scope = make_scope(chat_id, sender_id, is_group)

    async def run() -> int:
        snapshots = await build_manager().list_snapshots(scope)
        text = "\n".join(f"{s.key}\t{s.size}" for s in snapshots) or "No snapshots"
        emit([s.model_dump() for s in snapshots], json_output, text)
        return EXIT_SUCCESS

    finish(asyncio.run(guarded(run)))


@main.command()
@scope_options
@click.argument("snapshot_key")
@click.argument("path", default="/")
@click.option("--file", "as_file", is_flag=True, help="Print file content instead of listing")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def preview(
    chat_id: str,
    sender_id: str | None,
    is_group: bool,
    snapshot_key: str,
    path: str,
    as_file: bool,
    json_output: bool,
) -> NoReturn:
    """Browse PATH inside a snapshot without restoring it."""
    scope = make_scope(chat_id, sender_id, is_group)

    async def run() -> int:
        manager = build_manager()
        unit = LocalUnit()
        if as_file:
            content = await manager.preview_file(unit, scope, snapshot_key, path)
            emit(content.model_dump(), json_output, content.content)
            return EXIT_SUCCESS
        entries = await manager.preview_entries(unit, scope, snapshot_key, path)
        text = "\n".join(f"{e.path}/" if e.type is EntryType.DIRECTORY else e.path for e in entries)
        emit([e.model_dump(mode="json") for e in entries], json_output, text)
        return EXIT_SUCCESS

    finish(asyncio.run(guarded(run)))


if __name__ == "__main__":
    main()
