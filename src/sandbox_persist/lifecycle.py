"""Unit teardown with a pre-shutdown snapshot and on-destroy hooks.

Components that cache per-unit state (connection URLs, preview handles)
register a hook instead of reaching into a shared global; hooks run in
registration order after the unit is destroyed.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

from sandbox_persist._logging import get_logger
from sandbox_persist.manager import SnapshotManager
from sandbox_persist.models import SnapshotReason, SnapshotScope
from sandbox_persist.remote import DestroyableUnit

logger = get_logger(__name__)

DestroyHook = Callable[[str], Awaitable[None] | None]


class UnitLifecycle:
    """Shuts units down: snapshot, destroy, then notify hooks.

    A failed snapshot never blocks the destroy (losing recent changes is
    preferred over a unit that cannot be shut down); it is logged with
    full context instead.
    """

    def __init__(self, manager: SnapshotManager):
        self.manager = manager
        self._hooks: list[DestroyHook] = []

    def add_destroy_hook(self, hook: DestroyHook) -> None:
        """Register ``hook(unit_id)``; sync or async callables are both accepted."""
        self._hooks.append(hook)

    def remove_destroy_hook(self, hook: DestroyHook) -> None:
        self._hooks.remove(hook)

    async def _run_hooks(self, unit_id: str) -> None:
        for hook in list(self._hooks):
            try:
                outcome = hook(unit_id)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:  # noqa: BLE001 - one failing hook must not skip the rest
                logger.error(
                    "Destroy hook failed",
                    extra={"unit_id": unit_id, "hook": getattr(hook, "__name__", repr(hook)), "error": str(e)},
                )

    async def destroy(self, unit: DestroyableUnit, unit_id: str) -> None:
        """Destroy ``unit`` and run the on-destroy hooks."""
        try:
            await unit.destroy()
        finally:
            await self._run_hooks(unit_id)
        logger.info("Unit destroyed", extra={"unit_id": unit_id})

    async def shutdown(
        self,
        unit: DestroyableUnit,
        unit_id: str,
        scope: SnapshotScope,
        reason: SnapshotReason = SnapshotReason.PRE_RESTART,
    ) -> str | None:
        """Snapshot ``unit`` then destroy it.

        Returns:
            Key of the pre-shutdown snapshot, or None if none was written
        """
        snapshot_key: str | None = None
        try:
            result = await self.manager.create_snapshot(unit, scope, reason)
            if result.success:
                snapshot_key = result.snapshot_key
            else:
                logger.error(
                    "Pre-shutdown snapshot failed, destroying anyway",
                    extra={"unit_id": unit_id, "chat_id": scope.chat_id, "reason": reason.value, "error": result.error},
                )
        except Exception as e:  # noqa: BLE001 - destroy must proceed
            logger.error(
                "Pre-shutdown snapshot raised, destroying anyway",
                extra={"unit_id": unit_id, "chat_id": scope.chat_id, "reason": reason.value, "error": str(e)},
            )

        await self.destroy(unit, unit_id)
        return snapshot_key
