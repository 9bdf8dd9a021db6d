"""Liveness/wake gate for a unit that may be asleep.

An idle unit can be suspended by its host.  Listing its processes is a
cheap call that wakes it; a trivial ``echo`` then confirms exec actually
works.  Restore runs through this gate first so that a sleeping unit
fails fast with an actionable error instead of a confusing curl or tar
failure halfway through.

No "alive" flag is cached: every operation probes again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sandbox_persist import constants
from sandbox_persist._logging import get_logger
from sandbox_persist.exceptions import RemoteUnitError, SandboxUnavailableError, TransientError
from sandbox_persist.remote import RemoteUnit

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

# OSError covers TimeoutError and ConnectionError
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (TransientError, OSError)


async def _wake_and_probe(
    unit: RemoteUnit,
    *,
    wake_delay: float,
    probe_timeout: float,
    sleep: SleepFn,
) -> None:
    await unit.list_processes()
    await sleep(wake_delay)
    result = await unit.exec(constants.LIVENESS_PROBE_COMMAND, timeout_seconds=probe_timeout)
    if not result.ok or "alive" not in result.stdout:
        raise RemoteUnitError(
            "Liveness probe failed",
            context={"exit_code": result.exit_code, "stdout": result.stdout[:100], "stderr": result.stderr[:200]},
        )


async def ensure_reachable(
    unit: RemoteUnit,
    *,
    max_attempts: int = constants.HEALTH_CHECK_MAX_ATTEMPTS,
    wake_delay: float = constants.HEALTH_CHECK_WAKE_DELAY_SECONDS,
    backoff_base: float = constants.HEALTH_CHECK_BACKOFF_BASE_SECONDS,
    backoff_max: float = constants.HEALTH_CHECK_BACKOFF_MAX_SECONDS,
    probe_timeout: float = constants.HEALTH_CHECK_PROBE_TIMEOUT_SECONDS,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Wake the unit and confirm it executes commands.

    Each attempt lists processes, waits ``wake_delay``, then runs the
    liveness probe.  Failed attempts back off exponentially
    (``backoff_base``, doubled per retry, capped at ``backoff_max``).

    Args:
        sleep: Coroutine used for every delay (injectable for tests)

    Raises:
        SandboxUnavailableError: Every attempt failed
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=backoff_base, max=backoff_max),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=sleep,
            reraise=True,
        ):
            with attempt:
                await _wake_and_probe(unit, wake_delay=wake_delay, probe_timeout=probe_timeout, sleep=sleep)
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Unit woke after retries",
                        extra={"attempts": attempt.retry_state.attempt_number},
                    )
                return
    except RETRYABLE_ERRORS as e:
        logger.error("Unit unreachable", extra={"attempts": max_attempts, "error": str(e)})
        raise SandboxUnavailableError(
            f"Sandbox unavailable after {max_attempts} wake attempts: {e}. "
            "Restart the sandbox and retry the operation.",
            attempts=max_attempts,
            context={"last_error": str(e)},
        ) from e

    # Unreachable: AsyncRetrying either returns or raises
    raise AssertionError("Unreachable: AsyncRetrying exhausted without exception")


async def is_reachable(
    unit: RemoteUnit,
    *,
    max_attempts: int = constants.HEALTH_CHECK_MAX_ATTEMPTS,
    wake_delay: float = constants.HEALTH_CHECK_WAKE_DELAY_SECONDS,
    backoff_base: float = constants.HEALTH_CHECK_BACKOFF_BASE_SECONDS,
    backoff_max: float = constants.HEALTH_CHECK_BACKOFF_MAX_SECONDS,
    probe_timeout: float = constants.HEALTH_CHECK_PROBE_TIMEOUT_SECONDS,
    sleep: SleepFn = asyncio.sleep,
) -> bool:
    """Boolean form of ensure_reachable()."""
    try:
        await ensure_reachable(
            unit,
            max_attempts=max_attempts,
            wake_delay=wake_delay,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
            probe_timeout=probe_timeout,
            sleep=sleep,
        )
    except SandboxUnavailableError:
        return False
    return True
