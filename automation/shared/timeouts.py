"""Timeout helpers shared by the engine, mail client, and coordinator."""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

# How long a cancelled loser may take to unwind before the caller moves on.
CANCEL_GRACE_SECONDS = 0.05


def _consume_result(task: "asyncio.Future[object]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned task finished with %r", exc)


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    *,
    error_factory: Optional[Callable[[], BaseException]] = None,
) -> T:
    """Race ``awaitable`` against ``timeout`` seconds.

    The loser is cancelled. Resolution is bounded by ``timeout`` plus a short
    grace period even when the wrapped operation ignores cancellation.
    """
    t('automation.shared.timeouts.with_timeout')

    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=max(timeout, 0))
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.cancel()
    task.add_done_callback(_consume_result)
    await asyncio.wait({task}, timeout=CANCEL_GRACE_SECONDS)
    if error_factory is not None:
        raise error_factory()
    raise asyncio.TimeoutError(f"Operation timed out after {timeout:.1f}s")


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    timeout: float,
    interval: float,
    description: str = "condition",
) -> bool:
    """Call ``check`` every ``interval`` seconds until it is true or time runs out.

    Check errors count as "not ready yet". Each check call is itself bounded by
    the remaining time so a hung check cannot stretch the deadline.
    """
    t('automation.shared.timeouts.poll_until')

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        attempts += 1
        try:
            if await with_timeout(check(), remaining):
                logger.debug("%s ready after %s check(s)", description, attempts)
                return True
        except asyncio.TimeoutError:
            break
        except Exception as exc:  # pragma: no cover
            logger.debug("Check for %s raised %s", description, exc)
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    logger.debug("%s not ready after %.1fs (%s checks)", description, timeout, attempts)
    return False
