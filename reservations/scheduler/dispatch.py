"""Helpers for fanning booking runs out to concurrent tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from automation.shared.booking_contracts import RunResult


@dataclass
class RunJob:
    """A single engine run to execute as part of a batch."""

    request_id: str
    attempt_id: str
    run: Callable[[], Awaitable[RunResult]]
    index: int
    total: int


def launch_runs(
    jobs: Iterable[RunJob],
    *,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, "asyncio.Task[RunResult]"]:
    """Start one task per job, keyed by request id."""

    tasks: Dict[str, asyncio.Task[RunResult]] = {}
    for job in jobs:
        tasks[job.request_id] = asyncio.create_task(
            job.run(),
            name=f"booking-{job.request_id[:8]}",
        )
        if logger:
            logger.info(
                "🚀 Launched run %s/%s for %s... (%s)",
                job.index,
                job.total,
                job.request_id[:8],
                job.attempt_id,
            )
    return tasks


async def cancel_stragglers(
    tasks: Dict[str, "asyncio.Task[RunResult]"],
    *,
    grace_seconds: float = 5.0,
    logger: Optional[logging.Logger] = None,
) -> List[str]:
    """Cancel every unfinished task and give them ``grace_seconds`` to unwind."""

    pending = {rid: task for rid, task in tasks.items() if not task.done()}
    if not pending:
        return []

    if logger:
        logger.warning("Found %s hanging booking tasks - cancelling them", len(pending))
    for request_id, task in pending.items():
        if logger:
            logger.warning("Cancelling hanging task for request %s...", request_id[:8])
        task.cancel()

    await asyncio.wait(pending.values(), timeout=grace_seconds)
    return list(pending)


def collect_results(
    tasks: Dict[str, "asyncio.Task[RunResult]"],
    *,
    logger: Optional[logging.Logger] = None,
) -> Tuple[Dict[str, RunResult], Dict[str, str]]:
    """Split finished tasks into results and error messages."""

    results: Dict[str, RunResult] = {}
    errors: Dict[str, str] = {}
    for request_id, task in tasks.items():
        if not task.done():
            errors[request_id] = "Task still running"
            continue
        if task.cancelled():
            errors[request_id] = "Task was cancelled"
            continue
        exc = task.exception()
        if exc is not None:
            if logger:
                logger.error("❌ Booking task raised for %s: %s", request_id, exc)
            errors[request_id] = str(exc) or type(exc).__name__
            continue
        results[request_id] = task.result()
    return results, errors
