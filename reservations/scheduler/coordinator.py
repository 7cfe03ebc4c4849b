"""Run many booking requests at once and publish one aggregate outcome.

Each request gets its own engine and a fresh page driver. The coordinator
watches the :class:`StatusStore` rather than the tasks themselves: the batch
is complete when every member's record for *its* attempt is terminal. The
global running flag stays raised until every member task has also unwound.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from automation.driver.human_behaviors import HumanBehavior
from automation.driver.protocol import PageDriver
from automation.executors.config import DEFAULT_TIMINGS, EngineTimings
from automation.executors.engine import OrchestrationEngine, make_attempt_id
from automation.executors.verification import VerificationHandler
from automation.shared.booking_contracts import (
    BatchResult,
    BatchStatus,
    BookingRequest,
    LastRunRecord,
    RunResult,
    RunType,
    aggregate_statuses,
    utc_now,
)
from infrastructure import constants
from infrastructure.settings import UserSettings
from reservations.scheduler.dispatch import RunJob, cancel_stragglers, collect_results, launch_runs
from reservations.scheduler.metrics import BatchStats
from reservations.status_store import StatusStore

DriverFactory = Callable[[str], PageDriver]

TIMED_OUT_MESSAGE = "Parallel batch timed out"
STOPPED_REASON = "Stopped by user"


@dataclass(frozen=True)
class CoordinatorTimings:
    poll_interval: float = constants.BATCH_POLL_INTERVAL
    ceiling: float = constants.BATCH_CEILING_SECONDS
    finalize_interval: float = constants.BATCH_FINALIZE_INTERVAL
    settle_delay: float = constants.BATCH_SETTLE_DELAY
    cancel_grace: float = 5.0


class ParallelRunCoordinator:
    """Own the engines of manual, automatic and batch runs."""

    def __init__(
        self,
        *,
        status_store: StatusStore,
        driver_factory: DriverFactory,
        user: UserSettings,
        verifier: Optional[VerificationHandler] = None,
        engine_timings: EngineTimings = DEFAULT_TIMINGS,
        timings: CoordinatorTimings = CoordinatorTimings(),
        behavior: Optional[HumanBehavior] = None,
        auto_close_on_failure: bool = True,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('reservations.scheduler.coordinator.ParallelRunCoordinator.__init__')
        self.status_store = status_store
        self.driver_factory = driver_factory
        self.user = user
        self.verifier = verifier
        self.engine_timings = engine_timings
        self.timings = timings
        self.behavior = behavior
        self.auto_close_on_failure = auto_close_on_failure
        self.clock = clock
        self.logger = logger or logging.getLogger("ParallelRunCoordinator")
        self.stats = BatchStats()
        self._active: Dict[str, "asyncio.Task[RunResult]"] = {}

    # ------------------------------------------------------------------
    # Engine construction
    # ------------------------------------------------------------------
    def build_engine(self, request: BookingRequest, run_type: RunType) -> OrchestrationEngine:
        t('reservations.scheduler.coordinator.ParallelRunCoordinator.build_engine')
        attempt_id = make_attempt_id(run_type, request, self.clock())
        driver = self.driver_factory(attempt_id)
        return OrchestrationEngine(
            request,
            driver,
            status_store=self.status_store,
            user=self.user,
            verifier=self.verifier,
            run_type=run_type,
            timings=self.engine_timings,
            behavior=self.behavior,
            auto_close_on_failure=self.auto_close_on_failure,
            attempt_id=attempt_id,
            clock=self.clock,
        )

    # ------------------------------------------------------------------
    # Single runs
    # ------------------------------------------------------------------
    async def run_single(
        self, request: BookingRequest, run_type: RunType = RunType.MANUAL
    ) -> Optional[RunResult]:
        """Run one request; returns None when another run is in progress."""
        t('reservations.scheduler.coordinator.ParallelRunCoordinator.run_single')
        if run_type is RunType.PARALLEL_BATCH:
            raise ValueError("Use run_batch for parallel runs")
        if not await self.status_store.try_acquire_running(f"Starting {request.name}"):
            self.logger.warning("⏳ Skipping %s: another run is in progress", request.name)
            return None

        try:
            engine = self.build_engine(request, run_type)
            task = asyncio.create_task(engine.run(), name=f"booking-{request.short_id}")
            self._active[request.request_id] = task
            result = await task
        finally:
            self._active.pop(request.request_id, None)
            await self.status_store.set_running(False)
        self.stats.record_run(result.status, result.duration_seconds)
        return result

    # ------------------------------------------------------------------
    # Parallel batch
    # ------------------------------------------------------------------
    async def run_batch(self, requests: Sequence[BookingRequest]) -> Optional[BatchResult]:
        """Run every request concurrently and publish the aggregate status."""
        t('reservations.scheduler.coordinator.ParallelRunCoordinator.run_batch')
        if not requests:
            raise ValueError("run_batch needs at least one request")
        if len({request.request_id for request in requests}) != len(requests):
            raise ValueError("run_batch requests must have unique ids")
        if not await self.status_store.try_acquire_running(
            f"Running {len(requests)} configurations in parallel"
        ):
            self.logger.warning("⏳ Batch not started: another run is in progress")
            return None

        try:
            engines = [self.build_engine(request, RunType.PARALLEL_BATCH) for request in requests]
        except Exception:
            await self.status_store.set_running(False)
            raise
        attempts = {engine.request.request_id: engine.attempt_id for engine in engines}
        self.logger.info("⚡ Starting parallel batch of %s run(s)", len(engines))

        # Every member must have its running record before the first poll.
        for engine in engines:
            await self.status_store.begin_run(engine.request.request_id, RunType.PARALLEL_BATCH, engine.attempt_id)

        jobs = [
            RunJob(
                request_id=engine.request.request_id,
                attempt_id=engine.attempt_id,
                run=engine.run,
                index=index,
                total=len(engines),
            )
            for index, engine in enumerate(engines, start=1)
        ]
        tasks = launch_runs(jobs, logger=self.logger)
        self._active.update(tasks)

        try:
            finished = await self._wait_for_terminal(attempts)
            if finished:
                result = self._aggregate(attempts)
            else:
                result = await self._time_out(tasks, attempts)

            await self.status_store.publish_batch(result)
            self._record_stats(tasks, result)
            self.logger.info("📣 Batch finished: %s (%s)", result.status.value, result.message)

            await self._finalize(tasks, attempts)
            return result
        except asyncio.CancelledError:
            await cancel_stragglers(tasks, grace_seconds=self.timings.cancel_grace, logger=self.logger)
            await self.status_store.mark_stopped(attempts, STOPPED_REASON)
            raise
        finally:
            for request_id in attempts:
                self._active.pop(request_id, None)
            await self.status_store.set_running(False)

    def _is_terminal_for(self, request_id: str, attempt_id: str) -> bool:
        record = self.status_store.record_for(request_id)
        return record is not None and record.attempt_id == attempt_id and record.status.is_terminal

    async def _wait_for_terminal(self, attempts: Dict[str, str]) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.ceiling
        while True:
            pending = [rid for rid, aid in attempts.items() if not self._is_terminal_for(rid, aid)]
            if not pending:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                self.logger.warning("⏰ %s run(s) still active at the batch ceiling", len(pending))
                return False
            self.logger.debug("⏳ Waiting on %s of %s run(s)", len(pending), len(attempts))
            await asyncio.sleep(min(self.timings.poll_interval, remaining))

    def _records_for(self, attempts: Dict[str, str]) -> Dict[str, LastRunRecord]:
        records: Dict[str, LastRunRecord] = {}
        for request_id in attempts:
            record = self.status_store.record_for(request_id)
            if record is not None:
                records[request_id] = record
        return records

    def _aggregate(self, attempts: Dict[str, str]) -> BatchResult:
        records = self._records_for(attempts)
        statuses = [record.status for record in records.values()]
        status, message = aggregate_statuses(statuses)
        succeeded = sum(1 for s in statuses if s.is_success)
        return BatchResult(
            status=status,
            message=message,
            succeeded=succeeded,
            failed=len(statuses) - succeeded,
            records=records,
        )

    async def _time_out(
        self, tasks: Dict[str, "asyncio.Task[RunResult]"], attempts: Dict[str, str]
    ) -> BatchResult:
        stragglers = [rid for rid, aid in attempts.items() if not self._is_terminal_for(rid, aid)]
        await cancel_stragglers(
            {rid: tasks[rid] for rid in stragglers},
            grace_seconds=self.timings.cancel_grace,
            logger=self.logger,
        )
        await self.status_store.mark_stopped(stragglers, TIMED_OUT_MESSAGE)

        records = self._records_for(attempts)
        succeeded = sum(1 for record in records.values() if record.status.is_success)
        return BatchResult(
            status=BatchStatus.FAILURE,
            message=TIMED_OUT_MESSAGE,
            succeeded=succeeded,
            failed=len(attempts) - succeeded,
            timed_out=True,
            records=records,
        )

    async def _finalize(
        self, tasks: Dict[str, "asyncio.Task[RunResult]"], attempts: Dict[str, str]
    ) -> None:
        """Hold the running flag until every member task has fully unwound."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.ceiling
        while loop.time() < deadline:
            if all(task.done() for task in tasks.values()) and all(
                self._is_terminal_for(rid, aid) for rid, aid in attempts.items()
            ):
                break
            await asyncio.sleep(self.timings.finalize_interval)
        else:
            self.logger.warning("⚠️ Some runs were still unwinding after the finalize window")

        await cancel_stragglers(tasks, grace_seconds=self.timings.cancel_grace, logger=self.logger)
        await asyncio.sleep(self.timings.settle_delay)

    def _record_stats(self, tasks: Dict[str, "asyncio.Task[RunResult]"], result: BatchResult) -> None:
        results, _ = collect_results(tasks, logger=self.logger)
        for request_id, record in result.records.items():
            run = results.get(request_id)
            self.stats.record_run(record.status, run.duration_seconds if run else None)
        self.stats.record_batch(result)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    @property
    def active_request_ids(self) -> List[str]:
        return [rid for rid, task in self._active.items() if not task.done()]

    async def stop_all(self) -> List[str]:
        """Cancel every active run and clear the running flag."""
        t('reservations.scheduler.coordinator.ParallelRunCoordinator.stop_all')
        active = {rid: task for rid, task in self._active.items() if not task.done()}
        if active:
            self.logger.warning("🛑 Stopping %s active run(s)", len(active))
        await cancel_stragglers(active, grace_seconds=self.timings.cancel_grace, logger=self.logger)
        await self.status_store.mark_stopped(active, STOPPED_REASON)
        await self.status_store.set_running(False)
        return list(active)
