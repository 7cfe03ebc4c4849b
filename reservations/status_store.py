"""Persisted per-request run records shared by engines and the coordinator.

All writes go through one ``asyncio.Lock`` and are persisted before the lock
is released. The write path enforces three reconciliation rules:

* a terminal write for an attempt other than the one currently recorded is
  stale and rejected;
* a record that is already terminal is not rewritten, except when a
  failure for the same run type arrives after the window below;
* a failure arriving for the same request, run type and attempt within
  ``reconciliation_window`` seconds of a recorded success is rejected.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from automation.shared.booking_contracts import (
    BatchResult,
    LastRunRecord,
    RunStatus,
    RunType,
    utc_now,
)
from infrastructure.constants import LAST_RUN_INFO_KEY, RECONCILIATION_WINDOW_SECONDS
from reservations.repository import KeyValueRepository

LAST_BATCH_KEY = "last_batch"
INTERRUPTED_REASON = "Interrupted before completion"


class StatusStore:
    """Single source of truth for last-run records and the running flag."""

    def __init__(
        self,
        repository: KeyValueRepository,
        *,
        reconciliation_window: float = RECONCILIATION_WINDOW_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
        recover_stale: bool = True,
    ) -> None:
        t('reservations.status_store.StatusStore.__init__')
        self.repository = repository
        self.reconciliation_window = reconciliation_window
        self.clock = clock
        self.logger = logger or logging.getLogger("StatusStore")
        self._lock = asyncio.Lock()
        self._running = False
        self._current_task: Optional[str] = None
        self._records: Dict[str, LastRunRecord] = self._load_records()
        if recover_stale:
            self.reset_stale_running()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def _load_records(self) -> Dict[str, LastRunRecord]:
        raw = self.repository.get(LAST_RUN_INFO_KEY, {}) or {}
        records: Dict[str, LastRunRecord] = {}
        if not isinstance(raw, dict):
            self.logger.warning("Ignoring malformed %s entry", LAST_RUN_INFO_KEY)
            return records
        for request_id, payload in raw.items():
            try:
                records[request_id] = LastRunRecord.from_dict(payload)
            except (KeyError, ValueError, TypeError) as exc:
                self.logger.warning("Dropping unreadable record %s: %s", request_id, exc)
        return records

    def reset_stale_running(self) -> List[str]:
        """Records still ``running`` from a previous process become failures."""
        t('reservations.status_store.StatusStore.reset_stale_running')
        stale = [rid for rid, record in self._records.items() if not record.status.is_terminal]
        for request_id in stale:
            record = self._records[request_id]
            self._records[request_id] = LastRunRecord(
                request_id=request_id,
                status=RunStatus.failed(INTERRUPTED_REASON),
                timestamp=self.clock(),
                run_type=record.run_type,
                attempt_id=record.attempt_id,
                artifact=record.artifact,
            )
        if stale:
            self.logger.warning("♻️ Marked %s interrupted run(s) as failed", len(stale))
            self._persist()
        return stale

    def _persist(self) -> None:
        self.repository.set(
            LAST_RUN_INFO_KEY,
            {rid: record.to_dict() for rid, record in self._records.items()},
        )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------
    async def begin_run(self, request_id: str, run_type: RunType, attempt_id: str) -> LastRunRecord:
        """Create the ``running`` record for a new attempt and raise the flag."""
        t('reservations.status_store.StatusStore.begin_run')
        async with self._lock:
            record = LastRunRecord(
                request_id=request_id,
                status=RunStatus.running(),
                timestamp=self.clock(),
                run_type=run_type,
                attempt_id=attempt_id,
            )
            self._records[request_id] = record
            self._running = True
            self._persist()
        self.logger.info("▶️ Run %s started for %s (%s)", attempt_id, request_id[:8], run_type.value)
        return record

    async def record_terminal(
        self,
        request_id: str,
        run_type: RunType,
        attempt_id: str,
        status: RunStatus,
        *,
        artifact: Optional[str] = None,
    ) -> bool:
        """Apply a terminal status; returns False when the write was rejected."""
        t('reservations.status_store.StatusStore.record_terminal')
        if not status.is_terminal:
            raise ValueError(f"record_terminal needs a terminal status, got {status.state.value}")

        async with self._lock:
            now = self.clock()
            existing = self._records.get(request_id)
            if existing is not None and not self._accepts(existing, run_type, attempt_id, status, now):
                return False

            self._records[request_id] = LastRunRecord(
                request_id=request_id,
                status=status,
                timestamp=now,
                run_type=run_type,
                attempt_id=attempt_id,
                artifact=artifact if artifact is not None else (
                    existing.artifact if existing and existing.attempt_id == attempt_id else None
                ),
            )
            if run_type.releases_running_flag:
                self._running = False
                self._current_task = None
            self._persist()

        self.logger.info("🏁 Run %s for %s finished: %s", attempt_id, request_id[:8], status.describe())
        return True

    def _accepts(
        self,
        existing: LastRunRecord,
        run_type: RunType,
        attempt_id: str,
        status: RunStatus,
        now: datetime,
    ) -> bool:
        if existing.attempt_id != attempt_id:
            self.logger.warning(
                "⚠️ Ignoring stale %s for %s: attempt %s superseded by %s",
                status.state.value,
                existing.request_id[:8],
                attempt_id,
                existing.attempt_id,
            )
            return False

        if not existing.status.is_terminal:
            return True

        if existing.status == status:
            self.logger.debug("Duplicate %s for attempt %s ignored", status.state.value, attempt_id)
            return False

        # A terminal record changes again only when a failure lands after the
        # reconciliation window of a recorded success.
        if not (existing.status.is_success and status.is_failure and existing.run_type is run_type):
            self.logger.warning(
                "🔒 Keeping %s for %s: attempt %s already finished (ignored %s)",
                existing.status.state.value,
                existing.request_id[:8],
                attempt_id,
                status.describe(),
            )
            return False

        if (now - existing.timestamp).total_seconds() <= self.reconciliation_window:
            self.logger.warning(
                "🛡️ Keeping success for %s: late %s (%s) arrived within %.0fs",
                existing.request_id[:8],
                status.state.value,
                status.reason,
                self.reconciliation_window,
            )
            return False
        return True

    async def mark_stopped(self, request_ids: Iterable[str], reason: str) -> List[str]:
        """Stop every listed record that has not reached a terminal state."""
        t('reservations.status_store.StatusStore.mark_stopped')
        stopped: List[str] = []
        async with self._lock:
            for request_id in request_ids:
                record = self._records.get(request_id)
                if record is None or record.status.is_terminal:
                    continue
                self._records[request_id] = LastRunRecord(
                    request_id=request_id,
                    status=RunStatus.stopped(reason),
                    timestamp=self.clock(),
                    run_type=record.run_type,
                    attempt_id=record.attempt_id,
                    artifact=record.artifact,
                )
                stopped.append(request_id)
            if stopped:
                self._persist()
        return stopped

    async def set_running(self, running: bool) -> None:
        t('reservations.status_store.StatusStore.set_running')
        async with self._lock:
            self._running = running
            if not running:
                self._current_task = None

    async def try_acquire_running(self, description: Optional[str] = None) -> bool:
        """Raise the running flag unless it is already raised."""
        t('reservations.status_store.StatusStore.try_acquire_running')
        async with self._lock:
            if self._running:
                return False
            self._running = True
            self._current_task = description
            return True

    async def set_current_task(self, description: Optional[str]) -> None:
        async with self._lock:
            self._current_task = description

    async def publish_batch(self, result: BatchResult) -> None:
        t('reservations.status_store.StatusStore.publish_batch')
        async with self._lock:
            self.repository.set(
                LAST_BATCH_KEY,
                {
                    "status": result.status.value,
                    "message": result.message,
                    "succeeded": result.succeeded,
                    "failed": result.failed,
                    "timed_out": result.timed_out,
                    "timestamp": self.clock().isoformat(),
                },
            )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_task(self) -> Optional[str]:
        return self._current_task

    def record_for(self, request_id: str) -> Optional[LastRunRecord]:
        return self._records.get(request_id)

    def all_records(self) -> Dict[str, LastRunRecord]:
        return dict(self._records)

    def last_batch(self) -> Optional[Dict[str, Any]]:
        return self.repository.get(LAST_BATCH_KEY)
