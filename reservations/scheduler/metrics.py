"""Counters for parallel batch runs."""

from __future__ import annotations
from tracking import t

from dataclasses import dataclass
from typing import Optional

from automation.shared.booking_contracts import BatchResult, RunStatus


@dataclass
class BatchStats:
    """Mutable tallies across every batch a coordinator has run."""

    batches_run: int = 0
    batches_timed_out: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    total_run_time: float = 0.0

    def record_run(self, status: RunStatus, duration: Optional[float] = None) -> None:
        t('reservations.scheduler.metrics.BatchStats.record_run')
        if status.is_success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
        if duration is not None and duration >= 0:
            self.total_run_time += float(duration)

    def record_batch(self, result: BatchResult) -> None:
        t('reservations.scheduler.metrics.BatchStats.record_batch')
        self.batches_run += 1
        if result.timed_out:
            self.batches_timed_out += 1

    @property
    def total_runs(self) -> int:
        return self.successful_runs + self.failed_runs

    @property
    def success_rate(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return (self.successful_runs / self.total_runs) * 100

    @property
    def avg_run_time(self) -> float:
        if self.total_runs == 0:
            return 0.0
        return self.total_run_time / self.total_runs

    def format_report(self) -> str:
        t('reservations.scheduler.metrics.BatchStats.format_report')
        lines = [
            "📊 Parallel Run Report",
            f"📦 Batches: {self.batches_run}",
            f"✅ Successful runs: {self.successful_runs}",
            f"❌ Failed runs: {self.failed_runs}",
            f"🏆 Success Rate: {self.success_rate:.2f}%",
            f"⏱️ Avg Run Time: {self.avg_run_time:.2f}s",
        ]
        if self.batches_timed_out:
            lines.append(f"⏰ Timed-out batches: {self.batches_timed_out}")
        return "\n".join(lines)
