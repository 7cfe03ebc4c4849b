"""Parallel batch coordination and scheduled runs for booking requests."""

from .autorun import AutorunPlan, plan_autorun
from .coordinator import CoordinatorTimings, ParallelRunCoordinator
from .metrics import BatchStats

__all__ = ["AutorunPlan", "plan_autorun", "CoordinatorTimings", "ParallelRunCoordinator", "BatchStats"]
