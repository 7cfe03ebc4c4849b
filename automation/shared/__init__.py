"""Contracts, error taxonomy, and timeout helpers shared across packages."""

from .booking_contracts import (
    BatchResult,
    BatchStatus,
    BookingRequest,
    LastRunRecord,
    RunResult,
    RunState,
    RunStatus,
    RunType,
    TimeSlot,
    Weekday,
)
from .errors import ErrorCategory, ReservationError, ReservationErrorKind

__all__ = [
    "BatchResult",
    "BatchStatus",
    "BookingRequest",
    "LastRunRecord",
    "RunResult",
    "RunState",
    "RunStatus",
    "RunType",
    "TimeSlot",
    "Weekday",
    "ErrorCategory",
    "ReservationError",
    "ReservationErrorKind",
]
