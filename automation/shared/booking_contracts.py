"""Shared booking request/run-status contracts for engine, store, and coordinator."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


class Weekday(Enum):
    """Days of the week, in the order the booking site lists them."""

    SUNDAY = "Sunday"
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"

    @property
    def short_name(self) -> str:
        return self.value[:3]

    @property
    def order(self) -> int:
        return list(Weekday).index(self)

    @classmethod
    def parse(cls, value: str) -> "Weekday":
        """Accept full names, short names, or enum member names."""

        text = (value or "").strip().lower()
        for day in cls:
            if text in {day.value.lower(), day.short_name.lower(), day.name.lower()}:
                return day
        raise ValueError(f"Unknown weekday: {value!r}")


_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s*$")


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A time of day on the 24h clock."""

    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not (0 <= self.hour < 24 and 0 <= self.minute < 60):
            raise ValueError(f"Invalid time slot {self.hour}:{self.minute}")

    @classmethod
    def parse(cls, value: str) -> "TimeSlot":
        """Parse ``"18:30"`` or ``"6:30 PM"``."""

        match = _TIME_RE.match(value or "")
        if not match:
            raise ValueError(f"Invalid time string: {value!r}")
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
        if meridiem:
            if not 1 <= hour <= 12:
                raise ValueError(f"Invalid 12-hour time: {value!r}")
            hour = hour % 12 + (12 if meridiem.lower() == "pm" else 0)
        return cls(hour=hour, minute=minute)

    def formatted(self) -> str:
        """Render as the site displays times, e.g. ``"6:30 PM"``."""

        suffix = "AM" if self.hour < 12 else "PM"
        display_hour = self.hour % 12 or 12
        return f"{display_hour}:{self.minute:02d} {suffix}"

    def as_24h(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


DayTimeSlots = Tuple[Tuple[Weekday, Tuple[TimeSlot, ...]], ...]


def _normalize_slots(raw: Mapping[Any, Iterable[Any]]) -> DayTimeSlots:
    pairs: List[Tuple[Weekday, Tuple[TimeSlot, ...]]] = []
    for day_key, times in raw.items():
        day = day_key if isinstance(day_key, Weekday) else Weekday.parse(str(day_key))
        slots = tuple(
            slot if isinstance(slot, TimeSlot) else TimeSlot.parse(str(slot))
            for slot in times
        )
        pairs.append((day, slots))
    pairs.sort(key=lambda pair: pair[0].order)
    return tuple(pairs)


@dataclass(frozen=True)
class BookingRequest:
    """One configured booking target. Immutable once a run starts."""

    request_id: str
    name: str
    facility_url: str
    sport_name: str
    number_of_people: int = 1
    day_time_slots: DayTimeSlots = field(default_factory=tuple)
    enabled: bool = True

    @classmethod
    def create(
        cls,
        *,
        name: str,
        facility_url: str,
        sport_name: str,
        number_of_people: int = 1,
        day_time_slots: Optional[Mapping[Any, Iterable[Any]]] = None,
        enabled: bool = True,
        request_id: Optional[str] = None,
    ) -> "BookingRequest":
        return cls(
            request_id=request_id or str(uuid.uuid4()),
            name=name,
            facility_url=facility_url,
            sport_name=sport_name,
            number_of_people=number_of_people,
            day_time_slots=_normalize_slots(day_time_slots or {}),
            enabled=enabled,
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BookingRequest":
        return cls.create(
            request_id=payload.get("id") or payload.get("request_id"),
            name=str(payload.get("name", "")),
            facility_url=str(payload.get("facility_url", "")),
            sport_name=str(payload.get("sport_name", "")),
            number_of_people=int(payload.get("number_of_people", 1)),
            day_time_slots=payload.get("day_time_slots") or {},
            enabled=bool(payload.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.request_id,
            "name": self.name,
            "facility_url": self.facility_url,
            "sport_name": self.sport_name,
            "number_of_people": self.number_of_people,
            "day_time_slots": {
                day.value: [slot.as_24h() for slot in slots]
                for day, slots in self.day_time_slots
            },
            "enabled": self.enabled,
        }

    def slots_for(self, day: Weekday) -> Tuple[TimeSlot, ...]:
        for candidate, slots in self.day_time_slots:
            if candidate is day:
                return slots
        return tuple()

    def first_slot(self) -> Optional[Tuple[Weekday, TimeSlot]]:
        """First configured day (week order) paired with its first time."""

        for day, slots in self.day_time_slots:
            if slots:
                return day, slots[0]
        return None

    @property
    def short_id(self) -> str:
        return self.request_id[:8]


class RunType(Enum):
    """Who started a run."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"
    PARALLEL_BATCH = "parallel_batch"

    @property
    def releases_running_flag(self) -> bool:
        """Batch members leave the global flag to the coordinator."""

        return self is not RunType.PARALLEL_BATCH


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    STOPPED = "stopped"


_TERMINAL_STATES = {RunState.SUCCESS, RunState.FAILED, RunState.STOPPED}


@dataclass(frozen=True)
class RunStatus:
    """Closed run-status variant; only ``failed`` and ``stopped`` carry a reason."""

    state: RunState
    reason: Optional[str] = None

    @classmethod
    def idle(cls) -> "RunStatus":
        return cls(RunState.IDLE)

    @classmethod
    def running(cls) -> "RunStatus":
        return cls(RunState.RUNNING)

    @classmethod
    def success(cls) -> "RunStatus":
        return cls(RunState.SUCCESS)

    @classmethod
    def failed(cls, reason: str) -> "RunStatus":
        return cls(RunState.FAILED, reason)

    @classmethod
    def stopped(cls, reason: Optional[str] = None) -> "RunStatus":
        return cls(RunState.STOPPED, reason)

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    @property
    def is_success(self) -> bool:
        return self.state is RunState.SUCCESS

    @property
    def is_failure(self) -> bool:
        """Failed or stopped; both count against a batch."""

        return self.state in {RunState.FAILED, RunState.STOPPED}

    def describe(self) -> str:
        if self.reason:
            return f"{self.state.value}: {self.reason}"
        return self.state.value

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"state": self.state.value}
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RunStatus":
        state = RunState(payload.get("state", RunState.IDLE.value))
        reason = payload.get("reason")
        if state is RunState.FAILED and not reason:
            reason = "Unknown failure"
        return cls(state, reason)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LastRunRecord:
    """Per-request record of the most recent run."""

    request_id: str
    status: RunStatus
    timestamp: datetime
    run_type: RunType
    attempt_id: str
    artifact: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "status": self.status.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "run_type": self.run_type.value,
            "attempt_id": self.attempt_id,
            "artifact": self.artifact,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LastRunRecord":
        timestamp = datetime.fromisoformat(str(payload["timestamp"]))
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            request_id=str(payload["request_id"]),
            status=RunStatus.from_dict(payload.get("status") or {}),
            timestamp=timestamp,
            run_type=RunType(payload.get("run_type", RunType.MANUAL.value)),
            attempt_id=str(payload.get("attempt_id", "")),
            artifact=payload.get("artifact"),
        )


class BatchStatus(Enum):
    """Aggregate outcome of a parallel batch."""

    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


@dataclass(frozen=True)
class RunResult:
    """What one engine run produced."""

    request_id: str
    attempt_id: str
    status: RunStatus
    error_code: Optional[str] = None
    artifact: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status.is_success


@dataclass(frozen=True)
class BatchResult:
    """Aggregate outcome published by the coordinator."""

    status: BatchStatus
    message: str
    succeeded: int
    failed: int
    timed_out: bool = False
    records: Dict[str, LastRunRecord] = field(default_factory=dict)

    @property
    def run_status(self) -> RunStatus:
        """Status published to the store for the batch as a whole."""

        if self.status is BatchStatus.FAILURE:
            return RunStatus.failed(self.message)
        return RunStatus.success()


def aggregate_statuses(statuses: Sequence[RunStatus]) -> Tuple[BatchStatus, str]:
    """Compute the batch outcome and its message from terminal statuses."""

    total = len(statuses)
    succeeded = sum(1 for status in statuses if status.is_success)
    failed = total - succeeded
    if total and succeeded == total:
        return BatchStatus.SUCCESS, f"All {total} configurations succeeded"
    if succeeded == 0:
        return BatchStatus.FAILURE, f"All {total} configurations failed"
    return BatchStatus.PARTIAL, f"{succeeded} successful, {failed} failed"
