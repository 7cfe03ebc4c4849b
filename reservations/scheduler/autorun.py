"""Pick the booking requests due today and wait for the booking window.

The facility opens bookings a fixed number of days ahead, at 18:00:01 local
time. A request is due on ``today`` when ``today + prior_days`` falls on one
of its configured weekdays.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import pytz

from automation.shared.booking_contracts import BookingRequest, Weekday
from infrastructure.constants import AUTORUN_PRIOR_DAYS, AUTORUN_TARGET_TIME, AUTORUN_WAIT_STEP

# date.weekday() counts from Monday
_PY_WEEKDAYS = [
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
]


def weekday_of(day: date) -> Weekday:
    return _PY_WEEKDAYS[day.weekday()]


def is_due(request: BookingRequest, today: date, prior_days: int = AUTORUN_PRIOR_DAYS) -> bool:
    """True when ``request`` has slots on the day bookable from ``today``."""
    t('reservations.scheduler.autorun.is_due')
    if not request.enabled:
        return False
    return bool(request.slots_for(weekday_of(today + timedelta(days=prior_days))))


def next_run_date(
    request: BookingRequest, today: date, prior_days: int = AUTORUN_PRIOR_DAYS
) -> Optional[date]:
    """Earliest date on or after ``today`` when the request becomes due."""
    t('reservations.scheduler.autorun.next_run_date')
    for offset in range(7):
        candidate = today + timedelta(days=offset)
        if is_due(request, candidate, prior_days):
            return candidate
    return None


@dataclass(frozen=True)
class AutorunPlan:
    today: date
    prior_days: int
    due: List[BookingRequest] = field(default_factory=list)
    next_runs: Dict[str, Optional[date]] = field(default_factory=dict)

    @property
    def has_work(self) -> bool:
        return bool(self.due)

    def describe_next_runs(self, requests: Sequence[BookingRequest]) -> List[str]:
        lines = []
        for request in requests:
            upcoming = self.next_runs.get(request.request_id)
            when = upcoming.strftime("%A, %B %d, %Y") if upcoming else "never (no time slots)"
            lines.append(f"{request.name}: next run {when}")
        return lines


def plan_autorun(
    requests: Sequence[BookingRequest],
    today: date,
    prior_days: int = AUTORUN_PRIOR_DAYS,
) -> AutorunPlan:
    t('reservations.scheduler.autorun.plan_autorun')
    if prior_days < 1:
        raise ValueError("prior_days must be a positive number of days")
    due = [request for request in requests if is_due(request, today, prior_days)]
    next_runs = {
        request.request_id: next_run_date(request, today, prior_days) for request in requests
    }
    return AutorunPlan(today=today, prior_days=prior_days, due=due, next_runs=next_runs)


def target_time_for(now: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Today's booking window opening in ``tz``."""
    t('reservations.scheduler.autorun.target_time_for')
    local_day = now.astimezone(tz).date()
    return tz.localize(datetime.combine(local_day, time(*AUTORUN_TARGET_TIME)))


async def wait_until(
    target: datetime,
    *,
    clock: Callable[[], datetime],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    step: float = AUTORUN_WAIT_STEP,
    logger: Optional[logging.Logger] = None,
) -> float:
    """Sleep in ``step`` chunks until ``target``; returns the seconds waited."""
    t('reservations.scheduler.autorun.wait_until')
    logger = logger or logging.getLogger("Autorun")
    remaining = (target - clock()).total_seconds()
    if remaining <= 0:
        logger.info("⏰ Target time %s already passed, starting now", target.strftime("%H:%M:%S"))
        return 0.0

    logger.info("⏳ Waiting %.0fs until %s", remaining, target.strftime("%Y-%m-%d %H:%M:%S %Z"))
    waited = 0.0
    while remaining > 0:
        chunk = min(step, remaining)
        await sleep(chunk)
        waited += chunk
        remaining = (target - clock()).total_seconds()
        if remaining > 0:
            logger.debug("⏳ %.0fs left", remaining)
    logger.info("🚀 Target time reached")
    return waited
