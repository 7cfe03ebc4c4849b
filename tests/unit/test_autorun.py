from tracking import t
from datetime import date, datetime, timedelta

import pytest
import pytz

from automation.shared.booking_contracts import Weekday
from reservations.scheduler.autorun import (
    is_due,
    next_run_date,
    plan_autorun,
    target_time_for,
    wait_until,
    weekday_of,
)
from tests.helpers import DummyLogger, make_request

TORONTO = pytz.timezone("America/Toronto")
SUNDAY = date(2026, 3, 1)
MONDAY = date(2026, 3, 2)


class SteppingClock:
    """Clock that only moves when the code under test sleeps."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.sleeps = []

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


def test_weekday_of_maps_python_weekdays():
    t('tests.unit.test_autorun.test_weekday_of_maps_python_weekdays')
    assert weekday_of(SUNDAY) is Weekday.SUNDAY
    assert weekday_of(MONDAY) is Weekday.MONDAY
    assert weekday_of(date(2026, 3, 7)) is Weekday.SATURDAY


def test_request_is_due_when_target_day_has_slots():
    t('tests.unit.test_autorun.test_request_is_due_when_target_day_has_slots')
    request = make_request(day_time_slots={"Tuesday": ["18:30"]})

    assert is_due(request, SUNDAY, prior_days=2)
    assert not is_due(request, MONDAY, prior_days=2)
    assert is_due(request, MONDAY, prior_days=1)
    assert not is_due(make_request(enabled=False), SUNDAY, prior_days=2)


def test_next_run_date_looks_at_most_a_week_ahead():
    t('tests.unit.test_autorun.test_next_run_date_looks_at_most_a_week_ahead')
    request = make_request(day_time_slots={"Tuesday": ["18:30"]})

    assert next_run_date(request, SUNDAY, 2) == SUNDAY
    assert next_run_date(request, MONDAY, 2) == date(2026, 3, 8)


def test_plan_splits_due_requests_from_the_rest():
    t('tests.unit.test_autorun.test_plan_splits_due_requests_from_the_rest')
    tuesday = make_request("Tuesday", day_time_slots={"Tuesday": ["18:30"]})
    friday = make_request("Friday", day_time_slots={"Friday": ["19:00"]})

    plan = plan_autorun([tuesday, friday], SUNDAY, 2)

    assert plan.has_work
    assert [request.name for request in plan.due] == ["Tuesday"]
    assert plan.next_runs[friday.request_id] == date(2026, 3, 4)
    assert plan.describe_next_runs([friday]) == ["Friday: next run Wednesday, March 04, 2026"]


def test_plan_rejects_non_positive_prior_days():
    t('tests.unit.test_autorun.test_plan_rejects_non_positive_prior_days')
    with pytest.raises(ValueError):
        plan_autorun([make_request()], SUNDAY, 0)


def test_target_time_uses_local_calendar_day():
    t('tests.unit.test_autorun.test_target_time_uses_local_calendar_day')
    winter = target_time_for(pytz.utc.localize(datetime(2026, 3, 3, 12, 0)), TORONTO)
    assert winter.astimezone(pytz.utc) == pytz.utc.localize(datetime(2026, 3, 3, 23, 0, 1))

    # 03:00 UTC is still the previous evening in Toronto
    late = target_time_for(pytz.utc.localize(datetime(2026, 3, 4, 3, 0)), TORONTO)
    assert late.date() == date(2026, 3, 3)

    summer = target_time_for(pytz.utc.localize(datetime(2026, 7, 1, 12, 0)), TORONTO)
    assert summer.astimezone(pytz.utc) == pytz.utc.localize(datetime(2026, 7, 1, 22, 0, 1))


@pytest.mark.asyncio
async def test_wait_until_sleeps_in_steps():
    t('tests.unit.test_autorun.test_wait_until_sleeps_in_steps')
    clock = SteppingClock(TORONTO.localize(datetime(2026, 3, 3, 18, 0, 0)))
    target = clock.now + timedelta(seconds=25)

    waited = await wait_until(target, clock=clock, sleep=clock.sleep, step=10.0, logger=DummyLogger())

    assert waited == 25.0
    assert clock.sleeps == [10.0, 10.0, 5.0]


@pytest.mark.asyncio
async def test_wait_until_returns_at_once_after_target():
    t('tests.unit.test_autorun.test_wait_until_returns_at_once_after_target')
    clock = SteppingClock(TORONTO.localize(datetime(2026, 3, 3, 18, 5, 0)))
    logger = DummyLogger()

    waited = await wait_until(
        target_time_for(clock.now, TORONTO), clock=clock, sleep=clock.sleep, logger=logger
    )

    assert waited == 0.0
    assert clock.sleeps == []
    assert any("already passed" in record[1][0] for record in logger.records)
