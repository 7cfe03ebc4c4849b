from tracking import t
import asyncio

import pytest

from automation.shared.errors import ReservationError, ReservationErrorKind
from automation.shared.timeouts import CANCEL_GRACE_SECONDS, poll_until, with_timeout


@pytest.mark.asyncio
async def test_with_timeout_returns_result_when_fast():
    t('tests.unit.test_timeouts.test_with_timeout_returns_result_when_fast')

    async def quick():
        await asyncio.sleep(0)
        return 42

    assert await with_timeout(quick(), 1.0) == 42


@pytest.mark.asyncio
async def test_with_timeout_resolves_even_if_operation_never_returns():
    t('tests.unit.test_timeouts.test_with_timeout_resolves_even_if_operation_never_returns')
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(ReservationError) as excinfo:
        await with_timeout(
            asyncio.Event().wait(),
            0.05,
            error_factory=lambda: ReservationError(ReservationErrorKind.PAGE_LOAD_TIMEOUT),
        )

    assert excinfo.value.kind is ReservationErrorKind.PAGE_LOAD_TIMEOUT
    assert loop.time() - started < 0.05 + CANCEL_GRACE_SECONDS + 0.5


@pytest.mark.asyncio
async def test_with_timeout_bounded_when_operation_ignores_cancellation():
    t('tests.unit.test_timeouts.test_with_timeout_bounded_when_operation_ignores_cancellation')
    release = asyncio.Event()

    async def stubborn():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            await release.wait()

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(asyncio.TimeoutError):
        await with_timeout(stubborn(), 0.05)
    assert loop.time() - started < 0.05 + CANCEL_GRACE_SECONDS + 0.5
    release.set()
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_with_timeout_cancels_the_loser():
    t('tests.unit.test_timeouts.test_with_timeout_cancels_the_loser')
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    with pytest.raises(asyncio.TimeoutError):
        await with_timeout(slow(), 0.01)
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_with_timeout_propagates_operation_errors():
    t('tests.unit.test_timeouts.test_with_timeout_propagates_operation_errors')

    async def broken():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await with_timeout(broken(), 1.0)


@pytest.mark.asyncio
async def test_poll_until_succeeds_after_a_few_checks():
    t('tests.unit.test_timeouts.test_poll_until_succeeds_after_a_few_checks')
    calls = []

    async def check():
        calls.append(1)
        return len(calls) >= 3

    assert await poll_until(check, timeout=1.0, interval=0.01)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_poll_until_treats_check_errors_as_not_ready():
    t('tests.unit.test_timeouts.test_poll_until_treats_check_errors_as_not_ready')

    async def check():
        raise RuntimeError("page detached")

    assert not await poll_until(check, timeout=0.05, interval=0.01)


@pytest.mark.asyncio
async def test_poll_until_bounds_a_hung_check():
    t('tests.unit.test_timeouts.test_poll_until_bounds_a_hung_check')
    loop = asyncio.get_running_loop()
    started = loop.time()

    async def check():
        await asyncio.Event().wait()
        return True

    assert not await poll_until(check, timeout=0.05, interval=0.01)
    assert loop.time() - started < 0.05 + CANCEL_GRACE_SECONDS + 0.5
