"""Single-session booking state machine.

The engine walks one :class:`BookingRequest` through the facility pages in a
fixed order. Every page transition is a bounded readiness poll with its own
typed timeout. Only the contact-confirm click retries; any other failing step
ends the run. The whole run is raced against a duration cap, and the terminal
status is always written to the :class:`StatusStore` with teardown performed.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar

from automation.driver.human_behaviors import HumanBehavior
from automation.driver.protocol import PageDriver
from automation.executors.config import DEFAULT_TIMINGS, EngineTimings
from automation.executors.verification import VerificationHandler
from automation.shared.booking_contracts import (
    BookingRequest,
    RunResult,
    RunStatus,
    RunType,
    utc_now,
)
from automation.shared.errors import (
    ReservationError,
    ReservationErrorKind,
    classify_exception,
)
from automation.shared.timeouts import poll_until, with_timeout
from infrastructure.constants import DOM_SNAPSHOT_CHARS
from infrastructure.settings import UserSettings
from reservations.status_store import StatusStore

T = TypeVar("T")

CANCELLED_REASON = "Reservation cancelled"


class EngineState(Enum):
    IDLE = "idle"
    SESSION_STARTED = "session_started"
    NAVIGATED = "navigated"
    SPORT_SELECTED = "sport_selected"
    GROUP_SIZE_SET = "group_size_set"
    CONFIRMED_GROUP_SIZE = "confirmed_group_size"
    TIME_SLOT_SELECTED = "time_slot_selected"
    CONTACT_INFO_PAGE_READY = "contact_info_page_ready"
    CONTACT_FORM_FILLED = "contact_form_filled"
    CONTACT_CONFIRMED = "contact_confirmed"
    VERIFICATION_CHECKED = "verification_checked"
    VERIFICATION_PASSED = "verification_passed"
    FINISHED = "finished"


def make_attempt_id(run_type: RunType, request: BookingRequest, moment: datetime) -> str:
    prefix = "batch" if run_type is RunType.PARALLEL_BATCH else run_type.value
    return f"{prefix}_{request.short_id}_{moment.strftime('%Y%m%d%H%M%S')}"


class OrchestrationEngine:
    """Drive one booking request to a terminal :class:`RunStatus`."""

    def __init__(
        self,
        request: BookingRequest,
        driver: PageDriver,
        *,
        status_store: StatusStore,
        user: UserSettings,
        verifier: Optional[VerificationHandler] = None,
        run_type: RunType = RunType.MANUAL,
        timings: EngineTimings = DEFAULT_TIMINGS,
        behavior: Optional[HumanBehavior] = None,
        auto_close_on_failure: bool = True,
        attempt_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('automation.executors.engine.OrchestrationEngine.__init__')
        self.request = request
        self.driver = driver
        self.status_store = status_store
        self.user = user
        self.verifier = verifier
        self.run_type = run_type
        self.timings = timings
        self.behavior = behavior or HumanBehavior()
        self.auto_close_on_failure = auto_close_on_failure
        self.clock = clock
        self.attempt_id = attempt_id or make_attempt_id(run_type, request, clock())
        self.logger = logger or logging.getLogger("OrchestrationEngine")
        self.state = EngineState.IDLE
        self.history: List[EngineState] = [EngineState.IDLE]
        self.verification_start: Optional[datetime] = None
        self.confirm_attempts = 0
        self._terminal_written = False

    # ------------------------------------------------------------------
    # Run boundary
    # ------------------------------------------------------------------
    async def run(self) -> RunResult:
        """Execute every step; never raises except on external cancellation."""
        t('automation.executors.engine.OrchestrationEngine.run')

        loop = asyncio.get_running_loop()
        started = loop.time()
        await self.status_store.begin_run(self.request.request_id, self.run_type, self.attempt_id)
        self._log("info", "🚀 Starting %s for %s", self.run_type.value, self.request.name)

        # Cancellation during teardown still has to leave a terminal record.
        try:
            try:
                await with_timeout(
                    self._execute_steps(),
                    self.timings.run_timeout,
                    error_factory=lambda: ReservationError(ReservationErrorKind.RUN_TIMEOUT),
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_exception(exc)
                return await self._finish_failure(error, loop.time() - started)
            return await self._finish_success(loop.time() - started)
        except asyncio.CancelledError:
            if not self._terminal_written:
                await self._finish_cancelled()
            raise

    async def _record(self, status: RunStatus, artifact: Optional[str] = None) -> None:
        await self.status_store.record_terminal(
            self.request.request_id,
            self.run_type,
            self.attempt_id,
            status,
            artifact=artifact,
        )
        self._terminal_written = True

    async def _finish_success(self, duration: float) -> RunResult:
        self._transition(EngineState.FINISHED)
        self._log("info", "🎉 Reservation completed in %.1fs", duration)
        await self._best_effort(self.driver.disconnect(close_window=True), "disconnect")
        status = RunStatus.success()
        await self._record(status)
        return RunResult(
            request_id=self.request.request_id,
            attempt_id=self.attempt_id,
            status=status,
            duration_seconds=duration,
        )

    async def _finish_failure(self, error: ReservationError, duration: float) -> RunResult:
        self._transition(EngineState.FINISHED)
        self._log(
            "error",
            "❌ Reservation failed at %s [%s]: %s (%s)",
            self.history[-2].value if len(self.history) > 1 else EngineState.IDLE.value,
            error.code,
            error.message,
            error.technical_details,
        )

        source = await self._best_effort(self.driver.get_page_source(), "page source")
        if source:
            self._log("info", "📄 DOM snapshot: %s", source[:DOM_SNAPSHOT_CHARS])
        artifact = await self._best_effort(self.driver.take_screenshot(), "screenshot")
        await self._best_effort(
            self.driver.disconnect(close_window=self.auto_close_on_failure), "disconnect"
        )

        status = RunStatus.failed(error.message)
        await self._record(status, artifact)
        return RunResult(
            request_id=self.request.request_id,
            attempt_id=self.attempt_id,
            status=status,
            error_code=error.code,
            artifact=artifact,
            duration_seconds=duration,
        )

    async def _finish_cancelled(self) -> None:
        self._transition(EngineState.FINISHED)
        self._log("warning", "🛑 Run cancelled; tearing down session")
        await self._best_effort(self.driver.disconnect(close_window=True), "disconnect")
        await self._record(RunStatus.stopped(CANCELLED_REASON))

    async def _best_effort(self, awaitable: Awaitable[T], label: str) -> Optional[T]:
        try:
            return await with_timeout(awaitable, self.timings.diagnostics_timeout)
        except Exception as exc:  # pragma: no cover
            self._log("warning", "⚠️ %s failed: %s", label, exc)
            return None

    # ------------------------------------------------------------------
    # Step sequence
    # ------------------------------------------------------------------
    async def _execute_steps(self) -> None:
        await self._start_session()
        await self._navigate()
        await self._select_sport()
        await self._set_group_size()
        await self._confirm_group_size()
        await self._select_time_slot()
        await self._wait_for_contact_page()
        await self._fill_contact_form()
        await self._confirm_contact_info()
        await self._handle_verification()
        await self._await_final_page()

    async def _start_session(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._start_session')
        await self._task("Starting browser session...")
        try:
            if not await self.driver.is_session_valid():
                self._log("warning", "♻️ Previous session invalid; resetting driver")
                await self.driver.reset()
            await self.driver.connect()
        except ReservationError:
            raise
        except Exception as exc:
            raise ReservationError(ReservationErrorKind.NETWORK, str(exc) or type(exc).__name__) from exc
        self._transition(EngineState.SESSION_STARTED)

    async def _navigate(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._navigate')
        await self._task("Loading facility page...")
        try:
            await self.driver.navigate(self.request.facility_url)
        except Exception as exc:
            raise ReservationError(ReservationErrorKind.NETWORK, str(exc) or type(exc).__name__) from exc
        await self._require(
            self.driver.is_dom_ready,
            self.timings.page_load_timeout,
            ReservationErrorKind.PAGE_LOAD_TIMEOUT,
            "facility page",
        )
        self._transition(EngineState.NAVIGATED)

    async def _select_sport(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._select_sport')
        await self._task(f"Selecting {self.request.sport_name}...")
        if not await self.driver.find_and_click_element(self.request.sport_name):
            raise ReservationError(ReservationErrorKind.SPORT_BUTTON_NOT_FOUND)
        self._transition(EngineState.SPORT_SELECTED)

    async def _set_group_size(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._set_group_size')
        await self._task("Waiting for group size page...")
        await self._require(
            self.driver.is_group_size_page_ready,
            self.timings.group_size_timeout,
            ReservationErrorKind.GROUP_SIZE_PAGE_LOAD_TIMEOUT,
            "group size page",
        )
        if not await self.driver.fill_number_of_people(self.request.number_of_people):
            raise ReservationError(ReservationErrorKind.NUMBER_OF_PEOPLE_FIELD_NOT_FOUND)
        self._transition(EngineState.GROUP_SIZE_SET)

    async def _confirm_group_size(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._confirm_group_size')
        if not await self.driver.click_confirm_button():
            raise ReservationError(ReservationErrorKind.CONFIRM_BUTTON_NOT_FOUND)
        self._transition(EngineState.CONFIRMED_GROUP_SIZE)

    async def _select_time_slot(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._select_time_slot')
        selection = self.request.first_slot()
        if selection is None:
            self._log("warning", "⚠️ No time slots configured; skipping time selection")
        else:
            day, slot = selection
            await self._task(f"Selecting {day.short_name} {slot.formatted()}...")
            if not await self.driver.select_time_slot(day.short_name, slot.formatted()):
                raise ReservationError(ReservationErrorKind.TIME_SLOT_SELECTION_FAILED)
        self._transition(EngineState.TIME_SLOT_SELECTED)

    async def _wait_for_contact_page(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._wait_for_contact_page')
        await self._task("Waiting for contact information page...")
        await self._require(
            self.driver.is_contact_info_page_ready,
            self.timings.contact_info_timeout,
            ReservationErrorKind.CONTACT_INFO_PAGE_LOAD_TIMEOUT,
            "contact info page",
        )
        self._transition(EngineState.CONTACT_INFO_PAGE_READY)

    async def _fill_contact_form(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._fill_contact_form')
        await self._task("Filling contact information...")
        filled = await self.driver.autofill_contact_fields(
            self.user.phone_number.replace("-", ""),
            self.user.email,
            self.user.name,
        )
        if not filled:
            raise ReservationError(ReservationErrorKind.CONTACT_INFO_FIELD_NOT_FOUND)
        self._transition(EngineState.CONTACT_FORM_FILLED)

    async def _confirm_contact_info(self) -> None:
        """Click confirm until the page stops asking to retry.

        Returns after the first clean attempt and records its start time as
        the verification lower bound. Exhausting the attempts is terminal.
        """
        t('automation.executors.engine.OrchestrationEngine._confirm_contact_info')
        await self._task("Confirming contact information...")
        max_attempts = self.timings.max_confirm_attempts

        while self.confirm_attempts < max_attempts:
            if self.confirm_attempts > 0:
                await self.driver.add_quick_pause()
                await self.behavior.pause(*self.timings.pre_retry_pause)

            attempt_started = self.clock()
            clicked = await self.driver.click_contact_confirm_button()
            self.confirm_attempts += 1
            if not clicked:
                self._log(
                    "warning",
                    "⚠️ Confirm button click failed (attempt %s/%s)",
                    self.confirm_attempts,
                    max_attempts,
                )
                continue

            await asyncio.sleep(self.timings.post_click_settle)
            if await self.driver.detect_retry_text():
                self._log(
                    "warning",
                    "🤖 Retry challenge shown (attempt %s/%s)",
                    self.confirm_attempts,
                    max_attempts,
                )
                await self.driver.add_quick_pause()
                await self.behavior.pause(*self.timings.challenge_pause)
                continue

            self.verification_start = attempt_started.replace(microsecond=0)
            self._transition(EngineState.CONTACT_CONFIRMED)
            return

        raise ReservationError(ReservationErrorKind.CONTACT_INFO_CONFIRM_BUTTON_NOT_FOUND)

    async def _handle_verification(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._handle_verification')
        await asyncio.sleep(self.timings.post_confirm_settle)
        required = await self.driver.is_verification_challenge_present()
        self._transition(EngineState.VERIFICATION_CHECKED)
        if not required:
            self._log("info", "🛡️ No email verification required")
            return

        await self._task("Waiting for verification code...")
        if self.verifier is None:
            self._log("error", "📧 Verification required but no mail access is configured")
            raise ReservationError(ReservationErrorKind.EMAIL_VERIFICATION_FAILED)

        since = self.verification_start or self.clock().replace(microsecond=0)
        if not await self.verifier.verify(self.driver, self.attempt_id, since):
            raise ReservationError(ReservationErrorKind.EMAIL_VERIFICATION_FAILED)
        self._transition(EngineState.VERIFICATION_PASSED)

    async def _await_final_page(self) -> None:
        t('automation.executors.engine.OrchestrationEngine._await_final_page')
        ready = await poll_until(
            self.driver.is_dom_ready,
            timeout=self.timings.page_load_timeout,
            interval=self.timings.poll_interval,
            description="confirmation page",
        )
        if not ready:
            self._log("warning", "⚠️ Confirmation page did not report ready; treating run as complete")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _require(
        self,
        check: Callable[[], Awaitable[bool]],
        timeout: float,
        kind: ReservationErrorKind,
        description: str,
    ) -> None:
        ready = await poll_until(
            check,
            timeout=timeout,
            interval=self.timings.poll_interval,
            description=description,
        )
        if not ready:
            raise ReservationError(kind)

    def _transition(self, state: EngineState) -> None:
        self.state = state
        self.history.append(state)
        self._log("debug", "➡️ %s", state.value)

    async def _task(self, description: str) -> None:
        if self.run_type.releases_running_flag:
            await self.status_store.set_current_task(description)
        self._log("info", "%s", description)

    def _log(self, level: str, message: str, *args: object) -> None:
        getattr(self.logger, level)("[%s] " + message, self.attempt_id, *args)
