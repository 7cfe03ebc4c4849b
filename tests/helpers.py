"""Shared fakes and utilities for unit tests."""

from __future__ import annotations
from tracking import t

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from automation.executors.config import EngineTimings
from automation.shared.booking_contracts import BookingRequest
from infrastructure.settings import UserSettings
from mail.extraction import VerificationCode
from reservations.repository import KeyValueRepository
from reservations.status_store import StatusStore


class DummyLogger:
    """Lightweight stand-in for ``logging.Logger`` that records calls."""

    def __init__(self) -> None:
        t('tests.helpers.DummyLogger.__init__')
        self.records: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []
        # ``entries`` is kept for compatibility with existing assertions.
        self.entries = self.records

    def _record(self, level: str, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger._record')
        self.records.append((level, args, kwargs))

    def debug(self, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger.debug')
        self._record("debug", *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger.info')
        self._record("info", *args, **kwargs)

    def warning(self, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger.warning')
        self._record("warning", *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger.error')
        self._record("error", *args, **kwargs)

    def critical(self, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger.critical')
        self._record("critical", *args, **kwargs)

    def exception(self, *args: Any, **kwargs: Any) -> None:
        t('tests.helpers.DummyLogger.exception')
        self._record("exception", *args, **kwargs)

    @property
    def messages(self) -> List[Tuple[str, Any]]:
        """Return formatted messages for quick assertions."""
        t('tests.helpers.DummyLogger.messages')

        formatted: List[Tuple[str, Any]] = []
        for level, args, kwargs in self.records:
            message: Any = kwargs.get("msg")
            if args:
                template = args[0]
                if isinstance(template, str) and len(args) > 1:
                    try:
                        message = template % args[1:]
                    except (TypeError, ValueError):
                        message = template
                else:
                    message = template
            formatted.append((level, message))
        return formatted

    def clear(self) -> None:
        t('tests.helpers.DummyLogger.clear')
        self.records.clear()

    def last(self, level: str | None = None) -> Tuple[str, Tuple[Any, ...], Dict[str, Any]] | None:
        """Return the most recent record, optionally filtered by level."""
        t('tests.helpers.DummyLogger.last')

        if not self.records:
            return None
        if level is None:
            return self.records[-1]
        for entry in reversed(self.records):
            if entry[0] == level:
                return entry
        return None


# ----------------------------------------------------------------------
# Booking fakes
# ----------------------------------------------------------------------

FACILITY_URL = "https://reservation.frontdesksuite.ca/rcfs/cardelrec/Home/Index"


def fast_timings(**overrides: Any) -> EngineTimings:
    """Engine timings scaled down so a full run finishes in milliseconds."""
    t('tests.helpers.fast_timings')

    values: Dict[str, Any] = dict(
        page_load_timeout=0.2,
        group_size_timeout=0.2,
        contact_info_timeout=0.2,
        poll_interval=0.01,
        pre_retry_pause=(0.0, 0.0),
        challenge_pause=(0.0, 0.0),
        post_click_settle=0.0,
        post_confirm_settle=0.0,
        verification_page_timeout=0.2,
        verification_poll_interval=0.01,
        verification_round_wait=0.01,
        run_timeout=5.0,
        diagnostics_timeout=1.0,
    )
    values.update(overrides)
    return EngineTimings(**values)


def make_request(name: str = "Badminton Tuesday", request_id: str | None = None, **overrides: Any) -> BookingRequest:
    t('tests.helpers.make_request')
    values: Dict[str, Any] = dict(
        name=name,
        facility_url=FACILITY_URL,
        sport_name="Badminton",
        number_of_people=2,
        day_time_slots={"Tuesday": ["18:30"]},
        request_id=request_id,
    )
    values.update(overrides)
    return BookingRequest.create(**values)


def make_user() -> UserSettings:
    return UserSettings(name="Jordan Lee", phone_number="613-555-0123", email="jordan@example.com")


def make_store(tmp_path: Any, **kwargs: Any) -> StatusStore:
    t('tests.helpers.make_store')
    repository = KeyValueRepository(str(tmp_path / "status.json"), logger=DummyLogger())
    return StatusStore(repository, logger=DummyLogger(), **kwargs)


class FakePageDriver:
    """Scripted :class:`PageDriver` that records every call it receives."""

    def __init__(self, instance_id: str = "fake", **script: Any) -> None:
        t('tests.helpers.FakePageDriver.__init__')
        self.instance_id = instance_id
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.session_valid: bool = script.pop("session_valid", True)
        self.connect_error: Optional[BaseException] = script.pop("connect_error", None)
        self.dom_ready: bool = script.pop("dom_ready", True)
        self.group_ready: bool = script.pop("group_ready", True)
        self.contact_ready: bool = script.pop("contact_ready", True)
        self.verification_page_ready: bool = script.pop("verification_page_ready", True)
        self.sport_found: bool = script.pop("sport_found", True)
        self.people_filled: bool = script.pop("people_filled", True)
        self.confirm_clicked: bool = script.pop("confirm_clicked", True)
        self.slot_selected: bool = script.pop("slot_selected", True)
        self.contact_filled: bool = script.pop("contact_filled", True)
        self.contact_clicks: List[bool] = list(script.pop("contact_clicks", []))
        self.retry_texts: List[bool] = list(script.pop("retry_texts", []))
        self.always_retry: bool = script.pop("always_retry", False)
        self.challenge_present: bool = script.pop("challenge_present", False)
        self.accepted_codes: Set[str] = set(script.pop("accepted_codes", ()))
        self.screenshot_path: Optional[str] = script.pop("screenshot_path", "screenshots/failure.png")
        self.page_source: str = script.pop("page_source", "<html><body>booking</body></html>")
        self.hang_on: Optional[str] = script.pop("hang_on", None)
        if script:
            raise TypeError(f"Unknown script keys: {sorted(script)}")

    def _called(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    async def _maybe_hang(self, name: str) -> None:
        if self.hang_on == name:
            await asyncio.Event().wait()

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def args_for(self, name: str) -> List[Tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    async def connect(self) -> None:
        self._called("connect")
        await self._maybe_hang("connect")
        if self.connect_error is not None:
            raise self.connect_error

    async def disconnect(self, close_window: bool = True) -> None:
        self._called("disconnect", close_window)

    async def is_session_valid(self) -> bool:
        self._called("is_session_valid")
        return self.session_valid

    async def reset(self) -> None:
        self._called("reset")
        self.session_valid = True

    async def navigate(self, url: str) -> None:
        self._called("navigate", url)
        await self._maybe_hang("navigate")

    async def is_dom_ready(self) -> bool:
        self._called("is_dom_ready")
        return self.dom_ready

    async def is_group_size_page_ready(self) -> bool:
        self._called("is_group_size_page_ready")
        return self.group_ready

    async def is_contact_info_page_ready(self) -> bool:
        self._called("is_contact_info_page_ready")
        return self.contact_ready

    async def is_verification_page_ready(self) -> bool:
        self._called("is_verification_page_ready")
        return self.verification_page_ready

    async def page_contains_text(self, text: str) -> bool:
        self._called("page_contains_text", text)
        return text in self.page_source

    async def find_and_click_element(self, text: str) -> bool:
        self._called("find_and_click_element", text)
        await self._maybe_hang("find_and_click_element")
        return self.sport_found

    async def fill_field(self, selector: str, value: str) -> bool:
        self._called("fill_field", selector, value)
        return True

    async def fill_number_of_people(self, count: int) -> bool:
        self._called("fill_number_of_people", count)
        return self.people_filled

    async def click_confirm_button(self) -> bool:
        self._called("click_confirm_button")
        return self.confirm_clicked

    async def select_time_slot(self, day: str, time: str) -> bool:
        self._called("select_time_slot", day, time)
        return self.slot_selected

    async def autofill_contact_fields(self, phone: str, email: str, name: str) -> bool:
        self._called("autofill_contact_fields", phone, email, name)
        return self.contact_filled

    async def click_contact_confirm_button(self) -> bool:
        self._called("click_contact_confirm_button")
        return self.contact_clicks.pop(0) if self.contact_clicks else True

    async def detect_retry_text(self) -> bool:
        self._called("detect_retry_text")
        if self.always_retry:
            return True
        return self.retry_texts.pop(0) if self.retry_texts else False

    async def add_quick_pause(self) -> None:
        self._called("add_quick_pause")

    async def is_verification_challenge_present(self) -> bool:
        self._called("is_verification_challenge_present")
        return self.challenge_present

    async def submit_verification_code(self, code: str) -> bool:
        self._called("submit_verification_code", code)
        return code in self.accepted_codes

    async def take_screenshot(self) -> Optional[str]:
        self._called("take_screenshot")
        await self._maybe_hang("take_screenshot")
        return self.screenshot_path

    async def get_page_source(self) -> Optional[str]:
        self._called("get_page_source")
        return self.page_source


class InMemoryCredentialStore:
    """Dictionary-backed credential store."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None) -> None:
        self._secrets = dict(secrets or {})

    def get_secret(self, reference: str) -> Optional[str]:
        return self._secrets.get(reference)


class FakeMailFetcher:
    """In-memory inbox returning :class:`VerificationCode` entries."""

    def __init__(
        self,
        codes: Iterable[VerificationCode] = (),
        *,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        t('tests.helpers.FakeMailFetcher.__init__')
        self.codes = list(codes)
        self.error = error
        self.delay = delay
        self.calls: List[datetime] = []

    def deliver(self, value: str, discovered_at: datetime) -> None:
        self.codes.append(VerificationCode(value=value, discovered_at=discovered_at))

    async def fetch_codes(self, since: datetime) -> List[VerificationCode]:
        self.calls.append(since)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [code for code in self.codes if code.discovered_at >= since]
