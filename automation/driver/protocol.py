"""Page driver capability consumed by the orchestration engine.

A driver owns exactly one browser session. Readiness methods are single
checks that return immediately; the engine does the polling and applies the
timeouts. Every method must resolve without hanging, and failures are
reported as ``False`` / ``None`` rather than raised, except for
``connect``/``navigate`` which raise on unrecoverable transport errors.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class PageDriver(Protocol):
    instance_id: str

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        ...

    async def disconnect(self, close_window: bool = True) -> None:
        ...

    async def is_session_valid(self) -> bool:
        ...

    async def reset(self) -> None:
        ...

    async def navigate(self, url: str) -> None:
        ...

    # ------------------------------------------------------------------
    # Readiness checks
    # ------------------------------------------------------------------
    async def is_dom_ready(self) -> bool:
        ...

    async def is_group_size_page_ready(self) -> bool:
        ...

    async def is_contact_info_page_ready(self) -> bool:
        ...

    async def is_verification_page_ready(self) -> bool:
        ...

    async def page_contains_text(self, text: str) -> bool:
        ...

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------
    async def find_and_click_element(self, text: str) -> bool:
        ...

    async def fill_field(self, selector: str, value: str) -> bool:
        ...

    async def fill_number_of_people(self, count: int) -> bool:
        ...

    async def click_confirm_button(self) -> bool:
        ...

    async def select_time_slot(self, day: str, time: str) -> bool:
        ...

    async def autofill_contact_fields(self, phone: str, email: str, name: str) -> bool:
        ...

    async def click_contact_confirm_button(self) -> bool:
        ...

    async def detect_retry_text(self) -> bool:
        ...

    async def add_quick_pause(self) -> None:
        ...

    async def is_verification_challenge_present(self) -> bool:
        ...

    async def submit_verification_code(self, code: str) -> bool:
        ...

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    async def take_screenshot(self) -> Optional[str]:
        ...

    async def get_page_source(self) -> Optional[str]:
        ...
