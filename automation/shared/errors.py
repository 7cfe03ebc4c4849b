"""Closed error taxonomy for booking runs.

Every distinguishable failure point has one :class:`ReservationErrorKind`
member with a stable code. Category and user-facing message are derived from
the kind through a single table so the two can never drift apart.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ErrorCategory(Enum):
    NETWORK = "network"
    VALIDATION = "validation"
    AUTOMATION = "automation"
    SYSTEM = "system"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


class ReservationErrorKind(Enum):
    """One member per failure point; the value is the stable error code."""

    NETWORK = "RESERVATION_NETWORK_001"
    FACILITY_NOT_FOUND = "FACILITY_001"
    SLOT_UNAVAILABLE = "SLOT_001"
    AUTOMATION_FAILED = "AUTOMATION_001"
    UNKNOWN = "UNKNOWN_001"
    PAGE_LOAD_TIMEOUT = "TIMEOUT_001"
    GROUP_SIZE_PAGE_LOAD_TIMEOUT = "TIMEOUT_002"
    NUMBER_OF_PEOPLE_FIELD_NOT_FOUND = "ELEMENT_001"
    CONFIRM_BUTTON_NOT_FOUND = "ELEMENT_002"
    TIME_SLOT_SELECTION_FAILED = "SELECTION_001"
    CONTACT_INFO_PAGE_LOAD_TIMEOUT = "TIMEOUT_003"
    CONTACT_INFO_FIELD_NOT_FOUND = "ELEMENT_003"
    CONTACT_INFO_CONFIRM_BUTTON_NOT_FOUND = "ELEMENT_004"
    EMAIL_VERIFICATION_FAILED = "EMAIL_001"
    SPORT_BUTTON_NOT_FOUND = "ELEMENT_005"
    RUN_TIMEOUT = "TIMEOUT_004"

    @property
    def code(self) -> str:
        return self.value


@dataclass(frozen=True)
class _KindInfo:
    category: ErrorCategory
    message: str
    technical: str
    retryable: bool = False


_KIND_INFO: Dict[ReservationErrorKind, _KindInfo] = {
    ReservationErrorKind.NETWORK: _KindInfo(
        ErrorCategory.NETWORK,
        "Network error",
        "Network request failed",
        retryable=True,
    ),
    ReservationErrorKind.FACILITY_NOT_FOUND: _KindInfo(
        ErrorCategory.VALIDATION,
        "Facility not found.",
        "Facility URL did not resolve to a booking page",
    ),
    ReservationErrorKind.SLOT_UNAVAILABLE: _KindInfo(
        ErrorCategory.VALIDATION,
        "Selected time slot is unavailable.",
        "Requested slot not offered by the facility",
    ),
    ReservationErrorKind.AUTOMATION_FAILED: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Automation failed",
        "Page automation step failed",
    ),
    ReservationErrorKind.UNKNOWN: _KindInfo(
        ErrorCategory.UNKNOWN,
        "Unknown error",
        "Unclassified error",
    ),
    ReservationErrorKind.PAGE_LOAD_TIMEOUT: _KindInfo(
        ErrorCategory.SYSTEM,
        "Page failed to load in time.",
        "DOM ready state not reached before the page-load timeout",
        retryable=True,
    ),
    ReservationErrorKind.GROUP_SIZE_PAGE_LOAD_TIMEOUT: _KindInfo(
        ErrorCategory.SYSTEM,
        "Group size page failed to load in time.",
        "Number-of-people input not detected before timeout",
        retryable=True,
    ),
    ReservationErrorKind.NUMBER_OF_PEOPLE_FIELD_NOT_FOUND: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Number of people field not found.",
        "No selector matched the number-of-people input",
    ),
    ReservationErrorKind.CONFIRM_BUTTON_NOT_FOUND: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Confirm button not found.",
        "Group size confirm button could not be clicked",
    ),
    ReservationErrorKind.TIME_SLOT_SELECTION_FAILED: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Failed to select time slot.",
        "Day section or time button could not be clicked",
    ),
    ReservationErrorKind.CONTACT_INFO_PAGE_LOAD_TIMEOUT: _KindInfo(
        ErrorCategory.SYSTEM,
        "Contact information page failed to load in time.",
        "Contact form fields not detected before timeout",
        retryable=True,
    ),
    ReservationErrorKind.CONTACT_INFO_FIELD_NOT_FOUND: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Contact information fields not found.",
        "Phone, email or name input could not be filled",
    ),
    ReservationErrorKind.CONTACT_INFO_CONFIRM_BUTTON_NOT_FOUND: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Contact info confirm button not found.",
        "Contact confirm attempts exhausted or button missing",
    ),
    ReservationErrorKind.EMAIL_VERIFICATION_FAILED: _KindInfo(
        ErrorCategory.AUTHENTICATION,
        "Email verification failed.",
        "No verification code was accepted",
    ),
    ReservationErrorKind.SPORT_BUTTON_NOT_FOUND: _KindInfo(
        ErrorCategory.AUTOMATION,
        "Sport button not found.",
        "No clickable element matched the activity name",
    ),
    ReservationErrorKind.RUN_TIMEOUT: _KindInfo(
        ErrorCategory.SYSTEM,
        "Reservation timed out.",
        "Whole-run duration cap exceeded",
    ),
}

_missing = set(ReservationErrorKind) - set(_KIND_INFO)
if _missing:  # pragma: no cover - import-time guard
    raise RuntimeError(f"Error kinds without a description: {sorted(k.name for k in _missing)}")


def category_for(kind: ReservationErrorKind) -> ErrorCategory:
    return _KIND_INFO[kind].category


def describe(kind: ReservationErrorKind, detail: Optional[str] = None) -> str:
    """User-facing message for ``kind``."""

    message = _KIND_INFO[kind].message
    if kind in {ReservationErrorKind.NETWORK, ReservationErrorKind.AUTOMATION_FAILED,
                ReservationErrorKind.UNKNOWN} and detail:
        return f"{message}: {detail}"
    return message


def is_retryable(kind: ReservationErrorKind) -> bool:
    return _KIND_INFO[kind].retryable


class ReservationError(RuntimeError):
    """Typed failure raised by booking steps."""

    def __init__(self, kind: ReservationErrorKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(describe(kind, detail))

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def category(self) -> ErrorCategory:
        return category_for(self.kind)

    @property
    def message(self) -> str:
        return describe(self.kind, self.detail)

    @property
    def technical_details(self) -> str:
        base = _KIND_INFO[self.kind].technical
        return f"{base} ({self.detail})" if self.detail else base

    def __repr__(self) -> str:
        return f"ReservationError({self.kind.name}, code={self.code!r})"


def classify_exception(exc: BaseException) -> ReservationError:
    """Map any exception raised inside a run onto the taxonomy."""

    if isinstance(exc, ReservationError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ReservationError(ReservationErrorKind.RUN_TIMEOUT)
    if isinstance(exc, (ConnectionError, OSError)):
        return ReservationError(ReservationErrorKind.NETWORK, str(exc) or type(exc).__name__)
    return ReservationError(ReservationErrorKind.UNKNOWN, str(exc) or type(exc).__name__)
