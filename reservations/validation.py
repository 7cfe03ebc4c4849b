"""Validation for booking requests, user contact settings and slot conflicts."""

from __future__ import annotations
from tracking import t

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple
from urllib.parse import urlparse

from automation.shared.booking_contracts import BookingRequest
from infrastructure.constants import (
    EMAIL_PATTERN,
    FACILITY_HOST,
    FACILITY_PATH_PREFIX,
    HOSTNAME_PATTERN,
    MAX_CONFIGURATION_NAME_LENGTH,
    MAX_NUMBER_OF_PEOPLE,
    MAX_SPORT_NAME_LENGTH,
    MIN_NUMBER_OF_PEOPLE,
    PHONE_PATTERN,
)
from infrastructure.settings import MailSettings, UserSettings


class ValidationError(ValueError):
    """Raised with every problem found, joined into one message."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def is_valid_facility_url(url: str) -> bool:
    t('reservations.validation.is_valid_facility_url')
    parsed = urlparse(url or "")
    return (
        parsed.scheme in {"http", "https"}
        and parsed.hostname == FACILITY_HOST
        and parsed.path.startswith(FACILITY_PATH_PREFIX)
    )


def validate_booking_request(request: BookingRequest) -> List[str]:
    """Return human-readable problems; empty when the request is usable."""
    t('reservations.validation.validate_booking_request')

    errors: List[str] = []
    name = request.name.strip()
    if not name:
        errors.append("Configuration name is required")
    elif len(name) > MAX_CONFIGURATION_NAME_LENGTH:
        errors.append(
            f"Configuration name must be {MAX_CONFIGURATION_NAME_LENGTH} characters or less"
        )

    if not is_valid_facility_url(request.facility_url):
        errors.append(
            f"Invalid facility URL. Must be a https://{FACILITY_HOST}{FACILITY_PATH_PREFIX}... address"
        )

    sport = request.sport_name.strip()
    if not sport:
        errors.append("Sport name is required")
    elif len(sport) > MAX_SPORT_NAME_LENGTH:
        errors.append(f"Sport name must be {MAX_SPORT_NAME_LENGTH} characters or less")

    if not MIN_NUMBER_OF_PEOPLE <= request.number_of_people <= MAX_NUMBER_OF_PEOPLE:
        errors.append(
            f"Number of people must be between {MIN_NUMBER_OF_PEOPLE} and {MAX_NUMBER_OF_PEOPLE}"
        )

    if not request.day_time_slots:
        errors.append("At least one time slot must be selected")
    else:
        for day, slots in request.day_time_slots:
            if not slots:
                errors.append(f"No time slots selected for {day.value}")
    return errors


def ensure_valid_booking_request(request: BookingRequest) -> BookingRequest:
    t('reservations.validation.ensure_valid_booking_request')
    errors = validate_booking_request(request)
    if errors:
        raise ValidationError(errors)
    return request


def validate_user_settings(user: UserSettings, mail: MailSettings) -> List[str]:
    t('reservations.validation.validate_user_settings')

    errors: List[str] = []
    if not user.name.strip():
        errors.append("Name is required")
    if user.phone_number and not re.match(PHONE_PATTERN, user.phone_number.replace("-", "")):
        errors.append("Invalid phone number format")
    if user.email and not re.match(EMAIL_PATTERN, user.email):
        errors.append("Invalid email address format")
    if mail.email and not re.match(EMAIL_PATTERN, mail.email):
        errors.append("Invalid IMAP email address format")
    if mail.server and not re.match(HOSTNAME_PATTERN, mail.server):
        errors.append("Invalid IMAP server address")
    return errors


# ---------------------------------------------------------------------------
# Slot conflicts across configurations
# ---------------------------------------------------------------------------
OVERLAP_MESSAGE = "Time slot overlap detected"


class ConflictSeverity(Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Information"


@dataclass(frozen=True)
class SlotConflict:
    """Two configurations asking for the same weekday and time."""

    first: BookingRequest
    second: BookingRequest
    details: Tuple[str, ...]
    severity: ConflictSeverity = ConflictSeverity.WARNING
    message: str = OVERLAP_MESSAGE

    def involves(self, request_id: str) -> bool:
        return request_id in (self.first.request_id, self.second.request_id)

    def describe(self) -> str:
        return f"{self.message}: {self.first.name} / {self.second.name} ({', '.join(self.details)})"


def _overlapping_slots(first: BookingRequest, second: BookingRequest) -> Tuple[str, ...]:
    overlaps: List[str] = []
    for day, slots in first.day_time_slots:
        others = second.slots_for(day)
        for slot in slots:
            if slot in others:
                overlaps.append(f"{day.value} at {slot.formatted()}")
    return tuple(overlaps)


def detect_slot_conflicts(requests: Sequence[BookingRequest]) -> List[SlotConflict]:
    """Every pair of configurations that share a weekday and time slot."""
    t('reservations.validation.detect_slot_conflicts')
    conflicts: List[SlotConflict] = []
    for index, first in enumerate(requests):
        for second in requests[index + 1:]:
            details = _overlapping_slots(first, second)
            if details:
                conflicts.append(SlotConflict(first=first, second=second, details=details))
    return conflicts


def conflicts_with(new: BookingRequest, existing: Sequence[BookingRequest]) -> List[SlotConflict]:
    t('reservations.validation.conflicts_with')
    others = [request for request in existing if request.request_id != new.request_id]
    return [c for c in detect_slot_conflicts([*others, new]) if c.involves(new.request_id)]


def conflict_summary(conflicts: Sequence[SlotConflict]) -> str:
    t('reservations.validation.conflict_summary')
    if not conflicts:
        return "No conflicts detected"
    lines = ["Conflict Summary:"]
    labels = {
        ConflictSeverity.CRITICAL: "critical conflicts",
        ConflictSeverity.WARNING: "warnings",
        ConflictSeverity.INFO: "informational conflicts",
    }
    for severity, label in labels.items():
        count = sum(1 for conflict in conflicts if conflict.severity is severity)
        if count:
            lines.append(f"• {count} {label}")
    return "\n".join(lines)
