from tracking import t

import pytest

from infrastructure.settings import MailSettings, UserSettings
from reservations.validation import (
    ConflictSeverity,
    SlotConflict,
    ValidationError,
    conflict_summary,
    conflicts_with,
    detect_slot_conflicts,
    ensure_valid_booking_request,
    is_valid_facility_url,
    validate_booking_request,
    validate_user_settings,
)
from tests.helpers import make_request


def test_valid_request_has_no_errors():
    t('tests.unit.test_validation.test_valid_request_has_no_errors')
    request = make_request()
    assert validate_booking_request(request) == []
    assert ensure_valid_booking_request(request) is request


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://reservation.frontdesksuite.ca/rcfs/cardelrec/Home/Index", True),
        ("http://reservation.frontdesksuite.ca/rcfs/x", True),
        ("https://reservation.frontdesksuite.ca/other/x", False),
        ("https://evil.example.com/rcfs/x", False),
        ("ftp://reservation.frontdesksuite.ca/rcfs/x", False),
        ("", False),
    ],
)
def test_facility_url_validation(url, expected):
    t('tests.unit.test_validation.test_facility_url_validation')
    assert is_valid_facility_url(url) is expected


def test_invalid_request_collects_every_problem():
    t('tests.unit.test_validation.test_invalid_request_collects_every_problem')
    request = make_request(
        name="x" * 61,
        facility_url="https://example.com",
        sport_name="",
        number_of_people=3,
        day_time_slots={"Monday": []},
    )

    errors = validate_booking_request(request)

    assert len(errors) == 5
    assert "Sport name is required" in errors
    assert "No time slots selected for Monday" in errors

    with pytest.raises(ValidationError) as excinfo:
        ensure_valid_booking_request(request)
    assert excinfo.value.errors == errors


def test_request_without_days_is_invalid():
    t('tests.unit.test_validation.test_request_without_days_is_invalid')
    assert validate_booking_request(make_request(day_time_slots={})) == [
        "At least one time slot must be selected"
    ]


def test_user_settings_validation():
    t('tests.unit.test_validation.test_user_settings_validation')
    good_user = UserSettings(name="Jordan", phone_number="613-555-0123", email="jordan@example.com")
    good_mail = MailSettings(server="imap.example.com", email="jordan@example.com")
    assert validate_user_settings(good_user, good_mail) == []

    bad_user = UserSettings(name=" ", phone_number="phone", email="not-an-email")
    bad_mail = MailSettings(server="bad host!", email="nope")
    assert validate_user_settings(bad_user, bad_mail) == [
        "Name is required",
        "Invalid phone number format",
        "Invalid email address format",
        "Invalid IMAP email address format",
        "Invalid IMAP server address",
    ]


def test_detects_shared_weekday_and_time():
    t('tests.unit.test_validation.test_detects_shared_weekday_and_time')
    first = make_request("Badminton A", day_time_slots={"Tuesday": ["18:30", "19:30"], "Friday": ["18:30"]})
    second = make_request("Badminton B", day_time_slots={"Tuesday": ["18:30"], "Thursday": ["19:30"]})
    third = make_request("Volleyball", day_time_slots={"Monday": ["18:30"]})

    conflicts = detect_slot_conflicts([first, second, third])

    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert (conflict.first, conflict.second) == (first, second)
    assert conflict.details == ("Tuesday at 6:30 PM",)
    assert conflict.severity is ConflictSeverity.WARNING
    assert conflict.describe() == (
        "Time slot overlap detected: Badminton A / Badminton B (Tuesday at 6:30 PM)"
    )


def test_new_configuration_is_checked_against_existing_ones():
    t('tests.unit.test_validation.test_new_configuration_is_checked_against_existing_ones')
    existing_a = make_request("A", day_time_slots={"Tuesday": ["18:30"]})
    existing_b = make_request("B", day_time_slots={"Tuesday": ["18:30"]})
    new = make_request("New", day_time_slots={"Tuesday": ["18:30"], "Friday": ["20:00"]})

    conflicts = conflicts_with(new, [existing_a, existing_b])

    assert {c.first.name for c in conflicts} == {"A", "B"}
    assert all(c.involves(new.request_id) for c in conflicts)
    # Editing a saved configuration must not conflict with its own stored copy
    assert conflicts_with(existing_a, [existing_a]) == []


def test_conflict_summary_counts_by_severity():
    t('tests.unit.test_validation.test_conflict_summary_counts_by_severity')
    a = make_request("A")
    b = make_request("B")
    warning = SlotConflict(first=a, second=b, details=("Tuesday at 6:30 PM",))
    critical = SlotConflict(first=a, second=b, details=(), severity=ConflictSeverity.CRITICAL)

    assert conflict_summary([]) == "No conflicts detected"
    assert conflict_summary([warning, warning, critical]) == (
        "Conflict Summary:\n• 1 critical conflicts\n• 2 warnings"
    )
