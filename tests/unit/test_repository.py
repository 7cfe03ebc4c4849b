from tracking import t
import json

import pytest

from reservations.config_store import load_booking_requests
from reservations.repository import KeyValueRepository
from tests.helpers import FACILITY_URL, DummyLogger


def test_repository_round_trip(tmp_path):
    t('tests.unit.test_repository.test_repository_round_trip')
    path = tmp_path / "nested" / "status.json"
    repository = KeyValueRepository(str(path), logger=DummyLogger())

    repository.set("user_settings", {"name": "Jordan"})
    repository.set("last_run_info", {})

    reloaded = KeyValueRepository(str(path), logger=DummyLogger())
    assert reloaded.load() == {"user_settings": {"name": "Jordan"}, "last_run_info": {}}
    assert reloaded.get("missing", "default") == "default"
    assert not list(path.parent.glob("*.tmp"))


def test_repository_tolerates_corrupt_files(tmp_path):
    t('tests.unit.test_repository.test_repository_tolerates_corrupt_files')
    path = tmp_path / "status.json"
    path.write_text("{not json", encoding="utf-8")
    logger = DummyLogger()

    assert KeyValueRepository(str(path), logger=logger).load() == {}
    assert logger.last("error") is not None

    path.write_text("[1, 2]", encoding="utf-8")
    assert KeyValueRepository(str(path), logger=DummyLogger()).load() == {}


def test_write_over_corrupt_file_keeps_a_backup(tmp_path):
    t('tests.unit.test_repository.test_write_over_corrupt_file_keeps_a_backup')
    path = tmp_path / "status.json"
    path.write_text('{"user_settings": {"name": "Jordan"', encoding="utf-8")
    logger = DummyLogger()
    repository = KeyValueRepository(str(path), logger=logger)

    repository.set("last_run_info", {})

    backups = list(tmp_path.glob("status.json.corrupt-*"))
    assert len(backups) == 1
    assert backups[0].read_text(encoding="utf-8") == '{"user_settings": {"name": "Jordan"'
    assert repository.load() == {"last_run_info": {}}
    assert logger.last("warning") is not None

    repository.set("user_settings", {"name": "Jordan"})
    assert len(list(tmp_path.glob("status.json.corrupt-*"))) == 1


def _config(name, **overrides):
    payload = {
        "id": f"{name.lower()}-id",
        "name": name,
        "facility_url": FACILITY_URL,
        "sport_name": "Badminton",
        "number_of_people": 1,
        "day_time_slots": {"Wednesday": ["19:00"]},
        "enabled": True,
    }
    payload.update(overrides)
    return payload


def test_load_booking_requests_skips_invalid_and_disabled(tmp_path):
    t('tests.unit.test_repository.test_load_booking_requests_skips_invalid_and_disabled')
    path = tmp_path / "configs.json"
    path.write_text(
        json.dumps(
            {
                "configs": [
                    _config("Good"),
                    _config("Disabled", enabled=False),
                    _config("BadUrl", facility_url="https://example.com/rcfs/x"),
                    _config("BadDay", day_time_slots={"Someday": ["19:00"]}),
                ]
            }
        ),
        encoding="utf-8",
    )
    logger = DummyLogger()

    requests = load_booking_requests(str(path), log=logger)
    everything = load_booking_requests(str(path), only_enabled=False, log=DummyLogger())

    assert [request.name for request in requests] == ["Good"]
    assert [request.name for request in everything] == ["Good", "Disabled"]
    assert len([entry for entry in logger.records if entry[0] == "warning"]) == 2


def test_load_booking_requests_rejects_non_list_payload(tmp_path):
    t('tests.unit.test_repository.test_load_booking_requests_rejects_non_list_payload')
    path = tmp_path / "configs.json"
    path.write_text(json.dumps({"configs": "nope"}), encoding="utf-8")

    with pytest.raises(ValueError):
        load_booking_requests(str(path), log=DummyLogger())
