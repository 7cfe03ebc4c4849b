from tracking import t
import json
from datetime import datetime

import pytest
import pytz

from automation import cli
from automation.shared.booking_contracts import RunResult, RunStatus, RunType
from infrastructure.settings import AppSettings
from reservations.scheduler.metrics import BatchStats
from tests.helpers import make_request


def test_parser_accepts_every_command():
    t('tests.unit.test_cli.test_parser_accepts_every_command')
    parser = cli.build_parser()

    run = parser.parse_args(["run", "--config", "configs.json", "--id", "abcd1234", "--headed"])
    assert (run.command, run.config, run.id, run.headed) == ("run", "configs.json", "abcd1234", True)
    assert parser.parse_args(["batch", "--config", "c.json"]).headed is False
    assert parser.parse_args(["status"]).command == "status"
    assert parser.parse_args(["check-mail"]).command == "check-mail"

    with pytest.raises(SystemExit):
        parser.parse_args(["run"])


def test_status_prints_recorded_runs(tmp_path, monkeypatch, capsys):
    t('tests.unit.test_cli.test_status_prints_recorded_runs')
    status_file = tmp_path / "status.json"
    status_file.write_text(
        json.dumps(
            {
                "last_run_info": {
                    "abcdef12-0000": {
                        "request_id": "abcdef12-0000",
                        "status": {"state": "failed", "reason": "Sport button not found."},
                        "timestamp": "2026-03-03T18:30:00+00:00",
                        "run_type": "manual",
                        "attempt_id": "manual_abcdef12_20260303183000",
                        "artifact": "screenshots/fail.png",
                    }
                },
                "last_batch": {"status": "partial", "message": "1 successful, 1 failed"},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("STATUS_FILE", str(status_file))
    monkeypatch.setattr(cli, "setup_logging", lambda: str(tmp_path))

    assert cli.main(["status"]) == 0

    output = capsys.readouterr().out
    assert "abcdef12" in output
    assert "failed: Sport button not found." in output
    assert "screenshots/fail.png" in output
    assert "Last batch: partial - 1 successful, 1 failed" in output


def test_check_mail_requires_configuration(tmp_path, monkeypatch, capsys):
    t('tests.unit.test_cli.test_check_mail_requires_configuration')
    monkeypatch.setenv("STATUS_FILE", str(tmp_path / "status.json"))
    monkeypatch.setenv("IMAP_SERVER", "")
    monkeypatch.setattr(cli, "setup_logging", lambda: str(tmp_path))

    assert cli.main(["check-mail"]) == 2
    assert "IMAP settings are incomplete" in capsys.readouterr().out


def test_run_parser_accepts_scheduling_flags():
    t('tests.unit.test_cli.test_run_parser_accepts_scheduling_flags')
    parser = cli.build_parser()

    scheduled = parser.parse_args(["run", "--config", "c.json", "--prior", "3", "--now"])
    assert (scheduled.prior, scheduled.now) == (3, True)
    manual = parser.parse_args(["run", "--config", "c.json"])
    assert (manual.prior, manual.now) == (None, False)

    for bad in ("0", "-1", "two"):
        with pytest.raises(SystemExit):
            parser.parse_args(["run", "--config", "c.json", "--prior", bad])


def _scheduled_env(tmp_path, monkeypatch, local_now):
    configs = tmp_path / "configs.json"
    configs.write_text(
        json.dumps(
            [
                make_request("Badminton Tuesday", day_time_slots={"Tuesday": ["18:30"]}).to_dict(),
                make_request("Volleyball Friday", day_time_slots={"Friday": ["19:00"]}).to_dict(),
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("STATUS_FILE", str(tmp_path / "status.json"))
    monkeypatch.setenv("USER_NAME", "Jordan Lee")
    monkeypatch.setenv("IMAP_SERVER", "")
    monkeypatch.setattr(cli, "setup_logging", lambda: str(tmp_path))
    monkeypatch.setattr(AppSettings, "local_now", lambda self: local_now)
    return str(configs)


def test_scheduled_run_reports_next_dates_when_nothing_is_due(tmp_path, monkeypatch, capsys):
    t('tests.unit.test_cli.test_scheduled_run_reports_next_dates_when_nothing_is_due')
    # Monday books Wednesday: neither configuration has a Wednesday slot
    monday = pytz.timezone("America/Toronto").localize(datetime(2026, 3, 2, 12, 0))
    configs = _scheduled_env(tmp_path, monkeypatch, monday)
    monkeypatch.setattr(cli, "_build_coordinator", lambda *a: pytest.fail("nothing should run"))

    assert cli.main(["run", "--config", configs, "--now"]) == 0

    output = capsys.readouterr().out
    assert "No configurations are scheduled to run today." in output
    assert "Badminton Tuesday: next run Sunday, March 08, 2026" in output
    assert "Volleyball Friday: next run Wednesday, March 04, 2026" in output


class RecordingCoordinator:
    def __init__(self) -> None:
        self.single = []
        self.batches = []
        self.stats = BatchStats()

    async def run_single(self, request, run_type):
        self.single.append((request.name, run_type))
        return RunResult(request.request_id, "attempt", RunStatus.success())

    async def run_batch(self, requests):
        self.batches.append([request.name for request in requests])
        return None


def test_scheduled_run_with_now_runs_due_request_automatically(tmp_path, monkeypatch, capsys):
    t('tests.unit.test_cli.test_scheduled_run_with_now_runs_due_request_automatically')
    sunday = pytz.timezone("America/Toronto").localize(datetime(2026, 3, 1, 9, 0))
    configs = _scheduled_env(tmp_path, monkeypatch, sunday)
    coordinator = RecordingCoordinator()
    monkeypatch.setattr(cli, "_build_coordinator", lambda *a: coordinator)

    async def no_wait(*args, **kwargs):
        pytest.fail("--now must not wait for the booking window")

    monkeypatch.setattr(cli, "wait_until", no_wait)

    assert cli.main(["run", "--config", configs, "--now"]) == 0

    assert coordinator.single == [("Badminton Tuesday", RunType.AUTOMATIC)]
    assert coordinator.batches == []
    assert "Badminton Tuesday: success" in capsys.readouterr().out


def test_scheduled_run_waits_for_booking_window(tmp_path, monkeypatch):
    t('tests.unit.test_cli.test_scheduled_run_waits_for_booking_window')
    toronto = pytz.timezone("America/Toronto")
    # Wednesday with two days ahead books Friday; one day ahead books Thursday
    wednesday = toronto.localize(datetime(2026, 3, 4, 17, 59, 30))
    configs = _scheduled_env(tmp_path, monkeypatch, wednesday)
    coordinator = RecordingCoordinator()
    monkeypatch.setattr(cli, "_build_coordinator", lambda *a: coordinator)
    targets = []

    async def fake_wait(target, **kwargs):
        targets.append(target)
        return 31.0

    monkeypatch.setattr(cli, "wait_until", fake_wait)

    assert cli.main(["run", "--config", configs, "--prior", "2"]) == 0

    assert targets == [toronto.localize(datetime(2026, 3, 4, 18, 0, 1))]
    assert coordinator.single == [("Volleyball Friday", RunType.AUTOMATIC)]
