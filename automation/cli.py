"""Command-line entrypoints for rcbot.

Wires settings, persistence, mail access and the Playwright driver into a
:class:`ParallelRunCoordinator` and exposes single runs, scheduled automatic
runs, parallel batches, the persisted status and an inbox connection test.
"""

from __future__ import annotations
from tracking import t

import argparse
import asyncio
import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from automation.driver.human_behaviors import HumanBehavior
from automation.driver.playwright_driver import PlaywrightPageDriver
from automation.executors.config import DEFAULT_TIMINGS
from automation.executors.verification import VerificationHandler
from automation.shared.booking_contracts import BatchResult, BookingRequest, RunResult, RunType
from infrastructure.constants import AUTORUN_PRIOR_DAYS, USER_SETTINGS_KEY
from infrastructure.credentials import EnvironmentCredentialStore
from infrastructure.settings import AppSettings, apply_persisted_settings, load_settings
from logging_config import get_logger, setup_logging
from mail.code_pool import VerificationCodePool
from mail.imap_client import MailClient, MailError
from reservations.config_store import load_booking_requests
from reservations.repository import KeyValueRepository
from reservations.scheduler.autorun import plan_autorun, target_time_for, wait_until
from reservations.scheduler.coordinator import CoordinatorTimings, ParallelRunCoordinator
from reservations.status_store import StatusStore
from reservations.validation import conflict_summary, detect_slot_conflicts, validate_user_settings

logger = get_logger("rcbot")


def _load_settings(headed: bool = False) -> tuple[AppSettings, KeyValueRepository]:
    t('automation.cli._load_settings')
    settings = load_settings()
    repository = KeyValueRepository(settings.status_file, logger=logging.getLogger("KeyValueRepository"))
    settings = apply_persisted_settings(settings, repository.get(USER_SETTINGS_KEY))
    if headed:
        settings = replace(settings, show_browser_window=True)
    return settings, repository


def _build_mail_client(settings: AppSettings) -> Optional[MailClient]:
    t('automation.cli._build_mail_client')
    if not settings.mail.is_configured:
        return None
    return MailClient(settings.mail, EnvironmentCredentialStore())


def _build_coordinator(settings: AppSettings, repository: KeyValueRepository) -> ParallelRunCoordinator:
    t('automation.cli._build_coordinator')
    status_store = StatusStore(
        repository,
        reconciliation_window=settings.reconciliation_window_seconds,
    )
    engine_timings = replace(DEFAULT_TIMINGS, run_timeout=settings.run_timeout_seconds)

    mail_client = _build_mail_client(settings)
    verifier = None
    if mail_client is not None:
        verifier = VerificationHandler(VerificationCodePool(mail_client), timings=engine_timings)
    else:
        logger.warning("📭 Mail access not configured; email verification will fail if requested")

    behavior = HumanBehavior()

    def driver_factory(instance_id: str) -> PlaywrightPageDriver:
        return PlaywrightPageDriver(
            instance_id,
            headless=not settings.show_browser_window,
            screenshots_dir=settings.screenshots_directory,
            behavior=behavior,
        )

    return ParallelRunCoordinator(
        status_store=status_store,
        driver_factory=driver_factory,
        user=settings.user,
        verifier=verifier,
        engine_timings=engine_timings,
        timings=CoordinatorTimings(
            poll_interval=settings.batch_poll_interval,
            ceiling=settings.batch_ceiling_seconds,
        ),
        behavior=behavior,
        auto_close_on_failure=settings.auto_close_debug_window_on_failure,
    )


def _check_user(settings: AppSettings) -> bool:
    errors = validate_user_settings(settings.user, settings.mail)
    for error in errors:
        logger.error("⚙️ %s", error)
    return not errors


def _select(requests: List[BookingRequest], request_id: Optional[str]) -> Optional[BookingRequest]:
    if not requests:
        return None
    if request_id is None:
        return requests[0]
    for request in requests:
        if request.request_id == request_id or request.short_id == request_id:
            return request
    return None


def _warn_conflicts(requests: List[BookingRequest]) -> None:
    conflicts = detect_slot_conflicts(requests)
    for conflict in conflicts:
        logger.warning("⚠️ %s", conflict.describe())
    if conflicts:
        logger.warning(conflict_summary(conflicts))


def _print_single(request: BookingRequest, result: Optional[RunResult]) -> int:
    if result is None:
        print("Another run is already in progress.")
        return 1
    print(f"{request.name}: {result.status.describe()}")
    if result.artifact:
        print(f"Screenshot: {result.artifact}")
    return 0 if result.success else 1


def _print_batch(coordinator: ParallelRunCoordinator, result: Optional[BatchResult]) -> int:
    if result is None:
        print("Another run is already in progress.")
        return 1
    print(result.message)
    print(coordinator.stats.format_report())
    return 0 if result.run_status.is_success else 1


async def _run(args: argparse.Namespace) -> int:
    t('automation.cli._run')
    settings, repository = _load_settings(args.headed)
    if not _check_user(settings):
        return 2
    requests = load_booking_requests(args.config)
    if args.prior is not None or args.now:
        return await _run_scheduled(args, settings, repository, requests)

    request = _select(requests, args.id)
    if request is None:
        print("No matching enabled configuration found.")
        return 2

    coordinator = _build_coordinator(settings, repository)
    return _print_single(request, await coordinator.run_single(request, RunType.MANUAL))


async def _run_scheduled(
    args: argparse.Namespace,
    settings: AppSettings,
    repository: KeyValueRepository,
    requests: List[BookingRequest],
) -> int:
    """Run the configurations whose booking window opens today."""
    t('automation.cli._run_scheduled')
    if args.id is not None:
        selected = _select(requests, args.id)
        requests = [selected] if selected is not None else []
    if not requests:
        print("No matching enabled configuration found.")
        return 2

    prior_days = args.prior if args.prior is not None else AUTORUN_PRIOR_DAYS
    now = settings.local_now()
    plan = plan_autorun(requests, now.date(), prior_days)
    if not plan.has_work:
        print("No configurations are scheduled to run today.")
        for line in plan.describe_next_runs(requests):
            print(f"  {line}")
        return 0

    logger.info("📅 %s configuration(s) due today (%s days ahead)", len(plan.due), prior_days)
    _warn_conflicts(plan.due)
    if not args.now:
        await wait_until(target_time_for(now, settings.tz()), clock=settings.local_now, logger=logger)

    coordinator = _build_coordinator(settings, repository)
    if len(plan.due) == 1:
        request = plan.due[0]
        return _print_single(request, await coordinator.run_single(request, RunType.AUTOMATIC))
    return _print_batch(coordinator, await coordinator.run_batch(plan.due))


async def _batch(args: argparse.Namespace) -> int:
    t('automation.cli._batch')
    settings, repository = _load_settings(args.headed)
    if not _check_user(settings):
        return 2
    requests = load_booking_requests(args.config)
    if not requests:
        print("No enabled configurations to run.")
        return 2

    _warn_conflicts(requests)
    coordinator = _build_coordinator(settings, repository)
    return _print_batch(coordinator, await coordinator.run_batch(requests))


def _status(args: argparse.Namespace) -> int:
    t('automation.cli._status')
    _, repository = _load_settings()
    store = StatusStore(repository, recover_stale=False)
    records = store.all_records()
    if not records:
        print("No runs recorded yet.")
    for request_id, record in sorted(records.items()):
        line = f"{request_id[:8]}  {record.timestamp.isoformat()}  {record.run_type.value:<15} {record.status.describe()}"
        if record.artifact:
            line += f"  [{record.artifact}]"
        print(line)
    batch = store.last_batch()
    if batch:
        print(f"Last batch: {batch.get('status')} - {batch.get('message')}")
    return 0


async def _check_mail(args: argparse.Namespace) -> int:
    t('automation.cli._check_mail')
    settings, _ = _load_settings()
    client = _build_mail_client(settings)
    if client is None:
        print("IMAP settings are incomplete (server, email and password reference required).")
        return 2
    try:
        print(await client.check_connection())
    except MailError as exc:
        print(f"IMAP connection failed: {exc}")
        return 1
    return 0


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a whole number of days")
    if number < 1:
        raise argparse.ArgumentTypeError("--prior must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    t('automation.cli.build_parser')
    parser = argparse.ArgumentParser(prog="rcbot", description="Recreation facility booking automation")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one booking configuration")
    run_parser.add_argument("--config", required=True, help="Path to the configurations JSON file")
    run_parser.add_argument("--id", help="Configuration id (or its first 8 characters)")
    run_parser.add_argument("--headed", action="store_true", help="Show the browser window")
    run_parser.add_argument(
        "--prior",
        type=_positive_int,
        help=f"Run the configurations due today, booking N days ahead (default {AUTORUN_PRIOR_DAYS})",
    )
    run_parser.add_argument(
        "--now", action="store_true", help="With scheduled runs, skip waiting for the booking window"
    )

    batch_parser = subparsers.add_parser("batch", help="Run every enabled configuration in parallel")
    batch_parser.add_argument("--config", required=True, help="Path to the configurations JSON file")
    batch_parser.add_argument("--headed", action="store_true", help="Show the browser windows")

    subparsers.add_parser("status", help="Show the last recorded run per configuration")
    subparsers.add_parser("check-mail", help="Test the IMAP connection")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    t('automation.cli.main')
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "run":
        return asyncio.run(_run(args))
    if args.command == "batch":
        return asyncio.run(_batch(args))
    if args.command == "check-mail":
        return asyncio.run(_check_mail(args))
    return _status(args)


if __name__ == "__main__":
    raise SystemExit(main())
