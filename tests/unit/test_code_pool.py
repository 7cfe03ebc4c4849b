from tracking import t
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mail.code_pool import ClaimLedger, VerificationCodePool
from mail.extraction import VerificationCode
from mail.imap_client import MailConnectionError
from tests.helpers import DummyLogger, FakeMailFetcher

START = datetime(2026, 3, 3, 18, 30, tzinfo=timezone.utc)


def _code(value: str, seconds: int = 5) -> VerificationCode:
    return VerificationCode(value=value, discovered_at=START + timedelta(seconds=seconds))


def test_claim_ledger_is_first_writer_wins():
    t('tests.unit.test_code_pool.test_claim_ledger_is_first_writer_wins')
    ledger = ClaimLedger()

    assert ledger.claim("4821", "session-a")
    assert not ledger.claim("4821", "session-b")
    assert not ledger.claim("4821", "session-a")
    assert ledger.owner("4821") == "session-a"
    assert ledger.claimed_by("session-a") == ["4821"]
    assert "4821" in ledger and len(ledger) == 1


@pytest.mark.asyncio
async def test_consume_claims_fresh_codes_once():
    t('tests.unit.test_code_pool.test_consume_claims_fresh_codes_once')
    fetcher = FakeMailFetcher([_code("4821"), _code("7310", seconds=-60)])
    pool = VerificationCodePool(fetcher, logger=DummyLogger())

    first = await pool.consume("session-a", START)
    second = await pool.consume("session-b", START)

    assert first == ["4821"]
    assert second == []
    assert await pool.claims_for("session-a") == ["4821"]


@pytest.mark.asyncio
async def test_concurrent_sessions_receive_disjoint_codes():
    t('tests.unit.test_code_pool.test_concurrent_sessions_receive_disjoint_codes')
    fetcher = FakeMailFetcher([_code("4821"), _code("5512", 6), _code("9081", 7)], delay=0.01)
    pool = VerificationCodePool(fetcher, logger=DummyLogger())

    results = await asyncio.gather(*(pool.consume(f"session-{i}", START) for i in range(5)))

    claimed = [code for batch in results for code in batch]
    assert sorted(claimed) == ["4821", "5512", "9081"]
    assert len(claimed) == len(set(claimed))


@pytest.mark.asyncio
async def test_mail_errors_propagate_from_consume():
    t('tests.unit.test_code_pool.test_mail_errors_propagate_from_consume')
    pool = VerificationCodePool(
        FakeMailFetcher(error=MailConnectionError("refused")), logger=DummyLogger()
    )

    with pytest.raises(MailConnectionError):
        await pool.consume("session-a", START)


@pytest.mark.asyncio
async def test_direct_fallback_helpers_respect_existing_claims():
    t('tests.unit.test_code_pool.test_direct_fallback_helpers_respect_existing_claims')
    fetcher = FakeMailFetcher([_code("4821"), _code("5512", 6)])
    pool = VerificationCodePool(fetcher, logger=DummyLogger())
    await pool.mark_claimed("4821", "session-a")

    unclaimed = await pool.fetch_unclaimed(START)

    assert unclaimed == ["5512"]
    assert await pool.is_claimed_by_other("4821", "session-b")
    assert not await pool.is_claimed_by_other("4821", "session-a")
    assert not await pool.mark_claimed("4821", "session-b")
    assert await pool.mark_claimed("5512", "session-b")


@pytest.mark.asyncio
async def test_naive_since_is_treated_as_utc():
    t('tests.unit.test_code_pool.test_naive_since_is_treated_as_utc')
    fetcher = FakeMailFetcher([_code("4821")])
    pool = VerificationCodePool(fetcher, logger=DummyLogger())

    assert await pool.consume("session-a", START.replace(tzinfo=None)) == ["4821"]
