"""Resolve an on-page email verification challenge with codes from the pool."""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from automation.driver.protocol import PageDriver
from automation.executors.config import DEFAULT_TIMINGS, EngineTimings
from automation.shared.timeouts import poll_until
from mail.code_pool import VerificationCodePool
from mail.imap_client import MailError


class VerificationHandler:
    """Try pooled codes in rounds, then fall back to a direct fetch."""

    def __init__(
        self,
        pool: VerificationCodePool,
        *,
        timings: EngineTimings = DEFAULT_TIMINGS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('automation.executors.verification.VerificationHandler.__init__')
        self.pool = pool
        self.timings = timings
        self.logger = logger or logging.getLogger("VerificationHandler")

    async def verify(self, driver: PageDriver, session_id: str, since: datetime) -> bool:
        """True once the site accepts a code found after ``since``."""
        t('automation.executors.verification.VerificationHandler.verify')

        ready = await poll_until(
            driver.is_verification_page_ready,
            timeout=self.timings.verification_page_timeout,
            interval=self.timings.verification_poll_interval,
            description="verification page",
        )
        if not ready:
            self.logger.warning("[%s] ⏰ Verification page never appeared", session_id)
            return False

        rounds = self.timings.verification_rounds
        for round_number in range(1, rounds + 1):
            codes = await self._consume(session_id, since)
            if codes:
                self.logger.info(
                    "[%s] 🔢 Round %s/%s: trying %s code(s)",
                    session_id,
                    round_number,
                    rounds,
                    len(codes),
                )
                if await self._try_codes(driver, session_id, codes):
                    return True
            else:
                self.logger.info("[%s] 📭 Round %s/%s: no new codes yet", session_id, round_number, rounds)

            if round_number < rounds:
                await asyncio.sleep(self.timings.verification_round_wait)

        return await self._direct_fallback(driver, session_id, since)

    async def _consume(self, session_id: str, since: datetime) -> List[str]:
        try:
            return await self.pool.consume(session_id, since)
        except MailError as exc:
            self.logger.warning("[%s] ⚠️ Mail fetch failed: %s", session_id, exc)
            return []

    async def _try_codes(self, driver: PageDriver, session_id: str, codes: List[str]) -> bool:
        for code in codes:
            if await driver.submit_verification_code(code):
                self.logger.info("[%s] ✅ Verification code %s accepted", session_id, code)
                return True
            self.logger.info("[%s] ❌ Verification code %s rejected", session_id, code)
        return False

    async def _direct_fallback(self, driver: PageDriver, session_id: str, since: datetime) -> bool:
        t('automation.executors.verification.VerificationHandler._direct_fallback')
        self.logger.info("[%s] 🔁 Falling back to a direct inbox fetch", session_id)
        try:
            candidates = await self.pool.fetch_unclaimed(since)
        except MailError as exc:
            self.logger.warning("[%s] ⚠️ Direct fetch failed: %s", session_id, exc)
            return False

        for code in candidates:
            if await self.pool.is_claimed_by_other(code, session_id):
                continue
            if not await self.pool.mark_claimed(code, session_id):
                continue
            if await self._try_codes(driver, session_id, [code]):
                return True
        self.logger.warning("[%s] 🚫 No verification code was accepted", session_id)
        return False
