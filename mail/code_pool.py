"""Cross-session ledger guaranteeing each verification code is used once."""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from mail.extraction import VerificationCode


class CodeFetcher(Protocol):
    async def fetch_codes(self, since: datetime) -> List[VerificationCode]:
        ...


class ClaimLedger:
    """Append-only mapping of code to the session that claimed it.

    Not synchronized on its own; :class:`VerificationCodePool` serializes
    access.
    """

    def __init__(self) -> None:
        t('mail.code_pool.ClaimLedger.__init__')
        self._owners: Dict[str, str] = {}

    def owner(self, code: str) -> Optional[str]:
        return self._owners.get(code)

    def claim(self, code: str, session_id: str) -> bool:
        """Record ``session_id`` as owner. True only for a new claim."""
        t('mail.code_pool.ClaimLedger.claim')
        if code in self._owners:
            return False
        self._owners[code] = session_id
        return True

    def claimed_by(self, session_id: str) -> List[str]:
        return sorted(code for code, owner in self._owners.items() if owner == session_id)

    def __len__(self) -> int:
        return len(self._owners)

    def __contains__(self, code: object) -> bool:
        return code in self._owners


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


class VerificationCodePool:
    """Hand each concurrent session a disjoint set of freshly found codes."""

    def __init__(
        self,
        fetcher: CodeFetcher,
        *,
        ledger: Optional[ClaimLedger] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('mail.code_pool.VerificationCodePool.__init__')
        self.fetcher = fetcher
        self.ledger = ledger or ClaimLedger()
        self.logger = logger or logging.getLogger("VerificationCodePool")
        self._lock = asyncio.Lock()

    async def consume(self, session_id: str, since: datetime) -> List[str]:
        """Fetch codes newer than ``since`` and claim the unclaimed ones.

        Mail errors propagate; an empty inbox yields an empty list.
        """
        t('mail.code_pool.VerificationCodePool.consume')
        since = _aware(since)
        discovered = await self.fetcher.fetch_codes(since)
        fresh = [code for code in discovered if _aware(code.discovered_at) >= since]

        async with self._lock:
            claimed = [code.value for code in fresh if self.ledger.claim(code.value, session_id)]

        skipped = len(fresh) - len(claimed)
        self.logger.info(
            "🎟️ Session %s claimed %s code(s) (%s already taken, %s expired)",
            session_id,
            len(claimed),
            skipped,
            len(discovered) - len(fresh),
        )
        return claimed

    async def fetch_unclaimed(self, since: datetime) -> List[str]:
        """Direct fetch without claiming; callers claim with :meth:`mark_claimed`."""
        t('mail.code_pool.VerificationCodePool.fetch_unclaimed')
        since = _aware(since)
        discovered = await self.fetcher.fetch_codes(since)
        async with self._lock:
            return [
                code.value
                for code in discovered
                if _aware(code.discovered_at) >= since and code.value not in self.ledger
            ]

    async def is_claimed_by_other(self, code: str, session_id: str) -> bool:
        t('mail.code_pool.VerificationCodePool.is_claimed_by_other')
        async with self._lock:
            owner = self.ledger.owner(code)
        return owner is not None and owner != session_id

    async def mark_claimed(self, code: str, session_id: str) -> bool:
        """Claim ``code`` for ``session_id``; True when the session now owns it."""
        t('mail.code_pool.VerificationCodePool.mark_claimed')
        async with self._lock:
            self.ledger.claim(code, session_id)
            owned = self.ledger.owner(code) == session_id
        if not owned:
            self.logger.warning("⚠️ Code %s already claimed by another session", code)
        return owned

    async def claims_for(self, session_id: str) -> List[str]:
        async with self._lock:
            return self.ledger.claimed_by(session_id)
