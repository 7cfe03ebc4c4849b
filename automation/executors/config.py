"""Timing configuration for the orchestration engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from infrastructure import constants


@dataclass(frozen=True)
class EngineTimings:
    """Every wait the engine performs, in seconds."""

    page_load_timeout: float = constants.PAGE_LOAD_TIMEOUT
    group_size_timeout: float = constants.GROUP_SIZE_PAGE_TIMEOUT
    contact_info_timeout: float = constants.CONTACT_INFO_PAGE_TIMEOUT
    poll_interval: float = constants.DEFAULT_POLL_INTERVAL
    max_confirm_attempts: int = constants.MAX_CONFIRM_ATTEMPTS
    pre_retry_pause: Tuple[float, float] = constants.PRE_RETRY_PAUSE_RANGE
    challenge_pause: Tuple[float, float] = constants.CHALLENGE_PAUSE_RANGE
    post_click_settle: float = constants.POST_CLICK_SETTLE
    post_confirm_settle: float = constants.POST_CONFIRM_SETTLE
    verification_page_timeout: float = constants.VERIFICATION_PAGE_TIMEOUT
    verification_poll_interval: float = constants.VERIFICATION_POLL_INTERVAL
    verification_rounds: int = constants.VERIFICATION_ROUNDS
    verification_round_wait: float = constants.VERIFICATION_ROUND_WAIT
    run_timeout: float = constants.RUN_TIMEOUT_SECONDS
    diagnostics_timeout: float = 10.0


DEFAULT_TIMINGS = EngineTimings()


__all__ = ["EngineTimings", "DEFAULT_TIMINGS"]
