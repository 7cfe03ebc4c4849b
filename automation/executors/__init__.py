"""Booking execution modules for rcbot automation."""

from .config import DEFAULT_TIMINGS, EngineTimings
from .engine import EngineState, OrchestrationEngine, make_attempt_id
from .verification import VerificationHandler

__all__ = [
    "DEFAULT_TIMINGS",
    "EngineTimings",
    "EngineState",
    "OrchestrationEngine",
    "make_attempt_id",
    "VerificationHandler",
]
