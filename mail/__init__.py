"""Verification-code retrieval: IMAP client, extraction, and the shared code pool."""

from .code_pool import ClaimLedger, VerificationCodePool
from .extraction import VerificationCode, extract_codes
from .imap_client import (
    MailAuthenticationError,
    MailClient,
    MailConnectionError,
    MailError,
    MailProtocolError,
    MailTimeoutError,
)

__all__ = [
    "ClaimLedger",
    "VerificationCodePool",
    "VerificationCode",
    "extract_codes",
    "MailClient",
    "MailError",
    "MailConnectionError",
    "MailAuthenticationError",
    "MailProtocolError",
    "MailTimeoutError",
]
