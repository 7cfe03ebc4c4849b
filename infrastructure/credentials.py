"""Secure-storage boundary for mail credentials.

Settings only ever carry a *reference* to a secret (``env:IMAP_PASSWORD`` or
``file:/run/secrets/imap``). Resolution happens here so the password never
lands in the key-value store or in log output.
"""

from __future__ import annotations
from tracking import t

import logging
import os
import re
from pathlib import Path
from typing import List, Mapping, Optional, Protocol

from dotenv import load_dotenv

from . import constants

logger = logging.getLogger("CredentialStore")


class CredentialStore(Protocol):
    """Anything able to resolve a credential reference to its secret."""

    def get_secret(self, reference: str) -> Optional[str]:
        ...


class EnvironmentCredentialStore:
    """Resolve ``env:`` and ``file:`` references."""

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        t('infrastructure.credentials.EnvironmentCredentialStore.__init__')
        if env is None:
            load_dotenv(override=False)
            env = os.environ
        self._env = env

    def get_secret(self, reference: str) -> Optional[str]:
        t('infrastructure.credentials.EnvironmentCredentialStore.get_secret')
        if not reference:
            return None

        scheme, _, target = reference.partition(":")
        if scheme == "env" and target:
            value = self._env.get(target)
            if value is None:
                logger.warning("Credential variable %s is not set", target)
            return value
        if scheme == "file" and target:
            path = Path(target).expanduser()
            try:
                return path.read_text(encoding="utf-8").strip()
            except OSError as exc:
                logger.warning("Could not read credential file %s: %s", path, exc)
                return None

        logger.warning("Unsupported credential reference scheme: %s", scheme or "<empty>")
        return None


# ----------------------------------------------------------------------
# Gmail support
# ----------------------------------------------------------------------
def is_gmail_account(email: str) -> bool:
    t('infrastructure.credentials.is_gmail_account')
    domain = email.rpartition("@")[2].strip().lower()
    return domain in constants.GMAIL_DOMAINS


def is_valid_gmail_app_password(password: str) -> bool:
    t('infrastructure.credentials.is_valid_gmail_app_password')
    return re.match(constants.GMAIL_APP_PASSWORD_PATTERN, password or "") is not None


def validate_gmail_settings(email: str, server: str, password: Optional[str]) -> List[str]:
    """Return configuration problems for Gmail accounts; empty when fine."""
    t('infrastructure.credentials.validate_gmail_settings')

    if not is_gmail_account(email):
        return []

    problems: List[str] = []
    if server.strip().lower() != constants.GMAIL_IMAP_SERVER:
        problems.append(
            f"Gmail accounts must use {constants.GMAIL_IMAP_SERVER} as the IMAP server"
        )
    if password is not None and not is_valid_gmail_app_password(password):
        problems.append(
            "Gmail requires a 16-character app password in the format 'xxxx xxxx xxxx xxxx'"
        )
    return problems
