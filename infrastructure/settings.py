"""Centralized application settings.

All runtime configuration is read here once, from the environment (with
``.env`` support through python-dotenv), and exposed as immutable dataclasses.
User-editable values persisted by the key-value store can be layered on top
with :func:`apply_persisted_settings`.
"""

from __future__ import annotations
from tracking import t

import os
from dataclasses import dataclass, replace
from datetime import datetime
from functools import lru_cache
from typing import Any, Mapping, Optional

import pytz
from dotenv import load_dotenv

from . import constants


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    """Normalize environment strings such as "true"/"1" into booleans."""
    t('infrastructure.settings._to_bool')

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_float(value: Optional[str], default: float) -> float:
    t('infrastructure.settings._to_float')
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class UserSettings:
    """Contact details typed into the booking form."""

    name: str = ""
    phone_number: str = ""
    email: str = ""


@dataclass(frozen=True)
class MailSettings:
    """Connection and search parameters for verification-code retrieval."""

    server: str = ""
    email: str = ""
    password_ref: str = ""
    port: int = constants.IMAP_TLS_PORT
    fallback_port: int = constants.IMAP_PLAIN_PORT
    use_tls: bool = True
    sender: str = constants.VERIFICATION_SENDER
    subject: str = constants.VERIFICATION_SUBJECT
    subject_keyword: str = constants.VERIFICATION_SUBJECT_KEYWORD
    lookback_seconds: float = constants.MAIL_LOOKBACK_SECONDS
    response_timeout: float = constants.MAIL_RESPONSE_TIMEOUT
    connection_timeout: float = constants.MAIL_CONNECTION_TIMEOUT
    fallback_timeout: float = constants.MAIL_FALLBACK_TIMEOUT
    min_connection_interval: float = constants.MAIL_MIN_CONNECTION_INTERVAL

    @property
    def is_configured(self) -> bool:
        return bool(self.server and self.email and self.password_ref)


@dataclass(frozen=True)
class AppSettings:
    """Immutable snapshot of high-level configuration values."""

    production_mode: bool
    timezone: str
    data_directory: str
    status_file: str
    configs_file: str
    screenshots_directory: str
    show_browser_window: bool
    auto_close_debug_window_on_failure: bool
    run_timeout_seconds: float
    batch_ceiling_seconds: float
    batch_poll_interval: float
    reconciliation_window_seconds: float
    user: UserSettings
    mail: MailSettings

    def tz(self) -> pytz.BaseTzInfo:
        t('infrastructure.settings.AppSettings.tz')
        return pytz.timezone(self.timezone)

    def local_now(self) -> datetime:
        """Current time in the configured timezone."""
        t('infrastructure.settings.AppSettings.local_now')
        return datetime.now(pytz.utc).astimezone(self.tz())


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Load configuration from the environment and fall back to defaults."""
    t('infrastructure.settings.load_settings')

    if env is None:
        load_dotenv(override=False)
        env = os.environ

    data_directory = env.get("DATA_DIRECTORY", "data")

    user = UserSettings(
        name=env.get("USER_NAME", ""),
        phone_number=env.get("USER_PHONE", ""),
        email=env.get("USER_EMAIL", env.get("IMAP_EMAIL", "")),
    )

    mail = MailSettings(
        server=env.get("IMAP_SERVER", ""),
        email=env.get("IMAP_EMAIL", ""),
        password_ref=env.get("IMAP_PASSWORD_REF", "env:IMAP_PASSWORD"),
        port=int(env.get("IMAP_PORT", str(constants.IMAP_TLS_PORT))),
        fallback_port=int(env.get("IMAP_FALLBACK_PORT", str(constants.IMAP_PLAIN_PORT))),
        use_tls=_to_bool(env.get("IMAP_USE_TLS"), default=True),
        sender=env.get("VERIFICATION_SENDER", constants.VERIFICATION_SENDER),
        subject=env.get("VERIFICATION_SUBJECT", constants.VERIFICATION_SUBJECT),
        subject_keyword=env.get(
            "VERIFICATION_SUBJECT_KEYWORD", constants.VERIFICATION_SUBJECT_KEYWORD
        ),
        lookback_seconds=_to_float(
            env.get("MAIL_LOOKBACK_SECONDS"), constants.MAIL_LOOKBACK_SECONDS
        ),
        response_timeout=_to_float(
            env.get("MAIL_RESPONSE_TIMEOUT"), constants.MAIL_RESPONSE_TIMEOUT
        ),
        connection_timeout=_to_float(
            env.get("MAIL_CONNECTION_TIMEOUT"), constants.MAIL_CONNECTION_TIMEOUT
        ),
        fallback_timeout=_to_float(
            env.get("MAIL_FALLBACK_TIMEOUT"), constants.MAIL_FALLBACK_TIMEOUT
        ),
    )

    return AppSettings(
        production_mode=_to_bool(env.get("PRODUCTION_MODE", "false")),
        timezone=env.get("RCBOT_TIMEZONE", "America/Toronto"),
        data_directory=data_directory,
        status_file=env.get("STATUS_FILE", os.path.join(data_directory, "status.json")),
        configs_file=env.get("CONFIGS_FILE", os.path.join(data_directory, "configs.json")),
        screenshots_directory=env.get(
            "SCREENSHOTS_DIRECTORY", os.path.join(data_directory, "screenshots")
        ),
        show_browser_window=_to_bool(env.get("SHOW_BROWSER_WINDOW", "false")),
        auto_close_debug_window_on_failure=_to_bool(
            env.get("AUTO_CLOSE_DEBUG_WINDOW_ON_FAILURE", "true"), default=True
        ),
        run_timeout_seconds=_to_float(
            env.get("RUN_TIMEOUT_SECONDS"), constants.RUN_TIMEOUT_SECONDS
        ),
        batch_ceiling_seconds=_to_float(
            env.get("BATCH_CEILING_SECONDS"), constants.BATCH_CEILING_SECONDS
        ),
        batch_poll_interval=_to_float(
            env.get("BATCH_POLL_INTERVAL"), constants.BATCH_POLL_INTERVAL
        ),
        reconciliation_window_seconds=_to_float(
            env.get("RECONCILIATION_WINDOW_SECONDS"),
            constants.RECONCILIATION_WINDOW_SECONDS,
        ),
        user=user,
        mail=mail,
    )


def apply_persisted_settings(
    settings: AppSettings, persisted: Optional[Mapping[str, Any]]
) -> AppSettings:
    """Overlay user-edited values stored under ``user_settings``.

    Only the keys the user can change are honoured; the password itself is
    never stored here, only its credential reference.
    """
    t('infrastructure.settings.apply_persisted_settings')

    if not persisted:
        return settings

    user = replace(
        settings.user,
        name=str(persisted.get("name", settings.user.name)),
        phone_number=str(persisted.get("phone_number", settings.user.phone_number)),
        email=str(persisted.get("email", settings.user.email)),
    )
    mail = replace(
        settings.mail,
        server=str(persisted.get("imap_server", settings.mail.server)),
        email=str(persisted.get("imap_email", settings.mail.email)),
        password_ref=str(persisted.get("imap_password_ref", settings.mail.password_ref)),
    )
    return replace(
        settings,
        user=user,
        mail=mail,
        show_browser_window=bool(
            persisted.get("show_browser_window", settings.show_browser_window)
        ),
        auto_close_debug_window_on_failure=bool(
            persisted.get(
                "auto_close_debug_window_on_failure",
                settings.auto_close_debug_window_on_failure,
            )
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return a cached :class:`AppSettings` instance."""
    t('infrastructure.settings.get_settings')

    return load_settings()
