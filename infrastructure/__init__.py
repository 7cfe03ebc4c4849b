"""Infrastructure helpers."""

from .settings import (
    AppSettings,
    MailSettings,
    UserSettings,
    apply_persisted_settings,
    get_settings,
    load_settings,
)
from .credentials import CredentialStore, EnvironmentCredentialStore

__all__ = [
    "AppSettings",
    "MailSettings",
    "UserSettings",
    "apply_persisted_settings",
    "get_settings",
    "load_settings",
    "CredentialStore",
    "EnvironmentCredentialStore",
]
