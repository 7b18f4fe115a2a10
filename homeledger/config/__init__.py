"""Configuration package."""

from homeledger.config.settings import (
    AppSettings,
    FirebaseSettings,
    RecurringSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "FirebaseSettings",
    "RecurringSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
