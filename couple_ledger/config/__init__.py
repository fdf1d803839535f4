"""Configuration package."""

from couple_ledger.config.settings import (
    AccessSettings,
    AppSettings,
    BehavioralSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AccessSettings",
    "AppSettings",
    "BehavioralSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
