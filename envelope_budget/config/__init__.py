"""Configuration package."""

from envelope_budget.config.defaults import DEFAULT_CATEGORIES
from envelope_budget.config.settings import (
    LedgerSettings,
    LoggingSettings,
    Settings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "LedgerSettings",
    "LoggingSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]
