"""Configuration models and helpers."""

from __future__ import annotations

from .settings import (
    AppSettings,
    LimitSettings,
    ReminderSettings,
    StorageSettings,
    SupabaseSettings,
    SyncSettings,
    get_settings,
)

__all__ = [
    "AppSettings",
    "LimitSettings",
    "ReminderSettings",
    "StorageSettings",
    "SupabaseSettings",
    "SyncSettings",
    "get_settings",
]
