"""
Configuration package for the POI sharing service.
"""

from .settings import (
    Settings,
    Environment,
    LogLevel,
    DatabaseSettings,
    RedisSettings,
    SharingSettings,
    StatsSettings,
    RealtimeSettings,
    StorageSettings,
    SecuritySettings,
    settings,
    get_settings,
    reload_settings,
)

__all__ = [
    "Settings",
    "Environment",
    "LogLevel",
    "DatabaseSettings",
    "RedisSettings",
    "SharingSettings",
    "StatsSettings",
    "RealtimeSettings",
    "StorageSettings",
    "SecuritySettings",
    "settings",
    "get_settings",
    "reload_settings",
]
