"""Chronologicon application package."""
from __future__ import annotations

from .config import Settings, get_settings, reset_settings_cache

__all__ = [
    "Settings",
    "get_settings",
    "reset_settings_cache",
]
