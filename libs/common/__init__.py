"""Shared helpers used across applications and services."""

from .config import AppSettings, get_settings
from .logging import configure_logging
from .phone import normalize_phone

__all__ = ["AppSettings", "get_settings", "configure_logging", "normalize_phone"]
