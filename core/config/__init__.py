"""Configuration package: settings and logging setup."""

from core.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
