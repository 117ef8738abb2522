"""Configuration package."""

from .settings import Settings, settings, get_settings, DEFAULT_PLAN_LIMITS

__all__ = ["Settings", "settings", "get_settings", "DEFAULT_PLAN_LIMITS"]
