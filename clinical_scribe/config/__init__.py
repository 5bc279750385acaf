"""Configuration: settings and prompt templates."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
