"""
Configuration module - environment-driven settings.
"""

from .settings import get_settings, Settings

__all__ = ["get_settings", "Settings"]
