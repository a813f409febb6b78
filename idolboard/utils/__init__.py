"""Utility modules for the idol SNS dashboard."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
