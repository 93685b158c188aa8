"""Core configuration module for LiveDeck."""

from .debug import (
    init_debug_mode,
    is_debug_mode,
    get_debug_status,
    increment_execution_count,
)
from .config import DriverConfig, Settings, get_settings
from .logging import setup_logging

__all__ = [
    "DriverConfig",
    "Settings",
    "get_settings",
    "setup_logging",
    "init_debug_mode",
    "is_debug_mode",
    "get_debug_status",
    "increment_execution_count",
]
