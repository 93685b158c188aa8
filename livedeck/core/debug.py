"""Debug mode configuration."""

import os
import logging

logger = logging.getLogger(__name__)
_execution_count = 0
_debug_mode_enabled = False


def init_debug_mode() -> bool:
    global _debug_mode_enabled
    _debug_mode_enabled = os.environ.get("DEBUG", "").lower() in ("true", "1", "yes", "on")

    if _debug_mode_enabled:
        logger.info("🐛 Debug mode \033[92mENABLED\033[0m")

    return _debug_mode_enabled


def is_debug_mode() -> bool:
    return _debug_mode_enabled


def increment_execution_count(count: int = 1) -> int:
    global _execution_count
    _execution_count += count
    return _execution_count


def get_debug_status() -> dict:
    return {
        "debug_mode": _debug_mode_enabled,
        "execution_count": _execution_count,
    }
