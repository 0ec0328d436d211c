"""Cross-cutting project infrastructure (configuration and logging)."""

from .config import Settings, get_settings, reset_settings
from .logging_config import get_logger, setup_logging

__all__ = [
    "Settings",
    "get_logger",
    "get_settings",
    "reset_settings",
    "setup_logging",
]
