"""Core utilities for the admission gateway."""

from admitgate.app.core.config import Settings, TierSettings, settings
from admitgate.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "Settings",
    "TierSettings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
