"""jobqueue core module.

Shared components used across services:
- Configuration management
- Clock abstraction
"""

from jobqueue.core.clock import Clock, SystemClock, get_default_clock
from jobqueue.core.config import (
    BackendKind,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    QueueSettings,
    Settings,
    WorkerSettings,
)
from jobqueue.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "BackendKind",
    "Clock",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "QueueSettings",
    "Settings",
    "SystemClock",
    "WorkerSettings",
    "clear_settings_cache",
    "get_default_clock",
    "get_settings",
    "get_settings_safe",
]
