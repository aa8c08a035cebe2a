"""Process-wide access to the jobqueue settings.

The worker and the command line read their configuration once, from the
JOBQUEUE_* environment variables, and share the result:

    from jobqueue.core.settings import get_settings

    for queue_settings in get_settings().queues:
        ...

Invalid configuration is reported through the log before anything starts.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from jobqueue.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)


def _describe(error: ValidationError | ConfigValidationError) -> str:
    """One line per offending setting, as `field: reason`."""
    if isinstance(error, ConfigValidationError):
        return f"{error.field or 'settings'}: {error.message}"
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'settings'}: {item['msg']}"
        for item in error.errors()
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and validate the settings on first use.

    Raises:
        SystemExit: With code 1 when the environment holds an invalid
            configuration. The reason is logged as critical.
    """
    logger.info("Loading jobqueue settings from environment")
    try:
        settings = Settings()  # type: ignore[call-arg]
        validate_settings(settings)
    except (ValidationError, ConfigValidationError) as e:
        logger.critical("Invalid configuration: %s", _describe(e))
        raise SystemExit(1) from e
    return settings


def clear_settings_cache() -> None:
    """Forget the loaded settings so the next call reads the environment again."""
    get_settings.cache_clear()


def get_settings_safe() -> Settings | None:
    """Like get_settings(), but returns None instead of exiting.

    Used by callers that report the failure themselves, such as the
    command line, which turns it into an exit code.
    """
    try:
        return get_settings()
    except SystemExit:
        return None
