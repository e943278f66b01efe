"""Process-wide access to the SendSafe settings.

``get_settings()`` reads the environment once, runs the cross-field checks
from ``sendsafe.core.config`` and caches the result. A process with an
unusable configuration exits at the first call rather than serving
requests. Tests reset the cache with ``clear_settings_cache()``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from sendsafe.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)


def _describe_errors(exc: ValidationError) -> str:
    return "\n".join(
        "  - {}: {}".format(".".join(str(part) for part in err["loc"]), err["msg"])
        for err in exc.errors()
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, check and cache the settings.

    Raises:
        SystemExit: When the environment does not describe a usable
            configuration.
    """
    try:
        settings = Settings()  # type: ignore[call-arg]
        validate_settings(settings)
    except ValidationError as e:
        logger.critical("Invalid SendSafe configuration:\n%s", _describe_errors(e))
        raise SystemExit(1) from e
    except ConfigValidationError as e:
        logger.critical("Invalid SendSafe configuration: %s (%s)", e.message, e.field or "?")
        raise SystemExit(1) from e

    logger.info(
        "Settings loaded for %s: code ttl %s min, %s attempts per code",
        settings.environment.value,
        settings.access.code_ttl_minutes,
        settings.access.code_max_attempts,
    )
    return settings


def clear_settings_cache() -> None:
    """Forget the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


def get_settings_safe() -> Settings | None:
    """Like get_settings(), but None instead of exiting."""
    try:
        return get_settings()
    except SystemExit:
        return None
