"""SendSafe core module.

Shared components used across all services:
- Configuration management
- Cached settings accessor
"""

from sendsafe.core.config import (
    AccessSettings,
    ConfigValidationError,
    DatabaseSettings,
    Environment,
    S3Settings,
    Settings,
    SMTPSettings,
    WorkerSettings,
)
from sendsafe.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "AccessSettings",
    "ConfigValidationError",
    "DatabaseSettings",
    "Environment",
    "S3Settings",
    "SMTPSettings",
    "Settings",
    "WorkerSettings",
    "clear_settings_cache",
    "get_settings",
    "get_settings_safe",
]
