"""Modular Pydantic Settings v2 configuration.

Settings are split by domain (app/db/redis/rabbit/logging/email/auth/
websocket/notifications), read from environment variables, and cached
by the loaders in ``loader.py``:

    from confession_service.core.settings import get_notification_settings

    settings = get_notification_settings()
    print(settings.max_attempts)

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables (production)
    3. .env file (development only)
"""

from __future__ import annotations

from .loader import (
    clear_all_caches,
    get_app_settings,
    get_auth_settings,
    get_db_settings,
    get_email_settings,
    get_logging_settings,
    get_notification_settings,
    get_rabbit_settings,
    get_redis_settings,
    get_websocket_settings,
)
from .notifications import TemplateRolloutPolicy

__all__ = [
    "TemplateRolloutPolicy",
    "clear_all_caches",
    "get_app_settings",
    "get_auth_settings",
    "get_db_settings",
    "get_email_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_rabbit_settings",
    "get_redis_settings",
    "get_websocket_settings",
]
