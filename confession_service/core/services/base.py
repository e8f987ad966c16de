"""Base service class for business logic."""

from __future__ import annotations

import logging

from confession_service.infra.logging import get_lazy_logger


class BaseService:
    """Base class for service classes.

    Loggers:
        - self.logger: Standard logger for INFO/WARNING/ERROR (always evaluated)
        - self._lazy: Lazy logger for DEBUG (zero overhead when DEBUG disabled)

    Example:
        class PreferenceService(BaseService):
            def __init__(self, repository: NotificationPreferenceRepository):
                super().__init__()
                self.repository = repository

            async def get_or_create(self, session, user_id: str):
                self.logger.info("Creating preferences", extra={"user_id": user_id})
                ...
    """

    def __init__(self) -> None:
        """Initialize base service with loggers."""
        class_name = self.__class__.__name__
        self.logger = logging.getLogger(class_name)
        self._lazy = get_lazy_logger(class_name)
