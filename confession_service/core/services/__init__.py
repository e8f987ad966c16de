"""Core service building blocks."""

from confession_service.core.services.base import BaseService

__all__ = ["BaseService"]
