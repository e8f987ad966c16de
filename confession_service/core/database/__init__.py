"""Core database package: declarative base, mixins, and repository.

Base Classes and Mixins:
    - Base: Declarative base with constraint naming convention
    - UUIDv7PKMixin: Time-sortable UUID primary keys
    - TimestampMixin: created_at, updated_at tracking
    - UUIDv7TimestampedBase: UUID v7 PK + timestamps

Repository:
    - BaseRepository[T]: Generic CRUD with explicit session passing
    - SearchResult[T]: Paginated result container
"""

from __future__ import annotations

from .base import (
    NAMING_CONVENTION,
    Base,
    TimestampMixin,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    generate_uuid7,
)
from .repository import BaseRepository, SearchResult

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "SearchResult",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "UUIDv7TimestampedBase",
    "generate_uuid7",
]
