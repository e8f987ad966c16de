"""Per-user delivery preferences: defaults, lazy creation and quiet hours."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime, time, tzinfo
import logging
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError

from confession_service.core.services.base import BaseService
from confession_service.core.settings import get_notification_settings
from confession_service.features.notifications.models import NotificationPreference
from confession_service.features.notifications.repository import (
    NotificationPreferenceRepository,
    get_notification_preference_repository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from confession_service.core.settings.notifications import NotificationSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PreferenceDefaults:
    """Values applied to a preference record when it is first created."""

    enable_in_app_notifications: bool = True
    in_app_new_message: bool = True
    in_app_message_batch: bool = True
    enable_email_notifications: bool = True
    email_new_message: bool = True
    email_message_batch: bool = True
    email_address: str | None = None
    batch_window_minutes: int = 5
    batch_threshold: int = 3
    enable_quiet_hours: bool = False
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    timezone: str | None = None

    @classmethod
    def from_settings(cls, settings: NotificationSettings) -> PreferenceDefaults:
        return cls(
            batch_window_minutes=settings.default_batch_window_minutes,
            batch_threshold=settings.default_batch_threshold,
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA timezone name, falling back to UTC for unset or unknown names."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone on preference record, using UTC", extra={"timezone": name})
        return UTC


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM:SS`` (or ``HH:MM``) string."""
    return time.fromisoformat(value)


def is_within_quiet_hours(preference: NotificationPreference, now: datetime | None = None) -> bool:
    """Whether ``now`` falls inside the user's quiet hours.

    The window is ``[start, end)`` in the preference's local time. A window
    whose start is later than its end crosses midnight, so 22:00:00-07:00:00
    covers 23:30 and 06:59 but not 07:00. Equal start and end is an empty
    window.

    Args:
        preference: Preference record
        now: Aware datetime to test (defaults to the current time)

    Returns:
        True if quiet hours are enabled and active
    """
    if not preference.enable_quiet_hours:
        return False
    if not preference.quiet_hours_start or not preference.quiet_hours_end:
        return False

    start = parse_time_of_day(preference.quiet_hours_start)
    end = parse_time_of_day(preference.quiet_hours_end)
    if start == end:
        return False

    now = now or datetime.now(UTC)
    local = now.astimezone(resolve_timezone(preference.timezone)).time().replace(tzinfo=None)

    if start < end:
        return start <= local < end
    return local >= start or local < end


class PreferenceService(BaseService):
    """Loads, lazily creates and updates preference records."""

    def __init__(
        self,
        repository: NotificationPreferenceRepository | None = None,
        defaults: PreferenceDefaults | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or get_notification_preference_repository()
        self._defaults = defaults or PreferenceDefaults.from_settings(get_notification_settings())

    @property
    def defaults(self) -> PreferenceDefaults:
        return self._defaults

    async def get_or_create(self, session: AsyncSession, user_id: str) -> NotificationPreference:
        """Get the user's preference record, persisting defaults if absent.

        A concurrent creation for the same user loses on the unique
        constraint; the savepoint is rolled back and the winner's row is
        returned.
        """
        preference = await self._repository.get_for_user(session, user_id)
        if preference is not None:
            return preference

        preference = NotificationPreference(user_id=user_id, **self._defaults.as_dict())
        try:
            async with session.begin_nested():
                session.add(preference)
        except IntegrityError:
            existing = await self._repository.get_for_user(session, user_id)
            if existing is None:
                raise
            self._lazy.debug(lambda: f"preferences.get_or_create({user_id=}) -> lost creation race")
            return existing

        self.logger.info("Created default notification preferences", extra={"user_id": user_id})
        return preference

    async def update(
        self,
        session: AsyncSession,
        user_id: str,
        changes: dict[str, Any],
    ) -> NotificationPreference:
        """Apply a partial update to the user's preferences.

        Args:
            session: Database session
            user_id: User identifier
            changes: Field values to set (already validated)

        Returns:
            Updated preference record
        """
        preference = await self.get_or_create(session, user_id)
        for field, value in changes.items():
            setattr(preference, field, value)
        await session.flush()

        self.logger.info(
            "Updated notification preferences",
            extra={"user_id": user_id, "fields": sorted(changes)},
        )
        return preference


_service: PreferenceService | None = None


def get_preference_service() -> PreferenceService:
    """Get the PreferenceService singleton instance."""
    global _service
    if _service is None:
        _service = PreferenceService()
    return _service
