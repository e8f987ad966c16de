"""Tests for preference defaults, lazy creation and quiet hours."""

from __future__ import annotations

from datetime import UTC

import pytest

from confession_service.features.notifications.models import NotificationPreference
from confession_service.features.notifications.preferences import (
    PreferenceDefaults,
    PreferenceService,
    is_within_quiet_hours,
    resolve_timezone,
)
from tests.utils import make_preference, utc


def _quiet(start: str | None, end: str | None, timezone: str | None = None, enabled: bool = True):
    return NotificationPreference(
        user_id="user-1",
        enable_quiet_hours=enabled,
        quiet_hours_start=start,
        quiet_hours_end=end,
        timezone=timezone,
    )


# ──────────────────────────────────────────────────────────────
# Quiet hours
# ──────────────────────────────────────────────────────────────


class TestQuietHours:
    def test_disabled_never_quiet(self):
        preference = _quiet("00:00:00", "23:59:59", enabled=False)
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 12, 0)) is False

    def test_missing_bounds_never_quiet(self):
        assert is_within_quiet_hours(_quiet(None, "07:00:00"), utc(2026, 1, 1, 3, 0)) is False
        assert is_within_quiet_hours(_quiet("22:00:00", None), utc(2026, 1, 1, 23, 0)) is False

    def test_same_day_window(self):
        preference = _quiet("09:00:00", "17:00:00")

        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 9, 0)) is True
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 16, 59, 59)) is True
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 17, 0)) is False
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 8, 59)) is False

    @pytest.mark.parametrize(
        ("hour", "minute", "expected"),
        [
            (22, 0, True),
            (23, 30, True),
            (0, 0, True),
            (6, 59, True),
            (7, 0, False),
            (12, 0, False),
            (21, 59, False),
        ],
    )
    def test_window_across_midnight(self, hour, minute, expected):
        preference = _quiet("22:00:00", "07:00:00")
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, hour, minute)) is expected

    def test_equal_bounds_is_empty_window(self):
        preference = _quiet("08:00:00", "08:00:00")
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 8, 0)) is False

    def test_window_uses_preference_timezone(self):
        # 22:00-07:00 in New York; 03:00 UTC is 22:00 EST.
        preference = _quiet("22:00:00", "07:00:00", timezone="America/New_York")

        assert is_within_quiet_hours(preference, utc(2026, 1, 15, 3, 0)) is True
        assert is_within_quiet_hours(preference, utc(2026, 1, 15, 23, 0)) is False

    def test_unknown_timezone_falls_back_to_utc(self):
        preference = _quiet("22:00:00", "07:00:00", timezone="Mars/Olympus_Mons")
        assert is_within_quiet_hours(preference, utc(2026, 1, 1, 23, 0)) is True

    def test_resolve_timezone(self):
        assert resolve_timezone(None) is UTC
        assert resolve_timezone("Not/AZone") is UTC
        assert str(resolve_timezone("Europe/Paris")) == "Europe/Paris"


# ──────────────────────────────────────────────────────────────
# PreferenceService
# ──────────────────────────────────────────────────────────────


class TestPreferenceService:
    @pytest.fixture
    def service(self) -> PreferenceService:
        return PreferenceService(defaults=PreferenceDefaults(batch_window_minutes=10, batch_threshold=4))

    @pytest.mark.asyncio
    async def test_get_or_create_persists_defaults(self, db_session, service):
        preference = await service.get_or_create(db_session, "user-1")

        assert preference.id is not None
        assert preference.enable_in_app_notifications is True
        assert preference.enable_email_notifications is True
        assert preference.email_address is None
        assert preference.batch_window_minutes == 10
        assert preference.batch_threshold == 4
        assert preference.enable_quiet_hours is False

    @pytest.mark.asyncio
    async def test_get_or_create_returns_existing(self, db_session, service):
        existing = await make_preference(db_session, "user-1", email_address="a@example.com")

        preference = await service.get_or_create(db_session, "user-1")

        assert preference.id == existing.id
        assert preference.email_address == "a@example.com"

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, db_session, service):
        first = await service.get_or_create(db_session, "user-1")
        second = await service.get_or_create(db_session, "user-1")
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_update_applies_only_given_fields(self, db_session, service):
        await service.get_or_create(db_session, "user-1")

        preference = await service.update(
            db_session,
            "user-1",
            {"email_address": "new@example.com", "batch_threshold": 5},
        )

        assert preference.email_address == "new@example.com"
        assert preference.batch_threshold == 5
        assert preference.batch_window_minutes == 10

    @pytest.mark.asyncio
    async def test_update_creates_missing_record(self, db_session, service):
        preference = await service.update(db_session, "user-2", {"enable_in_app_notifications": False})

        assert preference.user_id == "user-2"
        assert preference.enable_in_app_notifications is False


def test_defaults_from_settings():
    from confession_service.core.settings.notifications import NotificationSettings

    defaults = PreferenceDefaults.from_settings(
        NotificationSettings(default_batch_window_minutes=7, default_batch_threshold=6)
    )

    assert defaults.batch_window_minutes == 7
    assert defaults.batch_threshold == 6
    assert defaults.as_dict()["enable_email_notifications"] is True
