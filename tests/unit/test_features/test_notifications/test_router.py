"""Tests for the user-facing notifications API."""

from __future__ import annotations

from uuid import uuid4

import pytest

from tests.utils import bearer, make_notification, make_preference

BASE = "/api/v1/notifications"


def _event(message_id: str = "m1", user_id: str = "user-1", **overrides):
    body = {
        "kind": "new_message",
        "user_id": user_id,
        "sender_id": "sender-9",
        "message_id": message_id,
        "preview_text": "you have a secret admirer",
    }
    body.update(overrides)
    return body


# ──────────────────────────────────────────────────────────────
# Authentication
# ──────────────────────────────────────────────────────────────


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(BASE)

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/json")
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["type"] == "missing-authentication"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(BASE, headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401
        assert response.json()["type"] == "token-invalid"


# ──────────────────────────────────────────────────────────────
# Inbound events
# ──────────────────────────────────────────────────────────────


class TestSubmitEvent:
    @pytest.mark.asyncio
    async def test_service_token_creates_notification(self, client, service_headers):
        response = await client.post(f"{BASE}/events", json=_event(), headers=service_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["created"] is True
        assert data["notification"]["kind"] == "new_message"
        assert data["notification"]["title"] == "New Message"
        assert data["notification"]["metadata"] == {"message_id": "m1", "sender_id": "sender-9"}

    @pytest.mark.asyncio
    async def test_admin_bearer_accepted(self, client, admin_headers):
        response = await client.post(f"{BASE}/events", json=_event(), headers=admin_headers)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_regular_user_forbidden(self, client, user_headers):
        response = await client.post(f"{BASE}/events", json=_event(), headers=user_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_service_token(self, client):
        response = await client.post(f"{BASE}/events", json=_event(), headers={"X-Service-Token": "nope"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_suppressed_event(self, client, db_session, service_headers):
        await make_preference(db_session, "user-1", enable_in_app_notifications=False)

        response = await client.post(f"{BASE}/events", json=_event(), headers=service_headers)

        assert response.status_code == 200
        assert response.json() == {"created": False, "notification": None}

    @pytest.mark.asyncio
    async def test_batch_kind_rejected(self, client, service_headers):
        response = await client.post(
            f"{BASE}/events",
            json=_event(kind="message_batch"),
            headers=service_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_message_id_required(self, client, service_headers):
        body = _event()
        del body["message_id"]

        response = await client.post(f"{BASE}/events", json=body, headers=service_headers)

        assert response.status_code == 422
        assert response.json()["type"] == "validation-error"

    @pytest.mark.asyncio
    async def test_event_enqueues_email(self, client, db_session, service_headers, queue):
        await make_preference(db_session, "user-1", email_address="a@example.com")

        response = await client.post(f"{BASE}/events", json=_event(), headers=service_headers)

        job = await queue.lease()
        assert job.notification_id == response.json()["notification"]["id"]


# ──────────────────────────────────────────────────────────────
# Listing and read state
# ──────────────────────────────────────────────────────────────


class TestReadEndpoints:
    @pytest.mark.asyncio
    async def test_list_only_own_notifications(self, client, db_session, user_headers):
        await make_notification(db_session, user_id="user-1", message="mine")
        await make_notification(db_session, user_id="user-2", message="theirs")

        response = await client.get(BASE, headers=user_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["unread_count"] == 1
        assert [n["message"] for n in data["notifications"]] == ["mine"]

    @pytest.mark.asyncio
    async def test_list_unread_only_and_limit(self, client, db_session, user_headers):
        for _ in range(3):
            await make_notification(db_session)
        await make_notification(db_session, is_read=True)

        response = await client.get(BASE, params={"unread_only": "true", "limit": 2}, headers=user_headers)

        data = response.json()
        assert data["total"] == 3
        assert len(data["notifications"]) == 2

    @pytest.mark.asyncio
    async def test_limit_capped(self, client, user_headers):
        response = await client.get(BASE, params={"limit": 101}, headers=user_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unread_count(self, client, db_session, user_headers):
        await make_notification(db_session)
        await make_notification(db_session)

        response = await client.get(f"{BASE}/unread-count", headers=user_headers)

        assert response.json() == {"count": 2}

    @pytest.mark.asyncio
    async def test_mark_read(self, client, db_session, user_headers):
        notification = await make_notification(db_session)

        response = await client.patch(f"{BASE}/{notification.id}/read", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["is_read"] is True
        assert response.json()["read_at"] is not None

    @pytest.mark.asyncio
    async def test_mark_read_other_users_notification(self, client, db_session):
        notification = await make_notification(db_session, user_id="user-2")

        response = await client.patch(f"{BASE}/{notification.id}/read", headers=bearer("user-1"))

        assert response.status_code == 404
        assert response.json()["type"] == "notification-not-found"

    @pytest.mark.asyncio
    async def test_mark_read_unknown(self, client, user_headers):
        response = await client.patch(f"{BASE}/{uuid4()}/read", headers=user_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_mark_read_invalid_id(self, client, user_headers):
        response = await client.patch(f"{BASE}/not-a-uuid/read", headers=user_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_mark_all_read(self, client, db_session, user_headers):
        for _ in range(3):
            await make_notification(db_session)

        response = await client.patch(f"{BASE}/read-all", headers=user_headers)

        assert response.json() == {"updated": 3}
        count = await client.get(f"{BASE}/unread-count", headers=user_headers)
        assert count.json() == {"count": 0}


# ──────────────────────────────────────────────────────────────
# Preferences
# ──────────────────────────────────────────────────────────────


class TestPreferences:
    @pytest.mark.asyncio
    async def test_get_creates_defaults(self, client, user_headers):
        response = await client.get(f"{BASE}/preferences", headers=user_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == "user-1"
        assert data["enable_in_app_notifications"] is True
        assert data["batch_window_minutes"] == 5
        assert data["batch_threshold"] == 3
        assert data["email_address"] is None

    @pytest.mark.asyncio
    async def test_partial_update(self, client, user_headers):
        response = await client.put(
            f"{BASE}/preferences",
            json={
                "email_address": "me@example.com",
                "enable_quiet_hours": True,
                "quiet_hours_start": "22:00:00",
                "quiet_hours_end": "07:00:00",
                "timezone": "Europe/Berlin",
            },
            headers=user_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["email_address"] == "me@example.com"
        assert data["quiet_hours_start"] == "22:00:00"
        assert data["timezone"] == "Europe/Berlin"
        assert data["batch_threshold"] == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"batch_threshold": 1},
            {"batch_threshold": 21},
            {"batch_window_minutes": 0},
            {"batch_window_minutes": 61},
            {"email_address": "not-an-email"},
            {"quiet_hours_start": "25:00:00"},
            {"quiet_hours_end": "7am"},
            {"timezone": "Nowhere/Special"},
            {"unknown_field": True},
        ],
    )
    async def test_invalid_update(self, client, user_headers, body):
        response = await client.put(f"{BASE}/preferences", json=body, headers=user_headers)
        assert response.status_code == 422
