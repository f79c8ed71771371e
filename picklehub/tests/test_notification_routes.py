"""
Unit tests for notification API routes.
Tests GET, PATCH and DELETE endpoints for notifications.
"""
import pytest
from fastapi.testclient import TestClient
from picklehub.api.main import app
from picklehub.services import auth_service, user_service, notification_service
from picklehub.services.exceptions import NotificationNotFound
from picklehub.database.models import NotificationType


def make_client_with_auth(monkeypatch, user_id=1):
    """Create a test client with mocked authentication."""
    def fake_verify_token(token):
        return {"user_id": user_id}

    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "email": "test@example.com",
            "name": "Test User",
            "nickname": "Tester",
            "is_profile_complete": True,
            "created_at": "2026-01-01T00:00:00+00:00",
        }

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def _notification(notification_id=1, user_id=1, is_read=False):
    return {
        "id": notification_id,
        "user_id": user_id,
        "type": NotificationType.EVENT_JOINED.value,
        "title": "New reservation",
        "message": "Sam reserved a spot in Morning doubles",
        "related_id": "3",
        "is_read": is_read,
        "read_at": "2026-01-02T00:00:00+00:00" if is_read else None,
        "created_at": "2026-01-01T00:00:00+00:00",
    }


def test_get_notifications(monkeypatch):
    """Test getting user notifications."""
    client, headers = make_client_with_auth(monkeypatch, user_id=1)
    calls = {}

    async def fake_get_user_notifications(session, user_id, limit=50, offset=0, unread_only=False):
        calls.update(user_id=user_id, limit=limit, offset=offset, unread_only=unread_only)
        return {
            "notifications": [_notification()],
            "total_count": 1,
            "unread_count": 1,
            "has_more": False,
        }

    monkeypatch.setattr(
        notification_service, "get_user_notifications", fake_get_user_notifications, raising=True
    )

    response = client.get("/api/notifications?limit=500&unread_only=true", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total_count"] == 1
    assert data["unread_count"] == 1
    assert data["notifications"][0]["type"] == "event_joined"

    # Page size is capped
    assert calls == {"user_id": 1, "limit": 100, "offset": 0, "unread_only": True}


def test_get_notifications_requires_auth():
    client = TestClient(app)
    response = client.get("/api/notifications")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


def test_get_notifications_invalid_token(monkeypatch):
    monkeypatch.setattr(auth_service, "verify_token", lambda token: None, raising=True)
    client = TestClient(app)
    response = client.get("/api/notifications", headers={"Authorization": "Bearer bad"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication token"


def test_get_unread_count(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=1)

    async def fake_get_unread_count(session, user_id):
        return 5

    monkeypatch.setattr(notification_service, "get_unread_count", fake_get_unread_count, raising=True)

    response = client.get("/api/notifications/unread-count", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"unread_count": 5}


def test_mark_notification_as_read(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=1)

    async def fake_mark_as_read(session, notification_id, user_id):
        return _notification(notification_id=notification_id, user_id=user_id, is_read=True)

    monkeypatch.setattr(notification_service, "mark_as_read", fake_mark_as_read, raising=True)

    response = client.patch("/api/notifications/7/read", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == 7
    assert data["is_read"] is True


def test_mark_notification_as_read_not_found(monkeypatch):
    """Another user's notification looks the same as a missing one."""
    client, headers = make_client_with_auth(monkeypatch, user_id=1)

    async def fake_mark_as_read(session, notification_id, user_id):
        raise NotificationNotFound()

    monkeypatch.setattr(notification_service, "mark_as_read", fake_mark_as_read, raising=True)

    response = client.patch("/api/notifications/99/read", headers=headers)
    assert response.status_code == 404
    assert response.json() == {"error": "NotificationNotFound", "detail": "Notification not found"}


def test_mark_all_as_read(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=1)

    async def fake_mark_all_as_read(session, user_id):
        return 3

    monkeypatch.setattr(notification_service, "mark_all_as_read", fake_mark_all_as_read, raising=True)

    response = client.patch("/api/notifications/read-all", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"updated": 3}


def test_delete_notification(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=1)
    deleted = []

    async def fake_delete_notification(session, notification_id, user_id):
        deleted.append((notification_id, user_id))

    monkeypatch.setattr(
        notification_service, "delete_notification", fake_delete_notification, raising=True
    )

    response = client.delete("/api/notifications/4", headers=headers)
    assert response.status_code == 204
    assert deleted == [(4, 1)]


def test_service_failure_returns_500(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=1)

    async def fake_get_unread_count(session, user_id):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(notification_service, "get_unread_count", fake_get_unread_count, raising=True)

    response = client.get("/api/notifications/unread-count", headers=headers)
    assert response.status_code == 500
    assert response.json()["detail"] == "Error fetching unread count"
