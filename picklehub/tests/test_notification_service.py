"""
Unit tests for notification service.
Tests notification creation, retrieval, marking as read, and deletion.
"""

import pytest
import pytest_asyncio
from picklehub.services import notification_service
from picklehub.database.models import NotificationType
from picklehub.services.exceptions import NotificationNotFound, ValidationError
from picklehub.tests.factories import create_user


@pytest_asyncio.fixture
async def test_user(db_session):
    """Create a test user for notification tests."""
    user = await create_user(db_session, "player1@example.com")
    return user.id


@pytest_asyncio.fixture
async def test_user2(db_session):
    """Create a second test user for notification tests."""
    user = await create_user(db_session, "player2@example.com")
    return user.id


async def _create(session, user_id, title="Test", type=NotificationType.EVENT_JOINED.value):
    return await notification_service.create_notification(
        session=session,
        user_id=user_id,
        type=type,
        title=title,
        message="Test message",
        related_id="1",
    )


@pytest.mark.asyncio
async def test_create_notification(db_session, test_user):
    """Test creating a single notification."""
    notification = await notification_service.create_notification(
        session=db_session,
        user_id=test_user,
        type=NotificationType.TEAM_JOIN_APPROVED.value,
        title="Join request approved",
        message="You are now a member of Dink Masters",
        related_id=7,
    )

    assert notification["user_id"] == test_user
    assert notification["type"] == "team_join_approved"
    assert notification["related_id"] == "7"
    assert notification["is_read"] is False
    assert notification["read_at"] is None
    assert notification["id"] > 0
    assert notification["created_at"] is not None


@pytest.mark.asyncio
async def test_create_notification_validation(db_session, test_user):
    """Test notification creation validation."""
    with pytest.raises(ValidationError, match="user_id is required"):
        await notification_service.create_notification(
            session=db_session,
            user_id=None,
            type=NotificationType.EVENT_JOINED.value,
            title="Test",
            message="Test",
        )

    with pytest.raises(ValidationError, match="title is required"):
        await notification_service.create_notification(
            session=db_session,
            user_id=test_user,
            type=NotificationType.EVENT_JOINED.value,
            title="",
            message="Test",
        )

    with pytest.raises(ValueError):
        await notification_service.create_notification(
            session=db_session, user_id=test_user, type="not_a_type", title="Test", message="Test"
        )


@pytest.mark.asyncio
async def test_create_notifications_bulk(db_session, test_user, test_user2):
    """Test creating multiple notifications in bulk."""
    notifications = await notification_service.create_notifications_bulk(
        db_session,
        [
            {
                "user_id": user_id,
                "type": NotificationType.EVENT_REMINDER.value,
                "title": "Upcoming event",
                "message": "Starts soon",
            }
            for user_id in (test_user, test_user2)
        ],
    )

    assert [n["user_id"] for n in notifications] == [test_user, test_user2]
    assert await notification_service.create_notifications_bulk(db_session, []) == []


@pytest.mark.asyncio
async def test_get_user_notifications_newest_first(db_session, test_user, test_user2):
    """Test pagination and ordering of a user's notifications."""
    for i in range(3):
        await _create(db_session, test_user, title=f"Notification {i}")
    await _create(db_session, test_user2)

    page = await notification_service.get_user_notifications(db_session, test_user, limit=2)

    assert [n["title"] for n in page["notifications"]] == ["Notification 2", "Notification 1"]
    assert page["total_count"] == 3
    assert page["unread_count"] == 3
    assert page["has_more"] is True

    rest = await notification_service.get_user_notifications(db_session, test_user, limit=2, offset=2)
    assert [n["title"] for n in rest["notifications"]] == ["Notification 0"]
    assert rest["has_more"] is False


@pytest.mark.asyncio
async def test_mark_as_read(db_session, test_user):
    notification = await _create(db_session, test_user)

    updated = await notification_service.mark_as_read(db_session, notification["id"], test_user)

    assert updated["is_read"] is True
    assert updated["read_at"] is not None
    assert await notification_service.get_unread_count(db_session, test_user) == 0

    unread_only = await notification_service.get_user_notifications(
        db_session, test_user, unread_only=True
    )
    assert unread_only["notifications"] == []


@pytest.mark.asyncio
async def test_mark_as_read_other_users_notification(db_session, test_user, test_user2):
    """Another user's notification is reported as not found."""
    notification = await _create(db_session, test_user)

    with pytest.raises(NotificationNotFound):
        await notification_service.mark_as_read(db_session, notification["id"], test_user2)


@pytest.mark.asyncio
async def test_mark_all_as_read(db_session, test_user, test_user2):
    for _ in range(3):
        await _create(db_session, test_user)
    await _create(db_session, test_user2)

    assert await notification_service.mark_all_as_read(db_session, test_user) == 3
    assert await notification_service.mark_all_as_read(db_session, test_user) == 0
    assert await notification_service.get_unread_count(db_session, test_user) == 0
    assert await notification_service.get_unread_count(db_session, test_user2) == 1


@pytest.mark.asyncio
async def test_delete_notification(db_session, test_user, test_user2):
    notification = await _create(db_session, test_user)

    with pytest.raises(NotificationNotFound):
        await notification_service.delete_notification(db_session, notification["id"], test_user2)

    await notification_service.delete_notification(db_session, notification["id"], test_user)

    result = await notification_service.get_user_notifications(db_session, test_user)
    assert result["total_count"] == 0


def test_chat_preview_is_truncated():
    preview = notification_service._preview("a" * 80)
    assert preview == "a" * notification_service.CHAT_PREVIEW_LENGTH + "..."


def test_team_event_related_id():
    assert notification_service.team_event_related_id(3, 12) == "3:12"
