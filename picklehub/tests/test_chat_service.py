"""
Tests for chat_service: room access, history and live delivery.
"""

import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select, func, and_

from picklehub.database.models import ChatRoom, Notification, NotificationType
from picklehub.services import chat_service, event_service
from picklehub.services.exceptions import ForbiddenError, ValidationError, EventNotFound
from picklehub.services.websocket_manager import WebSocketManager, room_key
from picklehub.tests.factories import create_user, create_event_row, create_team_with_members


@pytest_asyncio.fixture
async def host(db_session):
    return await create_user(db_session, "host@example.com", nickname="Host")


@pytest_asyncio.fixture
async def guest(db_session):
    return await create_user(db_session, "guest@example.com", nickname="Guest")


@pytest_asyncio.fixture
async def outsider(db_session):
    return await create_user(db_session, "outsider@example.com", nickname="Outsider")


@pytest_asyncio.fixture
async def event_with_guest(db_session, host, guest):
    event = await create_event_row(db_session, host.id, title="Friday ladder")
    await event_service.reserve(db_session, event.id, guest.id)
    return event


@pytest.mark.asyncio
async def test_participants_can_chat(db_session, host, guest, event_with_guest):
    manager = WebSocketManager()
    sent = await chat_service.send_message(
        db_session, "event", event_with_guest.id, guest.id, "  See you at 9!  ", manager=manager
    )

    assert sent["content"] == "See you at 9!"
    assert sent["room_type"] == "event"
    assert sent["user"]["id"] == guest.id

    history = await chat_service.get_history(db_session, "event", event_with_guest.id, host.id)
    assert [m["id"] for m in history["messages"]] == [sent["id"]]
    assert history["has_more"] is False


@pytest.mark.asyncio
async def test_outsider_is_rejected(db_session, outsider, event_with_guest):
    with pytest.raises(ForbiddenError):
        await chat_service.get_history(db_session, "event", event_with_guest.id, outsider.id)
    with pytest.raises(ForbiddenError):
        await chat_service.send_message(
            db_session, "event", event_with_guest.id, outsider.id, "hello", manager=WebSocketManager()
        )


@pytest.mark.asyncio
async def test_unknown_room(db_session, host):
    with pytest.raises(EventNotFound):
        await chat_service.get_history(db_session, "event", 9999, host.id)
    with pytest.raises(ValidationError):
        await chat_service.get_history(db_session, "club", 1, host.id)


@pytest.mark.asyncio
async def test_message_validation(db_session, host, event_with_guest):
    manager = WebSocketManager()
    with pytest.raises(ValidationError):
        await chat_service.send_message(
            db_session, "event", event_with_guest.id, host.id, "   ", manager=manager
        )
    with pytest.raises(ValidationError):
        await chat_service.send_message(
            db_session,
            "event",
            event_with_guest.id,
            host.id,
            "x" * (chat_service.MAX_MESSAGE_LENGTH + 1),
            manager=manager,
        )


@pytest.mark.asyncio
async def test_history_is_ordered_and_paged(db_session, host, guest, event_with_guest):
    manager = WebSocketManager()
    ids = []
    for i in range(5):
        sender = host if i % 2 == 0 else guest
        message = await chat_service.send_message(
            db_session, "event", event_with_guest.id, sender.id, f"message {i}", manager=manager
        )
        ids.append(message["id"])

    latest = await chat_service.get_history(db_session, "event", event_with_guest.id, host.id, limit=3)
    assert [m["id"] for m in latest["messages"]] == ids[2:]
    assert latest["has_more"] is True

    older = await chat_service.get_history(
        db_session, "event", event_with_guest.id, host.id, limit=3, before_id=ids[2]
    )
    assert [m["id"] for m in older["messages"]] == ids[:2]
    assert older["has_more"] is False


@pytest.mark.asyncio
async def test_room_created_once(db_session, host, guest, event_with_guest):
    manager = WebSocketManager()
    await chat_service.send_message(db_session, "event", event_with_guest.id, host.id, "one", manager=manager)
    await chat_service.send_message(db_session, "event", event_with_guest.id, guest.id, "two", manager=manager)

    rooms = await db_session.execute(
        select(func.count()).select_from(ChatRoom).where(ChatRoom.event_id == event_with_guest.id)
    )
    assert rooms.scalar_one() == 1


@pytest.mark.asyncio
async def test_live_delivery_to_room(db_session, host, guest, event_with_guest):
    manager = WebSocketManager()
    listener = AsyncMock()
    listener.send_text = AsyncMock()
    await manager.connect(room_key("event", event_with_guest.id), host.id, listener)

    sent = await chat_service.send_message(
        db_session, "event", event_with_guest.id, guest.id, "On my way", manager=manager
    )

    frame = json.loads(listener.send_text.call_args[0][0])
    assert frame["type"] == "message"
    assert frame["data"]["id"] == sent["id"]
    assert frame["data"]["content"] == "On my way"


@pytest.mark.asyncio
async def test_chat_notifies_other_participants(db_session, host, guest, event_with_guest):
    await chat_service.send_message(
        db_session, "event", event_with_guest.id, guest.id, "Bring balls please", manager=WebSocketManager()
    )

    async def count(user_id):
        result = await db_session.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                and_(
                    Notification.user_id == user_id,
                    Notification.type == NotificationType.EVENT_CHAT_MESSAGE.value,
                )
            )
        )
        return result.scalar_one()

    assert await count(host.id) == 1
    assert await count(guest.id) == 0


@pytest.mark.asyncio
async def test_team_chat_members_only(db_session, host, guest, outsider):
    team = await create_team_with_members(db_session, host.id, members=[guest.id])

    sent = await chat_service.send_message(
        db_session, "team", team.id, guest.id, "Practice moved to 7", manager=WebSocketManager()
    )
    assert sent["room_type"] == "team"

    history = await chat_service.get_history(db_session, "team", team.id, host.id)
    assert history["messages"][0]["content"] == "Practice moved to 7"

    with pytest.raises(ForbiddenError):
        await chat_service.get_history(db_session, "team", team.id, outsider.id)
