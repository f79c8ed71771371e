"""
Chat service: per-event and per-team chat rooms.

Messages are persisted and committed before they are broadcast, so a client
never receives a live message that a concurrent history read would miss.
"""

from typing import Dict, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import selectinload
from picklehub.database.models import (
    ChatRoom,
    Message,
    TeamChatRoom,
    TeamMessage,
    Event,
    Reservation,
    User,
)
from picklehub.services import notification_service, team_service
from picklehub.services.user_service import get_user, user_summary
from picklehub.services.exceptions import (
    ValidationError,
    ForbiddenError,
    EventNotFound,
)
from picklehub.services.websocket_manager import (
    WebSocketManager,
    ROOM_TYPES,
    get_websocket_manager,
    room_key,
)
from picklehub.utils.datetime_utils import isoformat_utc
import logging

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200

# room type -> (room model, message model, owner column on the room)
ROOM_MODELS = {
    "event": (ChatRoom, Message, ChatRoom.event_id),
    "team": (TeamChatRoom, TeamMessage, TeamChatRoom.team_id),
}


def message_to_dict(message, room_type: str, room_id: int) -> Dict:
    return {
        "id": message.id,
        "room_type": room_type,
        "room_id": room_id,
        "user_id": message.user_id,
        "user": user_summary(message.user),
        "content": message.content,
        "created_at": isoformat_utc(message.created_at),
    }


def _models(room_type: str):
    if room_type not in ROOM_TYPES:
        raise ValidationError("room type must be 'event' or 'team'")
    return ROOM_MODELS[room_type]


async def _load_event(session: AsyncSession, event_id: int) -> Event:
    result = await session.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise EventNotFound()
    return event


async def authorize(
    session: AsyncSession, room_type: str, room_id: int, user_id: int
) -> Tuple[object, User]:
    """
    Check that a user may read and post in a room.

    Event chat: the creator and reservation holders.
    Team chat: team members.

    Returns:
        (event or team, user)

    Raises:
        EventNotFound / TeamNotFound: If the room's owner does not exist
        ForbiddenError: If the user is not a participant
    """
    _models(room_type)
    user = await get_user(session, user_id)

    if room_type == "event":
        event = await _load_event(session, room_id)
        if event.creator_id == user_id:
            return event, user
        result = await session.execute(
            select(Reservation.id).where(
                and_(Reservation.event_id == room_id, Reservation.user_id == user_id)
            )
        )
        if result.scalar_one_or_none() is None:
            raise ForbiddenError("Only participants can use this event chat")
        return event, user

    team = await team_service.get_team_or_404(session, room_id)
    if not await team_service.is_member(session, room_id, user_id):
        raise ForbiddenError("Only team members can use this team chat")
    return team, user


async def _find_room(session: AsyncSession, room_type: str, room_id: int):
    room_model, _, owner_column = _models(room_type)
    result = await session.execute(select(room_model).where(owner_column == room_id))
    return result.scalar_one_or_none()


async def get_or_create_room(session: AsyncSession, room_type: str, room_id: int):
    """
    Return the room for an event/team, creating it on first use.

    Concurrent first messages converge on one row through the unique
    owner column (INSERT ... ON CONFLICT DO NOTHING).
    """
    room = await _find_room(session, room_type, room_id)
    if room is not None:
        return room

    room_model, _, owner_column = _models(room_type)
    dialect = session.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    await session.execute(
        insert(room_model)
        .values({owner_column.key: room_id})
        .on_conflict_do_nothing(index_elements=[owner_column.key])
    )
    return await _find_room(session, room_type, room_id)


async def get_history(
    session: AsyncSession,
    room_type: str,
    room_id: int,
    user_id: int,
    limit: int = DEFAULT_HISTORY_LIMIT,
    before_id: Optional[int] = None,
) -> Dict:
    """
    Messages of a room in creation order.

    Args:
        limit: Maximum number of messages (most recent ones)
        before_id: Only messages older than this id, for paging backwards

    Returns:
        Dict with ``messages`` (oldest first) and ``has_more``
    """
    await authorize(session, room_type, room_id, user_id)
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))

    room = await _find_room(session, room_type, room_id)
    if room is None:
        return {"messages": [], "has_more": False}

    _, message_model, _ = _models(room_type)
    query = (
        select(message_model)
        .options(selectinload(message_model.user))
        .where(message_model.chat_room_id == room.id)
    )
    if before_id is not None:
        query = query.where(message_model.id < before_id)
    # Newest page first, then flip to ascending
    query = query.order_by(message_model.id.desc()).limit(limit + 1)
    messages = list((await session.execute(query)).scalars().all())

    has_more = len(messages) > limit
    messages = list(reversed(messages[:limit]))
    return {
        "messages": [message_to_dict(m, room_type, room_id) for m in messages],
        "has_more": has_more,
    }


async def send_message(
    session: AsyncSession,
    room_type: str,
    room_id: int,
    user_id: int,
    content: str,
    manager: Optional[WebSocketManager] = None,
) -> Dict:
    """
    Persist a message, commit, then fan it out to the room's connections.

    The other participants also get a chat notification in the same
    transaction as the message.

    Raises:
        ValidationError: Empty or too long content
        ForbiddenError: Sender is not a participant
    """
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message cannot be empty")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")

    owner, sender = await authorize(session, room_type, room_id, user_id)
    room = await get_or_create_room(session, room_type, room_id)

    _, message_model, _ = _models(room_type)
    message = message_model(chat_room_id=room.id, user_id=user_id, content=content)
    session.add(message)
    await session.flush()
    await session.refresh(message)

    if room_type == "event":
        await notification_service.notify_event_chat_message(session, owner, sender, content)
    else:
        await notification_service.notify_team_chat_message(session, owner, sender, content)

    payload = {
        "id": message.id,
        "room_type": room_type,
        "room_id": room_id,
        "user_id": user_id,
        "user": user_summary(sender),
        "content": message.content,
        "created_at": isoformat_utc(message.created_at),
    }

    await session.commit()

    manager = manager or get_websocket_manager()
    delivered = await manager.broadcast(
        room_key(room_type, room_id), {"type": "message", "data": payload}
    )
    logger.info(
        f"User {user_id} posted message {message.id} in {room_key(room_type, room_id)} "
        f"(live deliveries: {delivered})"
    )
    return payload

