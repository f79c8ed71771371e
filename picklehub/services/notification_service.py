"""
Notification service for managing user notifications.

Handles creation, retrieval, and status updates for in-app notifications.
Notifications are written on the caller's session, so they commit or roll
back together with the state change that produced them.
"""

from typing import Iterable, List, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_
from picklehub.database.models import (
    Notification,
    NotificationType,
    User,
    Team,
    TeamMember,
    TeamRole,
    Event,
    Reservation,
    TeamEvent,
    TeamEventParticipant,
)
from picklehub.services.exceptions import NotificationNotFound, ValidationError
from picklehub.utils.datetime_utils import utcnow, as_utc, isoformat_utc
import logging

logger = logging.getLogger(__name__)

CHAT_PREVIEW_LENGTH = 50


def notification_to_dict(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "related_id": notification.related_id,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "read_at": isoformat_utc(notification.read_at),
        "created_at": isoformat_utc(notification.created_at),
    }


def display_name(user: Optional[User]) -> str:
    """Name shown to other users: nickname, then full name."""
    if user is None:
        return "Someone"
    return user.nickname or user.name or "Someone"


def team_event_related_id(team_id: int, event_id: int) -> str:
    """Team event notifications reference both ids so clients can deep link."""
    return f"{team_id}:{event_id}"


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    related_id: Optional[str] = None,
) -> Dict:
    """
    Create a single notification for a user.

    Args:
        session: Database session
        user_id: ID of the user to notify
        type: Notification type (NotificationType enum value)
        title: Notification title
        message: Notification message text
        related_id: Optional id of the event/team the notification refers to

    Returns:
        Dict containing the created notification data

    Raises:
        ValidationError: If required fields are missing or invalid
    """
    if not user_id:
        raise ValidationError("user_id is required")
    if not type:
        raise ValidationError("type is required")
    if not title:
        raise ValidationError("title is required")
    if not message:
        raise ValidationError("message is required")

    notification = Notification(
        user_id=user_id,
        type=NotificationType(type).value,
        related_id=str(related_id) if related_id is not None else None,
        title=title,
        message=message,
        is_read=False,
    )

    session.add(notification)
    await session.flush()
    await session.refresh(notification)

    return notification_to_dict(notification)


async def create_notifications_bulk(
    session: AsyncSession,
    notifications_list: List[Dict]
) -> List[Dict]:
    """
    Create multiple notifications using a single flush.

    Args:
        session: Database session
        notifications_list: List of notification dicts, each containing:
            - user_id (int, required)
            - type (str, required)
            - title (str, required)
            - message (str, required)
            - related_id (str, optional)

    Returns:
        List of created notification dicts

    Raises:
        ValidationError: If any notification data is invalid
    """
    if not notifications_list:
        return []

    notification_objects = []
    for notif_data in notifications_list:
        if not notif_data.get("user_id"):
            raise ValidationError("user_id is required for all notifications")
        if not notif_data.get("type"):
            raise ValidationError("type is required for all notifications")
        if not notif_data.get("title"):
            raise ValidationError("title is required for all notifications")
        if not notif_data.get("message"):
            raise ValidationError("message is required for all notifications")

        related_id = notif_data.get("related_id")
        notification_objects.append(
            Notification(
                user_id=notif_data["user_id"],
                type=NotificationType(notif_data["type"]).value,
                related_id=str(related_id) if related_id is not None else None,
                title=notif_data["title"],
                message=notif_data["message"],
                is_read=False,
            )
        )

    session.add_all(notification_objects)
    await session.flush()

    # Refresh to pick up server-side created_at
    for notif in notification_objects:
        await session.refresh(notif)

    return [notification_to_dict(notif) for notif in notification_objects]


async def get_user_notifications(
    session: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False
) -> Dict:
    """
    Fetch user notifications with pagination.

    Args:
        session: Database session
        user_id: ID of the user
        limit: Maximum number of notifications to return (default: 50)
        offset: Number of notifications to skip (default: 0)
        unread_only: If True, only return unread notifications (default: False)

    Returns:
        Dict containing:
            - notifications: List of notification dicts (newest first)
            - total_count: Total number of notifications matching the criteria
            - unread_count: Total number of unread notifications for the user
            - has_more: Boolean indicating if there are more notifications
    """
    query = select(Notification).where(Notification.user_id == user_id)

    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    count_query = select(func.count()).select_from(query.subquery())
    total_result = await session.execute(count_query)
    total_count = total_result.scalar_one() or 0

    query = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(query)
    notifications = result.scalars().all()

    notification_dicts = [notification_to_dict(notif) for notif in notifications]
    has_more = (offset + len(notification_dicts)) < total_count

    return {
        "notifications": notification_dicts,
        "total_count": total_count,
        "unread_count": await get_unread_count(session, user_id),
        "has_more": has_more,
    }


async def get_unread_count(session: AsyncSession, user_id: int) -> int:
    """Get count of unread notifications for a user."""
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            and_(
                Notification.user_id == user_id,
                Notification.is_read == False  # noqa: E712
            )
        )
    )
    return result.scalar_one() or 0


async def _get_owned_notification(
    session: AsyncSession, notification_id: int, user_id: int
) -> Notification:
    result = await session.execute(
        select(Notification).where(
            and_(
                Notification.id == notification_id,
                Notification.user_id == user_id
            )
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        # Other users' notifications are reported as missing, not forbidden
        raise NotificationNotFound()
    return notification


async def mark_as_read(
    session: AsyncSession,
    notification_id: int,
    user_id: int
) -> Dict:
    """
    Mark a single notification as read.

    Args:
        session: Database session
        notification_id: ID of the notification
        user_id: ID of the user (ensures the user owns the notification)

    Returns:
        Updated notification dict

    Raises:
        NotificationNotFound: If notification not found or doesn't belong to user
    """
    notification = await _get_owned_notification(session, notification_id, user_id)

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await session.flush()
        await session.refresh(notification)

    return notification_to_dict(notification)


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    """
    Mark all user notifications as read.

    Returns:
        Count of notifications marked as read
    """
    result = await session.execute(
        update(Notification)
        .where(
            and_(
                Notification.user_id == user_id,
                Notification.is_read == False  # noqa: E712
            )
        )
        .values(
            is_read=True,
            read_at=utcnow()
        )
        .returning(Notification.id)
    )

    marked_ids = result.scalars().all()
    await session.flush()

    return len(marked_ids)


async def delete_notification(
    session: AsyncSession,
    notification_id: int,
    user_id: int
) -> None:
    """
    Delete a notification owned by the user.

    Deleting a notification never touches the state change it reported.
    """
    notification = await _get_owned_notification(session, notification_id, user_id)
    await session.execute(delete(Notification).where(Notification.id == notification.id))
    await session.flush()


#
# Recipient lookups
#

async def get_team_user_ids(
    session: AsyncSession,
    team_id: int,
    roles: Optional[Iterable[str]] = None,
) -> List[int]:
    """User ids of a team's members, optionally filtered by role."""
    query = select(TeamMember.user_id).where(TeamMember.team_id == team_id)
    if roles is not None:
        query = query.where(TeamMember.role.in_([TeamRole(role).value for role in roles]))
    result = await session.execute(query.order_by(TeamMember.user_id))
    return list(result.scalars().all())


async def get_team_manager_user_ids(session: AsyncSession, team_id: int) -> List[int]:
    """User ids of the owner and admins of a team."""
    return await get_team_user_ids(session, team_id, roles=[TeamRole.OWNER, TeamRole.ADMIN])


async def get_event_holder_user_ids(session: AsyncSession, event_id: int) -> List[int]:
    result = await session.execute(
        select(Reservation.user_id).where(Reservation.event_id == event_id)
    )
    return list(result.scalars().all())


async def get_team_event_participant_user_ids(session: AsyncSession, event_id: int) -> List[int]:
    result = await session.execute(
        select(TeamEventParticipant.user_id).where(TeamEventParticipant.event_id == event_id)
    )
    return list(result.scalars().all())


async def _get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


def _preview(content: str) -> str:
    if len(content) <= CHAT_PREVIEW_LENGTH:
        return content
    return content[:CHAT_PREVIEW_LENGTH] + "..."


async def _notify_many(
    session: AsyncSession,
    user_ids: Iterable[int],
    type: NotificationType,
    title: str,
    message: str,
    related_id: Optional[str],
    exclude_user_id: Optional[int] = None,
) -> List[Dict]:
    recipients = []
    for user_id in user_ids:
        if user_id == exclude_user_id or user_id in recipients:
            continue
        recipients.append(user_id)

    if not recipients:
        return []

    notifications = await create_notifications_bulk(
        session,
        [
            {
                "user_id": user_id,
                "type": type.value,
                "title": title,
                "message": message,
                "related_id": related_id,
            }
            for user_id in recipients
        ],
    )
    logger.info(f"Created {len(notifications)} {type.value} notifications")
    return notifications


#
# Business logic helper functions for specific notification types
#

def event_related_id(event) -> str:
    """related_id for an Event or TeamEvent."""
    if isinstance(event, TeamEvent):
        return team_event_related_id(event.team_id, event.id)
    return str(event.id)


async def notify_event_joined(
    session: AsyncSession, event, participant_id: int
) -> Optional[Dict]:
    """Tell the event creator that someone reserved a spot."""
    if event.creator_id == participant_id:
        return None
    participant = await _get_user(session, participant_id)
    return await create_notification(
        session,
        user_id=event.creator_id,
        type=NotificationType.EVENT_JOINED.value,
        title="New reservation",
        message=f"{display_name(participant)} reserved a spot in {event.title}",
        related_id=event_related_id(event),
    )


async def notify_event_cancelled(
    session: AsyncSession, event, participant_id: int
) -> Optional[Dict]:
    """Tell the event creator that a participant cancelled."""
    if event.creator_id == participant_id:
        return None
    participant = await _get_user(session, participant_id)
    return await create_notification(
        session,
        user_id=event.creator_id,
        type=NotificationType.EVENT_CANCELLED.value,
        title="Reservation cancelled",
        message=f"{display_name(participant)} cancelled their reservation for {event.title}",
        related_id=event_related_id(event),
    )


async def notify_event_updated(
    session: AsyncSession, event, holder_ids: Iterable[int]
) -> List[Dict]:
    """Tell participants that the time or place of an event changed."""
    return await _notify_many(
        session,
        holder_ids,
        NotificationType.EVENT_UPDATED,
        title="Event updated",
        message=f"{event.title} has been updated. Please check the new details.",
        related_id=event_related_id(event),
        exclude_user_id=event.creator_id,
    )


async def notify_event_cancelled_by_creator(
    session: AsyncSession, event, holder_ids: Iterable[int]
) -> List[Dict]:
    """Tell participants that the organizer cancelled the event."""
    return await _notify_many(
        session,
        holder_ids,
        NotificationType.EVENT_CANCELLED_BY_CREATOR,
        title="Event cancelled",
        message=f"{event.title} has been cancelled by the organizer",
        related_id=event_related_id(event),
        exclude_user_id=event.creator_id,
    )


async def notify_event_reminder(
    session: AsyncSession, event, user_ids: Iterable[int]
) -> List[Dict]:
    """Remind participants of an event (or team event) that starts soon."""
    start = as_utc(event.start_time).strftime("%Y-%m-%d %H:%M")
    return await _notify_many(
        session,
        user_ids,
        NotificationType.EVENT_REMINDER,
        title="Upcoming event",
        message=f"{event.title} starts at {start} UTC at {event.location}",
        related_id=event_related_id(event),
    )


async def notify_event_chat_message(
    session: AsyncSession, event: Event, sender: User, content: str
) -> List[Dict]:
    """Tell the other participants of an event about a new chat message."""
    recipient_ids = [event.creator_id] + await get_event_holder_user_ids(session, event.id)
    return await _notify_many(
        session,
        recipient_ids,
        NotificationType.EVENT_CHAT_MESSAGE,
        title=f"New message in {event.title}",
        message=f"{display_name(sender)}: {_preview(content)}",
        related_id=str(event.id),
        exclude_user_id=sender.id,
    )


async def notify_team_join_request(
    session: AsyncSession, team: Team, requester_id: int
) -> List[Dict]:
    """Tell the owner and admins that someone wants to join."""
    requester = await _get_user(session, requester_id)
    manager_ids = await get_team_manager_user_ids(session, team.id)
    return await _notify_many(
        session,
        manager_ids,
        NotificationType.TEAM_JOIN_REQUEST,
        title="New join request",
        message=f"{display_name(requester)} wants to join {team.name}",
        related_id=str(team.id),
    )


async def notify_team_join_approved(
    session: AsyncSession, team: Team, user_id: int
) -> Dict:
    return await create_notification(
        session,
        user_id=user_id,
        type=NotificationType.TEAM_JOIN_APPROVED.value,
        title="Join request approved",
        message=f"You are now a member of {team.name}",
        related_id=str(team.id),
    )


async def notify_team_join_rejected(
    session: AsyncSession, team: Team, user_id: int
) -> Dict:
    return await create_notification(
        session,
        user_id=user_id,
        type=NotificationType.TEAM_JOIN_REJECTED.value,
        title="Join request declined",
        message=f"Your request to join {team.name} was declined",
        related_id=str(team.id),
    )


async def notify_team_member_left(
    session: AsyncSession, team: Team, user_id: int, removed_by_id: Optional[int] = None
) -> List[Dict]:
    """Tell the remaining owner and admins that a member left or was removed."""
    member = await _get_user(session, user_id)
    if removed_by_id is not None and removed_by_id != user_id:
        message = f"{display_name(member)} was removed from {team.name}"
    else:
        message = f"{display_name(member)} left {team.name}"
    manager_ids = await get_team_manager_user_ids(session, team.id)
    return await _notify_many(
        session,
        manager_ids,
        NotificationType.TEAM_MEMBER_LEFT,
        title="Member left",
        message=message,
        related_id=str(team.id),
        exclude_user_id=removed_by_id if removed_by_id is not None else user_id,
    )


async def notify_team_role_changed(
    session: AsyncSession, team: Team, user_id: int, new_role: str
) -> Dict:
    role_labels = {
        TeamRole.OWNER.value: "owner",
        TeamRole.ADMIN.value: "an admin",
        TeamRole.MEMBER.value: "a member",
    }
    return await create_notification(
        session,
        user_id=user_id,
        type=NotificationType.TEAM_ROLE_CHANGED.value,
        title="Role changed",
        message=f"You are now {role_labels[new_role]} of {team.name}",
        related_id=str(team.id),
    )


async def notify_team_event_created(
    session: AsyncSession, team: Team, team_event: TeamEvent
) -> List[Dict]:
    """Tell every other member about a new team event."""
    member_ids = await get_team_user_ids(session, team.id)
    return await _notify_many(
        session,
        member_ids,
        NotificationType.TEAM_EVENT_CREATED,
        title=f"New event in {team.name}",
        message=f"{team_event.title} has been scheduled",
        related_id=team_event_related_id(team.id, team_event.id),
        exclude_user_id=team_event.creator_id,
    )


async def notify_team_chat_message(
    session: AsyncSession, team: Team, sender: User, content: str
) -> List[Dict]:
    """Tell the other team members about a new chat message."""
    member_ids = await get_team_user_ids(session, team.id)
    return await _notify_many(
        session,
        member_ids,
        NotificationType.TEAM_CHAT_MESSAGE,
        title=f"New message in {team.name}",
        message=f"{display_name(sender)}: {_preview(content)}",
        related_id=str(team.id),
        exclude_user_id=sender.id,
    )
