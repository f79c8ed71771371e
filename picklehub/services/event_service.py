"""
Event service: events, team events and capacity-limited admission.

Admission is a single conditional increment of the event's counter column::

    UPDATE events SET reserved_count = reserved_count + 1
    WHERE id = :id AND status = 'active'
      AND (max_participants IS NULL OR reserved_count < max_participants)

followed by the reservation insert in the same transaction. Zero rows
updated means the event is full; the unique (event, user) constraint turns a
duplicate insert into AlreadyReserved and rolls the increment back. Team
events use the same path with ``participant_count``.
"""

from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from picklehub.database.models import (
    Event,
    EventStatus,
    Reservation,
    Team,
    TeamEvent,
    TeamEventParticipant,
    TeamMember,
    Visibility,
    ChatRoom,
    Message,
)
from picklehub.services import notification_service, team_service
from picklehub.services.user_service import user_summary
from picklehub.services.exceptions import (
    ValidationError,
    ForbiddenError,
    NotFoundError,
    EventNotFound,
    ReservationNotFound,
    EventFull,
    AlreadyReserved,
    EventLocked,
    EventClosed,
)
from picklehub.utils.datetime_utils import utcnow, as_utc, isoformat_utc
import logging

logger = logging.getLogger(__name__)

EVENT_FIELDS = (
    "title",
    "description",
    "location",
    "address",
    "latitude",
    "longitude",
    "region",
    "start_time",
    "end_time",
    "max_participants",
    "skill_level",
    "price",
)
TEAM_EVENT_FIELDS = EVENT_FIELDS + ("visibility",)

# Changes participants are told about
MATERIAL_FIELDS = ("start_time", "end_time", "location", "address")


#
# Serialization
#

def _event_base_dict(event, count: int) -> Dict:
    data = {field: getattr(event, field) for field in EVENT_FIELDS}
    data["start_time"] = isoformat_utc(event.start_time)
    data["end_time"] = isoformat_utc(event.end_time)
    available = None
    if event.max_participants is not None:
        available = max(event.max_participants - count, 0)
    data.update(
        {
            "id": event.id,
            "creator_id": event.creator_id,
            "creator": user_summary(event.creator),
            "status": event.status,
            "available_spots": available,
            "is_full": available == 0,
            "created_at": isoformat_utc(event.created_at),
            "updated_at": isoformat_utc(event.updated_at),
        }
    )
    return data


def reservation_to_dict(reservation: Reservation) -> Dict:
    return {
        "id": reservation.id,
        "event_id": reservation.event_id,
        "user_id": reservation.user_id,
        "created_at": isoformat_utc(reservation.created_at),
    }


def event_to_dict(
    event: Event,
    current_user_id: Optional[int] = None,
    reservations: Optional[List[Reservation]] = None,
    is_user_reserved: Optional[bool] = None,
) -> Dict:
    data = _event_base_dict(event, event.reserved_count)
    data["reserved_count"] = event.reserved_count
    if reservations is not None:
        data["reservations"] = [
            dict(reservation_to_dict(reservation), user=user_summary(reservation.user))
            for reservation in reservations
        ]
        if is_user_reserved is None and current_user_id is not None:
            is_user_reserved = any(r.user_id == current_user_id for r in reservations)
    data["is_user_reserved"] = bool(is_user_reserved)
    return data


def participant_to_dict(participant: TeamEventParticipant) -> Dict:
    return {
        "id": participant.id,
        "event_id": participant.event_id,
        "user_id": participant.user_id,
        "joined_at": isoformat_utc(participant.joined_at),
    }


def team_event_to_dict(
    team_event: TeamEvent,
    current_user_id: Optional[int] = None,
    participants: Optional[List[TeamEventParticipant]] = None,
    is_user_participating: Optional[bool] = None,
) -> Dict:
    data = _event_base_dict(team_event, team_event.participant_count)
    data.update(
        {
            "team_id": team_event.team_id,
            "team": {
                "id": team_event.team.id,
                "name": team_event.team.name,
                "icon_image": team_event.team.icon_image,
            },
            "visibility": team_event.visibility,
            "participant_count": team_event.participant_count,
        }
    )
    if participants is not None:
        data["participants"] = [
            dict(participant_to_dict(participant), user=user_summary(participant.user))
            for participant in participants
        ]
        if is_user_participating is None and current_user_id is not None:
            is_user_participating = any(p.user_id == current_user_id for p in participants)
    data["is_user_participating"] = bool(is_user_participating)
    return data


#
# Validation
#

def _validate_event_fields(
    fields: Dict, allowed: tuple, current=None
) -> Dict:
    """
    Validate a create payload (current=None) or a patch against ``current``.

    Datetimes are normalized to UTC. Raises ValidationError before any write.
    """
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValidationError(f"Unknown event fields: {', '.join(sorted(unknown))}")

    creating = current is None
    for field in ("title", "location"):
        if creating or field in fields:
            value = (fields.get(field) or "").strip()
            if not value:
                raise ValidationError(f"{field} is required")
            fields[field] = value

    for field in ("start_time", "end_time"):
        if creating and fields.get(field) is None:
            raise ValidationError(f"{field} is required")
        if field in fields:
            if fields[field] is None:
                raise ValidationError(f"{field} cannot be cleared")
            fields[field] = as_utc(fields[field])

    start = fields.get("start_time") or as_utc(current.start_time)
    end = fields.get("end_time") or as_utc(current.end_time)
    if start >= end:
        raise ValidationError("Start time must be before end time")
    if "start_time" in fields and start <= utcnow():
        raise ValidationError("Start time must be in the future")

    max_participants = fields.get("max_participants")
    if max_participants is not None and max_participants < 1:
        raise ValidationError("max_participants must be at least 1")

    price = fields.get("price")
    if price is not None and price < 0:
        raise ValidationError("price cannot be negative")

    if "visibility" in fields or ("visibility" in allowed and creating):
        try:
            fields["visibility"] = Visibility(
                fields.get("visibility") or Visibility.PRIVATE.value
            ).value
        except ValueError:
            raise ValidationError("visibility must be 'public' or 'private'")

    return fields


def _ensure_joinable(event) -> None:
    """Reservations can change only on active events that have not started."""
    if event.status != EventStatus.ACTIVE.value:
        raise EventClosed()
    if as_utc(event.start_time) <= utcnow():
        raise EventLocked()


def _ensure_mutable(event) -> None:
    """Past or closed events are immutable."""
    if event.status != EventStatus.ACTIVE.value or as_utc(event.start_time) <= utcnow():
        raise EventLocked()


def _material_change(event, patch: Dict) -> bool:
    for field in MATERIAL_FIELDS:
        if field not in patch:
            continue
        old = getattr(event, field)
        if field in ("start_time", "end_time"):
            old = as_utc(old)
        if patch[field] != old:
            return True
    return False


#
# Atomic admission
#

async def _claim_slot(session: AsyncSession, model, counter, event_id: int) -> bool:
    result = await session.execute(
        update(model)
        .where(
            and_(
                model.id == event_id,
                model.status == EventStatus.ACTIVE.value,
                or_(model.max_participants.is_(None), counter < model.max_participants),
            )
        )
        .values({counter.key: counter + 1})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _release_slot(session: AsyncSession, model, counter, event_id: int) -> None:
    await session.execute(
        update(model)
        .where(and_(model.id == event_id, counter > 0))
        .values({counter.key: counter - 1})
        .execution_options(synchronize_session=False)
    )


async def _admission_failure(session: AsyncSession, model, event_id: int):
    """Work out why a claim matched no row."""
    result = await session.execute(
        select(model.status).where(model.id == event_id)
    )
    status = result.scalar_one_or_none()
    if status is None:
        return EventNotFound()
    if status != EventStatus.ACTIVE.value:
        return EventClosed()
    return EventFull()


#
# Events
#

async def _load_event(session: AsyncSession, event_id: int, refresh: bool = False) -> Event:
    query = select(Event).options(selectinload(Event.creator)).where(Event.id == event_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    event = (await session.execute(query)).scalar_one_or_none()
    if not event:
        raise EventNotFound()
    return event


async def _load_reservations(session: AsyncSession, event_id: int) -> List[Reservation]:
    result = await session.execute(
        select(Reservation)
        .options(selectinload(Reservation.user))
        .where(Reservation.event_id == event_id)
        .order_by(Reservation.created_at, Reservation.id)
    )
    return list(result.scalars().all())


async def _event_detail(session: AsyncSession, event_id: int, current_user_id: Optional[int]) -> Dict:
    event = await _load_event(session, event_id, refresh=True)
    reservations = await _load_reservations(session, event_id)
    return event_to_dict(event, current_user_id, reservations=reservations)


async def create_event(session: AsyncSession, creator_id: int, fields: Dict) -> Dict:
    """
    Create an event.

    Raises:
        ValidationError: Missing fields, start >= end, start in the past,
            non-positive capacity or negative price
    """
    fields = _validate_event_fields(dict(fields), EVENT_FIELDS)

    event = Event(
        creator_id=creator_id,
        status=EventStatus.ACTIVE.value,
        reserved_count=0,
        **fields,
    )
    session.add(event)
    await session.flush()

    logger.info(f"User {creator_id} created event {event.id}")
    return await _event_detail(session, event.id, creator_id)


async def list_events(
    session: AsyncSession,
    current_user_id: Optional[int] = None,
    status: Optional[str] = None,
    creator_id: Optional[int] = None,
    region: Optional[str] = None,
    upcoming: bool = True,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict]:
    """
    List events ordered by start time.

    By default only events that have not started yet and are not cancelled.
    """
    query = select(Event).options(selectinload(Event.creator))

    if status:
        try:
            query = query.where(Event.status == EventStatus(status).value)
        except ValueError:
            raise ValidationError("status must be one of active, completed, cancelled")
    else:
        query = query.where(Event.status != EventStatus.CANCELLED.value)
    if creator_id is not None:
        query = query.where(Event.creator_id == creator_id)
    if region:
        query = query.where(Event.region == region)
    if upcoming:
        query = query.where(Event.start_time > utcnow())

    query = query.order_by(Event.start_time, Event.id).limit(limit).offset(offset)
    events = (await session.execute(query)).scalars().all()

    reserved_ids = set()
    if current_user_id is not None and events:
        result = await session.execute(
            select(Reservation.event_id).where(
                and_(
                    Reservation.user_id == current_user_id,
                    Reservation.event_id.in_([event.id for event in events]),
                )
            )
        )
        reserved_ids = set(result.scalars().all())

    return [
        event_to_dict(event, current_user_id, is_user_reserved=event.id in reserved_ids)
        for event in events
    ]


async def get_site_stats(session: AsyncSession) -> Dict:
    """Total events, standalone plus team events, and public teams."""
    event_total = await session.scalar(select(func.count()).select_from(Event))
    team_event_total = await session.scalar(select(func.count()).select_from(TeamEvent))
    team_total = await session.scalar(
        select(func.count()).select_from(Team).where(Team.visibility == Visibility.PUBLIC.value)
    )
    return {"event_count": event_total + team_event_total, "team_count": team_total}


async def get_event(session: AsyncSession, event_id: int, current_user_id: Optional[int] = None) -> Dict:
    """Event with its reservations."""
    return await _event_detail(session, event_id, current_user_id)


async def update_event(session: AsyncSession, event_id: int, actor_id: int, patch: Dict) -> Dict:
    """
    Apply a partial update. Creator only.

    Raises:
        EventLocked: The event has started or is no longer active
        ValidationError: Invalid fields, or capacity below current reservations
    """
    event = await _load_event(session, event_id)
    if event.creator_id != actor_id:
        raise ForbiddenError("Only the event creator can edit this event")
    _ensure_mutable(event)

    patch = _validate_event_fields(dict(patch), EVENT_FIELDS, current=event)
    if not patch:
        return await _event_detail(session, event_id, actor_id)
    notify = _material_change(event, patch)

    conditions = [
        Event.id == event_id,
        Event.status == EventStatus.ACTIVE.value,
        Event.start_time > utcnow(),
    ]
    if patch.get("max_participants") is not None:
        conditions.append(Event.reserved_count <= patch["max_participants"])

    result = await session.execute(
        update(Event)
        .where(and_(*conditions))
        .values(updated_at=utcnow(), **patch)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        event = await _load_event(session, event_id, refresh=True)
        _ensure_mutable(event)
        raise ValidationError("max_participants cannot be lower than the number of reservations")

    event = await _load_event(session, event_id, refresh=True)
    if notify:
        holder_ids = await notification_service.get_event_holder_user_ids(session, event_id)
        await notification_service.notify_event_updated(session, event, holder_ids)

    logger.info(f"User {actor_id} updated event {event_id}")
    return await _event_detail(session, event_id, actor_id)


async def close_event(session: AsyncSession, event_id: int, actor_id: int) -> Dict:
    """Mark an active event completed. Creator only; completed is terminal."""
    event = await _load_event(session, event_id)
    if event.creator_id != actor_id:
        raise ForbiddenError("Only the event creator can close this event")

    result = await session.execute(
        update(Event)
        .where(and_(Event.id == event_id, Event.status == EventStatus.ACTIVE.value))
        .values(status=EventStatus.COMPLETED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise EventClosed()

    logger.info(f"User {actor_id} closed event {event_id}")
    return await _event_detail(session, event_id, actor_id)


async def purge_event(session: AsyncSession, event: Event, notify: bool = True) -> None:
    """
    Delete an event with its reservations and chat.

    Reservation holders are told when the event had not started yet.
    """
    holder_ids = await notification_service.get_event_holder_user_ids(session, event.id)
    if notify and holder_ids and as_utc(event.start_time) > utcnow():
        await notification_service.notify_event_cancelled_by_creator(session, event, holder_ids)

    room_ids = select(ChatRoom.id).where(ChatRoom.event_id == event.id)
    await session.execute(delete(Message).where(Message.chat_room_id.in_(room_ids)))
    await session.execute(delete(ChatRoom).where(ChatRoom.event_id == event.id))
    await session.execute(delete(Reservation).where(Reservation.event_id == event.id))
    await session.execute(delete(Event).where(Event.id == event.id))
    await session.flush()


async def delete_event(session: AsyncSession, event_id: int, actor_id: int) -> None:
    """Delete an event that has not started. Creator only."""
    event = await _load_event(session, event_id)
    if event.creator_id != actor_id:
        raise ForbiddenError("Only the event creator can delete this event")
    if as_utc(event.start_time) <= utcnow():
        raise EventLocked()

    await purge_event(session, event)
    logger.info(f"User {actor_id} deleted event {event_id}")


#
# Reservations
#

async def reserve(session: AsyncSession, event_id: int, user_id: int) -> Dict:
    """
    Reserve a spot in an event.

    Returns:
        Dict with the reservation and the updated event

    Raises:
        EventNotFound, EventClosed, EventLocked, AlreadyReserved, EventFull
    """
    event = await _load_event(session, event_id)
    _ensure_joinable(event)

    existing = await session.execute(
        select(Reservation.id).where(
            and_(Reservation.event_id == event_id, Reservation.user_id == user_id)
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise AlreadyReserved()

    if not await _claim_slot(session, Event, Event.reserved_count, event_id):
        raise await _admission_failure(session, Event, event_id)

    reservation = Reservation(event_id=event_id, user_id=user_id)
    session.add(reservation)
    try:
        await session.flush()
    except IntegrityError as e:
        raise AlreadyReserved() from e
    await session.refresh(reservation)

    await notification_service.notify_event_joined(session, event, user_id)

    logger.info(f"User {user_id} reserved event {event_id}")
    return {
        "reservation": reservation_to_dict(reservation),
        "event": await _event_detail(session, event_id, user_id),
    }


async def cancel_reservation(session: AsyncSession, reservation_id: int, actor_id: int) -> Dict:
    """
    Cancel a reservation, freeing its slot. Holder only.

    Returns:
        The updated event
    """
    result = await session.execute(select(Reservation).where(Reservation.id == reservation_id))
    reservation = result.scalar_one_or_none()
    if not reservation:
        raise ReservationNotFound()
    if reservation.user_id != actor_id:
        raise ForbiddenError("You can only cancel your own reservation")

    event = await _load_event(session, reservation.event_id)
    _ensure_joinable(event)

    deleted = await session.execute(delete(Reservation).where(Reservation.id == reservation_id))
    if deleted.rowcount != 1:
        raise ReservationNotFound()
    await _release_slot(session, Event, Event.reserved_count, event.id)

    await notification_service.notify_event_cancelled(session, event, actor_id)

    logger.info(f"User {actor_id} cancelled reservation {reservation_id} for event {event.id}")
    return await _event_detail(session, event.id, actor_id)


async def list_my_reservations(session: AsyncSession, user_id: int, upcoming: bool = False) -> List[Dict]:
    """The user's reservations with their events, soonest first."""
    query = (
        select(Reservation, Event)
        .join(Event, Event.id == Reservation.event_id)
        .options(selectinload(Event.creator))
        .where(Reservation.user_id == user_id)
    )
    if upcoming:
        query = query.where(Event.start_time > utcnow())
    rows = (await session.execute(query.order_by(Event.start_time, Event.id))).all()
    return [
        dict(reservation_to_dict(reservation), event=event_to_dict(event, is_user_reserved=True))
        for reservation, event in rows
    ]


async def release_user_spots(session: AsyncSession, user_id: int) -> None:
    """Drop every reservation and team event spot a user holds."""
    reservations = (
        await session.execute(select(Reservation).where(Reservation.user_id == user_id))
    ).scalars().all()
    for reservation in reservations:
        await session.execute(delete(Reservation).where(Reservation.id == reservation.id))
        await _release_slot(session, Event, Event.reserved_count, reservation.event_id)

    participants = (
        await session.execute(
            select(TeamEventParticipant).where(TeamEventParticipant.user_id == user_id)
        )
    ).scalars().all()
    for participant in participants:
        await session.execute(
            delete(TeamEventParticipant).where(TeamEventParticipant.id == participant.id)
        )
        await _release_slot(
            session, TeamEvent, TeamEvent.participant_count, participant.event_id
        )
    await session.flush()


#
# Team events
#

async def _load_team_event(
    session: AsyncSession, team_id: int, event_id: int, refresh: bool = False
) -> TeamEvent:
    query = (
        select(TeamEvent)
        .options(selectinload(TeamEvent.creator), selectinload(TeamEvent.team))
        .where(and_(TeamEvent.id == event_id, TeamEvent.team_id == team_id))
    )
    if refresh:
        query = query.execution_options(populate_existing=True)
    team_event = (await session.execute(query)).scalar_one_or_none()
    if not team_event:
        raise EventNotFound()
    return team_event


async def _team_event_detail(
    session: AsyncSession, team_id: int, event_id: int, current_user_id: Optional[int]
) -> Dict:
    team_event = await _load_team_event(session, team_id, event_id, refresh=True)
    result = await session.execute(
        select(TeamEventParticipant)
        .options(selectinload(TeamEventParticipant.user))
        .where(TeamEventParticipant.event_id == event_id)
        .order_by(TeamEventParticipant.joined_at, TeamEventParticipant.id)
    )
    return team_event_to_dict(
        team_event, current_user_id, participants=list(result.scalars().all())
    )


async def _require_team_event_manager(
    session: AsyncSession, team_event: TeamEvent, actor_id: int
) -> None:
    if team_event.creator_id == actor_id:
        return
    await team_service.require_manager(session, team_event.team_id, actor_id)


async def _require_visible(session: AsyncSession, team_event: TeamEvent, viewer_id: Optional[int]) -> None:
    if team_event.visibility == Visibility.PUBLIC.value:
        return
    if viewer_id is None or not await team_service.is_member(session, team_event.team_id, viewer_id):
        raise ForbiddenError("This event is only visible to team members")


async def _participating_ids(
    session: AsyncSession, user_id: Optional[int], event_ids: List[int]
) -> set:
    if user_id is None or not event_ids:
        return set()
    result = await session.execute(
        select(TeamEventParticipant.event_id).where(
            and_(
                TeamEventParticipant.user_id == user_id,
                TeamEventParticipant.event_id.in_(event_ids),
            )
        )
    )
    return set(result.scalars().all())


async def _team_event_list(
    session: AsyncSession, query, current_user_id: Optional[int]
) -> List[Dict]:
    query = query.options(selectinload(TeamEvent.creator), selectinload(TeamEvent.team))
    team_events = (await session.execute(query)).scalars().all()
    joined = await _participating_ids(session, current_user_id, [te.id for te in team_events])
    return [
        team_event_to_dict(te, current_user_id, is_user_participating=te.id in joined)
        for te in team_events
    ]


async def create_team_event(
    session: AsyncSession, team_id: int, actor_id: int, fields: Dict
) -> Dict:
    """
    Create a team event. Owner or admin only.

    Every other member receives a team_event_created notification.
    """
    team = await team_service.get_team_or_404(session, team_id)
    await team_service.require_manager(session, team_id, actor_id)
    fields = _validate_event_fields(dict(fields), TEAM_EVENT_FIELDS)

    team_event = TeamEvent(
        team_id=team_id,
        creator_id=actor_id,
        status=EventStatus.ACTIVE.value,
        participant_count=0,
        **fields,
    )
    session.add(team_event)
    await session.flush()

    await notification_service.notify_team_event_created(session, team, team_event)

    logger.info(f"User {actor_id} created team event {team_event.id} in team {team_id}")
    return await _team_event_detail(session, team_id, team_event.id, actor_id)


async def list_team_events(
    session: AsyncSession,
    team_id: int,
    viewer_id: Optional[int],
    upcoming: bool = False,
) -> List[Dict]:
    """Events of a team. Non-members only see public ones."""
    await team_service.get_team_or_404(session, team_id)
    query = select(TeamEvent).where(TeamEvent.team_id == team_id)

    member = viewer_id is not None and await team_service.is_member(session, team_id, viewer_id)
    if not member:
        query = query.where(TeamEvent.visibility == Visibility.PUBLIC.value)
    if upcoming:
        query = query.where(TeamEvent.start_time > utcnow())

    return await _team_event_list(
        session, query.order_by(TeamEvent.start_time, TeamEvent.id), viewer_id
    )


async def list_public_team_events(
    session: AsyncSession,
    current_user_id: Optional[int] = None,
    region: Optional[str] = None,
    upcoming: bool = True,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict]:
    """Public team events across all teams."""
    query = select(TeamEvent).where(
        and_(
            TeamEvent.visibility == Visibility.PUBLIC.value,
            TeamEvent.status == EventStatus.ACTIVE.value,
        )
    )
    if region:
        query = query.where(TeamEvent.region == region)
    if upcoming:
        query = query.where(TeamEvent.start_time > utcnow())
    query = query.order_by(TeamEvent.start_time, TeamEvent.id).limit(limit).offset(offset)
    return await _team_event_list(session, query, current_user_id)


async def list_my_team_events(
    session: AsyncSession, user_id: int, upcoming: bool = True
) -> List[Dict]:
    """Events of the user's teams plus team events they joined."""
    my_team_ids = select(TeamMember.team_id).where(TeamMember.user_id == user_id)
    joined_ids = select(TeamEventParticipant.event_id).where(
        TeamEventParticipant.user_id == user_id
    )
    query = select(TeamEvent).where(
        and_(
            or_(TeamEvent.team_id.in_(my_team_ids), TeamEvent.id.in_(joined_ids)),
            TeamEvent.status != EventStatus.CANCELLED.value,
        )
    )
    if upcoming:
        query = query.where(TeamEvent.start_time > utcnow())
    return await _team_event_list(
        session, query.order_by(TeamEvent.start_time, TeamEvent.id), user_id
    )


async def get_team_event(
    session: AsyncSession, team_id: int, event_id: int, viewer_id: Optional[int]
) -> Dict:
    team_event = await _load_team_event(session, team_id, event_id)
    await _require_visible(session, team_event, viewer_id)
    return await _team_event_detail(session, team_id, event_id, viewer_id)


async def update_team_event(
    session: AsyncSession, team_id: int, event_id: int, actor_id: int, patch: Dict
) -> Dict:
    """Apply a partial update. Event creator or team owner/admin."""
    team_event = await _load_team_event(session, team_id, event_id)
    await _require_team_event_manager(session, team_event, actor_id)
    _ensure_mutable(team_event)

    patch = _validate_event_fields(dict(patch), TEAM_EVENT_FIELDS, current=team_event)
    if not patch:
        return await _team_event_detail(session, team_id, event_id, actor_id)
    notify = _material_change(team_event, patch)

    conditions = [
        TeamEvent.id == event_id,
        TeamEvent.status == EventStatus.ACTIVE.value,
        TeamEvent.start_time > utcnow(),
    ]
    if patch.get("max_participants") is not None:
        conditions.append(TeamEvent.participant_count <= patch["max_participants"])

    result = await session.execute(
        update(TeamEvent)
        .where(and_(*conditions))
        .values(updated_at=utcnow(), **patch)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        team_event = await _load_team_event(session, team_id, event_id, refresh=True)
        _ensure_mutable(team_event)
        raise ValidationError("max_participants cannot be lower than the number of participants")

    team_event = await _load_team_event(session, team_id, event_id, refresh=True)
    if notify:
        participant_ids = await notification_service.get_team_event_participant_user_ids(
            session, event_id
        )
        await notification_service.notify_event_updated(session, team_event, participant_ids)

    logger.info(f"User {actor_id} updated team event {event_id}")
    return await _team_event_detail(session, team_id, event_id, actor_id)


async def close_team_event(
    session: AsyncSession, team_id: int, event_id: int, actor_id: int
) -> Dict:
    team_event = await _load_team_event(session, team_id, event_id)
    await _require_team_event_manager(session, team_event, actor_id)

    result = await session.execute(
        update(TeamEvent)
        .where(and_(TeamEvent.id == event_id, TeamEvent.status == EventStatus.ACTIVE.value))
        .values(status=EventStatus.COMPLETED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise EventClosed()
    return await _team_event_detail(session, team_id, event_id, actor_id)


async def purge_team_event(session: AsyncSession, team_event: TeamEvent, notify: bool = True) -> None:
    participant_ids = await notification_service.get_team_event_participant_user_ids(
        session, team_event.id
    )
    if notify and participant_ids and as_utc(team_event.start_time) > utcnow():
        await notification_service.notify_event_cancelled_by_creator(
            session, team_event, participant_ids
        )

    await session.execute(
        delete(TeamEventParticipant).where(TeamEventParticipant.event_id == team_event.id)
    )
    await session.execute(delete(TeamEvent).where(TeamEvent.id == team_event.id))
    await session.flush()


async def delete_team_event(
    session: AsyncSession, team_id: int, event_id: int, actor_id: int
) -> None:
    team_event = await _load_team_event(session, team_id, event_id)
    await _require_team_event_manager(session, team_event, actor_id)
    if as_utc(team_event.start_time) <= utcnow():
        raise EventLocked()

    await purge_team_event(session, team_event)
    logger.info(f"User {actor_id} deleted team event {event_id}")


async def join_team_event(
    session: AsyncSession, team_id: int, event_id: int, user_id: int
) -> Dict:
    """
    Take a spot in a team event.

    Public team events are open to any user; private ones to team members.
    """
    team_event = await _load_team_event(session, team_id, event_id)
    await _require_visible(session, team_event, user_id)
    _ensure_joinable(team_event)

    existing = await session.execute(
        select(TeamEventParticipant.id).where(
            and_(
                TeamEventParticipant.event_id == event_id,
                TeamEventParticipant.user_id == user_id,
            )
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise AlreadyReserved("Already participating in this event")

    if not await _claim_slot(session, TeamEvent, TeamEvent.participant_count, event_id):
        raise await _admission_failure(session, TeamEvent, event_id)

    session.add(TeamEventParticipant(event_id=event_id, user_id=user_id))
    try:
        await session.flush()
    except IntegrityError as e:
        raise AlreadyReserved("Already participating in this event") from e

    await notification_service.notify_event_joined(session, team_event, user_id)

    logger.info(f"User {user_id} joined team event {event_id}")
    return await _team_event_detail(session, team_id, event_id, user_id)


async def leave_team_event(
    session: AsyncSession, team_id: int, event_id: int, user_id: int
) -> Dict:
    """Give up a spot in a team event."""
    team_event = await _load_team_event(session, team_id, event_id)
    _ensure_joinable(team_event)

    deleted = await session.execute(
        delete(TeamEventParticipant).where(
            and_(
                TeamEventParticipant.event_id == event_id,
                TeamEventParticipant.user_id == user_id,
            )
        )
    )
    if deleted.rowcount != 1:
        raise NotFoundError("You are not participating in this event")
    await _release_slot(session, TeamEvent, TeamEvent.participant_count, event_id)

    await notification_service.notify_event_cancelled(session, team_event, user_id)

    logger.info(f"User {user_id} left team event {event_id}")
    return await _team_event_detail(session, team_id, event_id, user_id)
