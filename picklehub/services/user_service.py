"""
User service layer: sign-in account resolution, profiles and account deletion.
"""

from typing import Optional, Dict, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_
from picklehub.database.models import (
    User,
    Team,
    TeamMember,
    TeamRole,
    TeamJoinRequest,
    TeamInviteUrl,
    Event,
    Reservation,
    TeamEvent,
    TeamEventParticipant,
    Message,
    TeamMessage,
    Notification,
)
from picklehub.services import notification_service
from picklehub.services.exceptions import UserNotFound, ValidationError, ConflictError
from picklehub.utils.datetime_utils import isoformat_utc
import logging

logger = logging.getLogger(__name__)

# Fields a user may edit on their own profile
PROFILE_FIELDS = (
    "name",
    "nickname",
    "profile_image",
    "bio",
    "region",
    "gender",
    "age_group",
    "skill_level",
    "pickleball_experience",
    "dupr_doubles",
    "dupr_singles",
    "my_paddle",
    "battle_record",
    "instagram_url",
    "twitter_url",
    "tiktok_url",
    "line_url",
)

NICKNAME_MAX_LENGTH = 50
DUPR_MIN = 2.0
DUPR_MAX = 8.0
RANKING_TYPES = ("doubles", "singles")


def user_summary(user: Optional[User]) -> Optional[Dict]:
    """Public subset of a user, embedded in teams, events and messages."""
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "nickname": user.nickname,
        "profile_image": user.profile_image,
    }


def user_to_dict(user: User) -> Dict:
    data = {"id": user.id, "email": user.email}
    for field in PROFILE_FIELDS:
        data[field] = getattr(user, field)
    data["is_profile_complete"] = user.is_profile_complete
    data["created_at"] = isoformat_utc(user.created_at)
    data["updated_at"] = isoformat_utc(user.updated_at)
    return data


def public_profile(user: User) -> Dict:
    """Profile as seen by other users (no email)."""
    data = user_to_dict(user)
    data.pop("email")
    return data


async def get_user(session: AsyncSession, user_id: int) -> User:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise UserNotFound()
    return user


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return user_to_dict(user) if user else None


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    email = email.strip().lower()
    result = await session.execute(
        select(User).where(func.lower(func.trim(User.email)) == email).limit(1)
    )
    return result.scalar_one_or_none()


async def find_or_create_google_user(
    session: AsyncSession,
    google_id: str,
    email: str,
    name: Optional[str] = None,
    picture_url: Optional[str] = None,
) -> Tuple[User, bool]:
    """
    Resolve the account for a verified Google identity.

    1. If user exists by google_id → log in
    2. If user exists by email (auto-link) → attach google_id, log in
    3. Otherwise → create new user

    Returns:
        (user, is_new_user)
    """
    result = await session.execute(select(User).where(User.google_id == google_id).limit(1))
    user = result.scalar_one_or_none()
    if user:
        return user, False

    user = await get_user_by_email(session, email)
    if user:
        user.google_id = google_id
        await session.flush()
        logger.info(f"Linked Google account to existing user {user.id}")
        return user, False

    user = User(
        email=email.strip().lower(),
        name=name,
        profile_image=picture_url,
        google_id=google_id,
    )
    session.add(user)
    await session.flush()
    await session.refresh(user)
    logger.info(f"Created user {user.id} via Google sign-in")
    return user, True


async def find_or_create_apple_user(
    session: AsyncSession,
    apple_id: str,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
) -> Tuple[User, bool]:
    """
    Resolve the account for a verified Apple identity.

    Apple only shares the email on the first sign-in, so later sign-ins are
    matched by apple_id alone.

    Raises:
        ValidationError: If no account exists and no email was provided
    """
    result = await session.execute(select(User).where(User.apple_id == apple_id).limit(1))
    user = result.scalar_one_or_none()
    if user:
        return user, False

    if not email:
        raise ValidationError("Email is required for the first Apple sign-in")

    user = await get_user_by_email(session, email)
    if user:
        user.apple_id = apple_id
        await session.flush()
        logger.info(f"Linked Apple account to existing user {user.id}")
        return user, False

    user = User(email=email.strip().lower(), name=full_name, apple_id=apple_id)
    session.add(user)
    await session.flush()
    await session.refresh(user)
    logger.info(f"Created user {user.id} via Apple sign-in")
    return user, True


def _validate_profile_updates(updates: Dict) -> Dict:
    unknown = set(updates) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    nickname = updates.get("nickname")
    if nickname is not None:
        nickname = nickname.strip()
        if not nickname:
            raise ValidationError("Nickname cannot be empty")
        if len(nickname) > NICKNAME_MAX_LENGTH:
            raise ValidationError(f"Nickname must be at most {NICKNAME_MAX_LENGTH} characters")
        updates["nickname"] = nickname

    for field in ("dupr_doubles", "dupr_singles"):
        value = updates.get(field)
        if value is not None and not (DUPR_MIN <= value <= DUPR_MAX):
            raise ValidationError(f"{field} must be between {DUPR_MIN} and {DUPR_MAX}")

    return updates


async def update_profile(session: AsyncSession, user_id: int, updates: Dict) -> Dict:
    """
    Apply a partial profile update.

    Args:
        updates: Only the fields being changed (None clears a field)

    Returns:
        Updated user dict
    """
    user = await get_user(session, user_id)
    updates = _validate_profile_updates(dict(updates))

    for field, value in updates.items():
        setattr(user, field, value)
    user.is_profile_complete = bool(user.nickname)

    await session.flush()
    await session.refresh(user)
    return user_to_dict(user)


async def get_user_teams(session: AsyncSession, user_id: int) -> List[Dict]:
    """Teams the user belongs to, with their role in each."""
    result = await session.execute(
        select(Team, TeamMember.role)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(TeamMember.user_id == user_id)
        .order_by(TeamMember.joined_at.desc(), Team.id.desc())
    )
    return [
        {
            "id": team.id,
            "name": team.name,
            "icon_image": team.icon_image,
            "visibility": team.visibility,
            "region": team.region,
            "role": role,
        }
        for team, role in result.all()
    ]


async def get_user_rankings(session: AsyncSession, ranking_type: str = "doubles") -> List[Dict]:
    """Players with an in-range DUPR rating for ``ranking_type``, best first."""
    if ranking_type not in RANKING_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(RANKING_TYPES)}")

    rating = User.dupr_singles if ranking_type == "singles" else User.dupr_doubles
    result = await session.execute(
        select(User)
        .where(and_(rating.isnot(None), rating >= DUPR_MIN, rating <= DUPR_MAX))
        .order_by(rating.desc(), User.id.asc())
    )
    return [
        {
            **user_summary(user),
            "region": user.region,
            "skill_level": user.skill_level,
            "dupr_doubles": user.dupr_doubles,
            "dupr_singles": user.dupr_singles,
            "rank": rank,
        }
        for rank, user in enumerate(result.scalars().all(), start=1)
    ]


async def delete_account(session: AsyncSession, user_id: int) -> None:
    """
    Delete a user and everything that only makes sense with them around.

    - Refused while the user owns a team that still has other members and
      no admin to take over; an admin successor is promoted otherwise.
    - Events and team events the user created are cancelled (participants
      are notified) and removed.
    - Reservations and team event spots are released.
    - Teams where the user is the only member are deleted.
    - Chat messages are kept with their author cleared.

    Raises:
        UserNotFound: If the user does not exist
        ConflictError: If ownership must be transferred first
    """
    # Late imports: these services import user_summary from this module
    from picklehub.services import event_service, team_service

    user = await get_user(session, user_id)

    memberships = (
        await session.execute(select(TeamMember).where(TeamMember.user_id == user_id))
    ).scalars().all()

    solo_team_ids = []
    for membership in memberships:
        other_count = (
            await session.execute(
                select(func.count())
                .select_from(TeamMember)
                .where(and_(TeamMember.team_id == membership.team_id, TeamMember.user_id != user_id))
            )
        ).scalar_one()
        if other_count == 0:
            solo_team_ids.append(membership.team_id)
            continue
        if membership.role != TeamRole.OWNER.value:
            continue

        successor = (
            await session.execute(
                select(TeamMember)
                .where(
                    and_(
                        TeamMember.team_id == membership.team_id,
                        TeamMember.role == TeamRole.ADMIN.value,
                    )
                )
                .order_by(TeamMember.joined_at, TeamMember.id)
                .limit(1)
            )
        ).scalar_one_or_none()
        if successor is None:
            raise ConflictError(
                "Transfer team ownership or promote an admin before deleting your account"
            )
        # Demote first so the team never has two owner rows
        membership.role = TeamRole.ADMIN.value
        await session.flush()
        successor.role = TeamRole.OWNER.value
        await session.flush()
        team = await team_service.get_team_or_404(session, membership.team_id)
        await notification_service.notify_team_role_changed(
            session, team, successor.user_id, TeamRole.OWNER.value
        )
        logger.info(
            f"Promoted user {successor.user_id} to owner of team {membership.team_id} "
            f"before deleting user {user_id}"
        )

    for team_id in solo_team_ids:
        await team_service.purge_team(session, team_id)

    created_events = (
        await session.execute(select(Event).where(Event.creator_id == user_id))
    ).scalars().all()
    for event in created_events:
        await event_service.purge_event(session, event, notify=True)

    created_team_events = (
        await session.execute(select(TeamEvent).where(TeamEvent.creator_id == user_id))
    ).scalars().all()
    for team_event in created_team_events:
        await event_service.purge_team_event(session, team_event)

    await event_service.release_user_spots(session, user_id)

    await session.execute(delete(TeamJoinRequest).where(TeamJoinRequest.user_id == user_id))
    await session.execute(delete(TeamMember).where(TeamMember.user_id == user_id))
    await session.execute(delete(Notification).where(Notification.user_id == user_id))
    await session.execute(update(Message).where(Message.user_id == user_id).values(user_id=None))
    await session.execute(
        update(TeamMessage).where(TeamMessage.user_id == user_id).values(user_id=None)
    )
    await session.execute(
        update(TeamInviteUrl).where(TeamInviteUrl.created_by == user_id).values(created_by=None)
    )
    await session.execute(
        update(TeamInviteUrl).where(TeamInviteUrl.used_by == user_id).values(used_by=None)
    )
    await session.execute(update(Team).where(Team.created_by == user_id).values(created_by=None))
    await session.execute(delete(User).where(User.id == user.id))
    await session.flush()
    logger.info(f"Deleted account for user {user_id}")
