"""
Team service: teams, memberships, roles, join requests and invite links.

Every invariant that concurrent requests could break is enforced by the
database: unique (team, user) membership, one pending join request per
(team, user), at most one owner per team, and a compare-and-set on the
invite ``used`` flag.
"""

import os
from datetime import timedelta
from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from picklehub.database.models import (
    Team,
    TeamMember,
    TeamRole,
    Visibility,
    TeamJoinRequest,
    JoinRequestStatus,
    TeamInviteUrl,
    EventStatus,
    TeamEvent,
    TeamEventParticipant,
    TeamChatRoom,
    TeamMessage,
)
from picklehub.services import notification_service
from picklehub.services.auth_service import generate_invite_token
from picklehub.services.user_service import user_summary
from picklehub.services.exceptions import (
    ValidationError,
    ForbiddenError,
    ConflictError,
    TeamNotFound,
    MemberNotFound,
    JoinRequestNotFound,
    InviteNotFound,
    AlreadyMember,
    AlreadyRequested,
    RequestAlreadyResolved,
    InviteUsed,
    InviteExpired,
)
from picklehub.utils.datetime_utils import utcnow, as_utc, isoformat_utc
import logging

logger = logging.getLogger(__name__)

INVITE_EXPIRATION_HOURS = 24
INVITE_BASE_URL = os.getenv("INVITE_BASE_URL", "https://picklehub.app/invite")
TEAM_NAME_MAX_LENGTH = 100

RANKING_TYPES = ("members", "events")

MANAGER_ROLES = (TeamRole.OWNER.value, TeamRole.ADMIN.value)
ROLE_ORDER = {TeamRole.OWNER.value: 0, TeamRole.ADMIN.value: 1, TeamRole.MEMBER.value: 2}

EDITABLE_TEAM_FIELDS = (
    "name",
    "description",
    "visibility",
    "icon_image",
    "header_image",
    "region",
    "instagram_url",
    "twitter_url",
    "tiktok_url",
    "line_url",
)


def team_to_dict(
    team: Team,
    member_count: Optional[int] = None,
    user_role: Optional[str] = None,
) -> Dict:
    data = {field: getattr(team, field) for field in EDITABLE_TEAM_FIELDS}
    data.update(
        {
            "id": team.id,
            "created_by": team.created_by,
            "created_at": isoformat_utc(team.created_at),
            "updated_at": isoformat_utc(team.updated_at),
        }
    )
    if member_count is not None:
        data["member_count"] = member_count
    data["user_role"] = user_role
    return data


def member_to_dict(member: TeamMember) -> Dict:
    return {
        "id": member.id,
        "team_id": member.team_id,
        "user_id": member.user_id,
        "role": member.role,
        "joined_at": isoformat_utc(member.joined_at),
        "user": user_summary(member.user),
    }


def join_request_to_dict(join_request: TeamJoinRequest) -> Dict:
    return {
        "id": join_request.id,
        "team_id": join_request.team_id,
        "user_id": join_request.user_id,
        "status": join_request.status,
        "created_at": isoformat_utc(join_request.created_at),
        "updated_at": isoformat_utc(join_request.updated_at),
        "user": user_summary(join_request.user),
    }


def invite_is_valid(invite: TeamInviteUrl) -> bool:
    return not invite.used and utcnow() < as_utc(invite.expires_at)


def invite_to_dict(invite: TeamInviteUrl) -> Dict:
    return {
        "id": invite.id,
        "team_id": invite.team_id,
        "token": invite.token,
        "url": f"{INVITE_BASE_URL}/{invite.token}",
        "created_by": invite.created_by,
        "created_at": isoformat_utc(invite.created_at),
        "expires_at": isoformat_utc(invite.expires_at),
        "used": invite.used,
        "used_by": invite.used_by,
        "used_at": isoformat_utc(invite.used_at),
        "is_valid": invite_is_valid(invite),
    }


#
# Lookups and role checks
#

async def get_team_or_404(session: AsyncSession, team_id: int) -> Team:
    result = await session.execute(select(Team).where(Team.id == team_id))
    team = result.scalar_one_or_none()
    if not team:
        raise TeamNotFound()
    return team


async def get_membership(
    session: AsyncSession, team_id: int, user_id: int
) -> Optional[TeamMember]:
    result = await session.execute(
        select(TeamMember)
        .options(selectinload(TeamMember.user))
        .where(and_(TeamMember.team_id == team_id, TeamMember.user_id == user_id))
    )
    return result.scalar_one_or_none()


async def get_user_role(session: AsyncSession, team_id: int, user_id: int) -> Optional[str]:
    result = await session.execute(
        select(TeamMember.role).where(
            and_(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        )
    )
    return result.scalar_one_or_none()


async def require_manager(session: AsyncSession, team_id: int, user_id: int) -> str:
    """Require the user to be the team's owner or an admin. Returns the role."""
    role = await get_user_role(session, team_id, user_id)
    if role not in MANAGER_ROLES:
        raise ForbiddenError("Only the team owner or admins can do this")
    return role


async def _count_members(session: AsyncSession, team_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(TeamMember).where(TeamMember.team_id == team_id)
    )
    return result.scalar_one()


async def _has_pending_request(session: AsyncSession, team_id: int, user_id: int) -> bool:
    result = await session.execute(
        select(TeamJoinRequest.id).where(
            and_(
                TeamJoinRequest.team_id == team_id,
                TeamJoinRequest.user_id == user_id,
                TeamJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
    )
    return result.scalar_one_or_none() is not None


def _validate_team_fields(fields: Dict, creating: bool) -> Dict:
    unknown = set(fields) - set(EDITABLE_TEAM_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown team fields: {', '.join(sorted(unknown))}")

    if creating or "name" in fields:
        name = (fields.get("name") or "").strip()
        if not name:
            raise ValidationError("Team name is required")
        if len(name) > TEAM_NAME_MAX_LENGTH:
            raise ValidationError(f"Team name must be at most {TEAM_NAME_MAX_LENGTH} characters")
        fields["name"] = name

    if creating or "visibility" in fields:
        visibility = fields.get("visibility") or Visibility.PUBLIC.value
        try:
            fields["visibility"] = Visibility(visibility).value
        except ValueError:
            raise ValidationError("visibility must be 'public' or 'private'")

    return fields


#
# Teams
#

async def create_team(session: AsyncSession, creator_id: int, fields: Dict) -> Dict:
    """
    Create a team with the creator as its owner.

    Args:
        session: Database session
        creator_id: User creating the team
        fields: Team attributes (name required, visibility defaults to public)

    Returns:
        Team dict including the creator's role
    """
    fields = _validate_team_fields(dict(fields), creating=True)

    team = Team(created_by=creator_id, **fields)
    session.add(team)
    await session.flush()

    session.add(TeamMember(team_id=team.id, user_id=creator_id, role=TeamRole.OWNER.value))
    await session.flush()
    await session.refresh(team)

    logger.info(f"User {creator_id} created team {team.id}")
    return team_to_dict(team, member_count=1, user_role=TeamRole.OWNER.value)


async def list_teams(
    session: AsyncSession,
    current_user_id: Optional[int] = None,
    search: Optional[str] = None,
    region: Optional[str] = None,
    my_teams: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict]:
    """
    List public teams, or the caller's own teams when ``my_teams`` is set.

    Search matches name or description case-insensitively.
    """
    member_counts = (
        select(TeamMember.team_id, func.count(TeamMember.id).label("member_count"))
        .group_by(TeamMember.team_id)
        .subquery()
    )
    query = select(Team, member_counts.c.member_count).outerjoin(
        member_counts, member_counts.c.team_id == Team.id
    )

    if my_teams:
        if current_user_id is None:
            return []
        query = query.join(TeamMember, TeamMember.team_id == Team.id).where(
            TeamMember.user_id == current_user_id
        )
    else:
        query = query.where(Team.visibility == Visibility.PUBLIC.value)

    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(
            or_(func.lower(Team.name).like(pattern), func.lower(Team.description).like(pattern))
        )
    if region:
        query = query.where(Team.region == region)

    query = query.order_by(Team.created_at.desc(), Team.id.desc()).limit(limit).offset(offset)
    rows = (await session.execute(query)).all()

    roles = {}
    if current_user_id is not None and rows:
        role_result = await session.execute(
            select(TeamMember.team_id, TeamMember.role).where(
                and_(
                    TeamMember.user_id == current_user_id,
                    TeamMember.team_id.in_([team.id for team, _ in rows]),
                )
            )
        )
        roles = dict(role_result.all())

    return [
        team_to_dict(team, member_count=count or 0, user_role=roles.get(team.id))
        for team, count in rows
    ]


async def get_team_rankings(session: AsyncSession, ranking_type: str = "members") -> List[Dict]:
    """
    Rank every public team by member count or by its number of active public
    team events. Ties go to the older team.
    """
    if ranking_type not in RANKING_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(RANKING_TYPES)}")

    member_counts = (
        select(TeamMember.team_id, func.count(TeamMember.id).label("member_count"))
        .group_by(TeamMember.team_id)
        .subquery()
    )
    event_counts = (
        select(TeamEvent.team_id, func.count(TeamEvent.id).label("event_count"))
        .where(
            and_(
                TeamEvent.visibility == Visibility.PUBLIC.value,
                TeamEvent.status == EventStatus.ACTIVE.value,
            )
        )
        .group_by(TeamEvent.team_id)
        .subquery()
    )
    member_count = func.coalesce(member_counts.c.member_count, 0)
    event_count = func.coalesce(event_counts.c.event_count, 0)
    primary = member_count if ranking_type == "members" else event_count

    rows = (
        await session.execute(
            select(Team, member_count, event_count)
            .outerjoin(member_counts, member_counts.c.team_id == Team.id)
            .outerjoin(event_counts, event_counts.c.team_id == Team.id)
            .where(Team.visibility == Visibility.PUBLIC.value)
            .order_by(primary.desc(), Team.created_at.asc(), Team.id.asc())
        )
    ).all()

    owners = {}
    if rows:
        owner_result = await session.execute(
            select(TeamMember)
            .options(selectinload(TeamMember.user))
            .where(
                and_(
                    TeamMember.team_id.in_([team.id for team, _, _ in rows]),
                    TeamMember.role == TeamRole.OWNER.value,
                )
            )
        )
        owners = {member.team_id: member.user for member in owner_result.scalars().all()}

    rankings = []
    for rank, (team, members, events) in enumerate(rows, start=1):
        data = team_to_dict(team, member_count=members)
        del data["user_role"]
        data.update(
            {
                "rank": rank,
                "public_event_count": events,
                "owner": user_summary(owners.get(team.id)),
            }
        )
        rankings.append(data)
    return rankings


async def get_team(session: AsyncSession, team_id: int, current_user_id: Optional[int]) -> Dict:
    """
    Get a team with its members.

    Private teams are only visible to their members.

    Raises:
        TeamNotFound: If the team does not exist
        ForbiddenError: If the team is private and the caller is not a member
    """
    team = await get_team_or_404(session, team_id)
    user_role = None
    if current_user_id is not None:
        user_role = await get_user_role(session, team_id, current_user_id)

    if team.visibility == Visibility.PRIVATE.value and user_role is None:
        raise ForbiddenError("This team is private")

    result = await session.execute(
        select(TeamMember)
        .options(selectinload(TeamMember.user))
        .where(TeamMember.team_id == team_id)
    )
    members = sorted(
        result.scalars().all(),
        key=lambda member: (ROLE_ORDER[member.role], as_utc(member.joined_at), member.id),
    )

    data = team_to_dict(team, member_count=len(members), user_role=user_role)
    data["members"] = [member_to_dict(member) for member in members]
    data["has_pending_request"] = (
        current_user_id is not None
        and user_role is None
        and await _has_pending_request(session, team_id, current_user_id)
    )
    return data


async def update_team(session: AsyncSession, team_id: int, actor_id: int, patch: Dict) -> Dict:
    """Update team attributes. Owner or admin only."""
    team = await get_team_or_404(session, team_id)
    role = await require_manager(session, team_id, actor_id)
    patch = _validate_team_fields(dict(patch), creating=False)

    for field, value in patch.items():
        setattr(team, field, value)
    await session.flush()
    await session.refresh(team)

    return team_to_dict(team, member_count=await _count_members(session, team_id), user_role=role)


async def purge_team(session: AsyncSession, team_id: int) -> None:
    """Delete a team and every row that belongs to it."""
    team_event_ids = select(TeamEvent.id).where(TeamEvent.team_id == team_id)
    room_ids = select(TeamChatRoom.id).where(TeamChatRoom.team_id == team_id)

    await session.execute(
        delete(TeamEventParticipant).where(TeamEventParticipant.event_id.in_(team_event_ids))
    )
    await session.execute(delete(TeamEvent).where(TeamEvent.team_id == team_id))
    await session.execute(delete(TeamMessage).where(TeamMessage.chat_room_id.in_(room_ids)))
    await session.execute(delete(TeamChatRoom).where(TeamChatRoom.team_id == team_id))
    await session.execute(delete(TeamInviteUrl).where(TeamInviteUrl.team_id == team_id))
    await session.execute(delete(TeamJoinRequest).where(TeamJoinRequest.team_id == team_id))
    await session.execute(delete(TeamMember).where(TeamMember.team_id == team_id))
    await session.execute(delete(Team).where(Team.id == team_id))
    await session.flush()


async def delete_team(session: AsyncSession, team_id: int, actor_id: int) -> None:
    """Delete a team and all of its data. Owner only."""
    await get_team_or_404(session, team_id)
    role = await get_user_role(session, team_id, actor_id)
    if role != TeamRole.OWNER.value:
        raise ForbiddenError("Only the team owner can delete the team")

    await purge_team(session, team_id)
    logger.info(f"User {actor_id} deleted team {team_id}")


#
# Join requests
#

async def request_to_join(session: AsyncSession, team_id: int, user_id: int) -> Dict:
    """
    Ask to join a public team.

    Raises:
        TeamNotFound: If the team does not exist
        ForbiddenError: If the team is private (join through an invite instead)
        AlreadyMember: If the user is already a member
        AlreadyRequested: If the user already has a pending request
    """
    team = await get_team_or_404(session, team_id)
    if await get_user_role(session, team_id, user_id) is not None:
        raise AlreadyMember()
    if team.visibility == Visibility.PRIVATE.value:
        raise ForbiddenError("Private teams can only be joined through an invite")
    if await _has_pending_request(session, team_id, user_id):
        raise AlreadyRequested()

    join_request = TeamJoinRequest(
        team_id=team_id, user_id=user_id, status=JoinRequestStatus.PENDING.value
    )
    session.add(join_request)
    try:
        await session.flush()
    except IntegrityError as e:
        # A concurrent request from the same user won the pending slot
        raise AlreadyRequested() from e

    await notification_service.notify_team_join_request(session, team, user_id)

    result = await session.execute(
        select(TeamJoinRequest)
        .options(selectinload(TeamJoinRequest.user))
        .where(TeamJoinRequest.id == join_request.id)
    )
    logger.info(f"User {user_id} requested to join team {team_id}")
    return join_request_to_dict(result.scalar_one())


async def _get_join_request(
    session: AsyncSession, team_id: int, request_id: int
) -> TeamJoinRequest:
    result = await session.execute(
        select(TeamJoinRequest)
        .options(selectinload(TeamJoinRequest.user))
        .where(and_(TeamJoinRequest.id == request_id, TeamJoinRequest.team_id == team_id))
    )
    join_request = result.scalar_one_or_none()
    if not join_request:
        raise JoinRequestNotFound()
    return join_request


async def list_join_requests(session: AsyncSession, team_id: int, actor_id: int) -> List[Dict]:
    """Pending join requests for a team, oldest first. Owner or admin only."""
    await get_team_or_404(session, team_id)
    await require_manager(session, team_id, actor_id)

    result = await session.execute(
        select(TeamJoinRequest)
        .options(selectinload(TeamJoinRequest.user))
        .where(
            and_(
                TeamJoinRequest.team_id == team_id,
                TeamJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
        .order_by(TeamJoinRequest.created_at, TeamJoinRequest.id)
    )
    return [join_request_to_dict(join_request) for join_request in result.scalars().all()]


async def get_join_request(
    session: AsyncSession, team_id: int, request_id: int, actor_id: int
) -> Dict:
    """A single join request, visible to the requester and team managers."""
    join_request = await _get_join_request(session, team_id, request_id)
    if join_request.user_id != actor_id:
        await require_manager(session, team_id, actor_id)
    return join_request_to_dict(join_request)


async def resolve_join_request(
    session: AsyncSession,
    team_id: int,
    request_id: int,
    action: str,
    actor_id: int,
) -> Dict:
    """
    Approve or reject a pending join request. Owner or admin only.

    Approval creates the membership and marks the request approved in the
    same transaction; the requester is notified either way.

    Raises:
        JoinRequestNotFound: If the request does not exist on this team
        ForbiddenError: If the actor is not an owner/admin
        RequestAlreadyResolved: If the request is no longer pending
        ValidationError: If action is not approve/reject
    """
    if action not in ("approve", "reject"):
        raise ValidationError("action must be 'approve' or 'reject'")

    team = await get_team_or_404(session, team_id)
    await _get_join_request(session, team_id, request_id)
    await require_manager(session, team_id, actor_id)

    new_status = (
        JoinRequestStatus.APPROVED.value if action == "approve" else JoinRequestStatus.REJECTED.value
    )
    # Only one resolver can move the request out of pending
    result = await session.execute(
        update(TeamJoinRequest)
        .where(
            and_(
                TeamJoinRequest.id == request_id,
                TeamJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
        .values(status=new_status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise RequestAlreadyResolved()

    join_request = await _get_join_request(session, team_id, request_id)
    await session.refresh(join_request, attribute_names=["status", "updated_at"])

    if action == "approve":
        session.add(
            TeamMember(team_id=team_id, user_id=join_request.user_id, role=TeamRole.MEMBER.value)
        )
        try:
            await session.flush()
        except IntegrityError as e:
            raise AlreadyMember() from e
        await notification_service.notify_team_join_approved(session, team, join_request.user_id)
    else:
        await notification_service.notify_team_join_rejected(session, team, join_request.user_id)

    logger.info(f"User {actor_id} {new_status} join request {request_id} for team {team_id}")
    return join_request_to_dict(join_request)


#
# Roles and membership
#

async def change_role(
    session: AsyncSession,
    team_id: int,
    target_user_id: int,
    new_role: str,
    actor_id: int,
) -> Dict:
    """
    Change a member's role.

    - The owner may set any other member to admin or member, or hand over
      ownership (the owner becomes an admin in the same transaction).
    - Admins may only toggle other non-owner members between member and admin.
    - Nobody changes their own role.

    Returns:
        The target's updated membership
    """
    try:
        new_role = TeamRole(new_role).value
    except ValueError:
        raise ValidationError("role must be one of owner, admin, member")

    team = await get_team_or_404(session, team_id)
    actor = await get_membership(session, team_id, actor_id)
    if actor is None or actor.role not in MANAGER_ROLES:
        raise ForbiddenError("Only the team owner or admins can change roles")
    if target_user_id == actor_id:
        raise ForbiddenError("You cannot change your own role")

    target = await get_membership(session, team_id, target_user_id)
    if target is None:
        raise MemberNotFound()

    if actor.role == TeamRole.ADMIN.value:
        if target.role == TeamRole.OWNER.value or new_role == TeamRole.OWNER.value:
            raise ForbiddenError("Admins cannot change the owner or transfer ownership")

    if target.role == new_role:
        return member_to_dict(target)

    if new_role == TeamRole.OWNER.value:
        # Demote first: the single-owner index rejects any moment with two owners
        demoted = await session.execute(
            update(TeamMember)
            .where(
                and_(
                    TeamMember.id == actor.id,
                    TeamMember.role == TeamRole.OWNER.value,
                )
            )
            .values(role=TeamRole.ADMIN.value)
            .execution_options(synchronize_session=False)
        )
        if demoted.rowcount != 1:
            raise ForbiddenError("Only the team owner can transfer ownership")
        try:
            await session.execute(
                update(TeamMember)
                .where(TeamMember.id == target.id)
                .values(role=TeamRole.OWNER.value)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as e:
            raise ConflictError("Team ownership changed concurrently") from e
        logger.info(f"Team {team_id} ownership transferred from {actor_id} to {target_user_id}")
    else:
        await session.execute(
            update(TeamMember)
            .where(TeamMember.id == target.id)
            .values(role=new_role)
            .execution_options(synchronize_session=False)
        )

    await session.refresh(target, attribute_names=["role"])
    await notification_service.notify_team_role_changed(session, team, target_user_id, new_role)
    return member_to_dict(target)


async def remove_member(
    session: AsyncSession, team_id: int, target_user_id: int, actor_id: int
) -> None:
    """
    Remove a member from a team, or leave it when actor and target match.

    The owner can never be removed; ownership has to be transferred first.
    """
    team = await get_team_or_404(session, team_id)
    target = await get_membership(session, team_id, target_user_id)
    if target is None:
        raise MemberNotFound()

    if target.role == TeamRole.OWNER.value:
        raise ForbiddenError("The owner cannot leave or be removed. Transfer ownership first")

    if actor_id != target_user_id:
        actor_role = await get_user_role(session, team_id, actor_id)
        if actor_role not in MANAGER_ROLES:
            raise ForbiddenError("You cannot remove other members")
        if actor_role == TeamRole.ADMIN.value and target.role != TeamRole.MEMBER.value:
            raise ForbiddenError("Admins can only remove regular members")

    await session.execute(delete(TeamMember).where(TeamMember.id == target.id))
    await session.flush()

    await notification_service.notify_team_member_left(
        session, team, target_user_id, removed_by_id=actor_id
    )
    logger.info(f"User {target_user_id} removed from team {team_id} by {actor_id}")


#
# Invites
#

async def generate_invite(session: AsyncSession, team_id: int, actor_id: int) -> Dict:
    """Create a single-use invite link valid for 24 hours. Owner or admin only."""
    await get_team_or_404(session, team_id)
    await require_manager(session, team_id, actor_id)

    invite = TeamInviteUrl(
        team_id=team_id,
        created_by=actor_id,
        token=generate_invite_token(),
        expires_at=utcnow() + timedelta(hours=INVITE_EXPIRATION_HOURS),
        used=False,
    )
    session.add(invite)
    await session.flush()
    await session.refresh(invite)
    return invite_to_dict(invite)


async def list_invites(session: AsyncSession, team_id: int, actor_id: int) -> List[Dict]:
    """Invites of a team, newest first. Owner or admin only."""
    await get_team_or_404(session, team_id)
    await require_manager(session, team_id, actor_id)

    result = await session.execute(
        select(TeamInviteUrl)
        .where(TeamInviteUrl.team_id == team_id)
        .order_by(TeamInviteUrl.created_at.desc(), TeamInviteUrl.id.desc())
    )
    return [invite_to_dict(invite) for invite in result.scalars().all()]


async def _get_invite(session: AsyncSession, token: str) -> TeamInviteUrl:
    result = await session.execute(select(TeamInviteUrl).where(TeamInviteUrl.token == token))
    invite = result.scalar_one_or_none()
    if not invite:
        raise InviteNotFound()
    return invite


async def validate_invite(session: AsyncSession, token: str) -> Dict:
    """
    Preview an invite before redeeming it.

    Returns:
        Dict with ``valid``, ``reason`` (None, "used" or "expired") and the team summary
    """
    invite = await _get_invite(session, token)
    team = await get_team_or_404(session, invite.team_id)

    reason = None
    if invite.used:
        reason = "used"
    elif utcnow() >= as_utc(invite.expires_at):
        reason = "expired"

    return {
        "valid": reason is None,
        "reason": reason,
        "expires_at": isoformat_utc(invite.expires_at),
        "team": {
            "id": team.id,
            "name": team.name,
            "description": team.description,
            "icon_image": team.icon_image,
            "visibility": team.visibility,
            "member_count": await _count_members(session, team.id),
        },
    }


async def redeem_invite(session: AsyncSession, token: str, user_id: int) -> Dict:
    """
    Join a team through an invite link.

    The invite is claimed with a compare-and-set on ``used``, so concurrent
    redemptions of one token produce exactly one membership.

    Raises:
        InviteNotFound: Unknown token
        InviteUsed: Token already redeemed
        InviteExpired: Token past its expiry
        AlreadyMember: The user already belongs to the team
    """
    invite = await _get_invite(session, token)
    if invite.used:
        raise InviteUsed()
    now = utcnow()
    if now >= as_utc(invite.expires_at):
        raise InviteExpired()
    if await get_user_role(session, invite.team_id, user_id) is not None:
        raise AlreadyMember()

    result = await session.execute(
        update(TeamInviteUrl)
        .where(
            and_(
                TeamInviteUrl.id == invite.id,
                TeamInviteUrl.used == False,  # noqa: E712
                TeamInviteUrl.expires_at > now,
            )
        )
        .values(used=True, used_by=user_id, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.refresh(invite)
        if invite.used:
            raise InviteUsed()
        raise InviteExpired()

    session.add(TeamMember(team_id=invite.team_id, user_id=user_id, role=TeamRole.MEMBER.value))
    try:
        await session.flush()
    except IntegrityError as e:
        raise AlreadyMember() from e

    # An invite supersedes any pending request
    await session.execute(
        update(TeamJoinRequest)
        .where(
            and_(
                TeamJoinRequest.team_id == invite.team_id,
                TeamJoinRequest.user_id == user_id,
                TeamJoinRequest.status == JoinRequestStatus.PENDING.value,
            )
        )
        .values(status=JoinRequestStatus.APPROVED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    await session.refresh(invite)
    team = await get_team_or_404(session, invite.team_id)
    logger.info(f"User {user_id} joined team {team.id} via invite {invite.id}")
    return {
        "team": team_to_dict(
            team,
            member_count=await _count_members(session, team.id),
            user_role=TeamRole.MEMBER.value,
        ),
        "invite": invite_to_dict(invite),
    }


async def is_member(session: AsyncSession, team_id: int, user_id: int) -> bool:
    return await get_user_role(session, team_id, user_id) is not None
