"""Team, membership, join request and invite route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.api.routes import limiter
from picklehub.database.db import get_db_session
from picklehub.services import team_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user, get_current_user_optional
from picklehub.models.schemas import (
    ChangeRoleRequest,
    InviteResponse,
    InviteValidationResponse,
    JoinRequestResponse,
    ResolveJoinRequest,
    TeamCreate,
    TeamMemberResponse,
    TeamUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _server_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}")


@router.get("/api/teams")
async def list_teams(
    search: Optional[str] = None,
    region: Optional[str] = None,
    my_teams: bool = False,
    limit: int = 50,
    offset: int = 0,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """List public teams, or the caller's teams with ?my_teams=true."""
    try:
        user_id = current_user["id"] if current_user else None
        if my_teams and user_id is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return await team_service.list_teams(
            session,
            current_user_id=user_id,
            search=search,
            region=region,
            my_teams=my_teams,
            limit=min(max(limit, 1), 100),
            offset=max(offset, 0),
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("listing teams", e)


@router.post("/api/teams", status_code=201)
async def create_team(
    payload: TeamCreate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a team. The creator becomes its owner."""
    try:
        return await team_service.create_team(session, current_user["id"], payload.model_dump())
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("creating team", e)


@router.get("/api/teams/rankings")
async def get_team_rankings(
    ranking_type: str = Query("members", alias="type"),
    session: AsyncSession = Depends(get_db_session),
):
    """Public teams ranked by member count, or by active public events with ?type=events."""
    try:
        return await team_service.get_team_rankings(session, ranking_type)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("fetching team rankings", e)


@router.get("/api/teams/{team_id}")
async def get_team(
    team_id: int,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """Team details with members. Private teams are visible to members only."""
    try:
        user_id = current_user["id"] if current_user else None
        return await team_service.get_team(session, team_id, user_id)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("fetching team", e)


@router.patch("/api/teams/{team_id}")
async def update_team(
    team_id: int,
    payload: TeamUpdate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update team fields. Owner or admin only."""
    try:
        return await team_service.update_team(
            session, team_id, current_user["id"], payload.model_dump(exclude_unset=True)
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("updating team", e)


@router.delete("/api/teams/{team_id}", status_code=204)
async def delete_team(
    team_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a team and everything in it. Owner only."""
    try:
        await team_service.delete_team(session, team_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("deleting team", e)


@router.post(
    "/api/teams/{team_id}/join-requests",
    status_code=201,
    response_model=JoinRequestResponse,
)
@limiter.limit("20/minute")
async def request_to_join(
    request: Request,
    team_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Ask to join a public team. Owners and admins are notified."""
    try:
        return await team_service.request_to_join(session, team_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("creating join request", e)


@router.get("/api/teams/{team_id}/join-requests")
async def list_join_requests(
    team_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Pending join requests of a team. Owner or admin only."""
    try:
        return await team_service.list_join_requests(session, team_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("listing join requests", e)


@router.get(
    "/api/teams/{team_id}/join-requests/{request_id}",
    response_model=JoinRequestResponse,
)
async def get_join_request(
    team_id: int,
    request_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await team_service.get_join_request(
            session, team_id, request_id, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("fetching join request", e)


@router.post(
    "/api/teams/{team_id}/join-requests/{request_id}",
    response_model=JoinRequestResponse,
)
async def resolve_join_request(
    team_id: int,
    request_id: int,
    payload: ResolveJoinRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Approve or reject a pending join request. Owner or admin only."""
    try:
        return await team_service.resolve_join_request(
            session, team_id, request_id, payload.action, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("resolving join request", e)


@router.patch(
    "/api/teams/{team_id}/members/{user_id}",
    response_model=TeamMemberResponse,
)
async def change_member_role(
    team_id: int,
    user_id: int,
    payload: ChangeRoleRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Change a member's role.

    Setting role=owner transfers ownership; the previous owner becomes admin.
    """
    try:
        return await team_service.change_role(
            session, team_id, user_id, payload.role, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("changing member role", e)


@router.delete("/api/teams/{team_id}/members/{user_id}", status_code=204)
async def remove_member(
    team_id: int,
    user_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Remove a member, or leave the team when user_id is the caller."""
    try:
        await team_service.remove_member(session, team_id, user_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("removing member", e)


@router.post("/api/teams/{team_id}/invites", status_code=201, response_model=InviteResponse)
@limiter.limit("30/minute")
async def generate_invite(
    request: Request,
    team_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a single-use invite link valid for 24 hours. Owner or admin only."""
    try:
        return await team_service.generate_invite(session, team_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("generating invite", e)


@router.get("/api/teams/{team_id}/invites")
async def list_invites(
    team_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await team_service.list_invites(session, team_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("listing invites", e)


@router.get("/api/invites/{token}", response_model=InviteValidationResponse)
async def validate_invite(token: str, session: AsyncSession = Depends(get_db_session)):
    """Preview an invite link. No authentication required."""
    try:
        return await team_service.validate_invite(session, token)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("validating invite", e)


@router.post("/api/invites/{token}/redeem")
@limiter.limit("20/minute")
async def redeem_invite(
    request: Request,
    token: str,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Join a team through an invite link. Each link works once."""
    try:
        return await team_service.redeem_invite(session, token, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("redeeming invite", e)
