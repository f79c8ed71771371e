"""Team event route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.database.db import get_db_session
from picklehub.services import event_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user, get_current_user_optional
from picklehub.models.schemas import TeamEventCreate, TeamEventUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


def _server_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"Error {action}")


@router.get("/api/public-team-events")
async def list_public_team_events(
    region: Optional[str] = None,
    upcoming: bool = True,
    limit: int = 50,
    offset: int = 0,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """Public team events across all teams."""
    try:
        return await event_service.list_public_team_events(
            session,
            current_user_id=current_user["id"] if current_user else None,
            region=region,
            upcoming=upcoming,
            limit=min(max(limit, 1), 100),
            offset=max(offset, 0),
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("listing public team events", e)


@router.get("/api/my-team-events")
async def list_my_team_events(
    upcoming: bool = True,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Events of the caller's teams and team events they joined."""
    try:
        return await event_service.list_my_team_events(
            session, current_user["id"], upcoming=upcoming
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("listing my team events", e)


@router.get("/api/teams/{team_id}/events")
async def list_team_events(
    team_id: int,
    upcoming: bool = False,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.list_team_events(
            session, team_id, current_user["id"] if current_user else None, upcoming=upcoming
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("listing team events", e)


@router.post("/api/teams/{team_id}/events", status_code=201)
async def create_team_event(
    team_id: int,
    payload: TeamEventCreate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a team event. Owner or admin only; members are notified."""
    try:
        return await event_service.create_team_event(
            session, team_id, current_user["id"], payload.model_dump()
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("creating team event", e)


@router.get("/api/teams/{team_id}/events/{event_id}")
async def get_team_event(
    team_id: int,
    event_id: int,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.get_team_event(
            session, team_id, event_id, current_user["id"] if current_user else None
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("fetching team event", e)


@router.patch("/api/teams/{team_id}/events/{event_id}")
async def update_team_event(
    team_id: int,
    event_id: int,
    payload: TeamEventUpdate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.update_team_event(
            session, team_id, event_id, current_user["id"], payload.model_dump(exclude_unset=True)
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("updating team event", e)


@router.delete("/api/teams/{team_id}/events/{event_id}", status_code=204)
async def delete_team_event(
    team_id: int,
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await event_service.delete_team_event(session, team_id, event_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("deleting team event", e)


@router.post("/api/teams/{team_id}/events/{event_id}/close")
async def close_team_event(
    team_id: int,
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.close_team_event(
            session, team_id, event_id, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("closing team event", e)


@router.post("/api/teams/{team_id}/events/{event_id}/join")
async def join_team_event(
    team_id: int,
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Take a spot. 409 EventFull when no spot is left."""
    try:
        return await event_service.join_team_event(
            session, team_id, event_id, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("joining team event", e)


@router.delete("/api/teams/{team_id}/events/{event_id}/join")
async def leave_team_event(
    team_id: int,
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.leave_team_event(
            session, team_id, event_id, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        raise _server_error("leaving team event", e)
