"""Event and reservation route handlers."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.api.routes import limiter
from picklehub.database.db import get_db_session
from picklehub.services import event_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user, get_current_user_optional
from picklehub.models.schemas import EventCreate, EventUpdate, ReserveResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/events")
async def list_events(
    status: Optional[str] = None,
    creator_id: Optional[int] = None,
    region: Optional[str] = None,
    upcoming: bool = True,
    limit: int = 50,
    offset: int = 0,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """List events by start time. Only upcoming, non-cancelled events by default."""
    try:
        return await event_service.list_events(
            session,
            current_user_id=current_user["id"] if current_user else None,
            status=status,
            creator_id=creator_id,
            region=region,
            upcoming=upcoming,
            limit=min(max(limit, 1), 100),
            offset=max(offset, 0),
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error listing events: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing events")


@router.post("/api/events", status_code=201)
async def create_event(
    payload: EventCreate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.create_event(session, current_user["id"], payload.model_dump())
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error creating event: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating event")


@router.get("/api/events/{event_id}")
async def get_event(
    event_id: int,
    current_user: Optional[dict] = Depends(get_current_user_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """Event details with its reservations."""
    try:
        return await event_service.get_event(
            session, event_id, current_user["id"] if current_user else None
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error fetching event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching event")


@router.patch("/api/events/{event_id}")
async def update_event(
    event_id: int,
    payload: EventUpdate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Update an event that has not started. Creator only.

    Reservation holders are notified when time or place changes.
    """
    try:
        return await event_service.update_event(
            session, event_id, current_user["id"], payload.model_dump(exclude_unset=True)
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error updating event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating event")


@router.delete("/api/events/{event_id}", status_code=204)
async def delete_event(
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await event_service.delete_event(session, event_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error deleting event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting event")


@router.post("/api/events/{event_id}/close")
async def close_event(
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Mark an event completed. Creator only."""
    try:
        return await event_service.close_event(session, event_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error closing event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error closing event")


@router.post(
    "/api/events/{event_id}/reservations",
    status_code=201,
    response_model=ReserveResponse,
)
@limiter.limit("30/minute")
async def reserve(
    request: Request,
    event_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Reserve a spot. 409 EventFull when no spot is left."""
    try:
        return await event_service.reserve(session, event_id, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error reserving event {event_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating reservation")


@router.get("/api/reservations")
async def list_my_reservations(
    upcoming: bool = False,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await event_service.list_my_reservations(
            session, current_user["id"], upcoming=upcoming
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error listing reservations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing reservations")


@router.delete("/api/reservations/{reservation_id}")
async def cancel_reservation(
    reservation_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel the caller's reservation. Returns the updated event."""
    try:
        return await event_service.cancel_reservation(
            session, reservation_id, current_user["id"]
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error cancelling reservation {reservation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error cancelling reservation")
