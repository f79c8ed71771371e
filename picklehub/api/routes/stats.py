"""Site statistics route handler."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.database.db import get_db_session
from picklehub.services import event_service
from picklehub.models.schemas import StatsResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/stats", response_model=StatsResponse)
async def get_stats(response: Response, session: AsyncSession = Depends(get_db_session)):
    """Event and public team totals for the landing page. Never cached."""
    response.headers["Cache-Control"] = "no-store"
    try:
        return await event_service.get_site_stats(session)
    except Exception as e:
        logger.error(f"Error fetching stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching stats")
