"""User profile route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.database.db import get_db_session
from picklehub.services import user_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user
from picklehub.models.schemas import UserResponse, UserUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/users/me", response_model=UserResponse)
async def get_current_user_profile(current_user: dict = Depends(get_current_user)):
    """Get the current user's full profile."""
    return current_user


@router.patch("/api/users/me", response_model=UserResponse)
async def update_current_user(
    payload: UserUpdate,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Update the current user's profile. Only fields present in the body change;
    an explicit null clears a field.
    """
    try:
        return await user_service.update_profile(
            session, current_user["id"], payload.model_dump(exclude_unset=True)
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error updating user profile: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating user profile")


@router.delete("/api/users/me", status_code=204)
async def delete_current_user(
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Delete the current user's account.

    Refused with 409 while the user owns a team that still has other members
    and no admin who can take over.
    """
    try:
        await user_service.delete_account(session, current_user["id"])
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error deleting account: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting account")


@router.get("/api/users/rankings")
async def get_user_rankings(
    ranking_type: str = Query("doubles", alias="type"),
    session: AsyncSession = Depends(get_db_session),
):
    """Players ranked by DUPR rating, doubles by default or singles with ?type=singles."""
    try:
        return await user_service.get_user_rankings(session, ranking_type)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error fetching user rankings: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching user rankings")


@router.get("/api/users/{user_id}")
async def get_user_profile(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Public profile of another user (no email)."""
    try:
        user = await user_service.get_user(session, user_id)
        return user_service.public_profile(user)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error fetching user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching user")


@router.get("/api/users/{user_id}/teams")
async def get_user_teams(
    user_id: int,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Teams a user belongs to, with their role in each."""
    try:
        await user_service.get_user(session, user_id)
        return await user_service.get_user_teams(session, user_id)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error fetching teams for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching user teams")
