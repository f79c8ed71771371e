"""Authentication route handlers (Google / Apple sign-in)."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.api.routes import limiter
from picklehub.database.db import get_db_session
from picklehub.services import auth_service, user_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user
from picklehub.models.schemas import (
    AppleAuthRequest,
    AuthResponse,
    GoogleAuthRequest,
    UserResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _auth_response(user, is_new_user: bool) -> dict:
    token = auth_service.create_access_token(data={"user_id": user.id})
    return {
        "user": user_service.user_to_dict(user),
        "token": token,
        "is_new_user": is_new_user,
    }


@router.post("/api/auth/google", response_model=AuthResponse)
@limiter.limit("10/minute")
async def google_auth(
    request: Request, payload: GoogleAuthRequest, session: AsyncSession = Depends(get_db_session)
):
    """
    Authenticate with a Google ID token.

    Existing users are matched by google_id, then by email (auto-link);
    otherwise a new account is created.
    """
    try:
        google_info = auth_service.verify_google_id_token(payload.id_token)
        user, is_new_user = await user_service.find_or_create_google_user(
            session,
            google_id=google_info["sub"],
            email=google_info["email"].strip().lower(),
            name=google_info.get("name"),
            picture_url=google_info.get("picture"),
        )
        return _auth_response(user, is_new_user)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error during Google authentication: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error during Google authentication")


@router.post("/api/auth/apple", response_model=AuthResponse)
@limiter.limit("10/minute")
async def apple_auth(
    request: Request, payload: AppleAuthRequest, session: AsyncSession = Depends(get_db_session)
):
    """
    Authenticate with an Apple identity token.

    The email in the token wins over the one the client forwards.
    """
    try:
        apple_info = auth_service.verify_apple_identity_token(payload.identity_token)
        email = apple_info.get("email") or payload.email
        user, is_new_user = await user_service.find_or_create_apple_user(
            session,
            apple_id=apple_info["sub"],
            email=email.strip().lower() if email else None,
            full_name=payload.full_name,
        )
        return _auth_response(user, is_new_user)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error during Apple authentication: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error during Apple authentication")


@router.get("/api/auth/me", response_model=UserResponse)
async def get_me(current_user: dict = Depends(get_current_user)):
    """Get current user information."""
    return current_user
