"""
Authentication dependencies for FastAPI routes.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from picklehub.services import auth_service, user_service
from picklehub.database.db import get_db_session

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_token_user(session: AsyncSession, token: Optional[str]) -> Optional[dict]:
    """
    Resolve a bearer token to a user dict.

    Shared by HTTP dependencies and the chat WebSocket (which passes the
    token as a query parameter).

    Returns:
        User dictionary, or None if the token is missing/invalid or the user is gone
    """
    if not token:
        return None

    payload = auth_service.verify_token(token)
    if payload is None:
        return None

    user_id = payload.get("user_id")
    if user_id is None:
        return None

    return await user_service.get_user_by_id(session, user_id)


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Dependency to get the current authenticated user from JWT token.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or the user not found
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = auth_service.verify_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid authentication token")

    user_id = payload.get("user_id")
    if user_id is None:
        raise _unauthorized("Invalid token payload")

    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        raise _unauthorized("User not found")

    return user


async def get_current_user_optional(
    session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[dict]:
    """
    Optional dependency to get the current authenticated user.
    Returns None if no token is provided or token is invalid.
    """
    if credentials is None:
        return None
    return await resolve_token_user(session, credentials.credentials)
