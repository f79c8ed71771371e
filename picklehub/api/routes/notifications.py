"""Notification route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.database.db import get_db_session
from picklehub.services import notification_service
from picklehub.services.exceptions import PickleHubError
from picklehub.api.auth_dependencies import get_current_user
from picklehub.models.schemas import (
    MarkAllReadResponse,
    NotificationResponse,
    NotificationListResponse,
    UnreadCountResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/notifications", response_model=NotificationListResponse)
async def get_notifications(
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get user notifications with pagination, newest first."""
    try:
        user_id = user.get("id")
        return await notification_service.get_user_notifications(
            session,
            user_id,
            limit=min(max(limit, 1), 100),
            offset=max(offset, 0),
            unread_only=unread_only,
        )
    except Exception as e:
        logger.error(f"Error fetching notifications: {str(e)}")
        raise HTTPException(status_code=500, detail="Error fetching notifications")


@router.get("/api/notifications/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    user: dict = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)
):
    """Get unread notification count for user."""
    try:
        count = await notification_service.get_unread_count(session, user.get("id"))
        return {"unread_count": count}
    except Exception as e:
        logger.error(f"Error fetching unread count: {str(e)}")
        raise HTTPException(status_code=500, detail="Error fetching unread count")


@router.patch("/api/notifications/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_as_read(
    user: dict = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)
):
    """Mark all user notifications as read."""
    try:
        count = await notification_service.mark_all_as_read(session, user.get("id"))
        return {"updated": count}
    except Exception as e:
        logger.error(f"Error marking all notifications as read: {str(e)}")
        raise HTTPException(status_code=500, detail="Error marking all notifications as read")


@router.patch("/api/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_as_read(
    notification_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Mark a single notification as read."""
    try:
        return await notification_service.mark_as_read(session, notification_id, user.get("id"))
    except PickleHubError:
        raise
    except Exception as e:
        logger.error(f"Error marking notification as read: {str(e)}")
        raise HTTPException(status_code=500, detail="Error marking notification as read")


@router.delete("/api/notifications/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        await notification_service.delete_notification(session, notification_id, user.get("id"))
    except PickleHubError:
        raise
    except Exception as e:
        logger.error(f"Error deleting notification: {str(e)}")
        raise HTTPException(status_code=500, detail="Error deleting notification")
