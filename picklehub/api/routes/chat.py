"""Chat route handlers: REST history/posting and the room WebSocket."""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from picklehub.api.routes import limiter
from picklehub.database import db
from picklehub.database.db import get_db_session
from picklehub.services import chat_service
from picklehub.services.exceptions import PickleHubError
from picklehub.services.websocket_manager import (
    ROOM_TYPES,
    WEBSOCKET_TIMEOUT_SECONDS,
    get_websocket_manager,
    room_key,
)
from picklehub.api.auth_dependencies import get_current_user, resolve_token_user
from picklehub.models.schemas import (
    ChatHistoryResponse,
    ChatMessageResponse,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()

# Idle time before the server pings a silent client
RECEIVE_TIMEOUT_SECONDS = WEBSOCKET_TIMEOUT_SECONDS // 2


async def _history(session, room_type, room_id, user_id, limit, before_id):
    try:
        return await chat_service.get_history(
            session, room_type, room_id, user_id, limit=limit, before_id=before_id
        )
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error fetching chat history for {room_key(room_type, room_id)}: {e}")
        raise HTTPException(status_code=500, detail="Error fetching chat history")


async def _post(session, room_type, room_id, user_id, content):
    try:
        return await chat_service.send_message(session, room_type, room_id, user_id, content)
    except (HTTPException, PickleHubError):
        raise
    except Exception as e:
        logger.error(f"Error sending message to {room_key(room_type, room_id)}: {e}")
        raise HTTPException(status_code=500, detail="Error sending message")


@router.get("/api/events/{event_id}/chat", response_model=ChatHistoryResponse)
async def get_event_chat(
    event_id: int,
    limit: int = chat_service.DEFAULT_HISTORY_LIMIT,
    before_id: Optional[int] = None,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Event chat history, oldest first. Creator and reservation holders only."""
    return await _history(session, "event", event_id, current_user["id"], limit, before_id)


@router.post("/api/events/{event_id}/chat", status_code=201, response_model=ChatMessageResponse)
@limiter.limit("60/minute")
async def post_event_chat(
    request: Request,
    event_id: int,
    payload: SendMessageRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return await _post(session, "event", event_id, current_user["id"], payload.content)


@router.get("/api/teams/{team_id}/chat", response_model=ChatHistoryResponse)
async def get_team_chat(
    team_id: int,
    limit: int = chat_service.DEFAULT_HISTORY_LIMIT,
    before_id: Optional[int] = None,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Team chat history, oldest first. Team members only."""
    return await _history(session, "team", team_id, current_user["id"], limit, before_id)


@router.post("/api/teams/{team_id}/chat", status_code=201, response_model=ChatMessageResponse)
@limiter.limit("60/minute")
async def post_team_chat(
    request: Request,
    team_id: int,
    payload: SendMessageRequest,
    current_user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return await _post(session, "team", team_id, current_user["id"], payload.content)


async def _send_ws_message(websocket: WebSocket, room_type: str, room_id: int, user_id: int, content):
    manager = get_websocket_manager()
    async with db.AsyncSessionLocal() as session:
        try:
            await chat_service.send_message(
                session, room_type, room_id, user_id, content, manager=manager
            )
        except PickleHubError as e:
            await session.rollback()
            await manager.send_personal(
                websocket, {"type": "error", "error": e.error, "detail": e.detail}
            )


@router.websocket("/api/ws/chat/{room_type}/{room_id}")
async def websocket_chat(websocket: WebSocket, room_type: str, room_id: int):
    """
    WebSocket endpoint for live chat in one room.

    Requires JWT token in query parameter: ?token=<jwt_token>

    Client frames: "ping" (answered with "pong"),
    {"type": "message", "content": "..."} and {"type": "leave"}.
    Server frames: joined (with the users online in the room), message,
    user_joined, user_left, error.
    """
    await websocket.accept()

    if room_type not in ROOM_TYPES:
        await websocket.close(code=1008, reason="Unknown room type")
        return

    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    async with db.AsyncSessionLocal() as session:
        user = await resolve_token_user(session, token)
        if user is None:
            await websocket.close(code=1008, reason="Invalid authentication token")
            return
        try:
            await chat_service.authorize(session, room_type, room_id, user["id"])
        except PickleHubError as e:
            await websocket.close(code=1008, reason=e.detail)
            return

    user_id = user["id"]
    room = room_key(room_type, room_id)
    manager = get_websocket_manager()
    await manager.connect(room, user_id, websocket)
    logger.info(
        f"User {user_id} joined {room} ({await manager.get_connection_count(room)} connections)"
    )

    try:
        online_user_ids = sorted(await manager.get_room_user_ids(room))
        await manager.send_personal(
            websocket,
            {
                "type": "joined",
                "data": {
                    "room_type": room_type,
                    "room_id": room_id,
                    "online_user_ids": online_user_ids,
                },
            },
        )
        await manager.broadcast(
            room, {"type": "user_joined", "data": {"user_id": user_id}}, exclude=websocket
        )

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(), timeout=RECEIVE_TIMEOUT_SECONDS
                )
            except asyncio.TimeoutError:
                # Drops this socket too once it has been silent past the timeout
                await manager.cleanup_stale_connections()
                if websocket not in manager.connection_info:
                    break
                try:
                    await websocket.send_text("ping")
                except Exception:
                    break
                continue

            await manager.update_activity(websocket)

            if data == "ping":
                await websocket.send_text("pong")
                continue
            if data == "pong":
                continue

            try:
                frame = json.loads(data)
            except ValueError:
                await manager.send_personal(
                    websocket, {"type": "error", "error": "ValidationError", "detail": "Invalid JSON"}
                )
                continue

            frame_type = frame.get("type") if isinstance(frame, dict) else None
            if frame_type == "message":
                content = frame.get("content")
                if not isinstance(content, str):
                    content = None
                await _send_ws_message(websocket, room_type, room_id, user_id, content)
            elif frame_type == "leave":
                await websocket.close(code=1000)
                break
            else:
                await manager.send_personal(
                    websocket,
                    {"type": "error", "error": "ValidationError", "detail": "Unknown frame type"},
                )
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user_id} in {room}")
    except Exception as e:
        logger.error(f"WebSocket error for user {user_id} in {room}: {e}")
    finally:
        info = await manager.disconnect(websocket)
        if info is not None:
            await manager.broadcast(room, {"type": "user_left", "data": {"user_id": user_id}})
