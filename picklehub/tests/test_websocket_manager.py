"""
Unit tests for WebSocket manager.
Tests room registration, broadcasting, and timeout handling.
"""

import pytest
import pytest_asyncio
import asyncio
import json
from unittest.mock import AsyncMock
from datetime import timedelta
from picklehub.services.websocket_manager import (
    WebSocketManager,
    get_websocket_manager,
    room_key,
    WEBSOCKET_TIMEOUT_SECONDS,
)
from picklehub.utils.datetime_utils import utcnow

ROOM = room_key("event", 1)


def _socket(fail=False):
    ws = AsyncMock()
    ws.send_text = AsyncMock(side_effect=Exception("Connection error") if fail else None)
    ws.close = AsyncMock()
    return ws


@pytest_asyncio.fixture
async def ws_manager():
    """Create a fresh WebSocket manager for each test."""
    return WebSocketManager()


@pytest_asyncio.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    return _socket()


def test_room_key():
    assert room_key("event", 12) == "event:12"
    assert room_key("team", 3) == "team:3"


@pytest.mark.asyncio
async def test_connect(ws_manager, mock_websocket):
    """Test connecting a WebSocket to a room."""
    assert await ws_manager.connect(ROOM, 1, mock_websocket) is True

    assert await ws_manager.get_connection_count(ROOM) == 1
    assert ws_manager.connection_info[mock_websocket] == (ROOM, 1)
    assert mock_websocket in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_connect_twice_is_noop(ws_manager, mock_websocket):
    await ws_manager.connect(ROOM, 1, mock_websocket)

    assert await ws_manager.connect(ROOM, 1, mock_websocket) is False
    assert await ws_manager.get_connection_count(ROOM) == 1


@pytest.mark.asyncio
async def test_disconnect(ws_manager, mock_websocket):
    """Test disconnecting a WebSocket."""
    await ws_manager.connect(ROOM, 1, mock_websocket)

    info = await ws_manager.disconnect(mock_websocket)

    assert info == (ROOM, 1)
    assert await ws_manager.get_connection_count(ROOM) == 0
    assert ROOM not in ws_manager.room_connections
    assert mock_websocket not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_disconnect_unknown_socket(ws_manager, mock_websocket):
    """Disconnecting twice (or never connected) is harmless."""
    assert await ws_manager.disconnect(mock_websocket) is None


@pytest.mark.asyncio
async def test_broadcast_reaches_room_only(ws_manager):
    ws1, ws2, other_room = _socket(), _socket(), _socket()
    await ws_manager.connect(ROOM, 1, ws1)
    await ws_manager.connect(ROOM, 2, ws2)
    await ws_manager.connect(room_key("team", 1), 3, other_room)

    sent = await ws_manager.broadcast(ROOM, {"type": "message", "data": {"id": 7}})

    assert sent == 2
    payload = json.loads(ws1.send_text.call_args[0][0])
    assert payload == {"type": "message", "data": {"id": 7}}
    ws2.send_text.assert_called_once()
    other_room.send_text.assert_not_called()


@pytest.mark.asyncio
async def test_broadcast_exclude(ws_manager):
    ws1, ws2 = _socket(), _socket()
    await ws_manager.connect(ROOM, 1, ws1)
    await ws_manager.connect(ROOM, 2, ws2)

    sent = await ws_manager.broadcast(ROOM, {"type": "user_joined"}, exclude=ws1)

    assert sent == 1
    ws1.send_text.assert_not_called()


@pytest.mark.asyncio
async def test_broadcast_drops_failed_connections(ws_manager):
    """Test sending when one connection fails but another succeeds."""
    ok, broken = _socket(), _socket(fail=True)
    await ws_manager.connect(ROOM, 1, ok)
    await ws_manager.connect(ROOM, 2, broken)

    sent = await ws_manager.broadcast(ROOM, {"type": "message"})

    assert sent == 1
    ok.send_text.assert_called_once()
    assert await ws_manager.get_connection_count(ROOM) == 1
    assert broken not in ws_manager.connection_info


@pytest.mark.asyncio
async def test_broadcast_empty_room(ws_manager):
    assert await ws_manager.broadcast(ROOM, {"type": "message"}) == 0


@pytest.mark.asyncio
async def test_get_room_user_ids(ws_manager):
    await ws_manager.connect(ROOM, 1, _socket())
    await ws_manager.connect(ROOM, 1, _socket())
    await ws_manager.connect(ROOM, 2, _socket())

    assert await ws_manager.get_room_user_ids(ROOM) == {1, 2}


@pytest.mark.asyncio
async def test_send_personal(ws_manager):
    ok, broken = _socket(), _socket(fail=True)

    assert await ws_manager.send_personal(ok, {"type": "pong"}) is True
    assert await ws_manager.send_personal(broken, {"type": "pong"}) is False


@pytest.mark.asyncio
async def test_update_activity(ws_manager, mock_websocket):
    """Test updating connection activity timestamp."""
    await ws_manager.connect(ROOM, 1, mock_websocket)
    initial_time = ws_manager.connection_timestamps[mock_websocket]

    # Wait a bit
    await asyncio.sleep(0.01)

    await ws_manager.update_activity(mock_websocket)
    assert ws_manager.connection_timestamps[mock_websocket] > initial_time


@pytest.mark.asyncio
async def test_update_activity_not_connected(ws_manager, mock_websocket):
    """Test updating activity for a connection that doesn't exist."""
    await ws_manager.update_activity(mock_websocket)

    assert mock_websocket not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_cleanup_stale_connections(ws_manager):
    """Test cleaning up stale connections."""
    stale, fresh = _socket(), _socket()
    await ws_manager.connect(ROOM, 1, stale)
    await ws_manager.connect(ROOM, 2, fresh)

    # Manually set old timestamp
    ws_manager.connection_timestamps[stale] = utcnow() - timedelta(
        seconds=WEBSOCKET_TIMEOUT_SECONDS + 10
    )

    removed = await ws_manager.cleanup_stale_connections()

    assert removed == 1
    stale.close.assert_called_once()
    assert stale not in ws_manager.connection_info
    assert await ws_manager.get_connection_count(ROOM) == 1


@pytest.mark.asyncio
async def test_get_websocket_manager_singleton():
    """Test that get_websocket_manager returns a singleton."""
    assert get_websocket_manager() is get_websocket_manager()
