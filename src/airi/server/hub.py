"""WebSocket connection hub: accepts sessions and dispatches their messages.

Each connection is served by one coroutine, so its frames are handled one at
a time in arrival order. Frames that fail to decode are answered with a single
``error`` message; the connection stays open.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Dict, List

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from ..errors import DecodeError, PersistenceError
from ..memory.store import DiskStore
from ..protocol import (
    AuthenticateMessage,
    Features,
    PingMessage,
    TextInputMessage,
    VoiceInputMessage,
    authenticated,
    connected,
    decode,
    encode,
    error_message,
    pong,
)
from .exchange import ConversationExchange

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Track live WebSocket sessions and route their messages."""

    def __init__(self, exchange: ConversationExchange, store: DiskStore, features: Features) -> None:
        self.exchange = exchange
        self.store = store
        self.features = features
        self._connections: Dict[str, WebSocket] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def serve(self, websocket: WebSocket, user_id: str = "default") -> None:
        """Run one session until the peer disconnects."""
        await websocket.accept()
        conn_id = uuid.uuid4().hex
        self._connections[conn_id] = websocket
        client = websocket.client.host if websocket.client else "unknown"
        logger.info("New WebSocket connection %s from %s (user=%s)", conn_id, client, user_id)

        try:
            conversation_id = await self._open_conversation(user_id)
            await websocket.send_text(encode(connected(self.features)))
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None:
                    raw = frame.get("bytes") or b""
                for reply in await self.dispatch(raw, user_id=user_id, conversation_id=conversation_id):
                    await websocket.send_text(encode(reply))
        except WebSocketDisconnect:
            pass
        finally:
            self._connections.pop(conn_id, None)
            logger.info("WebSocket connection closed: %s", conn_id)

    async def dispatch(self, raw: str | bytes, *, user_id: str, conversation_id: str) -> List:
        """Decode one frame and return the messages to send back."""
        try:
            message = decode(raw)
        except DecodeError as e:
            logger.warning("Error processing message: %s", e)
            return [error_message()]

        logger.debug("Received message: %s", message.type)
        if isinstance(message, PingMessage):
            return [pong()]
        if isinstance(message, AuthenticateMessage):
            return [authenticated(True)]
        if isinstance(message, TextInputMessage):
            result = await self.exchange.handle_text(
                message.data.text, user_id=user_id, conversation_id=conversation_id
            )
            return [result.message]
        if isinstance(message, VoiceInputMessage):
            return [await self.exchange.handle_voice(message.data)]

        logger.info("Ignoring %s message from client", message.type)
        return []

    async def close_all(self) -> None:
        """Close every live connection (used on application shutdown)."""
        for _conn_id, ws in list(self._connections.items()):
            if ws.client_state is WebSocketState.CONNECTED:
                with contextlib.suppress(RuntimeError, WebSocketDisconnect):
                    await ws.close(code=1001)
        self._connections.clear()

    async def _open_conversation(self, user_id: str) -> str:
        """Create a conversation for this session; fall back to an ephemeral id."""
        try:
            await asyncio.to_thread(self.store.ensure_user, user_id)
            conv = await asyncio.to_thread(self.store.create_conversation, user_id)
            return conv.id
        except PersistenceError as e:
            fallback = f"ephemeral-{uuid.uuid4().hex}"
            logger.warning("Failed to create conversation for %s (%s); using %s", user_id, e, fallback)
            return fallback
