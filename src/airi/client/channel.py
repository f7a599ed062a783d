"""Client side of the duplex session: a single-use, typed WebSocket channel.

Usage:
    channel = SessionChannel(AiohttpConnector())
    channel.on_message(handle)
    await channel.open("ws://localhost:6121/ws")
    await channel.send(protocol.text_input("Hello"))
    await channel.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union

import aiohttp

from ..errors import ChannelClosed, ConnectError, DecodeError, SendError, TransportError
from ..protocol import PROCESSING_FAILURE, Message, decode, encode, error_message

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class CloseEvent:
    reason: str
    by_operator: bool = False


MessageHandler = Callable[[Any], Union[None, Awaitable[None]]]


# -----------------------------
# Transport
# -----------------------------
class Transport(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> Optional[str]:
        """Next text frame, or None once the peer has closed."""
        ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


class AiohttpTransport:
    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._session = session
        self._ws = ws

    async def send_text(self, data: str) -> None:
        await self._ws.send_str(data)

    async def receive_text(self) -> Optional[str]:
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data.decode("utf-8", errors="replace")
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise TransportError(str(self._ws.exception() or "websocket error"))
        # CLOSE / CLOSING / CLOSED
        return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


class AiohttpConnector:
    """Open WebSocket transports with aiohttp."""

    def __init__(self, *, connect_timeout: float = 10.0) -> None:
        self.connect_timeout = connect_timeout

    async def __call__(self, endpoint: str) -> AiohttpTransport:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=None, connect=self.connect_timeout)
        )
        try:
            ws = await session.ws_connect(endpoint)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await session.close()
            raise ConnectError(f"Failed to connect to {endpoint}: {e}") from e
        except asyncio.CancelledError:
            await session.close()
            raise
        return AiohttpTransport(session, ws)


# -----------------------------
# SessionChannel
# -----------------------------
class SessionChannel:
    """
    One duplex connection. Instances are single-use: ``open`` is only legal
    from IDLE, and after the terminal ``closed`` event a new channel must be
    created.

    Inbound frames are decoded and handed to message handlers one at a time in
    arrival order. A frame that fails to decode is replaced by an ``error``
    message; nothing raised while reading escapes the channel.
    """

    def __init__(self, connector: Connector) -> None:
        self._connector = connector
        self._state = ConnectionState.IDLE
        self._transport: Optional[Transport] = None
        self._reader: Optional[asyncio.Task] = None
        self._message_handlers: List[MessageHandler] = []
        self._opened_handlers: List[Callable[[], None]] = []
        self._closed_handlers: List[Callable[[CloseEvent], None]] = []
        self._error_handlers: List[Callable[[str], None]] = []
        self.close_event: Optional[CloseEvent] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    # ----------------- registration -----------------
    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_opened(self, handler: Callable[[], None]) -> None:
        self._opened_handlers.append(handler)

    def on_closed(self, handler: Callable[[CloseEvent], None]) -> None:
        self._closed_handlers.append(handler)

    def on_transport_error(self, handler: Callable[[str], None]) -> None:
        self._error_handlers.append(handler)

    # ----------------- lifecycle -----------------
    async def open(self, endpoint: str) -> "SessionChannel":
        if self._state is not ConnectionState.IDLE:
            raise ConnectError(f"channel is {self._state.value}; open() needs a fresh channel")
        self._state = ConnectionState.CONNECTING
        try:
            self._transport = await self._connector(endpoint)
        except ConnectError as e:
            self._finish(CloseEvent(reason=f"connect failed: {e}"))
            raise
        except asyncio.CancelledError:
            self._finish(CloseEvent(reason="connect cancelled", by_operator=True))
            raise
        except Exception as e:
            self._finish(CloseEvent(reason=f"connect failed: {e}"))
            raise ConnectError(f"Failed to connect to {endpoint}: {e}") from e

        if self._state is not ConnectionState.CONNECTING:
            # close() ran while the connector was pending
            transport, self._transport = self._transport, None
            await transport.close()
            raise ConnectError("channel closed while connecting")

        self._state = ConnectionState.OPEN
        logger.info("Connected to %s", endpoint)
        for handler in list(self._opened_handlers):
            self._call_safely(handler)
        self._reader = asyncio.create_task(self._read_loop())
        return self

    async def send(self, message: Message) -> None:
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            raise ChannelClosed("channel is closed")
        if self._state is not ConnectionState.OPEN or self._transport is None:
            raise SendError(f"channel is {self._state.value}, not open")
        try:
            await self._transport.send_text(encode(message))
        except Exception as e:
            self._emit_transport_error(str(e))
            raise SendError(f"send failed: {e}") from e

    async def close(self, reason: str = "closed by operator") -> None:
        """Orderly shutdown. Safe to call more than once."""
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        if self._state is not ConnectionState.OPEN:
            self._finish(CloseEvent(reason=reason, by_operator=True))
            return
        self._state = ConnectionState.CLOSING
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await self._shutdown_transport()
        self._finish(CloseEvent(reason=reason, by_operator=True))

    # ----------------- internals -----------------
    async def _read_loop(self) -> None:
        transport = self._transport
        assert transport is not None
        reason = "closed by peer"
        try:
            while True:
                raw = await transport.receive_text()
                if raw is None:
                    break
                try:
                    message: Any = decode(raw)
                except DecodeError as e:
                    logger.warning("Failed to parse inbound message: %s", e)
                    message = error_message(PROCESSING_FAILURE)
                await self._deliver(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._state is not ConnectionState.OPEN:
                return
            logger.warning("Transport error: %s", e)
            self._emit_transport_error(str(e))
            reason = f"transport error: {e}"

        if self._state is ConnectionState.OPEN:
            self._state = ConnectionState.CLOSING
            await self._shutdown_transport()
            self._finish(CloseEvent(reason=reason))

    async def _deliver(self, message: Any) -> None:
        for handler in list(self._message_handlers):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Message handler failed for %s", getattr(message, "type", "?"))

    async def _shutdown_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            logger.debug("Ignoring error while closing transport: %s", e)

    def _finish(self, event: CloseEvent) -> None:
        if self.close_event is not None:
            return
        self._state = ConnectionState.CLOSED
        self.close_event = event
        logger.info("Channel closed: %s", event.reason)
        for handler in list(self._closed_handlers):
            self._call_safely(handler, event)

    def _emit_transport_error(self, detail: str) -> None:
        for handler in list(self._error_handlers):
            self._call_safely(handler, detail)

    @staticmethod
    def _call_safely(handler: Callable[..., Any], *args: Any) -> None:
        try:
            handler(*args)
        except Exception:
            logger.exception("Lifecycle handler failed")
