"""Connection lifecycle for the client: connect, back off, reconnect, tear down."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Callable, List, Optional

from ..errors import ChannelClosed, ConnectError, SendError
from ..protocol import Message, ping
from .channel import AiohttpConnector, CloseEvent, ConnectionState, MessageHandler, SessionChannel
from .timers import Cancellable, LoopScheduler, Scheduler

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState, int, Optional[float]], None]


def backoff_delay(failures: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Delay before reconnecting after the ``failures``-th consecutive failure.

    ``min(base * 2**(failures - 1), max)``: 1s, 2s, 4s, ... capped at 30s.
    """
    if failures < 1:
        return 0.0
    return min(base_delay * (2 ** (failures - 1)), max_delay)


class ReconnectSupervisor:
    """
    Keep one logical session connected.

    State machine:
        IDLE -> CONNECTING -> OPEN
        OPEN --(peer/transport close)--> RECONNECTING --(timer)--> CONNECTING
        CONNECTING --(ConnectError)--> RECONNECTING
        any --teardown()--> CLOSING -> CLOSED (terminal)

    At most one connection attempt is outstanding: a reconnect timer that
    fires during an attempt does nothing, and a loss while a reconnect is
    already scheduled does not schedule a second one.

    A ``ping`` is sent every ``keepalive_interval`` seconds while OPEN. A
    missing ``pong`` is not treated as a failure; only a closed channel
    triggers a reconnect.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        channel_factory: Optional[Callable[[], SessionChannel]] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        keepalive_interval: float = 30.0,
    ) -> None:
        self.endpoint = endpoint
        self._channel_factory = channel_factory or (lambda: SessionChannel(AiohttpConnector()))
        self._scheduler = scheduler or LoopScheduler()
        self._clock = clock
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.keepalive_interval = keepalive_interval

        self.state = ConnectionState.IDLE
        self.attempt_count = 0
        self.last_delay: Optional[float] = None
        self._channel: Optional[SessionChannel] = None
        self._attempt: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[Cancellable] = None
        self._keepalive_timer: Optional[Cancellable] = None
        self._pending: set = set()
        self._torn_down = False
        self._message_handlers: List[MessageHandler] = []
        self._state_listeners: List[StateListener] = []

    # ----------------- registration -----------------
    def on_message(self, handler: MessageHandler) -> None:
        """Handlers are attached to every channel this supervisor opens."""
        self._message_handlers.append(handler)

    def on_state_change(self, listener: StateListener) -> None:
        """Called with ``(state, attempt_count, delay)``; delay is set for RECONNECTING."""
        self._state_listeners.append(listener)

    @property
    def channel(self) -> Optional[SessionChannel]:
        return self._channel

    # ----------------- public API -----------------
    async def start(self) -> None:
        """Make the initial connection attempt and wait for its outcome.

        A failed first attempt is not raised; it schedules a reconnect.
        """
        if self._torn_down:
            raise ChannelClosed("supervisor has been torn down")
        if self.state is not ConnectionState.IDLE:
            return
        task = self._launch_attempt()
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # teardown() cancelled the attempt itself; our caller was not cancelled
            if not (self._torn_down and task.cancelled()):
                raise

    async def send(self, message: Message) -> None:
        if self._torn_down:
            raise ChannelClosed("supervisor has been torn down")
        if self._channel is None or self.state is not ConnectionState.OPEN:
            raise SendError(f"not connected ({self.state.value})")
        await self._channel.send(message)

    async def teardown(self) -> None:
        """Stop for good: cancel timers and any in-flight attempt, close the channel."""
        if self._torn_down:
            return
        self._torn_down = True
        self._cancel_timer("_reconnect_timer")
        self._cancel_timer("_keepalive_timer")

        attempt, self._attempt = self._attempt, None
        if attempt is not None and not attempt.done():
            attempt.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await attempt

        for task in list(self._pending):
            task.cancel()

        channel, self._channel = self._channel, None
        if channel is not None:
            self._set_state(ConnectionState.CLOSING)
            await channel.close()
        self._set_state(ConnectionState.CLOSED)
        logger.info("Supervisor torn down")

    # ----------------- attempts -----------------
    def _launch_attempt(self) -> Optional[asyncio.Task]:
        if self._torn_down:
            return None
        if self._attempt is not None and not self._attempt.done():
            logger.debug("Connection attempt already in flight; not starting another")
            return None
        self._set_state(ConnectionState.CONNECTING)
        self._attempt = asyncio.ensure_future(self._run_attempt())
        return self._attempt

    async def _run_attempt(self) -> None:
        channel = self._channel_factory()
        for handler in self._message_handlers:
            channel.on_message(handler)
        channel.on_closed(lambda event: self._on_channel_closed(channel, event))
        try:
            await channel.open(self.endpoint)
        except ConnectError as e:
            self._attempt = None
            logger.warning("Failed to connect: %s", e)
            self._handle_loss(str(e))
            return

        self._attempt = None
        if self._torn_down:
            await channel.close()
            return
        self._channel = channel
        self.attempt_count = 0
        self.last_delay = None
        self._set_state(ConnectionState.OPEN)
        self._schedule_keepalive()

    def _on_channel_closed(self, channel: SessionChannel, event: CloseEvent) -> None:
        if channel is not self._channel:
            return  # failed or superseded attempt; handled where it failed
        self._channel = None
        self._cancel_timer("_keepalive_timer")
        if self._torn_down or event.by_operator:
            self._set_state(ConnectionState.CLOSED)
            return
        self._handle_loss(event.reason)

    def _handle_loss(self, reason: str) -> None:
        if self._torn_down or self._reconnect_timer is not None:
            return
        self.attempt_count += 1
        delay = backoff_delay(self.attempt_count, self.base_delay, self.max_delay)
        self.last_delay = delay
        logger.info(
            "Connection lost (%s). Reconnecting in %.1fs... (attempt %d)",
            reason, delay, self.attempt_count,
        )
        self._set_state(ConnectionState.RECONNECTING, delay)
        self._reconnect_timer = self._scheduler.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_timer = None
        self._launch_attempt()

    # ----------------- keepalive -----------------
    def _schedule_keepalive(self) -> None:
        if self.keepalive_interval > 0:
            self._keepalive_timer = self._scheduler.call_later(self.keepalive_interval, self._keepalive_tick)

    def _keepalive_tick(self) -> None:
        self._keepalive_timer = None
        if self._torn_down or self.state is not ConnectionState.OPEN or self._channel is None:
            return
        task = asyncio.ensure_future(self._send_ping())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        self._schedule_keepalive()

    async def _send_ping(self) -> None:
        try:
            await self.send(ping(int(self._clock() * 1000)))
        except SendError as e:
            logger.debug("Keepalive ping not sent: %s", e)

    # ----------------- helpers -----------------
    def _cancel_timer(self, attr: str) -> None:
        timer = getattr(self, attr)
        if timer is not None:
            timer.cancel()
            setattr(self, attr, None)

    def _set_state(self, state: ConnectionState, delay: Optional[float] = None) -> None:
        if state is self.state:
            return
        self.state = state
        for listener in list(self._state_listeners):
            try:
                listener(state, self.attempt_count, delay)
            except Exception:
                logger.exception("State listener failed")
