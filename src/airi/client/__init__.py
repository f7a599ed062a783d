"""Client side of the session: typed channel plus reconnect supervision."""

from __future__ import annotations

from .channel import AiohttpConnector, CloseEvent, ConnectionState, SessionChannel
from .supervisor import ReconnectSupervisor, backoff_delay
from .timers import LoopScheduler, Scheduler

__all__ = [
    "AiohttpConnector",
    "CloseEvent",
    "ConnectionState",
    "LoopScheduler",
    "ReconnectSupervisor",
    "Scheduler",
    "SessionChannel",
    "backoff_delay",
]
