"""One user-utterance / agent-reply round trip."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from ..errors import PersistenceError
from ..memory.ledger import MemoryLedger
from ..memory.models import MemorySnapshot, Sender
from ..memory.store import PersistenceStore
from ..protocol import (
    GENERATION_FAILURE,
    AiResponseMessage,
    ErrorMessage,
    ai_response,
    error_message,
)
from .responder import VOICE_ACKNOWLEDGEMENT, CannedResponder

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_IMPORTANCE = 0.6
REPLY_IMPORTANCE = 0.7


@dataclass
class StepResult:
    name: str
    ok: bool
    error: Optional[str] = None


@dataclass
class ExchangeResult:
    message: AiResponseMessage | ErrorMessage
    reply: Optional[str] = None
    snapshot: Optional[MemorySnapshot] = None
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(s.ok for s in self.steps)


class ConversationExchange:
    """
    Runs the round trip for an ``input:text`` message:

        1. persist the user's exchange record
        2. record a short-term memory of it (importance 0.6)
        3. resolve a reply
        4. persist the reply's exchange record
        5. record a short-term memory of the reply (importance 0.7)
        6. read the user's memory snapshot
        7. build the ``ai_response``

    A persistence or ledger failure is logged and marked in its step result;
    later steps still run. Only a failure to produce the reply turns the
    outcome into an ``error`` message.
    """

    def __init__(
        self,
        store: PersistenceStore,
        ledger: MemoryLedger,
        responder: Optional[CannedResponder] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.responder = responder or CannedResponder()

    async def handle_text(self, text: str, *, user_id: str, conversation_id: str) -> ExchangeResult:
        steps: List[StepResult] = []

        await self._step(
            steps, "save_user_exchange",
            lambda: asyncio.to_thread(self.store.save_exchange, conversation_id, Sender.USER, text, "text", {}),
        )
        await self._step(
            steps, "record_user_memory",
            lambda: self.ledger.record_short_term(user_id, f"User: {text}", USER_IMPORTANCE, conversation_id),
        )

        try:
            reply = self.responder.generate(text)
        except Exception:
            logger.exception("AI response error")
            return ExchangeResult(message=error_message(GENERATION_FAILURE), steps=steps)

        meta = {"provider": self.responder.provider, "model": self.responder.model}
        await self._step(
            steps, "save_reply_exchange",
            lambda: asyncio.to_thread(self.store.save_exchange, conversation_id, Sender.AIRI, reply, "text", meta),
        )
        await self._step(
            steps, "record_reply_memory",
            lambda: self.ledger.record_short_term(user_id, f"AIRI: {reply}", REPLY_IMPORTANCE, conversation_id),
        )
        snapshot = await self._step(steps, "memory_stats", lambda: self.ledger.stats(user_id))

        try:
            message = ai_response(
                reply,
                provider=self.responder.provider,
                model=self.responder.model,
                memory_stats=snapshot.to_stats() if snapshot is not None else None,
            )
        except ValueError:
            logger.exception("Could not build ai_response")
            return ExchangeResult(message=error_message(GENERATION_FAILURE), reply=reply, steps=steps)
        return ExchangeResult(message=message, reply=reply, snapshot=snapshot, steps=steps)

    async def handle_voice(self, payload: Any = None) -> AiResponseMessage:
        """Placeholder: acknowledge without transcription, persistence or memory."""
        logger.info("Voice input received")
        return ai_response(VOICE_ACKNOWLEDGEMENT, provider="voice", transcription=True)

    async def _step(
        self,
        steps: List[StepResult],
        name: str,
        run: Callable[[], Awaitable[T]],
    ) -> Optional[T]:
        try:
            value = await run()
        except (PersistenceError, ValueError) as e:
            logger.warning("Exchange step %s failed: %s", name, e)
            steps.append(StepResult(name=name, ok=False, error=str(e)))
            return None
        steps.append(StepResult(name=name, ok=True))
        return value
