from __future__ import annotations

from airi.errors import PersistenceError
from airi.memory.ledger import MemoryLedger
from airi.memory.models import Sender
from airi.memory.store import DiskStore
from airi.protocol import GENERATION_FAILURE, AiResponseMessage, ErrorMessage
from airi.server.exchange import ConversationExchange
from airi.server.responder import VOICE_ACKNOWLEDGEMENT, CannedResponder, round_robin_chooser


def _exchange(store: DiskStore, responder=None) -> ConversationExchange:
    responder = responder or CannedResponder(chooser=round_robin_chooser())
    return ConversationExchange(store, MemoryLedger(store), responder)


async def test_text_exchange_replies_and_records_memory(store: DiskStore):
    conv = store.create_conversation("u1")
    result = await _exchange(store).handle_text("Hello", user_id="u1", conversation_id=conv.id)

    assert result.ok
    assert isinstance(result.message, AiResponseMessage)
    assert "Hello" in result.message.data.content
    meta = result.message.data.metadata
    assert (meta.provider, meta.model) == ("openai", "gpt-4")
    assert meta.memory_stats is not None
    assert (meta.memory_stats.short_term, meta.memory_stats.long_term, meta.memory_stats.total) == (2, 0, 2)

    records = store.list_exchanges(conv.id)
    assert [r.sender for r in records] == [Sender.USER, Sender.AIRI]
    assert records[0].content == "Hello"
    assert records[1].metadata == {"provider": "openai", "model": "gpt-4"}

    contents = {m.content: m.importance_score for m in store.list_memory_items("u1")}
    assert contents["User: Hello"] == 0.6
    assert contents[f"AIRI: {result.reply}"] == 0.7


async def test_each_exchange_adds_two_short_term_items(store: DiskStore):
    conv = store.create_conversation("u1")
    exchange = _exchange(store)
    await exchange.handle_text("one", user_id="u1", conversation_id=conv.id)
    result = await exchange.handle_text("two", user_id="u1", conversation_id=conv.id)
    assert result.message.data.metadata.memory_stats.short_term == 4


async def test_missing_conversation_does_not_abort_exchange(store: DiskStore):
    result = await _exchange(store).handle_text("Hello", user_id="u1", conversation_id="ephemeral-x")

    assert isinstance(result.message, AiResponseMessage)
    failed = [s.name for s in result.steps if not s.ok]
    assert failed == ["save_user_exchange", "save_reply_exchange"]
    # Memory bookkeeping still happened
    assert result.message.data.metadata.memory_stats.short_term == 2


class BrokenMemoryStore(DiskStore):
    def save_memory_item(self, *args, **kwargs):
        raise PersistenceError("disk full")

    def memory_stats(self, user_id):
        raise PersistenceError("disk full")


async def test_memory_failures_still_produce_reply(tmp_data_dir):
    store = BrokenMemoryStore(str(tmp_data_dir))
    conv = store.create_conversation("u1")
    result = await _exchange(store).handle_text("Hello", user_id="u1", conversation_id=conv.id)

    assert not result.ok
    assert isinstance(result.message, AiResponseMessage)
    assert result.message.data.metadata.memory_stats is None
    assert len(store.list_exchanges(conv.id)) == 2


class ExplodingResponder(CannedResponder):
    def generate(self, text: str) -> str:
        raise RuntimeError("model offline")


async def test_generation_failure_yields_error_message(store: DiskStore):
    conv = store.create_conversation("u1")
    result = await _exchange(store, ExplodingResponder()).handle_text(
        "Hello", user_id="u1", conversation_id=conv.id
    )
    assert isinstance(result.message, ErrorMessage)
    assert result.message.data.message == GENERATION_FAILURE
    # The user's side of the exchange was kept
    assert [r.content for r in store.list_exchanges(conv.id)] == ["Hello"]


async def test_voice_is_acknowledged_without_memory(store: DiskStore):
    msg = await _exchange(store).handle_voice({"audio": "..."})
    assert msg.data.content == VOICE_ACKNOWLEDGEMENT
    assert msg.data.metadata.provider == "voice"
    assert msg.data.metadata.transcription is True
    assert store.memory_stats("default") == (0, 0)
