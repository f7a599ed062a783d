from __future__ import annotations

import asyncio
import gc

import pytest

from airi.errors import NotFound
from airi.memory.ledger import MemoryLedger
from airi.memory.models import MemoryType
from airi.memory.store import DiskStore


async def test_record_short_term_counts(store: DiskStore):
    ledger = MemoryLedger(store)
    snap = await ledger.record_short_term("u1", "User: Hello", 0.6)
    assert (snap.short_term_count, snap.long_term_count, snap.total) == (1, 0, 1)

    snap = await ledger.record_short_term("u1", "AIRI: Hi", 0.7)
    assert snap.to_stats() == {"shortTerm": 2, "longTerm": 0, "total": 2}


async def test_stats_for_unknown_user_is_empty(store: DiskStore):
    snap = await MemoryLedger(store).stats("ghost")
    assert snap.total == 0


@pytest.mark.parametrize("importance", [-0.1, 1.5])
async def test_importance_outside_unit_interval_rejected(store: DiskStore, importance: float):
    ledger = MemoryLedger(store)
    with pytest.raises(ValueError):
        await ledger.record_short_term("u1", "x", importance)
    assert store.memory_stats("u1") == (0, 0)


async def test_short_term_ceiling_caps_reported_count(store: DiskStore):
    ledger = MemoryLedger(store, short_term_ceiling=3)
    for i in range(5):
        snap = await ledger.record_short_term("u1", f"item {i}", 0.5)
    assert snap.short_term_count == 3
    assert snap.total == 3
    # Nothing was evicted
    assert store.memory_stats("u1") == (5, 0)


async def test_promote_moves_item_and_applies_floor(store: DiskStore):
    ledger = MemoryLedger(store)
    await ledger.record_short_term("u1", "keep me", 0.4)
    item = store.list_memory_items("u1")[0]

    snap = await ledger.promote(item.id)
    assert (snap.short_term_count, snap.long_term_count) == (0, 1)
    promoted = store.get_memory_item(item.id)
    assert promoted.memory_type is MemoryType.LONG_TERM
    assert promoted.importance_score >= 0.8


async def test_promote_twice_equals_once(store: DiskStore):
    ledger = MemoryLedger(store)
    await ledger.record_short_term("u1", "fact", 0.5)
    item = store.list_memory_items("u1")[0]

    once = await ledger.promote(item.id)
    after_once = store.get_memory_item(item.id).to_dict()
    twice = await ledger.promote(item.id)
    assert once == twice
    assert store.get_memory_item(item.id).to_dict() == after_once


async def test_promote_unknown_item(store: DiskStore):
    with pytest.raises(NotFound):
        await MemoryLedger(store).promote("does-not-exist")


async def test_concurrent_records_for_one_user_are_all_counted(store: DiskStore):
    ledger = MemoryLedger(store)
    snaps = await asyncio.gather(
        *(ledger.record_short_term("u1", f"m{i}", 0.5) for i in range(10))
    )
    # Each update sees its own write: the counts are exactly 1..10
    assert sorted(s.short_term_count for s in snaps) == list(range(1, 11))
    assert (await ledger.stats("u1")).short_term_count == 10


async def test_users_are_isolated(store: DiskStore):
    ledger = MemoryLedger(store)
    await ledger.record_short_term("a", "x", 0.5)
    await ledger.record_short_term("b", "y", 0.5)
    await ledger.record_short_term("b", "z", 0.5)
    assert (await ledger.stats("a")).short_term_count == 1
    assert (await ledger.stats("b")).short_term_count == 2


def test_negative_ceiling_rejected(store: DiskStore):
    with pytest.raises(ValueError):
        MemoryLedger(store, short_term_ceiling=-1)


async def test_idle_user_locks_are_released(store: DiskStore):
    ledger = MemoryLedger(store)
    for i in range(20):
        await ledger.record_short_term(f"user-{i}", "hello", 0.5)
    gc.collect()
    assert len(ledger._locks) == 0
    # Serialization still holds for a user seen again
    snaps = await asyncio.gather(*(ledger.record_short_term("user-0", "again", 0.5) for _ in range(3)))
    assert sorted(s.short_term_count for s in snaps) == [2, 3, 4]
