"""Per-user short-term / long-term memory accounting on top of a store."""
from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Optional

from .models import MemorySnapshot, MemoryType
from .store import PROMOTION_FLOOR, PersistenceStore

logger = logging.getLogger(__name__)

DEFAULT_SHORT_TERM_CEILING = 50


class MemoryLedger:
    """
    Records short-term memory items, promotes them to long-term, and reports
    per-user counts.

    Updates for the same user are serialized: each record/promote holds that
    user's lock until its write and the following count have both completed,
    so concurrent exchanges for one user never observe a stale count. The
    store is synchronous, so its calls run in a worker thread.

    The short-term ceiling caps the *reported* count only; nothing is evicted.
    """

    def __init__(
        self,
        store: PersistenceStore,
        *,
        short_term_ceiling: int = DEFAULT_SHORT_TERM_CEILING,
        promotion_floor: float = PROMOTION_FLOOR,
    ) -> None:
        if short_term_ceiling < 0:
            raise ValueError("short_term_ceiling must be >= 0")
        self.store = store
        self.short_term_ceiling = short_term_ceiling
        self.promotion_floor = promotion_floor
        # A user's lock lives only while some update holds or awaits it.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    # ----------------- operations -----------------
    async def record_short_term(
        self,
        user_id: str,
        content: str,
        importance: float,
        conversation_id: Optional[str] = None,
    ) -> MemorySnapshot:
        if not 0.0 <= importance <= 1.0:
            raise ValueError(f"importance must be within [0, 1], got {importance}")
        async with self._lock_for(user_id):
            await asyncio.to_thread(
                self.store.save_memory_item,
                user_id,
                conversation_id,
                content,
                MemoryType.SHORT_TERM,
                importance,
            )
            return await self._snapshot(user_id)

    async def promote(self, memory_id: str) -> MemorySnapshot:
        """Move an item to long_term. Raises NotFound for unknown ids."""
        item = await asyncio.to_thread(self.store.get_memory_item, memory_id)
        async with self._lock_for(item.user_id):
            await asyncio.to_thread(self.store.promote_memory_item, memory_id, self.promotion_floor)
            return await self._snapshot(item.user_id)

    async def stats(self, user_id: str) -> MemorySnapshot:
        async with self._lock_for(user_id):
            return await self._snapshot(user_id)

    # ----------------- internals -----------------
    async def _snapshot(self, user_id: str) -> MemorySnapshot:
        short, long = await asyncio.to_thread(self.store.memory_stats, user_id)
        if short > self.short_term_ceiling:
            logger.debug(
                "User %s holds %d short-term items; reporting ceiling %d",
                user_id, short, self.short_term_ceiling,
            )
        return MemorySnapshot(
            user_id=user_id,
            short_term_count=min(short, self.short_term_ceiling),
            long_term_count=long,
        )
