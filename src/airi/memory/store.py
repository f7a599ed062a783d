"""Disk-based persistence for users, conversations, exchanges and memory items.

Thread-safe (one re-entrant lock for all tables) and crash-safe (atomic JSON
rewrites, append-only JSONL for exchange records).
"""
from __future__ import annotations

import itertools
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..errors import NotFound, PersistenceError
from ..utils.io import append_record, atomic_write_json, ensure_dir, iter_records, read_json
from .models import (
    CharacterState,
    Conversation,
    ExchangeRecord,
    MemoryItem,
    MemoryType,
    Sender,
    User,
    utc_iso,
)

logger = logging.getLogger(__name__)

PROMOTION_FLOOR = 0.8


class PersistenceStore(Protocol):
    """Operations the conversation core needs from a store."""

    def save_exchange(
        self,
        conversation_id: str,
        sender: Sender,
        content: str,
        kind: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExchangeRecord: ...

    def save_memory_item(
        self,
        user_id: str,
        conversation_id: Optional[str],
        content: str,
        memory_type: MemoryType = MemoryType.SHORT_TERM,
        importance: float = 0.5,
    ) -> MemoryItem: ...

    def get_memory_item(self, memory_id: str) -> MemoryItem: ...

    def promote_memory_item(self, memory_id: str, floor: float = PROMOTION_FLOOR) -> MemoryItem: ...

    def memory_stats(self, user_id: str) -> Tuple[int, int]: ...


# -----------------------------
# DiskStore
# -----------------------------
class DiskStore:
    """JSON-file store implementing :class:`PersistenceStore`.

    Layout:
        data_dir/
          users.json              # {id: user}
          conversations.json      # {id: conversation}
          memories.json           # {id: memory item}
          character_states.json   # {user_id: character state}
          exchanges.jsonl         # append-only exchange records

    Tables are loaded lazily and cached; every mutation rewrites the table
    atomically before returning.
    """

    _TABLES = ("users", "conversations", "memories", "character_states")

    def __init__(self, data_dir: str) -> None:
        try:
            self.root = ensure_dir(data_dir)
        except OSError as e:
            raise PersistenceError(str(e)) from e
        self.exchanges_path = self.root / "exchanges.jsonl"
        self._lock = threading.RLock()
        self._cache: Dict[str, Dict[str, Dict[str, Any]]] = {}

    # --------- tables ----------
    def _table_path(self, name: str) -> Path:
        return self.root / f"{name}.json"

    def _table(self, name: str) -> Dict[str, Dict[str, Any]]:
        if name not in self._cache:
            path = self._table_path(name)
            try:
                data = read_json(path, default={})
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Failed to read {path}: {e}") from e
            if not isinstance(data, dict):
                raise PersistenceError(f"Invalid table format in {path}, expected dict.")
            self._cache[name] = data
        return self._cache[name]

    def _flush(self, name: str) -> None:
        try:
            atomic_write_json(self._table_path(name), self._cache[name])
        except OSError as e:
            # Drop the cache so the next read reflects what is really on disk.
            self._cache.pop(name, None)
            raise PersistenceError(str(e)) from e

    def _put(self, name: str, key: str, record: Dict[str, Any]) -> None:
        self._table(name)[key] = record
        self._flush(name)

    # --------- users ----------
    def create_user(
        self,
        username: str,
        email: Optional[str] = None,
        preferences: Optional[Dict[str, Any]] = None,
        *,
        user_id: Optional[str] = None,
    ) -> User:
        with self._lock:
            users = self._table("users")
            if any(u["username"] == username for u in users.values()):
                raise PersistenceError(f"username already taken: {username!r}")
            user = User(username=username, email=email, preferences=preferences or {})
            if user_id:
                user.id = user_id
            self._put("users", user.id, user.to_dict())
            logger.info("User created: %s", user.username)
            return user

    def get_user(self, user_id: str) -> User:
        with self._lock:
            raw = self._table("users").get(user_id)
        if raw is None:
            raise NotFound(f"user not found: {user_id}")
        return User.from_dict(raw)

    def ensure_user(self, user_id: str) -> User:
        """Return the user with this id, creating it (username = id) if missing."""
        with self._lock:
            try:
                return self.get_user(user_id)
            except NotFound:
                return self.create_user(user_id, user_id=user_id)

    # --------- conversations ----------
    def create_conversation(self, user_id: str, title: str = "New Conversation") -> Conversation:
        with self._lock:
            conv = Conversation(user_id=user_id, title=title)
            self._put("conversations", conv.id, conv.to_dict())
            logger.info("Conversation created: %s", conv.id)
            return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        with self._lock:
            raw = self._table("conversations").get(conversation_id)
        if raw is None:
            raise NotFound(f"conversation not found: {conversation_id}")
        return Conversation.from_dict(raw)

    def list_conversations(self, user_id: str, limit: int = 50) -> List[Conversation]:
        """Newest (by ``updated_at``) first."""
        with self._lock:
            rows = [c for c in self._table("conversations").values() if c["user_id"] == user_id]
        rows.sort(key=lambda c: c["updated_at"], reverse=True)
        return [Conversation.from_dict(c) for c in rows[: max(0, limit)]]

    # --------- exchanges ----------
    def save_exchange(
        self,
        conversation_id: str,
        sender: Sender,
        content: str,
        kind: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExchangeRecord:
        with self._lock:
            conversations = self._table("conversations")
            if conversation_id not in conversations:
                raise NotFound(f"conversation not found: {conversation_id}")
            record = ExchangeRecord(
                conversation_id=conversation_id,
                sender=Sender(sender),
                content=content,
                message_type=kind,
                metadata=dict(metadata or {}),
            )
            try:
                append_record(self.exchanges_path, record.to_dict())
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Failed to save message: {e}") from e

            # The record is already durable; touching the conversation is best effort.
            conversations[conversation_id]["updated_at"] = record.created_at
            try:
                self._flush("conversations")
            except PersistenceError as e:
                logger.warning("Saved message %s but could not touch conversation %s: %s", record.id, conversation_id, e)
            return record

    def list_exchanges(self, conversation_id: str, limit: int = 100) -> List[ExchangeRecord]:
        """Oldest first, at most ``limit`` records. The log is streamed, not loaded whole."""
        with self._lock:
            matching = (r for r in iter_records(self.exchanges_path) if r.get("conversation_id") == conversation_id)
            try:
                rows = list(itertools.islice(matching, max(0, limit)))
            except OSError as e:
                raise PersistenceError(f"Failed to get messages: {e}") from e
        return [ExchangeRecord.from_dict(r) for r in rows]

    # --------- memory items ----------
    def save_memory_item(
        self,
        user_id: str,
        conversation_id: Optional[str],
        content: str,
        memory_type: MemoryType = MemoryType.SHORT_TERM,
        importance: float = 0.5,
    ) -> MemoryItem:
        with self._lock:
            item = MemoryItem(
                user_id=user_id,
                conversation_id=conversation_id,
                content=content,
                memory_type=MemoryType(memory_type),
                importance_score=float(importance),
            )
            self._put("memories", item.id, item.to_dict())
            logger.debug("%s memory saved: %s...", item.memory_type.value, content[:50])
            return item

    def get_memory_item(self, memory_id: str) -> MemoryItem:
        with self._lock:
            raw = self._table("memories").get(memory_id)
        if raw is None:
            raise NotFound(f"memory item not found: {memory_id}")
        return MemoryItem.from_dict(raw)

    def list_memory_items(
        self,
        user_id: str,
        memory_type: Optional[MemoryType] = None,
        limit: int = 50,
    ) -> List[MemoryItem]:
        """Most recently accessed first."""
        with self._lock:
            rows = [m for m in self._table("memories").values() if m["user_id"] == user_id]
        if memory_type is not None:
            rows = [m for m in rows if m["memory_type"] == MemoryType(memory_type).value]
        rows.sort(key=lambda m: m["accessed_at"], reverse=True)
        return [MemoryItem.from_dict(m) for m in rows[: max(0, limit)]]

    def promote_memory_item(self, memory_id: str, floor: float = PROMOTION_FLOOR) -> MemoryItem:
        """short_term -> long_term. Already long_term items are returned unchanged."""
        with self._lock:
            item = self.get_memory_item(memory_id)
            if item.memory_type is MemoryType.LONG_TERM:
                return item
            item.memory_type = MemoryType.LONG_TERM
            item.importance_score = max(item.importance_score, floor)
            item.accessed_at = utc_iso()
            self._put("memories", item.id, item.to_dict())
            logger.info("Memory promoted to long-term: %s", memory_id)
            return item

    def memory_stats(self, user_id: str) -> Tuple[int, int]:
        """Return ``(short_term, long_term)`` item counts for a user."""
        short = long = 0
        with self._lock:
            for m in self._table("memories").values():
                if m["user_id"] != user_id:
                    continue
                if m["memory_type"] == MemoryType.LONG_TERM.value:
                    long += 1
                else:
                    short += 1
        return short, long

    # --------- character state ----------
    def save_character_state(self, user_id: str, **fields: Any) -> CharacterState:
        """Upsert the character state for a user; unknown field names are a TypeError."""
        with self._lock:
            raw = self._table("character_states").get(user_id)
            state = CharacterState.from_dict(raw) if raw else CharacterState(user_id=user_id)
            for key, value in fields.items():
                if key in ("id", "user_id", "created_at", "updated_at") or not hasattr(state, key):
                    raise TypeError(f"unknown character state field: {key}")
                setattr(state, key, value)
            state.updated_at = utc_iso()
            self._put("character_states", user_id, state.to_dict())
            logger.info("Character state saved for user: %s", user_id)
            return state

    def get_character_state(self, user_id: str) -> Optional[CharacterState]:
        with self._lock:
            raw = self._table("character_states").get(user_id)
        return CharacterState.from_dict(raw) if raw else None

    # --------- health ----------
    def health_check(self) -> Dict[str, Any]:
        try:
            with self._lock:
                for name in self._TABLES:
                    self._table(name)
            return {"success": True, "status": "connected", "timestamp": utc_iso()}
        except PersistenceError as e:
            logger.error("Store health check failed: %s", e)
            return {"success": False, "status": "disconnected", "error": str(e), "timestamp": utc_iso()}
