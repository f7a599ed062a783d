"""Records persisted by the store and the snapshot reported by the ledger."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Sender(str, Enum):
    USER = "user"
    AIRI = "airi"
    SYSTEM = "system"


class MemoryType(str, Enum):
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


# -----------------------------
# Records
# -----------------------------
@dataclass
class User:
    username: str
    email: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_iso)
    updated_at: str = field(default_factory=utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "User":
        return cls(**d)


@dataclass
class Conversation:
    user_id: str
    title: str = "New Conversation"
    metadata: Dict[str, Any] = field(default_factory=lambda: {"created_by": "airi-system"})
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_iso)
    updated_at: str = field(default_factory=utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Conversation":
        return cls(**d)


@dataclass(frozen=True)
class ExchangeRecord:
    """One persisted utterance. Never mutated after creation."""

    conversation_id: str
    sender: Sender
    content: str
    message_type: str = "text"
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["sender"] = self.sender.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExchangeRecord":
        return cls(**{**d, "sender": Sender(d["sender"])})


@dataclass
class MemoryItem:
    """
    A stored fact about a user.

    Fields:
        memory_type: short_term on creation; long_term after promotion (one-way).
        importance_score: in [0, 1].
        accessed_at: refreshed on promotion.
        access_count: starts at 1.
    """
    user_id: str
    content: str
    conversation_id: Optional[str] = None
    memory_type: MemoryType = MemoryType.SHORT_TERM
    importance_score: float = 0.5
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_iso)
    accessed_at: str = field(default_factory=utc_iso)
    access_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["memory_type"] = self.memory_type.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MemoryItem":
        return cls(**{**d, "memory_type": MemoryType(d["memory_type"])})


@dataclass
class CharacterState:
    user_id: str
    character_name: str = "AIRI"
    personality: Dict[str, Any] = field(default_factory=dict)
    current_mood: str = "neutral"
    voice_settings: Dict[str, Any] = field(default_factory=dict)
    appearance_settings: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_iso)
    updated_at: str = field(default_factory=utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CharacterState":
        return cls(**d)


# -----------------------------
# Ledger view
# -----------------------------
@dataclass(frozen=True)
class MemorySnapshot:
    user_id: str
    short_term_count: int = 0
    long_term_count: int = 0

    @property
    def total(self) -> int:
        return self.short_term_count + self.long_term_count

    def to_stats(self) -> Dict[str, int]:
        """Wire form used in ``ai_response`` metadata and the HTTP API."""
        return {
            "shortTerm": self.short_term_count,
            "longTerm": self.long_term_count,
            "total": self.total,
        }
