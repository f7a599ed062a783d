"""Session memory: persisted records plus short-term / long-term accounting."""

from __future__ import annotations

from .ledger import MemoryLedger
from .models import MemorySnapshot, MemoryType, Sender
from .store import DiskStore, PersistenceStore

__all__ = ["DiskStore", "MemoryLedger", "MemorySnapshot", "MemoryType", "PersistenceStore", "Sender"]
