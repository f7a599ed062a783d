"""AIRI companion: duplex chat protocol, reconnecting client and session memory.

Subpackages
-----------
airi.server   FastAPI application, connection hub and conversation exchange
airi.client   SessionChannel and ReconnectSupervisor (aiohttp transport)
airi.memory   Disk store and MemoryLedger
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
