"""FastAPI application: the ``/ws`` session endpoint plus health, config and memory routes."""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from ..errors import NotFound, PersistenceError
from ..memory.ledger import MemoryLedger
from ..memory.models import MemoryType, utc_iso
from ..memory.store import DiskStore
from ..protocol import Features
from .config import load_config
from .exchange import ConversationExchange
from .hub import ConnectionHub
from .responder import CannedResponder, create_from_config

logger = logging.getLogger(__name__)


# -----------------------------
# Pydantic request/response
# -----------------------------
class TtsRequest(BaseModel):
    text: str = Field(..., min_length=1)
    voice: str = Field(default="alloy")
    speed: float = Field(default=1.0, ge=0.25, le=4.0)


class TtsResponse(BaseModel):
    success: bool
    message: str


# -----------------------------
# Utilities
# -----------------------------
def _provider_keys() -> Dict[str, bool]:
    return {
        "openai": bool(os.environ.get("OPENAI_API_KEY")),
        "gemini": bool(os.environ.get("GEMINI_API_KEY")),
    }


def _make_store(cfg: Dict[str, Any]) -> DiskStore:
    return DiskStore(cfg.get("storage", {}).get("data_dir") or "data")


def _make_ledger(cfg: Dict[str, Any], store: DiskStore) -> MemoryLedger:
    mem_cfg = cfg.get("memory", {})
    return MemoryLedger(
        store,
        short_term_ceiling=int(mem_cfg.get("short_term_ceiling", 50)),
        promotion_floor=float(mem_cfg.get("promotion_floor", 0.8)),
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    store: Optional[DiskStore] = None,
    responder: Optional[CannedResponder] = None,
) -> FastAPI:
    cfg = load_config(config_path)
    server_cfg = cfg.get("server", {})

    # Services
    store = store or _make_store(cfg)
    ledger = _make_ledger(cfg, store)
    responder = responder or create_from_config(cfg)
    exchange = ConversationExchange(store, ledger, responder)
    keys = _provider_keys()
    hub = ConnectionHub(exchange, store, Features(voice=True, memory=True, **keys))

    for name, available in keys.items():
        logger.info("%s API key: %s", name, "configured" if available else "missing")

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        logger.info("Shutting down; closing %d connection(s)", hub.connection_count)
        await hub.close_all()

    app = FastAPI(title="AIRI Backend Server", version="0.1.0", lifespan=lifespan)
    app.state.hub = hub
    app.state.ledger = ledger
    app.state.store = store
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_cfg.get("cors_origins") or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.websocket(server_cfg.get("ws_path", "/ws"))
    async def session(websocket: WebSocket) -> None:
        user_id = websocket.query_params.get("user_id") or "default"
        await hub.serve(websocket, user_id=user_id)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        keys = _provider_keys()
        return {
            "status": "healthy",
            "timestamp": utc_iso(),
            "features": {"websocket": True, "voice": True, "memory": True, **keys},
            "connections": hub.connection_count,
            "storage": store.health_check()["status"],
        }

    @app.get("/api/config")
    def get_config() -> Dict[str, Any]:
        keys = _provider_keys()
        return {
            "providers": {
                "openai": {"available": keys["openai"], "baseUrl": "https://api.openai.com/v1/"},
                "gemini": {
                    "available": keys["gemini"],
                    "baseUrl": "https://generativelanguage.googleapis.com/v1beta/",
                },
            }
        }

    @app.post("/api/tts", response_model=TtsResponse)
    def tts(req: TtsRequest) -> TtsResponse:
        logger.info("TTS request (%d chars) with voice %s", len(req.text), req.voice)
        return TtsResponse(success=True, message="TTS endpoint ready; no speech provider configured")

    # ---------------- Memory inspection ----------------
    @app.get("/api/memory/{user_id}/stats")
    async def memory_stats(user_id: str) -> Dict[str, int]:
        try:
            snapshot = await ledger.stats(user_id)
        except PersistenceError as e:
            logger.exception("memory stats failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to get memory stats.")
        return snapshot.to_stats()

    @app.get("/api/memory/{user_id}")
    def list_memories(
        user_id: str,
        memory_type: Optional[MemoryType] = Query(None, alias="type"),
        limit: int = Query(50, ge=1, le=500),
    ) -> Dict[str, List[Dict[str, Any]]]:
        try:
            items = store.list_memory_items(user_id, memory_type=memory_type, limit=limit)
        except PersistenceError as e:
            logger.exception("list memories failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to get memories.")
        return {"memories": [m.to_dict() for m in items]}

    @app.post("/api/memory/items/{memory_id}/promote")
    async def promote_memory(memory_id: str) -> Dict[str, Any]:
        try:
            snapshot = await ledger.promote(memory_id)
        except NotFound:
            raise HTTPException(status_code=404, detail="Memory item not found.")
        except PersistenceError as e:
            logger.exception("promote failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to promote memory.")
        return {"memory": store.get_memory_item(memory_id).to_dict(), "stats": snapshot.to_stats()}

    @app.get("/api/conversations/{conversation_id}/messages")
    def conversation_messages(
        conversation_id: str,
        limit: int = Query(100, ge=1, le=1000),
    ) -> Dict[str, List[Dict[str, Any]]]:
        try:
            store.get_conversation(conversation_id)
            records = store.list_exchanges(conversation_id, limit=limit)
        except NotFound:
            raise HTTPException(status_code=404, detail="Conversation not found.")
        except PersistenceError as e:
            logger.exception("list messages failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to get messages.")
        return {"messages": [r.to_dict() for r in records]}

    return app
