"""Interactive console client for the AIRI backend.

Keeps one session open through ReconnectSupervisor: type a line to send it as
``input:text``; ``/quit`` (or EOF) tears the session down.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from airi.client import AiohttpConnector, ConnectionState, ReconnectSupervisor, SessionChannel  # noqa: E402
from airi.errors import SendError  # noqa: E402
from airi.protocol import AiResponseMessage, ConnectedMessage, ErrorMessage, text_input  # noqa: E402
from airi.server.config import load_config  # noqa: E402


def show(message) -> None:
    if isinstance(message, ConnectedMessage):
        print(f"* {message.data.message}")
    elif isinstance(message, AiResponseMessage):
        stats = message.data.metadata.memory_stats
        suffix = ""
        if stats is not None:
            suffix = f"  [memory: {stats.short_term} short / {stats.long_term} long]"
        print(f"AIRI: {message.data.content}{suffix}")
    elif isinstance(message, ErrorMessage):
        print(f"! {message.data.message}")


def show_state(state: ConnectionState, attempts: int, delay) -> None:
    if state is ConnectionState.RECONNECTING:
        print(f"* connection lost; reconnecting in {delay:.0f}s (attempt {attempts})")
    elif state is ConnectionState.OPEN:
        print("* connected")


async def run(endpoint: str, client_cfg: dict) -> None:
    connector = AiohttpConnector(connect_timeout=float(client_cfg.get("connect_timeout", 10.0)))
    supervisor = ReconnectSupervisor(
        endpoint,
        channel_factory=lambda: SessionChannel(connector),
        base_delay=float(client_cfg.get("base_delay", 1.0)),
        max_delay=float(client_cfg.get("max_delay", 30.0)),
        keepalive_interval=float(client_cfg.get("keepalive_interval", 30.0)),
    )
    supervisor.on_message(show)
    supervisor.on_state_change(show_state)
    await supervisor.start()

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line == "/quit":
                break
            try:
                await supervisor.send(text_input(line))
            except SendError as e:
                print(f"! not sent: {e}")
    finally:
        await supervisor.teardown()


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the AIRI backend from the console.")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config file")
    parser.add_argument("--endpoint", type=str, default=None, help="WebSocket URL (default from config)")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    client_cfg = load_config(args.config).get("client", {})
    endpoint = args.endpoint or client_cfg.get("endpoint", "ws://localhost:6121/ws")
    try:
        asyncio.run(run(endpoint, client_cfg))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
