"""Launch the AIRI backend server (HTTP + /ws WebSocket)."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

# Ensure src/ is on sys.path (so imports work when run directly)
SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from airi.server import create_app  # noqa: E402
from airi.server.config import load_config  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the AIRI backend server.")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML config file (default: $AIRI_CONFIG or config/default.yaml)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("HOST"),
        help="Host to bind the server to (default: server.host, 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ["PORT"]) if os.environ.get("PORT") else None,
        help="Port to bind the server to (default: $PORT or server.port, 6121)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    server_cfg = load_config(args.config).get("server", {})
    host = args.host or server_cfg.get("host", "0.0.0.0")
    port = args.port or int(server_cfg.get("port", 6121))

    app = create_app(config_path=args.config)
    # uvicorn handles SIGTERM/SIGINT; the app's lifespan then closes open sessions.
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
