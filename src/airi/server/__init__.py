"""AIRI backend server.

Provides a FastAPI application factory named ``create_app`` (see
:func:`airi.server.server.create_app`) serving the ``/ws`` session endpoint.

Typical usage
-------------
from airi.server import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --port 6121
"""

from __future__ import annotations

from .server import create_app

__all__ = ["create_app"]
