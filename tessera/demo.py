"""
Demo application - a page-view counter backed by a session.

Routes:
    GET /            increment and return the view count
    GET /regenerate  move the session to a new id
    GET /logout      destroy the session
"""

from __future__ import annotations

import json
import logging
from secrets import token_urlsafe
from typing import Any, Optional

from .config import SessionConfig, load_config
from .middleware import SessionMiddleware

logger = logging.getLogger("tessera.demo")


async def _send_json(send, payload: dict[str, Any], status: int = 200) -> None:
    body = json.dumps(payload).encode("utf-8")
    await send({
        "type": "http.response.start",
        "status": status,
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode("latin-1")),
        ],
    })
    await send({"type": "http.response.body", "body": body})


async def counter_app(scope, receive, send) -> None:
    if scope["type"] != "http":
        return

    session = scope.get("session")
    if session is None:
        await _send_json(send, {"error": "NO_SESSION", "message": "Sessions unavailable"}, 503)
        return

    path = scope["path"]
    if path == "/logout":
        await session.destroy()
        await _send_json(send, {"views": 0})
        return

    if path == "/regenerate":
        views = session.get("views", 0)
        session = await session.regenerate()
        session["views"] = views

    session["views"] = session.get("views", 0) + 1
    await _send_json(send, {"views": session["views"]})


def create_demo_app(config: Optional[SessionConfig] = None, **overrides: Any) -> SessionMiddleware:
    """Wrap ``counter_app`` in the session middleware."""
    config = config or load_config()
    if not config.secret:
        logger.warning("No secret configured; using a random one (cookies will not survive restarts)")
        overrides.setdefault("secret", token_urlsafe(32))
    return SessionMiddleware.from_config(counter_app, config, **overrides)
