"""
Shared test fixtures and helpers for the Tessera test suite.
"""

import asyncio
from typing import Any, Callable, List, Optional
from urllib.parse import quote, unquote

import httpx
import pytest

from tessera import MemoryStore, SessionMiddleware
from tessera.signing import sign_cookie, unsign_cookie

SECRET = "keyboard cat"
COOKIE_NAME = "tessera.sid"


# ============================================================================
# Raw ASGI Helpers
# ============================================================================


def make_scope(
    method: str = "GET",
    path: str = "/",
    headers: Optional[List[tuple]] = None,
    scheme: str = "http",
    **extra: Any,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if headers:
        for name, value in headers:
            raw_headers.append(
                (name.encode("latin-1") if isinstance(name, str) else name,
                 value.encode("latin-1") if isinstance(value, str) else value)
            )
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "headers": raw_headers,
        "scheme": scheme,
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "root_path": "",
    }
    scope.update(extra)
    return scope


def make_receive(body: bytes = b""):
    """Create an ASGI receive callable from body bytes."""
    messages = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return receive


class RecordingSend:
    """ASGI send callable that records every message."""

    def __init__(self, events: Optional[list] = None):
        self.messages: List[dict] = []
        self.events = events if events is not None else []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)
        if message["type"] == "http.response.body":
            self.events.append(("body", message.get("body", b""), message.get("more_body", False)))
        else:
            self.events.append(("start", message.get("status")))

    @property
    def status(self) -> Optional[int]:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return message["status"]
        return None

    @property
    def headers(self) -> list:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return message["headers"]
        return []

    @property
    def body(self) -> bytes:
        return b"".join(
            m.get("body", b"") for m in self.messages if m["type"] == "http.response.body"
        )

    def header_values(self, name: str) -> List[str]:
        target = name.lower().encode("latin-1")
        return [v.decode("latin-1") for k, v in self.headers if k.lower() == target]


def text_app(handler: Optional[Callable] = None, *, status: int = 200):
    """
    ASGI app that awaits ``handler(scope)`` and responds with its return
    value (str or bytes) as a plain-text body with Content-Length.
    """

    async def app(scope, receive, send):
        result = None
        if handler is not None:
            result = handler(scope)
            if asyncio.iscoroutine(result):
                result = await result
        if result is None:
            result = ""
        body = result.encode("utf-8") if isinstance(result, str) else result
        await send({
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", b"text/plain; charset=utf-8"),
                (b"content-length", str(len(body)).encode("latin-1")),
            ],
        })
        await send({"type": "http.response.body", "body": body})

    return app


def create_middleware(app=None, **options) -> SessionMiddleware:
    """Session middleware with explicit, warning-free defaults."""
    options.setdefault("secret", SECRET)
    options.setdefault("resave", True)
    options.setdefault("save_uninitialized", True)
    return SessionMiddleware(app or text_app(), **options)


# ============================================================================
# HTTP Helpers
# ============================================================================


async def request(
    app,
    path: str = "/",
    *,
    cookie: Optional[str] = None,
    headers: Optional[dict] = None,
    scheme: str = "http",
) -> httpx.Response:
    """Issue one GET through a fresh client (no shared cookie jar)."""
    request_headers = dict(headers or {})
    if cookie:
        request_headers["cookie"] = cookie
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=f"{scheme}://test") as client:
        return await client.get(path, headers=request_headers)


def set_cookies(response: httpx.Response, name: str = COOKIE_NAME) -> List[str]:
    """All Set-Cookie values for cookie ``name``."""
    return [
        value for value in response.headers.get_list("set-cookie")
        if value.startswith(f"{name}=")
    ]


def set_cookie(response: httpx.Response, name: str = COOKIE_NAME) -> Optional[str]:
    values = set_cookies(response, name)
    return values[0] if values else None


def cookie(response: httpx.Response, name: str = COOKIE_NAME) -> str:
    """The ``name=value`` pair to send back as a Cookie header."""
    header = set_cookie(response, name)
    assert header is not None, f"no {name} cookie set"
    return header.split(";", 1)[0]


def cookie_attributes(header: str) -> dict:
    """Parse Set-Cookie attributes into a dict (flags map to True)."""
    attributes = {}
    for part in header.split(";")[1:]:
        part = part.strip()
        if "=" in part:
            key, value = part.split("=", 1)
            attributes[key.lower()] = value
        else:
            attributes[part.lower()] = True
    return attributes


def session_id(response: httpx.Response, name: str = COOKIE_NAME, secret: str = SECRET) -> Optional[str]:
    """Session id carried by the response's Set-Cookie, verified."""
    pair = cookie(response, name)
    raw = unquote(pair.split("=", 1)[1])
    return unsign_cookie(raw, [secret])


@pytest.fixture
def store():
    return MemoryStore()


# ============================================================================
# Store & Scope Helpers
# ============================================================================


class SpyStore(MemoryStore):
    """MemoryStore that records every call."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls: List[tuple] = []

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def get(self, session_id):
        self.calls.append(("get", session_id))
        return await super().get(session_id)

    async def set(self, session_id, session):
        self.calls.append(("set", session_id))
        await super().set(session_id, session)

    async def touch(self, session_id, session):
        self.calls.append(("touch", session_id))
        await super().touch(session_id, session)

    async def destroy(self, session_id):
        self.calls.append(("destroy", session_id))
        await super().destroy(session_id)


def with_scope(app, **values):
    """Outer ASGI app that seeds ``scope`` before calling ``app``."""

    async def outer(scope, receive, send):
        scope.update(values)
        await app(scope, receive, send)

    return outer


def signed_cookie(sid: str, secret: str = SECRET, name: str = COOKIE_NAME) -> str:
    """Cookie header pair carrying a correctly signed session id."""
    return f"{name}={quote(sign_cookie(sid, secret), safe='')}"


@pytest.fixture
def spy_store():
    return SpyStore()
