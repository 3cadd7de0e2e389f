"""
Tessera - Session-aware response wrapper.

SessionResponse wraps the ASGI ``send`` callable for one request and
exposes the two interception points the session middleware needs:

- on_headers: runs just before ``http.response.start`` is forwarded,
  and may append headers (Set-Cookie).
- on_finish: runs when the final body message arrives, and may return
  an awaitable that must complete before the response is allowed to
  finish.

While a finish awaitable is pending, the response is held open: the
final body is forwarded with ``more_body=True`` (minus its last byte
when a Content-Length is declared) and the remainder is only forwarded
once the awaitable completes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("tessera.response")

Send = Callable[[dict], Awaitable[None]]
HeaderHook = Callable[["SessionResponse"], None]
FinishHook = Callable[["SessionResponse"], Optional[Awaitable[None]]]


class SessionResponse:
    """
    ASGI ``send`` wrapper constructed once per request.

    The downstream app uses the instance itself as its ``send``. Code that
    owns the response directly can use ``start``/``write``/``finish``.

    Attributes:
        status: Status code once started
        headers: Response headers (list of (name, value) byte pairs)
        headers_sent: Whether ``http.response.start`` has been forwarded
        finished: Whether ``finish`` has been called
    """

    def __init__(self, send: Send):
        self._send = send
        self._header_hooks: list[HeaderHook] = []
        self._finish_hooks: list[FinishHook] = []
        self._pending: Optional[asyncio.Future] = None
        self.status: Optional[int] = None
        self.headers: list[tuple[bytes, bytes]] = []
        self.headers_sent = False
        self.finished = False

    # ========================================================================
    # Interception points
    # ========================================================================

    def on_headers(self, hook: HeaderHook) -> None:
        """Register a hook run before headers are finalized."""
        self._header_hooks.append(hook)

    def on_finish(self, hook: FinishHook) -> None:
        """Register a completion gate."""
        self._finish_hooks.append(hook)

    # ========================================================================
    # Headers
    # ========================================================================

    def append_header(self, name: str, value: str) -> None:
        """Append a header (only before headers are sent)."""
        if self.headers_sent:
            raise RuntimeError("Cannot append headers after response started")
        self.headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    def get_header(self, name: str) -> Optional[str]:
        target = name.lower().encode("latin-1")
        for key, value in self.headers:
            if key.lower() == target:
                return value.decode("latin-1")
        return None

    def get_headers(self, name: str) -> list[str]:
        target = name.lower().encode("latin-1")
        return [value.decode("latin-1") for key, value in self.headers if key.lower() == target]

    # ========================================================================
    # ASGI send
    # ========================================================================

    async def __call__(self, message: dict[str, Any]) -> None:
        kind = message["type"]

        if kind == "http.response.start":
            extra = {
                key: value
                for key, value in message.items()
                if key not in ("type", "status", "headers")
            }
            await self.start(message["status"], message.get("headers", []), **extra)
        elif kind == "http.response.body":
            body = message.get("body", b"")
            if message.get("more_body", False):
                await self.write(body)
            else:
                await self.finish(body)
        else:
            await self._send(message)

    async def start(self, status: int, headers: Optional[list] = None, **extra: Any) -> None:
        """Run header hooks, then forward ``http.response.start``."""
        if self.headers_sent:
            raise RuntimeError("Response already started")

        self.status = status
        self.headers = [(bytes(key), bytes(value)) for key, value in headers or []]

        for hook in self._header_hooks:
            hook(self)

        self.headers_sent = True
        await self._send({
            "type": "http.response.start",
            "status": status,
            "headers": self.headers,
            **extra,
        })

    async def write(self, chunk: bytes) -> None:
        """Forward a non-final body chunk."""
        if not self.headers_sent:
            await self.start(200)
        await self._send_body(chunk, more_body=True)

    async def finish(self, chunk: bytes = b"") -> bool:
        """
        Complete the response.

        The first call wins; later calls forward nothing and return False.
        Finish hooks are expected to handle their own errors.
        """
        if self.finished:
            return False
        self.finished = True

        if not self.headers_sent:
            await self.start(200)

        operation = self._run_finish_hooks()
        if operation is None:
            await self._send_body(chunk, more_body=False)
            return True

        # The operation runs to completion even if this request is cancelled
        self._pending = asyncio.ensure_future(operation)

        tail = b""
        if chunk:
            head = chunk
            if self._content_length() > 0:
                logger.debug("split response")
                head, tail = chunk[:-1], chunk[-1:]
            if head:
                await self._send_body(head, more_body=True)

        await asyncio.shield(self._pending)
        await self._send_body(tail, more_body=False)
        return True

    # ========================================================================
    # Internals
    # ========================================================================

    def _run_finish_hooks(self) -> Optional[Awaitable[None]]:
        operations = []
        for hook in self._finish_hooks:
            operation = hook(self)
            if operation is not None:
                operations.append(operation)

        if not operations:
            return None

        async def run_all() -> None:
            for operation in operations:
                await operation

        return run_all()

    def _content_length(self) -> int:
        value = self.get_header("content-length")
        if value is None:
            return 0
        try:
            return int(value)
        except ValueError:
            return 0

    async def _send_body(self, body: bytes, *, more_body: bool) -> None:
        await self._send({
            "type": "http.response.body",
            "body": body,
            "more_body": more_body,
        })
