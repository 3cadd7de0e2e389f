"""
Session Middleware - Attaches server-side sessions to ASGI requests.

This middleware orchestrates the complete session lifecycle:
1. Resolve the session id from the signed cookie
2. Fetch and inflate the session, or generate a fresh one
3. Publish it as scope["session"] for the downstream app
4. Emit Set-Cookie before headers are sent
5. Save, touch or destroy the session before the response completes
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from secrets import token_urlsafe
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from .cookie import Cookie
from .faults import (
    Fault,
    SessionConfigFault,
    SessionNotFoundFault,
    SessionStoreCorruptedFault,
    SessionStoreUnavailableFault,
    Severity,
    fingerprint,
)
from .response import SessionResponse
from .session import Session, session_hash
from .signing import SIGNED_PREFIX, normalize_secrets, sign_cookie, unsign_cookie
from .store import ConnectivityState, MemoryStore, SessionStore
from .transport import get_cookie_header, is_secure, parse_cookie_header, request_path

DEFAULT_NAME = "tessera.sid"

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}

ErrorListener = Callable[[BaseException, dict], None]


def generate_session_id(scope: dict[str, Any]) -> str:
    """Default identifier generator (URL-safe, 192 bits)."""
    return token_urlsafe(24)


def is_not_found(exc: BaseException) -> bool:
    """Whether a store error means "no such session"."""
    if isinstance(exc, (SessionNotFoundFault, FileNotFoundError)):
        return True
    return getattr(exc, "code", None) == "ENOENT"


class SessionMiddleware:
    """
    ASGI middleware that attaches a server-side session to each request.

    The session is published as ``scope["session"]`` (a mutable mapping),
    its id as ``scope["session_id"]`` and the store as
    ``scope["session_store"]``. Assigning ``scope["session"] = None``
    unsets it; with ``unset="destroy"`` the stored record is deleted too.

    Architecture:
        Request → SessionMiddleware → [resolve] → App → [cookie] → [persist] → Response

    Example:
        >>> app = SessionMiddleware(
        ...     app,
        ...     secret=["new-secret", "old-secret"],
        ...     resave=False,
        ...     save_uninitialized=False,
        ...     cookie={"max_age": 60_000, "same_site": "lax"},
        ... )
    """

    def __init__(
        self,
        app: Callable,
        *,
        name: Optional[str] = None,
        key: Optional[str] = None,
        genid: Optional[Callable[[dict], str]] = None,
        store: Optional[SessionStore] = None,
        resave: Optional[bool] = None,
        rolling: bool = False,
        save_uninitialized: Optional[bool] = None,
        secret: Union[str, bytes, Sequence[Union[str, bytes]], None] = None,
        unset: Optional[str] = None,
        proxy: Optional[bool] = None,
        cookie: Optional[dict[str, Any]] = None,
        connectivity: Optional[ConnectivityState] = None,
        on_error: Union[ErrorListener, Sequence[ErrorListener], None] = None,
    ):
        """
        Initialize session middleware.

        Args:
            app: Downstream ASGI app
            name: Cookie name (``key`` is an alias; ``name`` wins)
            genid: Identifier generator, called with the scope
            store: Session store (defaults to MemoryStore)
            resave: Save even when the session was not modified
            rolling: Re-emit the cookie on every response
            save_uninitialized: Save new sessions that were never modified
            secret: Signing secret or ordered list (first one signs)
            unset: "keep" (default) or "destroy"
            proxy: Trust X-Forwarded-Proto (True), never (False), or
                defer to scope["secure"] (None)
            cookie: Cookie metadata options (path, max_age, secure, ...)
            connectivity: Reachability flag (defaults to the store's)
            on_error: Listener(s) called as ``listener(exc, scope)``

        Raises:
            SessionConfigFault: For invalid options
        """
        self.app = app
        self.logger = logging.getLogger("tessera.middleware.session")

        self.name = name or key or DEFAULT_NAME

        if genid is None:
            genid = generate_session_id
        if not callable(genid):
            raise SessionConfigFault("genid option must be a function", option="genid")
        self.genid = genid

        if resave is None:
            warnings.warn(
                "undefined resave option; provide resave option",
                DeprecationWarning,
                stacklevel=2,
            )
            resave = True
        self.resave = resave

        if save_uninitialized is None:
            warnings.warn(
                "undefined save_uninitialized option; provide save_uninitialized option",
                DeprecationWarning,
                stacklevel=2,
            )
            save_uninitialized = True
        self.save_uninitialized = save_uninitialized
        self.rolling = bool(rolling)

        if unset not in (None, "keep", "destroy"):
            raise SessionConfigFault('unset option must be "destroy" or "keep"', option="unset")
        self.unset_destroy = unset == "destroy"

        if isinstance(secret, (list, tuple)) and not secret:
            raise SessionConfigFault(
                "secret option array must contain one or more strings",
                option="secret",
            )
        self.secrets = normalize_secrets(secret) if secret else None
        if self.secrets is None:
            warnings.warn(
                "scope secret; provide secret option",
                DeprecationWarning,
                stacklevel=2,
            )
        elif not all(isinstance(s, (str, bytes)) and s for s in self.secrets):
            raise SessionConfigFault("secret option must be a non-empty string", option="secret")

        self.proxy = proxy
        self.cookie_options = dict(cookie or {})
        try:
            self._new_cookie()
        except TypeError as e:
            raise SessionConfigFault(f"Invalid cookie option: {e}", option="cookie") from e
        self.cookie_path = self.cookie_options.get("path") or "/"

        self.store = store if store is not None else MemoryStore()
        self.connectivity = connectivity or self.store.connectivity
        self.store.bind_generator(self._generate)

        self._error_listeners: list[ErrorListener] = []
        if callable(on_error):
            self._error_listeners.append(on_error)
        elif on_error:
            self._error_listeners.extend(on_error)

        if os.environ.get("TESSERA_ENV") == "production" and isinstance(self.store, MemoryStore):
            self.logger.warning(
                "MemoryStore is not designed for a production environment: "
                "it will leak memory and will not scale past a single process."
            )

    @classmethod
    def from_config(cls, app: Callable, config: Any, **overrides: Any) -> SessionMiddleware:
        """Build from a SessionConfig; keyword overrides win."""
        options = config.middleware_options()
        options.update(overrides)
        return cls(app, **options)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    # ========================================================================
    # ASGI entry point
    # ========================================================================

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # session already attached by an outer middleware
        if scope.get("session") is not None:
            await self.app(scope, receive, send)
            return

        if not self.connectivity.is_reachable():
            self.logger.debug("store is disconnected")
            await self.app(scope, receive, send)
            return

        if not request_path(scope).startswith(self.cookie_path):
            self.logger.debug("pathname does not match")
            await self.app(scope, receive, send)
            return

        secrets = self.secrets or normalize_secrets(scope.get("secret"))
        if not secrets:
            fault = SessionConfigFault("secret option required for sessions", option="secret")
            await self._fail(scope, send, fault)
            return

        scope["session_store"] = self.store
        cookie_id = self._read_session_id(scope, secrets)
        scope["session_id"] = cookie_id

        lifecycle = SessionLifecycle(self, scope, secrets, cookie_id)
        response = SessionResponse(send)
        response.on_headers(lifecycle.on_headers)
        response.on_finish(lifecycle.on_finish)

        if cookie_id is None:
            self.logger.debug("no SID sent, generating session")
            try:
                lifecycle.generate()
            except Fault as fault:
                await self._fail(scope, send, fault)
                return
            await self.app(scope, receive, response)
            return

        self.logger.debug(f"fetching {fingerprint(cookie_id)}")
        raw = None
        try:
            raw = await self.store.get(cookie_id)
        except Exception as e:
            if not is_not_found(e):
                fault = SessionStoreUnavailableFault(self.store.name, str(e))
                fault.__cause__ = e
                await self._fail(scope, send, fault)
                return

        try:
            if raw is None:
                self.logger.debug("no session found")
                lifecycle.generate()
            else:
                self.logger.debug("session found")
                lifecycle.inflate(raw)
        except Fault as fault:
            await self._fail(scope, send, fault)
            return
        except Exception as e:
            fault = SessionStoreCorruptedFault(message=f"Session data corrupted: {e}")
            fault.__cause__ = e
            await self._fail(scope, send, fault)
            return

        await self.app(scope, receive, response)

    # ========================================================================
    # Session creation
    # ========================================================================

    def _new_cookie(self) -> Cookie:
        return Cookie(**self.cookie_options)

    def _generate(self, scope: dict) -> None:
        """Store-bound generator: fresh id and empty session on ``scope``."""
        scope["session_id"] = self.genid(scope)
        session = Session(scope, cookie=self._new_cookie())

        if self.cookie_options.get("secure") == "auto":
            session.cookie.secure = is_secure(scope, self.proxy)

        scope["session"] = session

    def _read_session_id(self, scope: dict, secrets: list) -> Optional[str]:
        """
        Read a verified session id from the request.

        The Cookie header is authoritative. Pre-parsed ``signed_cookies``
        (already verified) and ``cookies`` maps are read as fallbacks.
        """
        value = None

        header = get_cookie_header(scope)
        if header:
            raw = parse_cookie_header(header).get(self.name)
            if raw:
                if raw.startswith(SIGNED_PREFIX):
                    value = unsign_cookie(raw, secrets)
                    if value is None:
                        self.logger.debug("cookie signature invalid")
                else:
                    self.logger.debug("cookie unsigned")

        signed_cookies = scope.get("signed_cookies")
        if not value and signed_cookies:
            raw = signed_cookies.get(self.name)
            if raw:
                warnings.warn(
                    "cookie should be available in the Cookie header",
                    DeprecationWarning,
                    stacklevel=3,  # caller of the middleware
                )
            value = raw

        cookies = scope.get("cookies")
        if not value and cookies:
            raw = cookies.get(self.name)
            if raw:
                if raw.startswith(SIGNED_PREFIX):
                    value = unsign_cookie(raw, secrets)
                    if value is None:
                        self.logger.debug("cookie signature invalid")
                    else:
                        warnings.warn(
                            "cookie should be available in the Cookie header",
                            DeprecationWarning,
                            stacklevel=3,  # caller of the middleware
                        )
                else:
                    self.logger.debug("cookie unsigned")

        return value or None

    # ========================================================================
    # Error channel
    # ========================================================================

    def _report(self, exc: BaseException, scope: dict) -> None:
        """Log ``exc`` and deliver it to every error listener."""
        if isinstance(exc, Fault):
            self.logger.log(
                _LOG_LEVELS[exc.severity],
                f"[{exc.domain.value}] {exc.code}: {exc.message}",
                exc_info=exc,
                extra={"fault": exc.to_dict()},
            )
        else:
            self.logger.error(f"Session error: {exc}", exc_info=exc)
        for listener in self._error_listeners:
            try:
                listener(exc, scope)
            except Exception:
                self.logger.exception("Session error listener failed")

    async def _fail(self, scope: dict, send: Callable, fault: Fault) -> None:
        """Report a fatal fault and render it as a 500 response."""
        self._report(fault, scope)
        message = fault.message if fault.public else "Internal server error"
        body = json.dumps({"error": fault.code, "message": message}).encode("utf-8")
        await send({
            "type": "http.response.start",
            "status": 500,
            "headers": [
                (b"content-type", b"application/json; charset=utf-8"),
                (b"content-length", str(len(body)).encode("latin-1")),
            ],
        })
        await send({"type": "http.response.body", "body": body, "more_body": False})


class SessionLifecycle:
    """
    Per-request session state machine.

    Tracks the id the client presented, the id and content hash captured
    when the session was loaded, the hash at the most recent save, and
    whether the cookie expiration was already refreshed.
    """

    def __init__(
        self,
        middleware: SessionMiddleware,
        scope: dict,
        secrets: list,
        cookie_id: Optional[str],
    ):
        self.middleware = middleware
        self.scope = scope
        self.secrets = secrets
        self.cookie_id = cookie_id
        self.original_id: Any = None
        self.original_hash: Optional[str] = None
        self.saved_hash: Optional[str] = None
        self.touched = False

    @property
    def logger(self) -> logging.Logger:
        return self.middleware.logger

    @property
    def store(self) -> SessionStore:
        return self.middleware.store

    @property
    def session(self) -> Optional[Session]:
        return self.scope.get("session")

    @property
    def session_id(self) -> Any:
        return self.scope.get("session_id")

    # ========================================================================
    # Resolution
    # ========================================================================

    def generate(self) -> None:
        self.store.generate(self.scope)
        self.original_id = self.session_id
        self.original_hash = session_hash(self.session)
        self.wrap(self.session)

    def inflate(self, raw: dict) -> None:
        session = self.store.create_session(self.scope, raw)
        self.original_id = self.session_id
        self.original_hash = session_hash(session)

        if not self.middleware.resave:
            self.saved_hash = self.original_hash

        self.wrap(session)

    def wrap(self, session: Session) -> None:
        """Route ``session.save``/``reload`` through this lifecycle."""
        session._lifecycle = self

    def mark_saved(self, session: Session) -> None:
        self.saved_hash = session_hash(session)

    # ========================================================================
    # Dirty checking
    # ========================================================================

    def is_modified(self, session: Session) -> bool:
        return self.original_id != session.id or self.original_hash != session_hash(session)

    def is_saved(self, session: Session) -> bool:
        return self.original_id == session.id and self.saved_hash == session_hash(session)

    def _bogus_id(self) -> bool:
        if not isinstance(self.session_id, str):
            self.logger.debug(f"session ignored because of bogus session id {self.session_id!r}")
            return True
        return False

    def should_destroy(self) -> bool:
        # an explicit None unsets; a removed key means session.destroy() already ran
        unset = "session" in self.scope and self.scope["session"] is None
        return bool(self.session_id) and self.middleware.unset_destroy and unset

    def should_save(self) -> bool:
        if self._bogus_id():
            return False

        if (
            not self.middleware.save_uninitialized
            and not self.saved_hash
            and self.cookie_id != self.session_id
        ):
            return self.is_modified(self.session)
        return not self.is_saved(self.session)

    def should_touch(self) -> bool:
        if self._bogus_id():
            return False
        return self.cookie_id == self.session_id and not self.should_save()

    def should_set_cookie(self) -> bool:
        if self._bogus_id():
            return False

        if self.cookie_id != self.session_id:
            return self.middleware.save_uninitialized or self.is_modified(self.session)
        return self.middleware.rolling or (
            self.session.cookie.expires is not None and self.is_modified(self.session)
        )

    def _touch_once(self) -> None:
        if not self.touched:
            self.touched = True
            self.session.touch()

    # ========================================================================
    # Response hooks
    # ========================================================================

    def on_headers(self, response: SessionResponse) -> None:
        """Append Set-Cookie when the session cookie must be (re)sent."""
        try:
            if self.session is None:
                self.logger.debug("no session")
                return

            if not self.should_set_cookie():
                return

            if self.session.cookie.secure and not is_secure(self.scope, self.middleware.proxy):
                self.logger.debug("not secured")
                return

            self._touch_once()

            signed = sign_cookie(self.session_id, self.secrets[0])
            response.append_header(
                "set-cookie",
                self.session.cookie.serialize(self.middleware.name, signed),
            )
            self.logger.debug(f"set-cookie {fingerprint(self.session_id)}")
        except Exception as e:
            self.middleware._report(e, self.scope)

    def on_finish(self, response: SessionResponse) -> Optional[Awaitable[None]]:
        """
        Decide the store operation that must complete before the response.

        Returns None when the response can finish immediately.
        """
        try:
            return self._finish_operation()
        except Exception as e:
            self.middleware._report(e, self.scope)
            return None

    def _finish_operation(self) -> Optional[Awaitable[None]]:
        if self.should_destroy():
            self.logger.debug(f"destroying {fingerprint(self.session_id)}")
            return self._guard(self.store.destroy(self.session_id))

        if self.session is None:
            self.logger.debug("no session")
            return None

        self._touch_once()

        if self.should_save():
            self.logger.debug(f"saving {fingerprint(self.session_id)}")
            return self._guard(self.session.save())

        store_touch = getattr(self.store, "touch", None)
        if callable(store_touch) and self.should_touch():
            self.logger.debug(f"touching {fingerprint(self.session_id)}")
            return self._guard(store_touch(self.session_id, self.session))

        return None

    async def _guard(self, operation: Awaitable[None]) -> None:
        try:
            await operation
        except Exception as e:
            self.middleware._report(e, self.scope)
