"""
Tessera - Session storage abstraction.

Defines the SessionStore base and the in-memory reference store:
- ConnectivityState: Reachable/unreachable flag shared with the middleware
- SessionStore: Abstract store (get/set/destroy, optional touch)
- MemoryStore: In-memory storage (dev/testing)
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from .cookie import Cookie, parse_expires, utcnow
from .faults import SessionConfigFault, SessionStoreCorruptedFault, fingerprint
from .session import RESERVED_KEY, Session

logger = logging.getLogger("tessera.sessions.store")


# ============================================================================
# ConnectivityState
# ============================================================================

class ConnectivityState:
    """
    Store reachability flag.

    While unreachable, the middleware attaches no session to requests.
    In-flight requests are not retried when the store comes back.
    """

    def __init__(self, reachable: bool = True):
        self._reachable = reachable

    def mark_reachable(self) -> None:
        if not self._reachable:
            logger.info("Session store reachable")
        self._reachable = True

    def mark_unreachable(self) -> None:
        if self._reachable:
            logger.warning("Session store unreachable; sessions disabled")
        self._reachable = False

    def is_reachable(self) -> bool:
        return self._reachable


# ============================================================================
# SessionStore - Abstract Base
# ============================================================================

class SessionStore(ABC):
    """
    Abstract session storage interface.

    Stores are responsible ONLY for persistence. The decision of when to
    save, touch or destroy belongs to the middleware.

    Implementations provide ``get``, ``set`` and ``destroy``. A store may
    also define ``touch(session_id, session)`` to refresh expiration
    without rewriting content; stores without it are never touched.

    ``get`` returns the raw persisted record (a dict with an embedded
    ``"cookie"`` entry) or None. A "not found" condition may also be
    raised as ``SessionNotFoundFault``.
    """

    name = "store"

    def __init__(self, connectivity: Optional[ConnectivityState] = None):
        self.connectivity = connectivity or ConnectivityState()
        self._generator: Optional[Callable[[dict], None]] = None

    @abstractmethod
    async def get(self, session_id: str) -> Optional[dict[str, Any]]:
        """Fetch a raw session record, or None."""

    @abstractmethod
    async def set(self, session_id: str, session: Any) -> None:
        """Persist a session (Session or raw record), replacing any previous."""

    @abstractmethod
    async def destroy(self, session_id: str) -> None:
        """Remove a session. Removing an absent id is not an error."""

    async def all(self) -> dict[str, dict[str, Any]]:
        raise NotImplementedError(f"{type(self).__name__} does not support all()")

    async def length(self) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not support length()")

    async def clear(self) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not support clear()")

    # ========================================================================
    # Connectivity
    # ========================================================================

    def connect(self) -> None:
        """Announce that the backing storage is reachable."""
        self.connectivity.mark_reachable()

    def disconnect(self) -> None:
        """Announce that the backing storage is unreachable."""
        self.connectivity.mark_unreachable()

    # ========================================================================
    # Lifecycle hooks
    # ========================================================================

    def bind_generator(self, generator: Callable[[dict], None]) -> None:
        """Install the middleware's session generator."""
        self._generator = generator

    def generate(self, scope: dict[str, Any]) -> None:
        """
        Attach a fresh identifier and empty session to ``scope``.

        Raises:
            SessionConfigFault: No middleware has bound a generator
        """
        if self._generator is None:
            raise SessionConfigFault(
                "store is not bound to a session middleware",
                option="store",
            )
        self._generator(scope)

    async def regenerate(self, scope: dict[str, Any]) -> None:
        """
        Destroy the current session and generate a new one.

        A fresh session is generated even when destroy fails; the destroy
        error is raised afterwards.
        """
        error: Optional[BaseException] = None
        try:
            await self.destroy(scope["session_id"])
        except Exception as exc:
            error = exc

        self.generate(scope)

        if error is not None:
            raise error

    async def load(self, session_id: str) -> Optional[Session]:
        """Fetch and inflate a session that is not attached to any request."""
        raw = await self.get(session_id)
        if raw is None:
            return None

        scope = {"session_id": session_id, "session_store": self}
        return self.create_session(scope, raw)

    def create_session(self, scope: dict[str, Any], raw: dict[str, Any]) -> Session:
        """
        Inflate a raw record into a Session and attach it to ``scope``.

        Raises:
            SessionStoreCorruptedFault: Cookie metadata is missing or invalid
        """
        cookie_data = raw.get(RESERVED_KEY)
        if not isinstance(cookie_data, dict):
            raise SessionStoreCorruptedFault(
                message="Session record has no cookie metadata",
                metadata={"session_id_hash": fingerprint(scope.get("session_id"))},
            )

        try:
            cookie = Cookie.from_dict(cookie_data)
        except (TypeError, ValueError) as e:
            raise SessionStoreCorruptedFault(
                message=f"Session cookie metadata corrupted: {e}",
            ) from e

        session = Session(scope, raw, cookie)
        scope["session"] = session
        return session


def _record(session: Any) -> dict[str, Any]:
    if isinstance(session, Session):
        return session.to_dict()
    return dict(session)


# ============================================================================
# MemoryStore - In-Memory Storage
# ============================================================================

class MemoryStore(SessionStore):
    """
    In-memory session storage for development and testing.

    Records are kept as JSON snapshots, so a stored session never aliases
    live request state. Expired records are purged lazily on access.

    NOT suitable for production (no persistence across restarts, no
    sharing between processes).

    Example:
        >>> store = MemoryStore()
        >>> await store.set("abc", {"cookie": {"expires": None}, "n": 1})
        >>> await store.get("abc")
        {'cookie': {'expires': None}, 'n': 1}
    """

    name = "memory"

    def __init__(self, connectivity: Optional[ConnectivityState] = None):
        super().__init__(connectivity)
        self._sessions: dict[str, str] = {}

    async def get(self, session_id: str) -> Optional[dict[str, Any]]:
        """Load session from memory, dropping it if expired."""
        await asyncio.sleep(0)
        return self._get_session(session_id)

    async def set(self, session_id: str, session: Any) -> None:
        """Save session to memory."""
        await asyncio.sleep(0)
        self._sessions[session_id] = json.dumps(_record(session))

    async def touch(self, session_id: str, session: Any) -> None:
        """Replace only the stored cookie metadata."""
        await asyncio.sleep(0)
        current = self._get_session(session_id)
        if current is not None:
            current[RESERVED_KEY] = _record(session)[RESERVED_KEY]
            self._sessions[session_id] = json.dumps(current)

    async def destroy(self, session_id: str) -> None:
        """Delete session from memory."""
        await asyncio.sleep(0)
        self._sessions.pop(session_id, None)

    async def all(self) -> dict[str, dict[str, Any]]:
        """All unexpired sessions, keyed by id."""
        await asyncio.sleep(0)
        sessions = {}
        for session_id in list(self._sessions):
            session = self._get_session(session_id)
            if session is not None:
                sessions[session_id] = session
        return sessions

    async def length(self) -> int:
        """Number of unexpired sessions."""
        return len(await self.all())

    async def clear(self) -> None:
        """Drop every session."""
        await asyncio.sleep(0)
        self._sessions = {}

    def _get_session(self, session_id: str) -> Optional[dict[str, Any]]:
        raw = self._sessions.get(session_id)
        if raw is None:
            return None

        session = json.loads(raw)
        cookie = session.get(RESERVED_KEY)
        if isinstance(cookie, dict):
            expires = parse_expires(cookie.get("expires"))
            if expires is not None and expires <= utcnow():
                logger.debug(f"Expired session dropped: {fingerprint(session_id)}")
                del self._sessions[session_id]
                return None

        return session
