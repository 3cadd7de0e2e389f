"""
Tessera - Session record.

A Session is the per-client state bag attached to a request as
``scope["session"]``. Content is accessed as a mutable mapping; the
embedded cookie metadata lives on ``session.cookie`` and the reserved
``"cookie"`` key is never part of the content.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import MutableMapping
from typing import Any, Iterator, Optional

from .cookie import Cookie
from .faults import SessionNotFoundFault


RESERVED_KEY = "cookie"


def session_hash(session: "Session") -> str:
    """
    Content fingerprint used for dirty checking.

    Stable JSON serialization of every field except the cookie metadata,
    digested with SHA-1.
    """
    payload = json.dumps(session.data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


class Session(MutableMapping):
    """
    Session record bound to a request scope.

    Attributes:
        id: Identifier the session was created under (fixed for its lifetime)
        cookie: Cookie metadata
        data: Application content (JSON-serializable values)

    Example:
        >>> session["views"] = session.get("views", 0) + 1
        >>> await session.save()
    """

    def __init__(
        self,
        scope: dict[str, Any],
        data: Optional[dict[str, Any]] = None,
        cookie: Optional[Cookie] = None,
    ):
        self._scope = scope
        self._lifecycle = None
        self.id: str = scope["session_id"]
        self.cookie = cookie if cookie is not None else Cookie()
        self.data: dict[str, Any] = {}

        if data:
            for key, value in data.items():
                if key != RESERVED_KEY:
                    self.data[key] = value

    @property
    def store(self):
        return self._scope["session_store"]

    # ========================================================================
    # Mapping protocol
    # ========================================================================

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if key == RESERVED_KEY:
            raise ValueError("'cookie' is reserved for session cookie metadata")
        self.data[key] = value

    def __delitem__(self, key: str) -> None:
        del self.data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"Session(keys={sorted(self.data)!r}, cookie={self.cookie!r})"

    # ========================================================================
    # Expiration
    # ========================================================================

    def touch(self) -> Session:
        """Refresh the cookie expiration."""
        return self.reset_max_age()

    def reset_max_age(self) -> Session:
        """Reset ``cookie.max_age`` to ``cookie.original_max_age``."""
        self.cookie.max_age = self.cookie.original_max_age
        return self

    # ========================================================================
    # Store operations
    # ========================================================================

    async def save(self) -> None:
        """Persist the session under its identifier."""
        if self._lifecycle is not None:
            self._lifecycle.mark_saved(self)
        await self.store.set(self.id, self)

    async def reload(self) -> Session:
        """
        Re-read the session from the store.

        The reloaded record replaces ``scope["session"]``; the new object
        is returned.

        Raises:
            SessionNotFoundFault: The record no longer exists
        """
        try:
            raw = await self.store.get(self.id)
            if raw is None:
                raise SessionNotFoundFault("failed to load session", session_id=self.id)
            return self.store.create_session(self._scope, raw)
        finally:
            self._rebind()

    async def destroy(self) -> None:
        """Detach the session from the request and delete it from the store."""
        self._scope.pop("session", None)
        await self.store.destroy(self.id)

    async def regenerate(self) -> Session:
        """
        Replace the session with a fresh one under a new identifier.

        Returns the new session (also published as ``scope["session"]``).
        """
        try:
            await self.store.regenerate(self._scope)
        finally:
            self._rebind()
        return self._scope["session"]

    def _rebind(self) -> None:
        current = self._scope.get("session")
        if self._lifecycle is not None and isinstance(current, Session):
            self._lifecycle.wrap(current)

    def to_dict(self) -> dict[str, Any]:
        """Persisted form: content plus embedded cookie metadata."""
        return {**self.data, RESERVED_KEY: self.cookie.to_dict()}
