"""
Tessera - Server-side sessions for ASGI applications.

This package attaches a session to each HTTP request:
- Signed session id cookie with secret rotation
- Pluggable stores (in-memory reference store included)
- Hash-based dirty checking (unmodified sessions are not rewritten)
- Persistence completes before the response is allowed to finish

Example:
    >>> from tessera import SessionMiddleware
    >>> app = SessionMiddleware(app, secret="keyboard cat",
    ...                         resave=False, save_uninitialized=False)
"""

from .cookie import Cookie, serialize_cookie

from .faults import (
    Fault,
    FaultDomain,
    Severity,
    SessionFault,
    SessionConfigFault,
    SessionNotFoundFault,
    SessionStoreUnavailableFault,
    SessionStoreCorruptedFault,
    SessionCookieFault,
)

from .session import Session

from .store import (
    ConnectivityState,
    SessionStore,
    MemoryStore,
)

from .signing import CookieSigner, sign_cookie, unsign_cookie

from .response import SessionResponse

from .middleware import SessionMiddleware, generate_session_id

from .config import SessionConfig, load_config

from .transport import is_secure, parse_cookie_header

__all__ = [
    # Cookie
    "Cookie",
    "serialize_cookie",
    "parse_cookie_header",
    # Session
    "Session",
    # Storage
    "ConnectivityState",
    "SessionStore",
    "MemoryStore",
    # Signing
    "CookieSigner",
    "sign_cookie",
    "unsign_cookie",
    # Middleware
    "SessionMiddleware",
    "SessionResponse",
    "generate_session_id",
    "is_secure",
    # Config
    "SessionConfig",
    "load_config",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "SessionFault",
    "SessionConfigFault",
    "SessionNotFoundFault",
    "SessionStoreUnavailableFault",
    "SessionStoreCorruptedFault",
    "SessionCookieFault",
]

__version__ = "0.1.0"
