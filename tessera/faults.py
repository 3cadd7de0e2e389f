"""
Tessera - Fault definitions.

Session errors are structured faults, not bare exceptions:
- Fault: Base fault class (code, message, domain, severity)
- FaultDomain: Functional area of a fault
- Severity: Severity levels
- Session*Fault: Session-specific faults raised by the coordinator and stores
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines logging level and whether the request can continue.
    """
    INFO = "info"       # Informational, no action needed
    WARN = "warn"       # Warning, should be reviewed
    ERROR = "error"     # Error, immediate attention
    FATAL = "fatal"     # Fatal, unrecoverable, abort


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the functional area where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.IO = FaultDomain("io", "I/O operations")
FaultDomain.SESSION = FaultDomain("session", "Session lifecycle errors")


DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.IO: {"severity": Severity.WARN, "retryable": True},
    FaultDomain.SESSION: {"severity": Severity.ERROR, "retryable": False},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    Attributes:
        code: Stable machine-readable identifier (e.g., "SESSION_NOT_FOUND")
        message: Human-readable summary
        severity: Fault severity (INFO, WARN, ERROR, FATAL)
        domain: Fault domain (CONFIG, IO, SESSION)
        retryable: Whether this fault can be retried
        public: Whether safe to expose to client
        metadata: Additional context data

    Example:
        ```python
        raise Fault(
            code="STORE_OFFLINE",
            message="Redis is not reachable",
            domain=FaultDomain.IO,
        )
        ```
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        # Fallback to class attributes if not provided
        self.code = code if code is not None else getattr(self, "code", None)
        self.message = message if message is not None else getattr(self, "message", None)
        self.domain = domain if domain is not None else getattr(self, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "retryable": False})
        self.severity = severity or getattr(self, "severity", None) or defaults["severity"]
        if retryable is None:
            retryable = getattr(self, "retryable", defaults["retryable"])
        self.retryable = retryable
        if public is None:
            public = getattr(self, "public", False)
        self.public = public

        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"Fault(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value}, public={self.public})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "public": self.public,
            "metadata": self.metadata,
        }


def fingerprint(session_id: Any) -> str:
    """Hash session ID for logging (privacy)."""
    return f"sha256:{hashlib.sha256(str(session_id).encode()).hexdigest()[:16]}"


# ============================================================================
# Session Fault Base
# ============================================================================

class SessionFault(Fault):
    """
    Base class for session-related faults.
    """

    domain = FaultDomain.SESSION


# ============================================================================
# Configuration Faults
# ============================================================================

class SessionConfigFault(SessionFault):
    """
    Session middleware is misconfigured.

    Raised eagerly at construction for bad options, or at request time
    when no secret is available at all. Never retried.
    """

    code = "SESSION_CONFIG_ERROR"
    message = "Invalid session configuration"
    domain = FaultDomain.CONFIG
    severity = Severity.FATAL
    retryable = False

    def __init__(self, message: str | None = None, *, option: str | None = None, **kwargs):
        super().__init__(message=message, **kwargs)
        self.option = option
        if option:
            self.metadata["option"] = option


# ============================================================================
# Storage Faults
# ============================================================================

class SessionNotFoundFault(SessionFault):
    """
    Session ID not found in store.

    Carries the ``ENOENT`` code; the coordinator treats it as "no record"
    and generates a fresh session instead of failing the request.
    """

    code = "ENOENT"
    message = "Session not found"
    severity = Severity.WARN
    public = True
    retryable = False

    def __init__(self, message: str | None = None, *, session_id: str | None = None, **kwargs):
        super().__init__(message=message, **kwargs)
        self.session_id_hash = fingerprint(session_id) if session_id else None


class SessionStoreUnavailableFault(SessionFault):
    """
    Session store failed while fetching a session.

    The failing store exception is chained as ``__cause__``.
    """

    code = "SESSION_STORE_UNAVAILABLE"
    message = "Session storage unavailable"
    domain = FaultDomain.IO
    severity = Severity.ERROR
    public = False
    retryable = True

    def __init__(self, store_name: str, cause: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.store_name = store_name
        self.cause = cause
        if cause:
            self.message = f"Session store '{store_name}' unavailable: {cause}"
        else:
            self.message = f"Session store '{store_name}' unavailable"
        self.args = (self.message,)


class SessionStoreCorruptedFault(SessionFault):
    """
    Session data in store is corrupted.

    Data cannot be deserialized or is structurally invalid (for example
    the embedded cookie metadata is missing).
    """

    code = "SESSION_STORE_CORRUPTED"
    message = "Session data corrupted"
    severity = Severity.ERROR
    public = False
    retryable = False


# ============================================================================
# Transport Faults
# ============================================================================

class SessionCookieFault(SessionFault):
    """
    Session cookie could not be rendered.

    Examples:
    - Invalid expiration date
    - Cookie name with separator characters
    - Unknown SameSite or Priority value
    """

    code = "SESSION_COOKIE_INVALID"
    message = "Session cookie is invalid"
    severity = Severity.ERROR
    public = False
    retryable = False
