"""
Tessera - Cookie metadata.

Describes how the session identifier cookie is rendered and when it
expires. ``max_age`` (milliseconds from now) and ``expires`` (absolute
UTC instant) are two views of the same quantity: assigning either one
recomputes the other, and also re-captures ``original_max_age``.
"""

from __future__ import annotations

import re
import warnings
from datetime import datetime, timedelta, timezone
from email.utils import formatdate
from typing import Any, Optional, Union
from urllib.parse import quote

from .faults import SessionCookieFault


# RFC 6265 token / cookie-octet / domain / path grammars
_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_VALUE_RE = re.compile(r'^("?)[\x21\x23-\x2B\x2D-\x3A\x3C-\x5B\x5D-\x7E]*\1$')
_DOMAIN_RE = re.compile(
    r"^([.]?[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)([.][a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$",
    re.IGNORECASE,
)
_PATH_RE = re.compile(r"^[\x20-\x3A\x3D-\x7E]*$")

_PRIORITIES = {"low": "Low", "medium": "Medium", "high": "High"}
_SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None"}

# encodeURIComponent leaves these unescaped
_URI_SAFE = "!~*'()"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_expires(value: Any) -> Any:
    """Revive a persisted ``expires`` value (ISO string) into a datetime."""
    if isinstance(value, str):
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return _as_utc(datetime.fromisoformat(value))
    if isinstance(value, datetime):
        return _as_utc(value)
    return value


class Cookie:
    """
    Session cookie metadata.

    Attributes:
        path: Cookie path (default "/")
        http_only: HttpOnly flag (default True)
        secure: Secure flag, or "auto" to follow the transport
        same_site: SameSite policy (True, "strict", "lax", "none")
        domain: Cookie domain
        partitioned: Partitioned flag
        priority: Priority ("low", "medium", "high")
        expires: Absolute expiry (None = browser-session cookie)
        original_max_age: max_age captured at the last assignment

    Example:
        >>> cookie = Cookie(max_age=60_000, same_site="lax")
        >>> cookie.original_max_age
        60000
        >>> cookie.serialize("tessera.sid", "s:abc.tag")
        'tessera.sid=s%3Aabc.tag; Path=/; Expires=...; HttpOnly; SameSite=Lax'
    """

    def __init__(
        self,
        *,
        path: str = "/",
        max_age: Union[int, float, datetime, None] = None,
        expires: Optional[datetime] = None,
        http_only: bool = True,
        secure: Union[bool, str, None] = None,
        same_site: Union[bool, str, None] = None,
        domain: Optional[str] = None,
        partitioned: Optional[bool] = None,
        priority: Optional[str] = None,
        original_max_age: Optional[int] = None,
    ):
        self.path = path
        self.http_only = http_only
        self.secure = secure
        self.same_site = same_site
        self.domain = domain
        self.partitioned = partitioned
        self.priority = priority
        self._expires: Any = None
        self.original_max_age: Any = None

        if expires is not None:
            self.expires = expires
        if max_age is not None:
            self.max_age = max_age

        if original_max_age is not None:
            self.original_max_age = original_max_age
        elif self.original_max_age is None:
            self.original_max_age = self.max_age

    # ========================================================================
    # Expiration
    # ========================================================================

    @property
    def expires(self) -> Any:
        """Absolute expiry instant (None for a browser-session cookie)."""
        return self._expires

    @expires.setter
    def expires(self, value: Any) -> None:
        self._expires = _as_utc(value) if isinstance(value, datetime) else value
        self.original_max_age = self.max_age

    @property
    def max_age(self) -> Any:
        """Milliseconds until expiry, derived from ``expires``."""
        if isinstance(self._expires, datetime):
            return round((self._expires - utcnow()).total_seconds() * 1000)
        return self._expires

    @max_age.setter
    def max_age(self, ms: Any) -> None:
        if isinstance(ms, bool) or (
            ms is not None and not isinstance(ms, (int, float, datetime))
        ):
            raise TypeError("max_age must be a number or datetime")

        if isinstance(ms, datetime):
            warnings.warn(
                "max_age as datetime; pass number of milliseconds instead",
                DeprecationWarning,
                stacklevel=2,
            )
            self.expires = ms
        elif ms is None:
            self.expires = None
        else:
            self.expires = utcnow() + timedelta(milliseconds=ms)

    # ========================================================================
    # Serialization
    # ========================================================================

    @property
    def data(self) -> dict[str, Any]:
        """Cookie attributes as rendered into Set-Cookie."""
        return {
            "original_max_age": self.original_max_age,
            "partitioned": self.partitioned,
            "priority": self.priority,
            "expires": self._expires,
            "secure": self.secure,
            "http_only": self.http_only,
            "domain": self.domain,
            "path": self.path,
            "same_site": self.same_site,
        }

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation (``expires`` as ISO 8601)."""
        data = self.data
        if isinstance(data["expires"], datetime):
            data["expires"] = data["expires"].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cookie:
        """
        Rebuild cookie metadata from its persisted form.

        The stored ``original_max_age`` is restored after ``expires`` is
        revived, so reconstruction never rewrites it.
        """
        cookie = cls(
            path=data.get("path", "/"),
            http_only=data.get("http_only", True),
            secure=data.get("secure"),
            same_site=data.get("same_site"),
            domain=data.get("domain"),
            partitioned=data.get("partitioned"),
            priority=data.get("priority"),
        )
        cookie.expires = parse_expires(data.get("expires"))
        cookie.original_max_age = data.get("original_max_age")
        return cookie

    def serialize(self, name: str, value: str) -> str:
        """Render a Set-Cookie header value for ``name=value``."""
        return serialize_cookie(name, value, **self.data)

    def __repr__(self) -> str:
        return (
            f"Cookie(path={self.path!r}, expires={self._expires!r}, "
            f"http_only={self.http_only!r}, secure={self.secure!r})"
        )


def serialize_cookie(
    name: str,
    value: str,
    *,
    max_age: Optional[int] = None,
    domain: Optional[str] = None,
    path: Optional[str] = None,
    expires: Any = None,
    http_only: bool = False,
    secure: Any = False,
    partitioned: Optional[bool] = None,
    priority: Optional[str] = None,
    same_site: Union[bool, str, None] = None,
    original_max_age: Any = None,
) -> str:
    """
    Serialize a cookie into a Set-Cookie header value.

    ``original_max_age`` is accepted so a cookie's ``data`` can be passed
    straight through; it is never rendered.

    Raises:
        SessionCookieFault: If any attribute cannot be rendered
    """
    if not _NAME_RE.match(name):
        raise SessionCookieFault(f"argument name is invalid: {name}")

    encoded = quote(value, safe=_URI_SAFE)
    if not _VALUE_RE.match(encoded):
        raise SessionCookieFault(f"argument val is invalid: {value}")

    parts = [f"{name}={encoded}"]

    if max_age is not None:
        if isinstance(max_age, bool) or not isinstance(max_age, (int, float)):
            raise SessionCookieFault(f"option maxAge is invalid: {max_age}")
        parts.append(f"Max-Age={int(max_age)}")

    if domain:
        if not _DOMAIN_RE.match(domain):
            raise SessionCookieFault(f"option domain is invalid: {domain}")
        parts.append(f"Domain={domain}")

    if path:
        if not _PATH_RE.match(path):
            raise SessionCookieFault(f"option path is invalid: {path}")
        parts.append(f"Path={path}")

    if expires is not None:
        if not isinstance(expires, datetime):
            raise SessionCookieFault("option expires is invalid")
        parts.append(f"Expires={formatdate(expires.timestamp(), usegmt=True)}")

    if http_only:
        parts.append("HttpOnly")

    if secure:
        parts.append("Secure")

    if partitioned:
        parts.append("Partitioned")

    if priority:
        rendered = _PRIORITIES.get(str(priority).lower())
        if rendered is None:
            raise SessionCookieFault(f"option priority is invalid: {priority}")
        parts.append(f"Priority={rendered}")

    if same_site:
        if same_site is True:
            rendered = "Strict"
        else:
            rendered = _SAME_SITE.get(str(same_site).lower())
        if rendered is None:
            raise SessionCookieFault(f"option sameSite is invalid: {same_site}")
        parts.append(f"SameSite={rendered}")

    return "; ".join(parts)
