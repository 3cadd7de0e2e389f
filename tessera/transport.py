"""
Tessera - ASGI transport helpers.

Reads what the session middleware needs from an ASGI ``scope``:
request headers, the named session cookie, the request path, and
whether the connection counts as secure.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import unquote


def get_header(scope: dict[str, Any], name: str) -> Optional[str]:
    """First value of request header ``name`` (case-insensitive)."""
    target = name.lower().encode("latin-1")
    for key, value in scope.get("headers", []):
        if key.lower() == target:
            return value.decode("latin-1")
    return None


def get_cookie_header(scope: dict[str, Any]) -> Optional[str]:
    """All ``Cookie`` request headers joined with ``; ``."""
    values = [
        value.decode("latin-1")
        for key, value in scope.get("headers", [])
        if key.lower() == b"cookie"
    ]
    if not values:
        return None
    return "; ".join(values)


def parse_cookie_header(cookie_header: str) -> dict[str, str]:
    """
    Parse cookie header into dict.

    The first occurrence of a name wins. Surrounding double quotes are
    stripped and values are percent-decoded.
    """
    cookies: dict[str, str] = {}

    for part in cookie_header.split(";"):
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        if not name or name in cookies:
            continue

        value = value.strip()
        if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
            value = value[1:-1]

        try:
            cookies[name] = unquote(value, errors="strict")
        except UnicodeDecodeError:
            cookies[name] = value

    return cookies


def request_path(scope: dict[str, Any]) -> str:
    return scope.get("path") or "/"


def is_secure(scope: dict[str, Any], proxy: Optional[bool] = None) -> bool:
    """
    Whether the request arrived over a secure transport.

    Args:
        scope: ASGI scope
        proxy: True to trust X-Forwarded-Proto, False to ignore any
            external signal, None to defer to ``scope["secure"]``
    """
    if scope.get("scheme") in ("https", "wss"):
        return True

    if proxy is False:
        return False

    if proxy is None:
        return scope.get("secure") is True

    header = get_header(scope, "x-forwarded-proto") or ""
    proto = header.split(",", 1)[0].strip().lower()
    return proto == "https"
