"""
Tessera - Cookie signing.

Turns a session identifier into a tamper-evident cookie value and back:

    value.tag

where ``tag`` is the HMAC-SHA256 of ``value`` under a secret, base64
encoded without padding. Verification accepts an ordered keyring so
secrets can be rotated: new cookies are always signed with the first
secret, existing cookies verify against any of them.
"""

from __future__ import annotations

import hashlib
import hmac
from base64 import b64encode
from typing import Optional, Sequence, Union

from .faults import SessionConfigFault

Secret = Union[str, bytes]

SIGNED_PREFIX = "s:"


def _key(secret: Secret) -> bytes:
    if isinstance(secret, str):
        return secret.encode("utf-8")
    if isinstance(secret, (bytes, bytearray)):
        return bytes(secret)
    raise TypeError("secret must be a string or bytes")


class CookieSigner:
    """
    Cookie signer with HMAC-based signing and key rotation support.

    Example:
        >>> signer = CookieSigner(["new-secret", "old-secret"])
        >>> token = signer.sign("abc")
        >>> signer.unsign(token)
        'abc'
    """

    def __init__(self, secrets: Union[Secret, Sequence[Secret]], algorithm: str = "sha256"):
        """
        Initialize cookie signer.

        Args:
            secrets: Secret or ordered list of secrets (first one signs)
            algorithm: Hash algorithm (sha256, sha384, sha512)

        Raises:
            SessionConfigFault: If the secret list is empty
        """
        self.secrets = normalize_secrets(secrets)
        if not self.secrets:
            raise SessionConfigFault(
                "secret option array must contain one or more strings",
                option="secret",
            )
        self.algorithm = algorithm
        self._hash_func = getattr(hashlib, algorithm)

    def sign(self, value: str) -> str:
        """Sign ``value`` with the first secret."""
        return sign(value, self.secrets[0], self._hash_func)

    def unsign(self, signed_value: str) -> Optional[str]:
        """
        Verify and unsign a cookie value against every secret in order.

        Returns: Original value if any signature matches, None otherwise
        """
        return unsign_any(signed_value, self.secrets, self._hash_func)


def normalize_secrets(secrets: Union[Secret, Sequence[Secret], None]) -> list[Secret]:
    """Wrap a single secret in a list; copy lists."""
    if secrets is None:
        return []
    if isinstance(secrets, (str, bytes, bytearray)):
        return [secrets]
    return list(secrets)


def sign(value: str, secret: Secret, hash_func=hashlib.sha256) -> str:
    """
    Sign ``value`` with ``secret``.

    Returns: ``value.tag`` (tag is base64 without padding)
    """
    if not isinstance(value, str):
        raise TypeError("cookie value must be provided as a string")
    digest = hmac.new(_key(secret), value.encode("utf-8"), hash_func).digest()
    tag = b64encode(digest).decode("ascii").rstrip("=")
    return f"{value}.{tag}"


def unsign(signed_value: str, secret: Secret, hash_func=hashlib.sha256) -> Optional[str]:
    """
    Verify ``signed_value`` with a single secret.

    Returns: Original value if the signature is valid, None otherwise
    """
    if not isinstance(signed_value, str):
        return None
    index = signed_value.rfind(".")
    if index == -1:
        return None

    tentative = signed_value[:index]
    expected = sign(tentative, secret, hash_func)

    if not hmac.compare_digest(expected.encode("utf-8"), signed_value.encode("utf-8")):
        return None
    return tentative


def unsign_any(
    signed_value: str,
    secrets: Sequence[Secret],
    hash_func=hashlib.sha256,
) -> Optional[str]:
    """
    Verify ``signed_value`` against each secret in order.

    Returns: Value for the first secret that validates, None if none does
    """
    for secret in secrets:
        value = unsign(signed_value, secret, hash_func)
        if value is not None:
            return value
    return None


def sign_cookie(session_id: str, secret: Secret) -> str:
    """Render the signed session cookie value (``s:`` prefixed)."""
    return SIGNED_PREFIX + sign(session_id, secret)


def unsign_cookie(raw: str, secrets: Sequence[Secret]) -> Optional[str]:
    """
    Read a session identifier from a raw cookie value.

    Values without the ``s:`` prefix are unsigned and never trusted.
    """
    if not raw or not raw.startswith(SIGNED_PREFIX):
        return None
    return unsign_any(raw[len(SIGNED_PREFIX):], secrets)
