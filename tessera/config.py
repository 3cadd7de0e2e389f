"""
Config system - Layered session configuration.

Merge precedence (later overrides earlier):
defaults < .env file < environment variables < explicit overrides

Environment keys carry a prefix and use ``__`` for nesting:

    TESSERA_SECRET=["new-secret", "old-secret"]
    TESSERA_COOKIE__MAX_AGE=60000
    TESSERA_COOKIE__SAME_SITE=lax
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import dotenv_values

from .faults import SessionConfigFault

logger = logging.getLogger("tessera.config")

# values kept as text unless they look like a JSON list
_STRING_KEYS = {"name", "secret"}

# TESSERA_ENV selects the deployment environment, not a session option
_IGNORED_KEYS = {"env"}


@dataclass
class SessionConfig:
    """
    Session middleware options.

    Unlike the middleware itself, ``resave`` and ``save_uninitialized``
    default to False here, so configured deployments never hit the
    deprecated implicit defaults.
    """

    name: str = "tessera.sid"
    secret: Any = None
    resave: bool = False
    save_uninitialized: bool = False
    rolling: bool = False
    unset: str = "keep"
    proxy: Optional[bool] = None
    cookie: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SessionConfigFault(
                f"Unknown session option(s): {', '.join(unknown)}",
                option=unknown[0],
            )
        values = dict(data)
        if "cookie" in values:
            values["cookie"] = dict(values["cookie"] or {})
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def middleware_options(self) -> dict[str, Any]:
        """Keyword arguments for ``SessionMiddleware``."""
        options = self.to_dict()
        if not options["secret"]:
            options.pop("secret")
        return options


def load_config(
    env_file: Optional[str] = None,
    prefix: str = "TESSERA_",
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SessionConfig:
    """
    Load session configuration from a .env file, the environment and
    explicit overrides.

    Args:
        env_file: Path to a .env file (skipped if missing)
        prefix: Prefix for environment variables
        overrides: Manual overrides (highest precedence)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        SessionConfig

    Raises:
        SessionConfigFault: On unknown options
    """
    data: dict[str, Any] = {}

    if env_file:
        env_path = Path(env_file)
        if env_path.exists():
            logger.debug(f"Loading session config from {env_path}")
            _load_mapping(data, dotenv_values(env_path), prefix)
        else:
            logger.debug(f"No env file at {env_path}")

    _load_mapping(data, os.environ if environ is None else environ, prefix)

    if overrides:
        _merge_dict(data, dict(overrides))

    return SessionConfig.from_dict(data)


def _load_mapping(data: dict, source: Mapping[str, Optional[str]], prefix: str) -> None:
    for key, value in source.items():
        if not key.startswith(prefix) or value is None:
            continue
        option = key[len(prefix):]
        if option.lower() in _IGNORED_KEYS:
            continue
        _set_nested(data, option, value)


def _set_nested(data: dict, key: str, value: str) -> None:
    """Convert COOKIE__MAX_AGE to nested dict."""
    parts = key.lower().split("__")

    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]

    leaf = parts[-1]
    if len(parts) == 1 and leaf in _STRING_KEYS:
        current[leaf] = _parse_list(value)
    else:
        current[leaf] = _parse_value(value)


def _parse_list(value: str) -> Any:
    if value.startswith("["):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass
    return value


def _parse_value(value: str) -> Any:
    """Parse string value to appropriate type."""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    if lowered in ("none", "null"):
        return None

    # Number
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    # JSON
    if value.startswith(("{", "[")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    return value


def _merge_dict(target: dict, source: dict) -> None:
    """Deep merge source into target."""
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, dict):
            _merge_dict(target[key], value)
        else:
            target[key] = value
