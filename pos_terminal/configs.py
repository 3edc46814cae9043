"""
Configuration sources for the POS terminal.

Every setting is resolved through one ordered priority chain:

1. Environment variable
2. Managed configuration (JSON file pushed by device management)
3. Bundled default

The first non-empty value wins. The resolver also reports which source
supplied each value, for startup diagnostics.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Final, Iterable, Mapping, Optional


# =============================================================================
# Constants
# =============================================================================

MANAGED_CONFIG_ENV: Final[str] = "POS_MANAGED_CONFIG"
DEFAULT_MANAGED_CONFIG_PATH: Final[str] = "/etc/pos_terminal/managed.json"

BUNDLED_DEFAULTS: Final[dict[str, str]] = {
    "POS_API_URL": "https://api.operahouseplayers.org",
    "POS_API_KEY": "",
    "POS_CURRENCY": "usd",
    "POS_REDIS_HOST": "localhost",
    "POS_REDIS_PORT": "6379",
    "POS_WS_URL": "ws://localhost:8005/ws",
    "POS_LOKI_URL": "",
    "POS_AUTO_RESET": "false",
    "POS_LOG_FILE": "logs/pos_terminal.log",
    "POS_CONNECTIVITY_CHECK_SECONDS": "2.0",
}

SECRET_KEYS: Final[frozenset[str]] = frozenset({"POS_API_KEY"})

TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


# =============================================================================
# Resolved Values
# =============================================================================


class ConfigSource(str, Enum):
    """Where a configuration value came from."""

    ENVIRONMENT = "environment"
    MANAGED = "managed"
    BUNDLED = "bundled"
    MISSING = "missing"


@dataclass(frozen=True)
class ResolvedValue:
    """A configuration value together with its source."""

    key: str
    value: Optional[str]
    source: ConfigSource

    def describe(self) -> str:
        """Human-readable summary that never reveals secrets."""
        if self.value is None:
            return f"{self.key}: <unset>"
        shown = "<set>" if self.key in SECRET_KEYS else self.value
        return f"{self.key}: {shown} ({self.source.value})"


def _clean(value: Any) -> Optional[str]:
    """Normalise a raw value; blank strings count as missing."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_managed_config(path: Path) -> dict[str, Any]:
    """
    Load the managed configuration file.

    Returns an empty dict if the file does not exist or is invalid.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text(encoding="utf-8").strip()
        if not content:
            return {}
        data = json.loads(content)
        if not isinstance(data, dict):
            return {}
        return data
    except (OSError, json.JSONDecodeError):
        return {}


# =============================================================================
# Resolver
# =============================================================================


class ConfigResolver:
    """
    Ordered configuration lookup.

    Attributes:
        environ: Environment variables (highest priority).
        managed: Managed configuration values.
        defaults: Bundled defaults (lowest priority).
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        managed: Optional[Mapping[str, Any]] = None,
        defaults: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.environ = environ if environ is not None else {}
        self.managed = managed if managed is not None else {}
        self.defaults = defaults if defaults is not None else BUNDLED_DEFAULTS

    @classmethod
    def from_environment(cls) -> "ConfigResolver":
        """Build a resolver from ``os.environ`` and the managed config file."""
        environ = dict(os.environ)
        path = Path(environ.get(MANAGED_CONFIG_ENV) or DEFAULT_MANAGED_CONFIG_PATH)
        return cls(environ=environ, managed=load_managed_config(path))

    def resolve_with_source(self, key: str) -> ResolvedValue:
        """Resolve a key and report the source that supplied it."""
        chain = (
            (ConfigSource.ENVIRONMENT, self.environ),
            (ConfigSource.MANAGED, self.managed),
            (ConfigSource.BUNDLED, self.defaults),
        )
        for source, values in chain:
            value = _clean(values.get(key))
            if value is not None:
                return ResolvedValue(key, value, source)
        return ResolvedValue(key, None, ConfigSource.MISSING)

    def resolve(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Resolve a key to its first non-empty value."""
        value = self.resolve_with_source(key).value
        return default if value is None else value

    def resolve_int(self, key: str, default: int) -> int:
        value = self.resolve(key)
        try:
            return int(value) if value is not None else default
        except ValueError:
            return default

    def resolve_float(self, key: str, default: float) -> float:
        value = self.resolve(key)
        try:
            return float(value) if value is not None else default
        except ValueError:
            return default

    def resolve_bool(self, key: str, default: bool = False) -> bool:
        value = self.resolve(key)
        if value is None:
            return default
        return value.lower() in TRUE_VALUES

    def describe(self, keys: Optional[Iterable[str]] = None) -> list[str]:
        """Describe where each key was resolved from."""
        keys = keys if keys is not None else self.defaults.keys()
        return [self.resolve_with_source(key).describe() for key in keys]


# =============================================================================
# Resolver Singleton
# =============================================================================


_resolver: ConfigResolver | None = None


def get_resolver() -> ConfigResolver:
    """
    Get the process-wide configuration resolver.

    Returns:
        ConfigResolver instance.
    """
    global _resolver
    if _resolver is None:
        _resolver = ConfigResolver.from_environment()
    return _resolver
