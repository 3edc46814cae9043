"""
Application settings.

Frozen configuration sections filled from the ConfigResolver chain
(environment, managed config, bundled defaults).
"""

from dataclasses import dataclass, field
from typing import Optional

from pos_terminal.configs import ConfigResolver, get_resolver
from pos_terminal.core.exceptions import ConfigurationError
from pos_terminal.core.value_objects import Timing


# =============================================================================
# Configuration Classes
# =============================================================================


@dataclass(frozen=True)
class ApiSettings:
    """Payment backend settings."""

    base_url: str = "https://api.operahouseplayers.org"
    api_key: Optional[str] = None
    currency: str = "usd"
    create_timeout: float = 12.0
    reader_timeout: float = 10.0
    status_timeout: float = 8.0


@dataclass(frozen=True)
class RedisSettings:
    """Redis connection settings."""

    host: str = "localhost"
    port: int = 6379
    decode_responses: bool = True


@dataclass(frozen=True)
class ServiceSettings:
    """External service URLs."""

    loki_url: Optional[str] = None
    websocket_url: str = "ws://localhost:8005/ws"


@dataclass(frozen=True)
class TerminalSettings:
    """Terminal behaviour settings."""

    auto_reset: bool = False
    connectivity_check_seconds: float = 2.0
    command_channel: str = "pos_terminal_commands"

    @property
    def response_channel(self) -> str:
        """Get response channel name."""
        return f"{self.command_channel}_response"


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """
    Main application settings.

    Aggregates all configuration sections.
    """

    api: ApiSettings = field(default_factory=ApiSettings)
    redis: RedisSettings = field(default_factory=RedisSettings)
    services: ServiceSettings = field(default_factory=ServiceSettings)
    terminal: TerminalSettings = field(default_factory=TerminalSettings)
    timing: Timing = field(default_factory=Timing)

    @property
    def is_configured(self) -> bool:
        """Check if an API key was resolved."""
        return bool(self.api.api_key)

    def require_api_key(self) -> str:
        """
        Get the API key.

        Raises:
            ConfigurationError: If no source provided one.
        """
        if not self.api.api_key:
            raise ConfigurationError(
                "POS_API_KEY is not configured (environment or managed config)"
            )
        return self.api.api_key

    @classmethod
    def from_resolver(cls, resolver: ConfigResolver) -> "Settings":
        """Build settings from a configuration resolver."""
        return cls(
            api=ApiSettings(
                base_url=resolver.resolve("POS_API_URL", ApiSettings.base_url),
                api_key=resolver.resolve("POS_API_KEY"),
                currency=resolver.resolve("POS_CURRENCY", ApiSettings.currency).lower(),
            ),
            redis=RedisSettings(
                host=resolver.resolve("POS_REDIS_HOST", RedisSettings.host),
                port=resolver.resolve_int("POS_REDIS_PORT", RedisSettings.port),
            ),
            services=ServiceSettings(
                loki_url=resolver.resolve("POS_LOKI_URL"),
                websocket_url=resolver.resolve("POS_WS_URL", ServiceSettings.websocket_url),
            ),
            terminal=TerminalSettings(
                auto_reset=resolver.resolve_bool("POS_AUTO_RESET"),
                connectivity_check_seconds=resolver.resolve_float(
                    "POS_CONNECTIVITY_CHECK_SECONDS",
                    TerminalSettings.connectivity_check_seconds,
                ),
            ),
        )


# =============================================================================
# Settings Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_resolver(get_resolver())
    return _settings
