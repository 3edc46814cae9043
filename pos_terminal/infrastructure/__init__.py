"""
Infrastructure layer - External dependencies and implementations.

Contains:
- Payment backend client (HTTP)
- Connectivity probe
- Repository implementations (Redis)
- Configuration
"""

from .connectivity import HttpConnectivityProbe
from .payment_api_client import PaymentApiClient
from .redis_repository import (
    RedisStateRepository,
    TransactionRecord,
    TransactionRepository,
)
from .settings import (
    ApiSettings,
    RedisSettings,
    ServiceSettings,
    Settings,
    TerminalSettings,
    get_settings,
)


__all__ = [
    # Clients
    "HttpConnectivityProbe",
    "PaymentApiClient",
    # Repositories
    "RedisStateRepository",
    "TransactionRecord",
    "TransactionRepository",
    # Settings
    "ApiSettings",
    "RedisSettings",
    "ServiceSettings",
    "Settings",
    "TerminalSettings",
    "get_settings",
]
