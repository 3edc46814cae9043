"""
Core module - Foundation layer with no external dependencies.

Contains:
- Exceptions
- Interfaces (Protocols)
- Value Objects
"""

from .exceptions import (
    PosTerminalError,
    ConfigurationError,
    PaymentAPIError,
    NetworkTransientError,
    BadResponseError,
    CreateIntentError,
    ReaderStartAmbiguousError,
    TransactionError,
    ChargeInProgressError,
    InvalidChargeRequestError,
    InvalidAmountError,
    InvalidArtNumberError,
    RepositoryError,
    RedisConnectionError,
)
from .interfaces import (
    PaymentAPI,
    ConnectivityProbe,
)
from .value_objects import (
    Category,
    ChargeOutcome,
    ChargeRequest,
    IntentStatus,
    OutcomeKind,
    PaymentIntent,
    Timing,
    TransactionStep,
    TransitionDirection,
    format_cents,
)


__all__ = [
    # Exceptions
    "PosTerminalError",
    "ConfigurationError",
    "PaymentAPIError",
    "NetworkTransientError",
    "BadResponseError",
    "CreateIntentError",
    "ReaderStartAmbiguousError",
    "TransactionError",
    "ChargeInProgressError",
    "InvalidChargeRequestError",
    "InvalidAmountError",
    "InvalidArtNumberError",
    "RepositoryError",
    "RedisConnectionError",
    # Interfaces
    "PaymentAPI",
    "ConnectivityProbe",
    # Value Objects
    "Category",
    "ChargeOutcome",
    "ChargeRequest",
    "IntentStatus",
    "OutcomeKind",
    "PaymentIntent",
    "Timing",
    "TransactionStep",
    "TransitionDirection",
    "format_cents",
]
