"""
Custom exceptions for the POS terminal.

Provides a hierarchy of typed exceptions so that the charge flow can
tell an intent-creation failure apart from an ambiguous reader start
or a transient network error.
"""

from typing import Any, Optional


class PosTerminalError(Exception):
    """Base exception for all POS terminal errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Optional error code for programmatic handling.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for command responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PosTerminalError):
    """Required configuration value could not be resolved."""

    pass


# =============================================================================
# Payment API Errors
# =============================================================================


class PaymentAPIError(PosTerminalError):
    """
    Base exception for payment backend requests.

    Every subclass is treated as transient by the status poller.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code is not None:
            self.details["status_code"] = status_code


class NetworkTransientError(PaymentAPIError):
    """Timeout or connection failure talking to the backend."""

    pass


class BadResponseError(PaymentAPIError):
    """Backend answered with a non-2xx status or an undecodable body."""

    pass


class CreateIntentError(PaymentAPIError):
    """
    Payment intent could not be created.

    No charge can have started, so this is terminal and never retried.
    """

    pass


class ReaderStartAmbiguousError(PaymentAPIError):
    """
    Reader hand-off reported failure or raised.

    The reader may still have started the charge; the intent must be
    verified by polling.
    """

    pass


# =============================================================================
# Transaction Errors
# =============================================================================


class TransactionError(PosTerminalError):
    """Base exception for transaction flow errors."""

    pass


class ChargeInProgressError(TransactionError):
    """A charge is already in flight."""

    pass


class InvalidChargeRequestError(TransactionError):
    """Charge request is incomplete or invalid."""

    pass


class InvalidAmountError(TransactionError):
    """Amount entered is not a valid number of cents."""

    pass


class InvalidArtNumberError(TransactionError):
    """Art number outside the catalogue range."""

    def __init__(self, message: str, art_number: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.details["art_number"] = art_number


# =============================================================================
# Repository Errors
# =============================================================================


class RepositoryError(PosTerminalError):
    """Base exception for repository errors."""

    pass


class RedisConnectionError(RepositoryError):
    """Error connecting to Redis."""

    pass
