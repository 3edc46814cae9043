"""
Interfaces (Protocols) for the POS terminal.

Defines the contracts of the collaborators the charge flow consumes,
so that the live HTTP client and probe can be swapped for fakes.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from .value_objects import IntentStatus, PaymentIntent


# =============================================================================
# Payment Backend
# =============================================================================


@runtime_checkable
class PaymentAPI(Protocol):
    """Protocol for the payment backend."""

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        category: str,
        description: str,
    ) -> PaymentIntent:
        """
        Create a payment intent.

        Raises:
            CreateIntentError: If the intent could not be created.
        """
        ...

    async def start_reader_charge(self, intent_id: str) -> bool:
        """
        Hand the intent to the card reader.

        The result is advisory: the reader may have started the charge
        even when this returns False or raises.
        """
        ...

    async def get_intent_status(self, intent_id: str) -> IntentStatus:
        """
        Fetch the current status of an intent.

        Raises:
            PaymentAPIError: On timeout, transport or response errors.
        """
        ...


# =============================================================================
# Connectivity
# =============================================================================


@runtime_checkable
class ConnectivityProbe(Protocol):
    """Protocol for network reachability checks."""

    async def is_reachable(self) -> bool:
        """Check if the payment backend can be reached."""
        ...


# =============================================================================
# Callbacks
# =============================================================================


StatusCallback = Callable[[str], None]
ReconnectCallback = Callable[[str], Awaitable[Any]]
ChargeHandler = Callable[..., Awaitable[None]]
ResetCallback = Callable[[], Optional[Awaitable[None]]]
