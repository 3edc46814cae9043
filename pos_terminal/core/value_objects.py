"""
Value Objects for the POS terminal.

Immutable objects that describe a card transaction: the request sent
to the backend, the intent and its polled status, the final outcome
and the timing budget of the charge flow.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional


ART_NUMBER_MIN = 1
ART_NUMBER_MAX = 20


# =============================================================================
# Enums
# =============================================================================


class TransactionStep(Enum):
    """Steps of a transaction, in navigation order."""

    CATEGORY = "category"
    ART_NUMBER = "art_number"
    AMOUNT = "amount"
    SUMMARY = "summary"
    PROCESSING = "processing"
    RESULT = "result"

    @property
    def index(self) -> int:
        """Position of the step in the navigation order."""
        return _STEP_ORDER.index(self)


_STEP_ORDER: list[TransactionStep] = list(TransactionStep)


class TransitionDirection(Enum):
    """Direction of a step change, inferred from step order."""

    FORWARD = auto()
    BACKWARD = auto()
    NONE = auto()

    @classmethod
    def between(cls, old: TransactionStep, new: TransactionStep) -> "TransitionDirection":
        """Infer the direction of moving from ``old`` to ``new``."""
        if new.index > old.index:
            return cls.FORWARD
        if new.index < old.index:
            return cls.BACKWARD
        return cls.NONE


class Category(str, Enum):
    """Sale categories offered on the terminal."""

    CONCESSIONS = "concessions"
    ART = "art"
    FLYTRAP = "flytrap"
    MERCH = "merch"

    @property
    def label(self) -> str:
        """Display label."""
        return self.value.capitalize()


class OutcomeKind(Enum):
    """Kinds of final charge outcome."""

    APPROVED = "approved"
    FAILED = "failed"
    UNKNOWN = "unknown"


def format_cents(amount_cents: int) -> str:
    """Format an amount in cents as dollars, e.g. ``$12.50``."""
    return f"${amount_cents / 100:.2f}"


# =============================================================================
# Charge Request
# =============================================================================


@dataclass(frozen=True)
class ChargeRequest:
    """
    Everything needed to start a charge.

    Attributes:
        amount_cents: Amount to charge in cents.
        category: Sale category.
        art_number: Catalogue number, required for art sales.
    """

    amount_cents: int
    category: Optional[Category]
    art_number: Optional[int] = None

    @property
    def description(self) -> str:
        """Intent description shown on the backend record."""
        if self.category is Category.ART:
            return f"Art #{self.art_number} Sale"
        if self.category is None:
            return "Sale"
        return f"{self.category.label} Sale"

    def validation_error(self) -> Optional[str]:
        """
        Explain why the request cannot be charged.

        Returns:
            A reason string, or None if the request is chargeable.
        """
        if self.amount_cents <= 0:
            return f"Invalid amount: {self.amount_cents}"
        if self.category is None:
            return "No category selected"
        if self.category is Category.ART and self.art_number is None:
            return "Art sale without an art number"
        return None

    @property
    def is_valid(self) -> bool:
        """Check if the request may be charged."""
        return self.validation_error() is None


# =============================================================================
# Payment Intent
# =============================================================================


@dataclass(frozen=True)
class PaymentIntent:
    """Backend-tracked record of one attempted charge."""

    id: str
    amount_cents: int
    currency: str
    description: str


@dataclass(frozen=True)
class IntentStatus:
    """
    Polled status of a payment intent.

    Attributes:
        id: Intent identifier.
        status: Raw lifecycle status.
        effective_status: Backend override of ``status``.
        last_payment_error_message: Message of the intent's last payment error.
        latest_charge_status: Status of the latest charge.
        latest_charge_failure_message: Failure message of the latest charge.
        latest_charge_failure_code: Failure code of the latest charge.
        latest_charge_outcome_type: Network outcome type (issuer_declined, ...).
        latest_charge_outcome_seller_message: Seller-facing outcome message.
    """

    id: str
    status: str
    effective_status: Optional[str] = None
    last_payment_error_message: Optional[str] = None
    latest_charge_status: Optional[str] = None
    latest_charge_failure_message: Optional[str] = None
    latest_charge_failure_code: Optional[str] = None
    latest_charge_outcome_type: Optional[str] = None
    latest_charge_outcome_seller_message: Optional[str] = None

    @property
    def authoritative_status(self) -> str:
        """Effective status if the backend sent one, else the raw status."""
        return self.effective_status or self.status

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "IntentStatus":
        """
        Build an IntentStatus from the backend JSON body.

        Args:
            payload: Decoded response of ``GET api/payment_intents/<id>``.

        Returns:
            IntentStatus instance.

        Raises:
            KeyError: If ``id`` or ``status`` is missing.
            TypeError: If the payload is not a JSON object.
        """
        if not isinstance(payload, dict):
            raise TypeError(f"Expected JSON object, got {type(payload).__name__}")

        last_error = payload.get("last_payment_error") or {}
        if not isinstance(last_error, dict):
            last_error = {}

        return cls(
            id=str(payload["id"]),
            status=str(payload["status"]),
            effective_status=payload.get("effective_status"),
            last_payment_error_message=last_error.get("message"),
            latest_charge_status=payload.get("latest_charge_status"),
            latest_charge_failure_message=payload.get("latest_charge_failure_message"),
            latest_charge_failure_code=payload.get("latest_charge_failure_code"),
            latest_charge_outcome_type=payload.get("latest_charge_outcome_type"),
            latest_charge_outcome_seller_message=payload.get(
                "latest_charge_outcome_seller_message"
            ),
        )


# =============================================================================
# Charge Outcome
# =============================================================================


@dataclass(frozen=True)
class ChargeOutcome:
    """
    Final outcome of a charge.

    ``unknown`` is distinct from ``failed``: it means no terminal status
    was observed, not that the card was declined.
    """

    kind: OutcomeKind
    message: str = ""

    @classmethod
    def approved(cls) -> "ChargeOutcome":
        """Create an approved outcome."""
        return cls(kind=OutcomeKind.APPROVED, message="Payment completed!")

    @classmethod
    def failed(cls, message: str) -> "ChargeOutcome":
        """Create a failed outcome."""
        return cls(kind=OutcomeKind.FAILED, message=message)

    @classmethod
    def unknown(cls, message: str) -> "ChargeOutcome":
        """Create an unknown outcome."""
        return cls(kind=OutcomeKind.UNKNOWN, message=message)

    @property
    def is_approved(self) -> bool:
        return self.kind is OutcomeKind.APPROVED

    @property
    def is_failed(self) -> bool:
        return self.kind is OutcomeKind.FAILED

    @property
    def is_unknown(self) -> bool:
        return self.kind is OutcomeKind.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"outcome": self.kind.value, "message": self.message}


# =============================================================================
# Timing
# =============================================================================


@dataclass(frozen=True)
class Timing:
    """
    Timing budget of the charge flow.

    Attributes:
        total_poll_seconds: Primary polling budget and wait deadline.
        poll_interval_seconds: Pause between status polls.
        wait_tick_milliseconds: Refresh period of the waiting countdown.
        success_reset_delay_seconds: Auto-reset delay after approval.
        fail_reset_delay_seconds: Auto-reset delay after failure or unknown.
        recovery_extra_attempts: Polls in the network recovery window.
    """

    total_poll_seconds: float = 90
    poll_interval_seconds: float = 3
    wait_tick_milliseconds: int = 200
    success_reset_delay_seconds: float = 1.6
    fail_reset_delay_seconds: float = 3.2
    recovery_extra_attempts: int = 10

    def __post_init__(self) -> None:
        """Validate the budget."""
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if self.wait_tick_milliseconds <= 0:
            raise ValueError("wait_tick_milliseconds must be positive")

    @property
    def max_polls(self) -> int:
        """Iterations of the primary poll loop."""
        return int(self.total_poll_seconds // self.poll_interval_seconds)

    @property
    def wait_tick_seconds(self) -> float:
        """Countdown refresh period in seconds."""
        return self.wait_tick_milliseconds / 1000

    def reset_delay_for(self, outcome: ChargeOutcome) -> float:
        """Auto-reset delay for an outcome."""
        if outcome.is_approved:
            return self.success_reset_delay_seconds
        return self.fail_reset_delay_seconds
