"""
Decline Classifier - Maps a polled intent status to a verdict.

Pure function; no I/O and no state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from pos_terminal.core.value_objects import ChargeOutcome, IntentStatus


DECLINE_OUTCOME_TYPES = frozenset({"issuer_declined", "blocked", "reversed"})
FAILED_STATUSES = frozenset({
    "canceled",
    "requires_capture",
    "requires_confirmation",
    "requires_action",
})
DEFAULT_DECLINE_MESSAGE = "Card declined"


class VerdictKind(Enum):
    """Classification of one polled status."""

    APPROVED = auto()        # terminal
    FAILED = auto()          # terminal
    PROCESSING = auto()      # card presented, reader working
    AWAITING_CARD = auto()   # ambiguous wait, no decline signal yet
    PENDING = auto()         # unrecognised status, keep polling


@dataclass(frozen=True)
class Verdict:
    """Result of classifying an intent status."""

    kind: VerdictKind
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.kind in (VerdictKind.APPROVED, VerdictKind.FAILED)

    @property
    def is_ambiguous_wait(self) -> bool:
        return self.kind is VerdictKind.AWAITING_CARD

    def to_outcome(self) -> Optional[ChargeOutcome]:
        """Charge outcome for terminal verdicts, None otherwise."""
        if self.kind is VerdictKind.APPROVED:
            return ChargeOutcome.approved()
        if self.kind is VerdictKind.FAILED:
            return ChargeOutcome.failed(self.message)
        return None


def _non_empty(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def _classify_requires_payment_method(status: IntentStatus) -> Verdict:
    """Pick the decline message by priority, or fall back to waiting."""
    if _non_empty(status.last_payment_error_message):
        return Verdict(VerdictKind.FAILED, status.last_payment_error_message)

    if status.latest_charge_outcome_type in DECLINE_OUTCOME_TYPES:
        message = status.latest_charge_outcome_seller_message
        if not _non_empty(message):
            message = DEFAULT_DECLINE_MESSAGE
        return Verdict(VerdictKind.FAILED, message)

    if _non_empty(status.latest_charge_failure_message):
        return Verdict(VerdictKind.FAILED, status.latest_charge_failure_message)

    return Verdict(VerdictKind.AWAITING_CARD, "Waiting for card…")


def classify(status: IntentStatus) -> Verdict:
    """
    Classify a polled intent status.

    Args:
        status: Status returned by the backend.

    Returns:
        Verdict for the authoritative status.
    """
    value = status.authoritative_status

    if value == "succeeded":
        return Verdict(VerdictKind.APPROVED, "Payment completed!")
    if value == "processing":
        return Verdict(VerdictKind.PROCESSING, "Processing on reader…")
    if value == "requires_payment_method":
        return _classify_requires_payment_method(status)
    if value in FAILED_STATUSES:
        return Verdict(VerdictKind.FAILED, value)

    return Verdict(VerdictKind.PENDING)
