"""
Domain layer - Business logic of a card transaction.

Contains:
- Decline classification
- Status polling and network recovery
- Transaction step state machine
- Automatic reset scheduling
"""

from .decline_classifier import (
    Verdict,
    VerdictKind,
    classify,
)
from .status_poller import (
    CancellationToken,
    PollSession,
    StatusPoller,
    WaitTicker,
    UNKNOWN_STATUS_MESSAGE,
)
from .network_recovery import NetworkRecoveryMonitor
from .transaction_state_machine import (
    TransactionSnapshot,
    TransactionStateMachine,
    next_step,
    previous_step,
)
from .reset_scheduler import ResetScheduler


__all__ = [
    # Classification
    "Verdict",
    "VerdictKind",
    "classify",
    # Polling
    "CancellationToken",
    "PollSession",
    "StatusPoller",
    "WaitTicker",
    "UNKNOWN_STATUS_MESSAGE",
    "NetworkRecoveryMonitor",
    # Transaction State
    "TransactionSnapshot",
    "TransactionStateMachine",
    "next_step",
    "previous_step",
    "ResetScheduler",
]
