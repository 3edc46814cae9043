"""
Pytest configuration for POS terminal tests.

Adds the repository root to sys.path so the package imports without
installation, and provides shared fakes for the payment backend.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Optional, Union

import pytest


# Add the repository root to sys.path for proper imports
repo_root = Path(__file__).parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from pos_terminal.core.exceptions import CreateIntentError  # noqa: E402
from pos_terminal.core.value_objects import (  # noqa: E402
    IntentStatus,
    PaymentIntent,
    Timing,
)


ScriptStep = Union[IntentStatus, Exception]


def make_status(status: str, intent_id: str = "pi_123", **fields: Any) -> IntentStatus:
    """Build an IntentStatus for scripted polls."""
    return IntentStatus(id=intent_id, status=status, **fields)


class ScriptedPaymentAPI:
    """
    Payment backend fake driven by a script.

    ``statuses`` is consumed one entry per poll; an Exception entry is
    raised instead of returned. The last entry repeats once the script
    runs out.
    """

    def __init__(
        self,
        statuses: Optional[list[ScriptStep]] = None,
        intent_id: str = "pi_123",
        create_error: Optional[Exception] = None,
        reader_result: Union[bool, Exception] = True,
    ) -> None:
        self.statuses = list(statuses or [make_status("succeeded", intent_id)])
        self.intent_id = intent_id
        self.create_error = create_error
        self.reader_result = reader_result

        self.create_calls: list[dict[str, Any]] = []
        self.reader_calls: list[str] = []
        self.status_calls: list[str] = []

    async def create_intent(
        self,
        amount_cents: int,
        currency: str,
        category: str,
        description: str,
    ) -> PaymentIntent:
        self.create_calls.append({
            "amount_cents": amount_cents,
            "currency": currency,
            "category": category,
            "description": description,
        })
        if self.create_error is not None:
            raise self.create_error
        return PaymentIntent(self.intent_id, amount_cents, currency, description)

    async def start_reader_charge(self, intent_id: str) -> bool:
        self.reader_calls.append(intent_id)
        if isinstance(self.reader_result, Exception):
            raise self.reader_result
        return self.reader_result

    async def get_intent_status(self, intent_id: str) -> IntentStatus:
        self.status_calls.append(intent_id)
        index = min(len(self.status_calls), len(self.statuses)) - 1
        step = self.statuses[index]
        if isinstance(step, Exception):
            raise step
        return step


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


async def instant_sleep(_seconds: float) -> None:
    """Sleep replacement that only yields to the event loop."""
    await asyncio.sleep(0)


@pytest.fixture
def fast_timing():
    """Small budget: 3 primary polls, 2 recovery polls, 1 ms ticks."""
    return Timing(
        total_poll_seconds=9,
        poll_interval_seconds=3,
        wait_tick_milliseconds=1,
        success_reset_delay_seconds=1.6,
        fail_reset_delay_seconds=3.2,
        recovery_extra_attempts=2,
    )


@pytest.fixture
def create_failure():
    return CreateIntentError("Could not create payment intent: POST api/payments answered 500")
