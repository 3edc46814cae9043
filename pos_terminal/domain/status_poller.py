"""
Status Poller - Polls a payment intent until it reaches a terminal status.

The poll loop is strictly sequential: one outstanding status request at
a time. While the backend reports that no card has been presented yet,
a countdown ticker runs next to the loop and refreshes the waiting
message. The ticker only ever writes that message.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from pos_terminal.core.exceptions import PaymentAPIError
from pos_terminal.core.interfaces import PaymentAPI, StatusCallback
from pos_terminal.core.value_objects import ChargeOutcome, Timing
from pos_terminal.domain.decline_classifier import Verdict, VerdictKind, classify
from pos_terminal.loggers import logger

if TYPE_CHECKING:
    from pos_terminal.domain.network_recovery import NetworkRecoveryMonitor


UNKNOWN_STATUS_MESSAGE = "Status unknown — please check payment dashboard before retrying."
WAIT_MESSAGE_TEMPLATE = "Waiting for card… ({remaining}s)"


# =============================================================================
# Cancellation
# =============================================================================


class CancellationToken:
    """Cooperative cancellation flag, checked by loops at safe points."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


# =============================================================================
# Wait Ticker
# =============================================================================


class WaitTicker:
    """
    Countdown shown while waiting for the customer's card.

    Reports the whole seconds remaining until ``deadline`` every tick.
    Stopping is cooperative: the token is checked before every write and
    ``stop()`` waits for the task to finish, so no tick can land after it
    returns.
    """

    def __init__(
        self,
        deadline: float,
        tick_seconds: float,
        on_tick: Callable[[int], None],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the ticker.

        Args:
            deadline: Clock value at which the countdown reaches zero.
            tick_seconds: Refresh period.
            on_tick: Receives the remaining whole seconds.
            clock: Monotonic clock used for the countdown.
        """
        self._deadline = deadline
        self._tick_seconds = tick_seconds
        self._on_tick = on_tick
        self._clock = clock
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """Check if the countdown task is alive."""
        return self._task is not None and not self._task.done()

    def remaining_seconds(self) -> int:
        """Whole seconds left until the deadline, never negative."""
        return max(0, math.ceil(self._deadline - self._clock()))

    def start(self) -> None:
        """Start the countdown. No-op if it is already running."""
        if self.is_running:
            return
        self._token = CancellationToken()
        self._task = asyncio.create_task(self._run(self._token))

    async def stop(self) -> None:
        """Stop the countdown and wait for it to finish."""
        task, token = self._task, self._token
        self._task = None
        self._token = None
        if task is None:
            return
        token.cancel()
        await task

    async def _run(self, token: CancellationToken) -> None:
        while not token.cancelled:
            remaining = self.remaining_seconds()
            self._on_tick(remaining)
            if remaining <= 0:
                break
            await asyncio.sleep(self._tick_seconds)


# =============================================================================
# Poll Session
# =============================================================================


@dataclass
class PollSession:
    """
    State of one ``poll_until_terminal`` call.

    Attributes:
        intent_id: Intent being polled.
        deadline: Clock value at which the waiting countdown ends.
        token: Cancellation token shared with the orchestrator.
        polls: Status requests issued so far.
        transient_errors: Failed status requests so far.
    """

    intent_id: str
    deadline: float
    token: CancellationToken = field(default_factory=CancellationToken)
    polls: int = 0
    transient_errors: int = 0

    @property
    def saw_transient_error(self) -> bool:
        return self.transient_errors > 0


# =============================================================================
# Status Poller
# =============================================================================


class StatusPoller:
    """
    Polls intent status until terminal or the budget runs out.

    Transient request failures never abort the loop. If the primary
    budget is spent while failures were seen, the network recovery
    monitor gets a bounded extra window before the outcome is reported
    as unknown.

    Several sessions may poll the same intent at once (the primary loop
    and a verification after reconnect). They share one waiting
    countdown: the poller owns at most one ticker, and sessions of one
    charge are given the same deadline.
    """

    def __init__(
        self,
        api: PaymentAPI,
        timing: Optional[Timing] = None,
        on_status: Optional[StatusCallback] = None,
        recovery: Optional["NetworkRecoveryMonitor"] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the poller.

        Args:
            api: Payment backend.
            timing: Timing budget (defaults to production values).
            on_status: Receives human-readable status updates.
            recovery: Monitor providing the recovery window.
            sleep: Awaitable used between polls.
            clock: Monotonic clock for the waiting deadline.
        """
        self._api = api
        self._timing = timing or Timing()
        self._on_status = on_status
        self._recovery = recovery
        self._sleep = sleep
        self._clock = clock

        self._ticker: Optional[WaitTicker] = None
        self._ticker_owner: Optional[PollSession] = None

    @property
    def timing(self) -> Timing:
        return self._timing

    @property
    def countdown_running(self) -> bool:
        """Check if the waiting countdown is active."""
        return self._ticker is not None and self._ticker.is_running

    def set_on_status(self, callback: Optional[StatusCallback]) -> None:
        """Set callback for status message updates."""
        self._on_status = callback

    def set_recovery(self, recovery: Optional["NetworkRecoveryMonitor"]) -> None:
        """Set the monitor that provides the recovery window."""
        self._recovery = recovery

    def wait_deadline(self) -> float:
        """Deadline of a waiting countdown that starts now."""
        return self._clock() + self._timing.total_poll_seconds

    async def poll_until_terminal(
        self,
        intent_id: str,
        cancel_token: Optional[CancellationToken] = None,
        deadline: Optional[float] = None,
    ) -> ChargeOutcome:
        """
        Poll an intent until it reaches a terminal status.

        Args:
            intent_id: Intent to poll.
            cancel_token: Stops the loop at the next iteration when cancelled.
            deadline: End of the waiting countdown; defaults to
                ``wait_deadline()``. Pass the same value to every session
                of one charge.

        Returns:
            Approved or failed outcome, or unknown if no terminal status
            was observed.
        """
        session = PollSession(
            intent_id=intent_id,
            deadline=deadline if deadline is not None else self.wait_deadline(),
            token=cancel_token or CancellationToken(),
        )
        logger.info(f"Polling intent {intent_id} (up to {self._timing.max_polls} polls)")

        try:
            outcome = await self.poll_window(session, self._timing.max_polls)

            if (
                outcome is None
                and session.saw_transient_error
                and self._recovery is not None
                and not session.token.cancelled
            ):
                outcome = await self._recovery.run_recovery_window(self, session)
        finally:
            await self._release_ticker(session)

        if outcome is None:
            logger.warning(
                f"No terminal status for {intent_id} after {session.polls} polls "
                f"({session.transient_errors} errors)"
            )
            return ChargeOutcome.unknown(UNKNOWN_STATUS_MESSAGE)

        logger.info(f"Intent {intent_id} resolved after {session.polls} polls: {outcome.kind.value}")
        return outcome

    async def poll_window(
        self,
        session: PollSession,
        attempts: int,
    ) -> Optional[ChargeOutcome]:
        """
        Run up to ``attempts`` poll iterations.

        Args:
            session: Session state shared across windows.
            attempts: Iteration budget of this window.

        Returns:
            Terminal outcome, or None if none was reached.
        """
        for _ in range(attempts):
            if session.token.cancelled:
                logger.debug(f"Polling of {session.intent_id} cancelled")
                return None

            session.polls += 1
            try:
                status = await self._api.get_intent_status(session.intent_id)
            except PaymentAPIError as e:
                session.transient_errors += 1
                logger.warning(f"Polling error for {session.intent_id}: {e}")
            else:
                if session.token.cancelled:
                    logger.debug(f"Status of {session.intent_id} dropped, polling cancelled")
                    return None
                outcome = await self._apply_verdict(session, classify(status))
                if outcome is not None:
                    return outcome

            await self._sleep(self._timing.poll_interval_seconds)

        return None

    async def _apply_verdict(
        self,
        session: PollSession,
        verdict: Verdict,
    ) -> Optional[ChargeOutcome]:
        """Update the waiting countdown and status for one verdict."""
        if verdict.is_ambiguous_wait:
            await self._start_ticker(session)
            return None

        # Any other status ends the wait
        await self._stop_ticker()

        if verdict.is_terminal:
            return verdict.to_outcome()
        if verdict.kind is VerdictKind.PROCESSING:
            self._report(verdict.message)
        return None

    # =========================================================================
    # Waiting Countdown
    # =========================================================================

    async def _start_ticker(self, session: PollSession) -> None:
        owner = self._ticker_owner
        if self.countdown_running and owner is not None and not owner.token.cancelled:
            return

        await self._stop_ticker()
        if self._ticker is not None:
            return

        self._ticker_owner = session
        self._ticker = WaitTicker(
            deadline=session.deadline,
            tick_seconds=self._timing.wait_tick_seconds,
            on_tick=lambda remaining: self._report_remaining(session, remaining),
            clock=self._clock,
        )
        self._ticker.start()

    async def _stop_ticker(self) -> None:
        ticker, self._ticker, self._ticker_owner = self._ticker, None, None
        if ticker is not None:
            await ticker.stop()

    async def _release_ticker(self, session: PollSession) -> None:
        """Stop the countdown if this session started it."""
        if self._ticker_owner is session:
            await self._stop_ticker()

    def _report_remaining(self, session: PollSession, remaining: int) -> None:
        if session.token.cancelled:
            return
        self._report(WAIT_MESSAGE_TEMPLATE.format(remaining=remaining))

    def _report(self, message: str) -> None:
        if self._on_status is not None:
            self._on_status(message)
