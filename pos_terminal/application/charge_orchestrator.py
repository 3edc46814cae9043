"""
Charge Orchestrator - Drives one card charge from intent to outcome.

Flow:
1. Create the payment intent (failure is terminal, never retried)
2. Hand the intent to the card reader (result is advisory only)
3. Poll the intent until terminal, with network recovery
4. Publish the outcome, record it and schedule the reset
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from pos_terminal.core.exceptions import PaymentAPIError, RepositoryError
from pos_terminal.core.interfaces import PaymentAPI
from pos_terminal.core.value_objects import (
    ChargeOutcome,
    ChargeRequest,
    Timing,
    format_cents,
)
from pos_terminal.domain.network_recovery import NetworkRecoveryMonitor
from pos_terminal.domain.reset_scheduler import ResetScheduler
from pos_terminal.domain.status_poller import CancellationToken, StatusPoller
from pos_terminal.domain.transaction_state_machine import TransactionStateMachine
from pos_terminal.infrastructure.redis_repository import (
    TransactionRecord,
    TransactionRepository,
)
from pos_terminal.loggers import logger


CREATING_MESSAGE = "Creating PaymentIntent…"
SENDING_MESSAGE = "Sending to reader…"
PROCESSING_MESSAGE = "Processing on reader…"


@dataclass
class ActiveCharge:
    """
    Bookkeeping of the charge in flight.

    Attributes:
        request: The request being charged.
        intent_id: Backend intent, once created.
        finished: Set once the outcome has been published.
        tokens: Cancellation tokens of every poll loop for this intent.
        deadline: End of the waiting countdown, shared by every poll loop.
    """

    request: ChargeRequest
    intent_id: Optional[str] = None
    finished: bool = False
    tokens: list[CancellationToken] = field(default_factory=list)
    deadline: Optional[float] = None

    def new_token(self) -> CancellationToken:
        """Token for one more poll loop; already cancelled once finished."""
        token = CancellationToken()
        if self.finished:
            token.cancel()
        self.tokens.append(token)
        return token

    def cancel_polls(self) -> None:
        for token in self.tokens:
            token.cancel()


class ChargeOrchestrator:
    """
    Orchestrates a charge on behalf of the transaction state machine.

    A charge is finalised exactly once. Whichever poll loop reaches a
    terminal outcome first wins; the others are stopped through their
    cancellation tokens and their results are ignored.
    """

    def __init__(
        self,
        api: PaymentAPI,
        state_machine: TransactionStateMachine,
        poller: StatusPoller,
        monitor: Optional[NetworkRecoveryMonitor] = None,
        timing: Optional[Timing] = None,
        currency: str = "usd",
        repository: Optional[TransactionRepository] = None,
        reset_scheduler: Optional[ResetScheduler] = None,
    ) -> None:
        """
        Initialize the orchestrator and wire its collaborators.

        Args:
            api: Payment backend.
            state_machine: Owner of the published state.
            poller: Status poller for the intent.
            monitor: Network recovery monitor.
            timing: Timing budget.
            currency: ISO currency code sent with every intent.
            repository: Optional persistence of outcomes and pending intents.
            reset_scheduler: Optional automatic reset after an outcome.
        """
        self._api = api
        self._state_machine = state_machine
        self._poller = poller
        self._monitor = monitor
        self._timing = timing or Timing()
        self._currency = currency
        self._repository = repository
        self._reset_scheduler = reset_scheduler

        self._active: Optional[ActiveCharge] = None

        self._poller.set_on_status(self._on_poll_status)
        if monitor is not None:
            self._poller.set_recovery(monitor)
            monitor.set_on_reconnect(self.verify_pending_intent)
        self._state_machine.set_on_reset(self._on_reset)

    @property
    def active_intent_id(self) -> Optional[str]:
        """Intent of the charge in flight, if any."""
        return self._active.intent_id if self._active else None

    # =========================================================================
    # Charge
    # =========================================================================

    async def charge(self, request: Optional[ChargeRequest] = None) -> None:
        """
        Run a charge to its final outcome.

        Invalid requests and requests made while a charge is in flight
        are rejected without touching the published state.

        Args:
            request: Request to charge; defaults to the current selection.
        """
        request = request or self._state_machine.state.charge_request()

        if request.amount_cents <= 0:
            logger.warning(f"Charge rejected: invalid amount {request.amount_cents}")
            return
        if self._state_machine.is_charging:
            logger.warning("Charge rejected: a charge is already in progress")
            return
        reason = request.validation_error()
        if reason is not None:
            logger.warning(f"Charge rejected: {reason}")
            return

        charge = ActiveCharge(request=request)
        self._active = charge
        self._state_machine.begin_charge(CREATING_MESSAGE)
        logger.info(f"Charging {format_cents(request.amount_cents)} for '{request.description}'")

        try:
            intent = await self._api.create_intent(
                request.amount_cents,
                self._currency,
                request.category.value,
                request.description,
            )
        except PaymentAPIError as e:
            logger.error(f"Intent creation failed: {e.message}")
            await self._finish(charge, ChargeOutcome.failed(e.message))
            return

        if self._is_abandoned(charge):
            logger.warning(f"Sale reset before intent {intent.id} reached the reader; not sent")
            return

        charge.intent_id = intent.id
        self._state_machine.update_status(SENDING_MESSAGE)

        started = False
        try:
            started = await self._api.start_reader_charge(intent.id)
        except Exception as e:
            logger.warning(f"Reader start for {intent.id} raised: {e}")

        if self._is_abandoned(charge):
            logger.warning(f"Sale reset while starting reader for {intent.id}; not polling")
            return

        if not started:
            logger.warning(f"Reader start for {intent.id} not confirmed; verifying by polling")
            await self._mark_awaiting_verification(intent.id)
            if self._is_abandoned(charge):
                return

        self._on_poll_status(PROCESSING_MESSAGE)
        outcome = await self._poller.poll_until_terminal(
            intent.id,
            charge.new_token(),
            deadline=self._wait_deadline(charge),
        )
        await self._finish(charge, outcome)

    async def verify_pending_intent(self, intent_id: str) -> Optional[ChargeOutcome]:
        """
        Poll an intent awaiting verification, after the network came back.

        An approved or failed result finalises the charge. An unknown
        result leaves the decision to the primary poll loop.

        Args:
            intent_id: Intent to verify.

        Returns:
            Outcome of the verification poll, or None if the intent does
            not belong to the charge in flight.
        """
        charge = self._active
        if charge is None or charge.finished or charge.intent_id != intent_id:
            logger.info(f"Intent {intent_id} is not in flight; verification skipped")
            if self._monitor is not None:
                self._monitor.clear_pending_intent(intent_id)
            return None

        logger.info(f"Verifying intent {intent_id}")
        outcome = await self._poller.poll_until_terminal(
            intent_id,
            charge.new_token(),
            deadline=self._wait_deadline(charge),
        )

        if outcome.is_unknown:
            logger.warning(f"Verification of {intent_id} inconclusive")
            return outcome

        await self._finish(charge, outcome)
        return outcome

    def _is_abandoned(self, charge: ActiveCharge) -> bool:
        """Check if the charge was finished or reset away during an await."""
        return charge.finished or self._active is not charge

    def _wait_deadline(self, charge: ActiveCharge) -> float:
        if charge.deadline is None:
            charge.deadline = self._poller.wait_deadline()
        return charge.deadline

    # =========================================================================
    # Finalisation
    # =========================================================================

    async def _finish(self, charge: ActiveCharge, outcome: ChargeOutcome) -> bool:
        """
        Publish the outcome of a charge, once.

        Returns:
            True if this call finalised the charge.
        """
        if charge.finished:
            logger.debug(f"Late {outcome.kind.value} for {charge.intent_id} ignored")
            return False

        charge.finished = True
        charge.cancel_polls()
        if self._monitor is not None and charge.intent_id is not None:
            self._monitor.clear_pending_intent(charge.intent_id)

        logger.info(f"Charge {charge.intent_id} finished: {outcome.kind.value} ({outcome.message})")
        self._state_machine.finish_charge(outcome)

        await self._record(charge, outcome)

        if self._reset_scheduler is not None:
            self._reset_scheduler.schedule(outcome)
        return True

    async def _record(self, charge: ActiveCharge, outcome: ChargeOutcome) -> None:
        if self._repository is None:
            return
        try:
            await self._repository.record_outcome(
                TransactionRecord.create(charge.intent_id, charge.request, outcome)
            )
            await self._repository.clear_pending_intent()
        except RepositoryError as e:
            logger.error(f"Failed to record outcome of {charge.intent_id}: {e}")

    async def _mark_awaiting_verification(self, intent_id: str) -> None:
        if self._monitor is not None:
            self._monitor.mark_awaiting_verification(intent_id)
        if self._repository is None:
            return
        try:
            await self._repository.set_pending_intent(intent_id)
        except RepositoryError as e:
            logger.error(f"Failed to persist pending intent {intent_id}: {e}")

    # =========================================================================
    # Callbacks
    # =========================================================================

    def _on_poll_status(self, message: str) -> None:
        """Forward poll status while the charge is unresolved."""
        charge = self._active
        if charge is None or charge.finished:
            return
        self._state_machine.update_status(message)

    def _on_reset(self) -> None:
        """Drop the current charge when the transaction is reset."""
        if self._reset_scheduler is not None:
            self._reset_scheduler.cancel()

        charge, self._active = self._active, None
        if charge is None:
            return

        if not charge.finished:
            logger.warning(f"Reset while charge {charge.intent_id} unresolved; polling stopped")
            charge.finished = True
        charge.cancel_polls()
        if self._monitor is not None and charge.intent_id is not None:
            self._monitor.clear_pending_intent(charge.intent_id)
