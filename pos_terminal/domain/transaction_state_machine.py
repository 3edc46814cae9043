"""
Transaction State Machine - Owns the step sequence of one sale.

Steps run category -> art number -> amount -> summary -> processing ->
result. The machine is the only writer of the published state; the UI
reads snapshots and calls the entry points below.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from pos_terminal.core.exceptions import InvalidAmountError, InvalidArtNumberError
from pos_terminal.core.interfaces import ChargeHandler
from pos_terminal.core.value_objects import (
    ART_NUMBER_MAX,
    ART_NUMBER_MIN,
    Category,
    ChargeOutcome,
    ChargeRequest,
    TransactionStep,
    TransitionDirection,
    format_cents,
)
from pos_terminal.loggers import logger


IDLE_MESSAGE = "Idle"
READY_MESSAGE = "Ready for next transaction."


# =============================================================================
# Snapshot
# =============================================================================


@dataclass(frozen=True)
class TransactionSnapshot:
    """Immutable copy of the published transaction state."""

    step: TransactionStep = TransactionStep.CATEGORY
    status_message: str = IDLE_MESSAGE
    is_charging: bool = False
    result: Optional[ChargeOutcome] = None
    amount_cents: int = 0
    category: Optional[Category] = None
    art_number: Optional[int] = None

    @property
    def can_continue_from_category(self) -> bool:
        return self.category is not None

    @property
    def can_continue_from_art_number(self) -> bool:
        return self.art_number is not None

    @property
    def can_continue_from_amount(self) -> bool:
        return self.amount_cents > 0

    def charge_request(self) -> ChargeRequest:
        """Build the charge request for the current selection."""
        return ChargeRequest(
            amount_cents=self.amount_cents,
            category=self.category,
            art_number=self.art_number if self.category is Category.ART else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the UI channel."""
        return {
            "step": self.step.value,
            "status_message": self.status_message,
            "is_charging": self.is_charging,
            "result": self.result.to_dict() if self.result else None,
            "amount_cents": self.amount_cents,
            "amount_display": format_cents(self.amount_cents),
            "category": self.category.value if self.category else None,
            "art_number": self.art_number,
            "can_continue_from_category": self.can_continue_from_category,
            "can_continue_from_art_number": self.can_continue_from_art_number,
            "can_continue_from_amount": self.can_continue_from_amount,
        }


# =============================================================================
# Transition Function
# =============================================================================


def next_step(state: TransactionSnapshot) -> Optional[TransactionStep]:
    """
    Forward transition from the current step.

    Returns:
        The next step, or None if the gate for the current step is closed.
    """
    step = state.step

    if step is TransactionStep.CATEGORY:
        if not state.can_continue_from_category:
            return None
        if state.category is Category.ART:
            return TransactionStep.ART_NUMBER
        return TransactionStep.AMOUNT

    if step is TransactionStep.ART_NUMBER:
        return TransactionStep.AMOUNT if state.can_continue_from_art_number else None

    if step is TransactionStep.AMOUNT:
        return TransactionStep.SUMMARY if state.can_continue_from_amount else None

    if step is TransactionStep.SUMMARY:
        if state.is_charging or not state.charge_request().is_valid:
            return None
        return TransactionStep.PROCESSING

    return None


def previous_step(state: TransactionSnapshot) -> Optional[TransactionStep]:
    """
    Backward transition from the current step.

    Returns:
        The previous step, or None if there is no way back.
    """
    step = state.step

    if step is TransactionStep.ART_NUMBER:
        return TransactionStep.CATEGORY
    if step is TransactionStep.AMOUNT:
        if state.category is Category.ART:
            return TransactionStep.ART_NUMBER
        return TransactionStep.CATEGORY
    if step is TransactionStep.SUMMARY:
        return TransactionStep.AMOUNT

    return None


# =============================================================================
# State Machine
# =============================================================================


StateListener = Callable[[TransactionSnapshot, TransitionDirection], None]


class TransactionStateMachine:
    """
    State container for one terminal.

    Every mutation replaces the snapshot and notifies subscribers with
    the new snapshot and the direction of the step change.
    """

    def __init__(self) -> None:
        """Initialize the state machine at the category step."""
        self._state = TransactionSnapshot()
        self._listeners: list[StateListener] = []
        self._charge_handler: Optional[ChargeHandler] = None
        self._on_reset: Optional[Callable[[], None]] = None

    # =========================================================================
    # Published State
    # =========================================================================

    @property
    def state(self) -> TransactionSnapshot:
        return self._state

    @property
    def step(self) -> TransactionStep:
        return self._state.step

    @property
    def status_message(self) -> str:
        return self._state.status_message

    @property
    def is_charging(self) -> bool:
        return self._state.is_charging

    @property
    def result(self) -> Optional[ChargeOutcome]:
        return self._state.result

    @property
    def amount_cents(self) -> int:
        return self._state.amount_cents

    @property
    def category(self) -> Optional[Category]:
        return self._state.category

    @property
    def art_number(self) -> Optional[int]:
        return self._state.art_number

    @property
    def can_continue_from_category(self) -> bool:
        return self._state.can_continue_from_category

    @property
    def can_continue_from_art_number(self) -> bool:
        return self._state.can_continue_from_art_number

    @property
    def can_continue_from_amount(self) -> bool:
        return self._state.can_continue_from_amount

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        Args:
            listener: Called with (snapshot, direction) after every change.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def set_charge_handler(self, handler: Optional[ChargeHandler]) -> None:
        """Set the coroutine invoked with the charge request on summary -> processing."""
        self._charge_handler = handler

    def set_on_reset(self, callback: Optional[Callable[[], None]]) -> None:
        """Set callback run when the transaction is reset."""
        self._on_reset = callback

    def _commit(self, **changes: Any) -> None:
        old = self._state
        new = replace(old, **changes)
        if new == old:
            return
        self._state = new
        direction = TransitionDirection.between(old.step, new.step)
        if direction is not TransitionDirection.NONE:
            logger.debug(f"Step {old.step.value} -> {new.step.value} ({direction.name.lower()})")

        for listener in list(self._listeners):
            try:
                listener(new, direction)
            except Exception as e:
                logger.error(f"State listener error: {e}")

    # =========================================================================
    # Input
    # =========================================================================

    def select_category(self, category: Category | str) -> None:
        """Select the sale category. Leaving art clears the art number."""
        category = Category(category)
        changes: dict[str, Any] = {"category": category}
        if category is not Category.ART:
            changes["art_number"] = None
        self._commit(**changes)

    def set_art_number(self, art_number: int) -> None:
        """
        Set the catalogue number of an art sale.

        Raises:
            InvalidArtNumberError: If outside the catalogue range.
        """
        if (
            not isinstance(art_number, int)
            or isinstance(art_number, bool)
            or not ART_NUMBER_MIN <= art_number <= ART_NUMBER_MAX
        ):
            raise InvalidArtNumberError(
                f"Art number must be {ART_NUMBER_MIN}..{ART_NUMBER_MAX}",
                art_number=art_number,
            )
        self._commit(art_number=art_number)

    def set_amount(self, amount_cents: int) -> None:
        """
        Set the amount in cents.

        Raises:
            InvalidAmountError: If not a non-negative integer.
        """
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents < 0:
            raise InvalidAmountError(f"Invalid amount: {amount_cents!r}")
        self._commit(amount_cents=amount_cents)

    # =========================================================================
    # Navigation
    # =========================================================================

    async def go_next(self) -> bool:
        """
        Advance one step if the current gate is open.

        From summary this moves to processing and runs the charge.

        Returns:
            True if the step changed.
        """
        target = next_step(self._state)
        if target is None:
            return False

        if target is TransactionStep.PROCESSING:
            request = self._state.charge_request()
            self._commit(step=TransactionStep.PROCESSING)
            await self.charge(request)
            return True

        self._commit(step=target)
        return True

    def go_back(self) -> bool:
        """
        Go back one step.

        Returns:
            True if the step changed.
        """
        target = previous_step(self._state)
        if target is None:
            return False
        self._commit(step=target)
        return True

    async def charge(self, request: Optional[ChargeRequest] = None) -> None:
        """Hand a charge request to the orchestrator."""
        if self._charge_handler is None:
            logger.error("No charge handler configured")
            return
        await self._charge_handler(request or self._state.charge_request())

    # =========================================================================
    # Charge Lifecycle (called by the orchestrator)
    # =========================================================================

    def begin_charge(self, message: str) -> None:
        """Mark a charge in flight and show the processing step."""
        self._commit(step=TransactionStep.PROCESSING, is_charging=True, result=None,
                     status_message=message)

    def update_status(self, message: str) -> None:
        """Replace the status message."""
        self._commit(status_message=message)

    def finish_charge(self, outcome: ChargeOutcome) -> None:
        """
        Publish the final outcome and move to the result step.

        ``is_charging`` stays set until the transaction is reset.
        """
        if outcome.is_approved:
            message = outcome.message
        elif outcome.is_failed:
            message = f"Payment failed ({outcome.message})"
        else:
            message = outcome.message
        self._commit(step=TransactionStep.RESULT, result=outcome, status_message=message)

    def reset_state_for_new_transaction(self) -> None:
        """Clear the sale and return to the category step."""
        logger.info("Resetting for new transaction")
        if self._on_reset is not None:
            self._on_reset()
        self._commit(
            step=TransactionStep.CATEGORY,
            status_message=READY_MESSAGE,
            is_charging=False,
            result=None,
            amount_cents=0,
            category=None,
            art_number=None,
        )
