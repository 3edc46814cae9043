"""
API Facade - Unified interface for the POS terminal.

Wires the charge flow together and exposes the entry points used by
the command channel. State changes are pushed to the front end through
the event queue.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from redis.asyncio import Redis

from pos_terminal.application.charge_orchestrator import ChargeOrchestrator
from pos_terminal.core.exceptions import (
    ChargeInProgressError,
    InvalidAmountError,
    InvalidArtNumberError,
    InvalidChargeRequestError,
    TransactionError,
)
from pos_terminal.core.interfaces import ConnectivityProbe, PaymentAPI
from pos_terminal.core.value_objects import (
    Category,
    ChargeRequest,
    TransitionDirection,
)
from pos_terminal.domain.network_recovery import NetworkRecoveryMonitor
from pos_terminal.domain.reset_scheduler import ResetScheduler
from pos_terminal.domain.status_poller import StatusPoller
from pos_terminal.domain.transaction_state_machine import (
    TransactionSnapshot,
    TransactionStateMachine,
)
from pos_terminal.event_system import EventConsumer, EventPublisher, EventType
from pos_terminal.infrastructure.connectivity import HttpConnectivityProbe
from pos_terminal.infrastructure.payment_api_client import PaymentApiClient
from pos_terminal.infrastructure.redis_repository import TransactionRepository
from pos_terminal.infrastructure.settings import Settings, get_settings
from pos_terminal.loggers import logger
from pos_terminal.send_to_ws import STATE_EVENT, send_to_ws


WsSender = Callable[..., Awaitable[bool]]


class PointOfSaleFacade:
    """
    Facade for the POS terminal API.

    Owns one transaction state machine and the collaborators of its
    charge flow. Charges run as background tasks so commands never wait
    for a card.
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        settings: Optional[Settings] = None,
        api: Optional[PaymentAPI] = None,
        probe: Optional[ConnectivityProbe] = None,
        ws_sender: WsSender = send_to_ws,
    ) -> None:
        """
        Initialize the POS terminal facade.

        Args:
            redis: Redis client for outcome bookkeeping (optional).
            settings: Application settings (defaults to get_settings()).
            api: Payment backend (defaults to the HTTP client).
            probe: Connectivity probe (defaults to an HTTP probe of the backend).
            ws_sender: Coroutine that pushes events to the front end.
        """
        self._settings = settings or get_settings()
        self._ws_sender = ws_sender
        timing = self._settings.timing

        # Event system
        self._event_queue: asyncio.Queue = asyncio.Queue()
        self._event_publisher = EventPublisher(self._event_queue)
        self._event_consumer = EventConsumer(self._event_queue)

        # Collaborators
        self._api = api or PaymentApiClient(self._settings.api)
        self._probe = probe or HttpConnectivityProbe(self._settings.api.base_url)
        self._repository = TransactionRepository(redis) if redis is not None else None

        self._state_machine = TransactionStateMachine()
        self._monitor = NetworkRecoveryMonitor(
            self._probe,
            timing,
            check_interval_seconds=self._settings.terminal.connectivity_check_seconds,
        )
        self._poller = StatusPoller(self._api, timing)
        self._reset_scheduler = ResetScheduler(
            self._state_machine.reset_state_for_new_transaction,
            timing,
            enabled=self._settings.terminal.auto_reset,
        )
        self._orchestrator = ChargeOrchestrator(
            self._api,
            self._state_machine,
            self._poller,
            monitor=self._monitor,
            timing=timing,
            currency=self._settings.api.currency,
            repository=self._repository,
            reset_scheduler=self._reset_scheduler,
        )

        self._charge_tasks: set[asyncio.Task] = set()
        self._state_machine.set_charge_handler(self._spawn_charge)
        self._state_machine.subscribe(self._on_state_changed)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start event delivery and connectivity monitoring."""
        self._event_consumer.register_handler(EventType.STATE_CHANGED, self._push_state)
        await self._event_consumer.start_consuming()
        await self._monitor.start()

        if self._repository is not None:
            pending = await self._repository.get_pending_intent()
            if pending:
                logger.warning(
                    f"Intent {pending} from a previous session was never verified; "
                    f"check the payment dashboard"
                )

        logger.info("POS terminal started")

    async def shutdown(self) -> None:
        """Stop background work and close connections."""
        self._reset_scheduler.cancel()
        await self._monitor.stop()

        for task in self._charge_tasks:
            task.cancel()
        if self._charge_tasks:
            await asyncio.gather(*self._charge_tasks, return_exceptions=True)

        await self._event_consumer.stop_consuming()
        await self._event_consumer.drain()

        for resource in (self._api, self._probe):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("POS terminal shut down")

    # =========================================================================
    # Charge Tasks
    # =========================================================================

    async def _spawn_charge(self, request: ChargeRequest) -> None:
        task = asyncio.create_task(self._orchestrator.charge(request))
        self._charge_tasks.add(task)
        task.add_done_callback(self._on_charge_done)

    def _on_charge_done(self, task: asyncio.Task) -> None:
        self._charge_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Charge task failed: {error}")

    # =========================================================================
    # State Delivery
    # =========================================================================

    def _on_state_changed(
        self,
        snapshot: TransactionSnapshot,
        direction: TransitionDirection,
    ) -> None:
        self._event_publisher.publish_nowait(
            EventType.STATE_CHANGED,
            state=snapshot.to_dict(),
            direction=direction.name.lower(),
        )

    async def _push_state(self, event: dict[str, Any]) -> None:
        data = {**event["state"], "direction": event["direction"]}
        await self._ws_sender(STATE_EVENT, self._settings.services.websocket_url, data)

    def _state_response(self, success: bool = True, message: Optional[str] = None) -> dict[str, Any]:
        return {
            "success": success,
            "message": message,
            "data": self._state_machine.state.to_dict(),
        }

    # =========================================================================
    # Input Operations
    # =========================================================================

    async def select_category(self, category: str) -> dict[str, Any]:
        """Select the sale category."""
        try:
            selected = Category(category)
        except ValueError:
            raise TransactionError(f"Unknown category: {category}")
        self._state_machine.select_category(selected)
        return self._state_response(message=f"Category: {selected.label}")

    async def set_amount(self, amount_cents: Any) -> dict[str, Any]:
        """Set the amount in cents."""
        try:
            amount = int(amount_cents)
        except (TypeError, ValueError):
            raise InvalidAmountError(f"Invalid amount: {amount_cents!r}")
        self._state_machine.set_amount(amount)
        return self._state_response()

    async def set_art_number(self, art_number: Any) -> dict[str, Any]:
        """Set the art catalogue number."""
        try:
            number = int(art_number)
        except (TypeError, ValueError):
            raise InvalidArtNumberError(f"Invalid art number: {art_number!r}", art_number=art_number)
        self._state_machine.set_art_number(number)
        return self._state_response()

    # =========================================================================
    # Navigation Operations
    # =========================================================================

    async def go_next(self) -> dict[str, Any]:
        """Advance one step if the current gate is open."""
        moved = await self._state_machine.go_next()
        return self._state_response(moved, None if moved else "Cannot continue from this step")

    async def go_back(self) -> dict[str, Any]:
        """Go back one step."""
        moved = self._state_machine.go_back()
        return self._state_response(moved, None if moved else "Cannot go back from this step")

    async def charge(self) -> dict[str, Any]:
        """
        Charge the current selection.

        Raises:
            ChargeInProgressError: If a charge is already in flight.
            InvalidChargeRequestError: If the selection cannot be charged.
        """
        state = self._state_machine.state
        if state.is_charging:
            raise ChargeInProgressError("A charge is already in progress")
        reason = state.charge_request().validation_error()
        if reason is not None:
            raise InvalidChargeRequestError(reason)

        await self._state_machine.charge()
        return self._state_response(message="Charge started")

    async def reset_state_for_new_transaction(self) -> dict[str, Any]:
        """Clear the sale and return to the first step."""
        self._state_machine.reset_state_for_new_transaction()
        return self._state_response()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_state(self) -> dict[str, Any]:
        """Get the published transaction state."""
        return self._state_response()

    async def get_pending_intent(self) -> dict[str, Any]:
        """Get the intent awaiting verification, if any."""
        intent_id = self._monitor.pending_intent_id
        if intent_id is None and self._repository is not None:
            intent_id = await self._repository.get_pending_intent()
        return {
            "success": True,
            "message": None if intent_id else "No intent awaiting verification",
            "data": {"intent_id": intent_id},
        }

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state_machine(self) -> TransactionStateMachine:
        return self._state_machine

    @property
    def orchestrator(self) -> ChargeOrchestrator:
        return self._orchestrator

    @property
    def is_charging(self) -> bool:
        """Check if a charge is in flight or awaiting reset."""
        return self._state_machine.is_charging
