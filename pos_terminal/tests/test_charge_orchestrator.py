"""
Unit tests for the charge orchestrator.
"""

import asyncio
import re
from unittest.mock import AsyncMock

import pytest

from conftest import FakeClock, ScriptedPaymentAPI, instant_sleep, make_status
from pos_terminal.application.charge_orchestrator import ChargeOrchestrator
from pos_terminal.core.exceptions import ReaderStartAmbiguousError, RedisConnectionError
from pos_terminal.core.value_objects import (
    Category,
    ChargeOutcome,
    ChargeRequest,
    TransactionStep,
)
from pos_terminal.domain.network_recovery import NetworkRecoveryMonitor
from pos_terminal.domain.reset_scheduler import ResetScheduler
from pos_terminal.domain.status_poller import UNKNOWN_STATUS_MESSAGE, StatusPoller
from pos_terminal.domain.transaction_state_machine import (
    READY_MESSAGE,
    TransactionStateMachine,
)
from pos_terminal.infrastructure.redis_repository import TransactionRepository


MERCH_SALE = ChargeRequest(1250, Category.MERCH)
WAIT_PATTERN = re.compile(r"Waiting for card… \((\d+)s\)")


def build(api, timing, monitor=None, repository=None, poller=None, auto_reset=False):
    machine = TransactionStateMachine()
    poller = poller or StatusPoller(api, timing, sleep=instant_sleep)
    scheduler = ResetScheduler(
        machine.reset_state_for_new_transaction,
        timing,
        enabled=auto_reset,
        sleep=instant_sleep,
    )
    orchestrator = ChargeOrchestrator(
        api,
        machine,
        poller,
        monitor=monitor,
        timing=timing,
        currency="usd",
        repository=repository,
        reset_scheduler=scheduler,
    )
    machine.set_charge_handler(orchestrator.charge)
    return machine, orchestrator, scheduler


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


class ControlledPoller:
    """
    Poller fake: the first call (primary loop) waits for release,
    later calls (verification) answer immediately.
    """

    def __init__(self, primary=None, verification=None):
        self.primary = primary or ChargeOutcome.unknown(UNKNOWN_STATUS_MESSAGE)
        self.verification = verification or ChargeOutcome.approved()
        self.release = asyncio.Event()
        self.tokens = []
        self.on_status = None

    def set_on_status(self, callback):
        self.on_status = callback

    def set_recovery(self, recovery):
        pass

    def wait_deadline(self):
        return 0.0

    async def poll_until_terminal(self, intent_id, cancel_token=None, deadline=None):
        self.tokens.append(cancel_token)
        if len(self.tokens) == 1:
            await self.release.wait()
            return self.primary
        return self.verification


class GatedAPI(ScriptedPaymentAPI):
    """Backend whose intent creation waits for a gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def create_intent(self, *args, **kwargs):
        await self.gate.wait()
        return await super().create_intent(*args, **kwargs)


class GatedReaderAPI(ScriptedPaymentAPI):
    """Backend whose reader start waits for a gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def start_reader_charge(self, intent_id):
        await self.gate.wait()
        return await super().start_reader_charge(intent_id)


# =============================================================================
# Rejections
# =============================================================================


class TestRejections:
    """Tests for silently rejected charges."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, -10000])
    async def test_non_positive_amount_leaves_state_unchanged(self, fast_timing, amount):
        api = ScriptedPaymentAPI()
        machine, orchestrator, _ = build(api, fast_timing)
        before = machine.state

        await orchestrator.charge(ChargeRequest(amount, Category.MERCH))

        assert machine.state == before
        assert api.create_calls == []

    @pytest.mark.asyncio
    async def test_second_charge_while_charging_is_noop(self, fast_timing):
        api = GatedAPI()
        machine, orchestrator, _ = build(api, fast_timing)

        first = asyncio.create_task(orchestrator.charge(MERCH_SALE))
        await settle()
        assert machine.is_charging

        await orchestrator.charge(MERCH_SALE)
        api.gate.set()
        await first

        assert len(api.create_calls) == 1
        assert machine.result.is_approved

    @pytest.mark.asyncio
    async def test_art_without_number_rejected(self, fast_timing):
        api = ScriptedPaymentAPI()
        machine, orchestrator, _ = build(api, fast_timing)

        await orchestrator.charge(ChargeRequest(500, Category.ART))

        assert not machine.is_charging
        assert api.create_calls == []

    @pytest.mark.asyncio
    async def test_finished_charge_not_repeated_before_reset(self, fast_timing):
        api = ScriptedPaymentAPI()
        machine, orchestrator, _ = build(api, fast_timing)

        await orchestrator.charge(MERCH_SALE)
        await orchestrator.charge(MERCH_SALE)

        assert len(api.create_calls) == 1


# =============================================================================
# Charge Flow
# =============================================================================


class TestChargeFlow:
    """Tests for the create -> reader -> poll flow."""

    @pytest.mark.asyncio
    async def test_approved_from_summary(self, fast_timing):
        api = ScriptedPaymentAPI([make_status("processing"), make_status("succeeded")])
        machine, _, _ = build(api, fast_timing)
        machine.select_category(Category.ART)
        await machine.go_next()
        machine.set_art_number(7)
        await machine.go_next()
        machine.set_amount(2500)
        await machine.go_next()

        await machine.go_next()

        assert api.create_calls == [{
            "amount_cents": 2500,
            "currency": "usd",
            "category": "art",
            "description": "Art #7 Sale",
        }]
        assert api.reader_calls == ["pi_123"]
        assert machine.step is TransactionStep.RESULT
        assert machine.result.is_approved
        assert machine.status_message == "Payment completed!"
        assert machine.is_charging

    @pytest.mark.asyncio
    async def test_create_failure_is_terminal(self, fast_timing, create_failure):
        api = ScriptedPaymentAPI(create_error=create_failure)
        machine, _, _ = build(api, fast_timing)

        await machine.charge(MERCH_SALE)

        assert machine.step is TransactionStep.RESULT
        assert machine.result.is_failed
        assert machine.status_message.startswith("Payment failed (")
        assert api.reader_calls == []
        assert api.status_calls == []

    @pytest.mark.asyncio
    async def test_declined(self, fast_timing):
        api = ScriptedPaymentAPI([
            make_status("requires_payment_method", last_payment_error_message="Your card was declined."),
        ])
        machine, _, _ = build(api, fast_timing)

        await machine.charge(MERCH_SALE)

        assert machine.result == ChargeOutcome.failed("Your card was declined.")
        assert machine.status_message == "Payment failed (Your card was declined.)"

    @pytest.mark.asyncio
    async def test_unknown_when_nothing_terminal(self, fast_timing):
        api = ScriptedPaymentAPI([make_status("requires_payment_method")])
        machine, _, _ = build(api, fast_timing)

        await machine.charge(MERCH_SALE)

        assert machine.result.is_unknown
        assert machine.status_message == UNKNOWN_STATUS_MESSAGE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reader_result", [
        False,
        ReaderStartAmbiguousError("Reader start for pi_123 not confirmed"),
        RuntimeError("socket closed"),
    ])
    async def test_reader_start_failure_still_polls(self, fast_timing, reader_result):
        """Test a reader start failure is verified by polling, never trusted."""
        api = ScriptedPaymentAPI(reader_result=reader_result)
        monitor = NetworkRecoveryMonitor(timing=fast_timing)
        repository = AsyncMock(spec=TransactionRepository)
        machine, _, _ = build(api, fast_timing, monitor=monitor, repository=repository)

        await machine.charge(MERCH_SALE)

        assert machine.result.is_approved
        assert api.status_calls == ["pi_123"]
        repository.set_pending_intent.assert_awaited_once_with("pi_123")
        assert monitor.pending_intent_id is None

    @pytest.mark.asyncio
    async def test_confirmed_reader_start_not_marked_pending(self, fast_timing):
        repository = AsyncMock(spec=TransactionRepository)
        machine, _, _ = build(ScriptedPaymentAPI(), fast_timing, repository=repository)

        await machine.charge(MERCH_SALE)

        repository.set_pending_intent.assert_not_called()


# =============================================================================
# Bookkeeping
# =============================================================================


class TestBookkeeping:
    """Tests for outcome recording and automatic reset."""

    @pytest.mark.asyncio
    async def test_outcome_recorded(self, fast_timing):
        repository = AsyncMock(spec=TransactionRepository)
        machine, _, _ = build(ScriptedPaymentAPI(), fast_timing, repository=repository)

        await machine.charge(ChargeRequest(900, Category.ART, art_number=2))

        record = repository.record_outcome.await_args.args[0]
        assert record.intent_id == "pi_123"
        assert record.outcome == "approved"
        assert record.category == "art"
        assert record.art_number == 2
        repository.clear_pending_intent.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_repository_failure_does_not_hide_outcome(self, fast_timing):
        repository = AsyncMock(spec=TransactionRepository)
        repository.record_outcome.side_effect = RedisConnectionError("Redis connection error")
        machine, _, _ = build(ScriptedPaymentAPI(), fast_timing, repository=repository)

        await machine.charge(MERCH_SALE)

        assert machine.result.is_approved

    @pytest.mark.asyncio
    async def test_auto_reset(self, fast_timing):
        machine, _, scheduler = build(ScriptedPaymentAPI(), fast_timing, auto_reset=True)

        await machine.charge(MERCH_SALE)
        await scheduler._task

        assert machine.step is TransactionStep.CATEGORY
        assert machine.status_message == READY_MESSAGE
        assert not machine.is_charging
        assert machine.amount_cents == 0

    @pytest.mark.asyncio
    async def test_manual_reset_allows_new_charge(self, fast_timing):
        api = ScriptedPaymentAPI()
        machine, _, _ = build(api, fast_timing)

        await machine.charge(MERCH_SALE)
        machine.reset_state_for_new_transaction()
        await machine.charge(MERCH_SALE)

        assert len(api.create_calls) == 2


# =============================================================================
# Verification
# =============================================================================


class TestVerification:
    """Tests for out-of-band verification after reconnect."""

    @pytest.mark.asyncio
    async def test_reconnect_finalises_once(self, fast_timing):
        api = ScriptedPaymentAPI(reader_result=False)
        monitor = NetworkRecoveryMonitor(timing=fast_timing)
        repository = AsyncMock(spec=TransactionRepository)
        poller = ControlledPoller()
        machine, _, _ = build(api, fast_timing, monitor=monitor, repository=repository, poller=poller)

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        assert monitor.pending_intent_id == "pi_123"

        monitor.handle_reachability(False)
        verification = monitor.handle_reachability(True)
        outcome = await verification

        assert outcome.is_approved
        assert machine.result.is_approved
        assert poller.tokens[0].cancelled

        poller.release.set()
        await charge

        assert machine.result.is_approved
        repository.record_outcome.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_inconclusive_verification_leaves_primary_in_charge(self, fast_timing):
        poller = ControlledPoller(
            primary=ChargeOutcome.failed("Card declined"),
            verification=ChargeOutcome.unknown(UNKNOWN_STATUS_MESSAGE),
        )
        machine, orchestrator, _ = build(ScriptedPaymentAPI(reader_result=False), fast_timing, poller=poller)

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        outcome = await orchestrator.verify_pending_intent("pi_123")

        assert outcome.is_unknown
        assert machine.step is TransactionStep.PROCESSING

        poller.release.set()
        await charge

        assert machine.result == ChargeOutcome.failed("Card declined")

    @pytest.mark.asyncio
    async def test_verification_of_other_intent_skipped(self, fast_timing):
        _, orchestrator, _ = build(ScriptedPaymentAPI(), fast_timing)
        assert await orchestrator.verify_pending_intent("pi_other") is None

    @pytest.mark.asyncio
    async def test_status_ignored_after_finish(self, fast_timing):
        poller = ControlledPoller()
        machine, orchestrator, _ = build(ScriptedPaymentAPI(reader_result=False), fast_timing, poller=poller)

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        poller.on_status("Waiting for card… (42s)")
        assert machine.status_message == "Waiting for card… (42s)"

        await orchestrator.verify_pending_intent("pi_123")
        poller.on_status("Waiting for card… (41s)")

        assert machine.status_message == "Payment completed!"
        poller.release.set()
        await charge

    @pytest.mark.asyncio
    async def test_reset_during_charge_stops_polling(self, fast_timing):
        poller = ControlledPoller(primary=ChargeOutcome.approved())
        machine, orchestrator, _ = build(ScriptedPaymentAPI(), fast_timing, poller=poller)

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        machine.reset_state_for_new_transaction()

        assert poller.tokens[0].cancelled
        assert orchestrator.active_intent_id is None

        poller.release.set()
        await charge

        assert machine.step is TransactionStep.CATEGORY
        assert machine.result is None

    @pytest.mark.asyncio
    async def test_reconnect_during_card_wait_keeps_one_countdown(self, fast_timing):
        """Test a verification poll during the card wait never restarts the countdown."""
        clock = FakeClock()

        async def advancing_sleep(seconds):
            clock.now += seconds
            await asyncio.sleep(0.01)

        api = ScriptedPaymentAPI([make_status("requires_payment_method")], reader_result=False)
        monitor = NetworkRecoveryMonitor(timing=fast_timing)
        poller = StatusPoller(api, fast_timing, sleep=advancing_sleep, clock=clock)
        machine, _, _ = build(api, fast_timing, monitor=monitor, poller=poller)
        messages = []
        machine.subscribe(lambda snapshot, direction: messages.append(snapshot.status_message))

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await asyncio.sleep(0.005)
        monitor.handle_reachability(False)
        verification = monitor.handle_reachability(True)
        await verification
        await charge

        remaining = [int(m.group(1)) for m in map(WAIT_PATTERN.match, messages) if m]
        assert len(api.status_calls) > fast_timing.max_polls
        assert remaining
        assert remaining == sorted(remaining, reverse=True)
        assert machine.result.is_unknown


# =============================================================================
# Reset During Charge
# =============================================================================


class TestResetDuringCharge:
    """Tests for a sale reset before the charge reached the poll loop."""

    @pytest.mark.asyncio
    async def test_reset_before_intent_created_never_reaches_reader(self, fast_timing):
        api = GatedAPI()
        machine, orchestrator, _ = build(api, fast_timing)

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        machine.reset_state_for_new_transaction()
        published = []
        machine.subscribe(lambda snapshot, direction: published.append(snapshot.status_message))

        api.gate.set()
        await charge

        assert api.reader_calls == []
        assert api.status_calls == []
        assert published == []
        assert machine.step is TransactionStep.CATEGORY
        assert machine.status_message == READY_MESSAGE
        assert orchestrator.active_intent_id is None

    @pytest.mark.asyncio
    async def test_reset_during_reader_start_stops_charge(self, fast_timing):
        api = GatedReaderAPI(reader_result=False)
        monitor = NetworkRecoveryMonitor(timing=fast_timing)
        repository = AsyncMock(spec=TransactionRepository)
        machine, _, _ = build(api, fast_timing, monitor=monitor, repository=repository)

        charge = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        assert api.reader_calls == []
        machine.reset_state_for_new_transaction()

        api.gate.set()
        await charge

        assert api.status_calls == []
        assert monitor.pending_intent_id is None
        repository.set_pending_intent.assert_not_called()
        repository.record_outcome.assert_not_called()
        assert machine.status_message == READY_MESSAGE

    @pytest.mark.asyncio
    async def test_new_charge_after_reset_is_the_only_one_in_flight(self, fast_timing):
        api = GatedAPI()
        machine, _, _ = build(api, fast_timing)

        abandoned = asyncio.create_task(machine.charge(MERCH_SALE))
        await settle()
        machine.reset_state_for_new_transaction()
        current = asyncio.create_task(machine.charge(ChargeRequest(300, Category.FLYTRAP)))
        await settle()

        api.gate.set()
        await asyncio.gather(abandoned, current)

        assert len(api.create_calls) == 2
        assert api.reader_calls == ["pi_123"]
        assert len(api.status_calls) == 1
        assert machine.result.is_approved
