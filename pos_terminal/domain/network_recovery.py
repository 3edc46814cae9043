"""
Network Recovery Monitor - Extends or resumes polling after network loss.

Two independent triggers:
- in-loop: the poller hands over a bounded recovery window when its
  primary budget ran out while requests were failing;
- out-of-band: when connectivity comes back and an intent is awaiting
  verification, a fresh poll of that intent is started immediately.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

from pos_terminal.core.interfaces import ConnectivityProbe, ReconnectCallback
from pos_terminal.core.value_objects import ChargeOutcome, Timing
from pos_terminal.loggers import logger

if TYPE_CHECKING:
    from pos_terminal.domain.status_poller import PollSession, StatusPoller


DEFAULT_CHECK_INTERVAL_SECONDS = 2.0


class NetworkRecoveryMonitor:
    """
    Observes backend reachability and drives recovery polling.

    The monitor assumes the network is reachable until a probe says
    otherwise. Reconnect handling is a no-op unless an intent is pending
    verification.
    """

    def __init__(
        self,
        probe: Optional[ConnectivityProbe] = None,
        timing: Optional[Timing] = None,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            probe: Reachability probe used by the background loop.
            timing: Timing budget (recovery window size).
            check_interval_seconds: Pause between probes.
        """
        self._probe = probe
        self._timing = timing or Timing()
        self._check_interval = check_interval_seconds

        self._is_reachable = True
        self._pending_intent_id: Optional[str] = None
        self._on_reconnect: Optional[ReconnectCallback] = None

        self._is_monitoring = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._verification_tasks: set[asyncio.Task] = set()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_reachable(self) -> bool:
        return self._is_reachable

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    @property
    def pending_intent_id(self) -> Optional[str]:
        """Intent awaiting verification, if any."""
        return self._pending_intent_id

    def set_on_reconnect(self, callback: Optional[ReconnectCallback]) -> None:
        """Set the coroutine started with the pending intent on reconnect."""
        self._on_reconnect = callback

    def mark_awaiting_verification(self, intent_id: str) -> None:
        """Record an intent whose reader start could not be confirmed."""
        logger.info(f"Intent {intent_id} awaiting verification")
        self._pending_intent_id = intent_id

    def clear_pending_intent(self, intent_id: Optional[str] = None) -> None:
        """
        Forget the pending intent.

        Args:
            intent_id: Only clear if it matches this intent.
        """
        if intent_id is not None and intent_id != self._pending_intent_id:
            return
        self._pending_intent_id = None

    # =========================================================================
    # Out-of-band Recovery
    # =========================================================================

    def handle_reachability(self, reachable: bool) -> Optional[asyncio.Task]:
        """
        Feed a reachability observation.

        Args:
            reachable: Whether the backend is reachable now.

        Returns:
            The verification task started on reconnect, if any.
        """
        was_reachable = self._is_reachable
        self._is_reachable = reachable

        if was_reachable == reachable:
            return None

        if not reachable:
            logger.warning("Payment backend unreachable")
            return None

        logger.info("Payment backend reachable again")
        return self._trigger_verification()

    def _trigger_verification(self) -> Optional[asyncio.Task]:
        intent_id = self._pending_intent_id
        if intent_id is None or self._on_reconnect is None:
            return None

        logger.info(f"Re-verifying pending intent {intent_id} after reconnect")
        task = asyncio.create_task(self._on_reconnect(intent_id))
        self._verification_tasks.add(task)
        task.add_done_callback(self._on_verification_done)
        return task

    def _on_verification_done(self, task: asyncio.Task) -> None:
        self._verification_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Verification after reconnect failed: {error}")

    # =========================================================================
    # In-loop Recovery
    # =========================================================================

    async def run_recovery_window(
        self,
        poller: "StatusPoller",
        session: "PollSession",
    ) -> Optional[ChargeOutcome]:
        """
        Give an unresolved poll session extra attempts.

        Args:
            poller: Poller that owns the session.
            session: Session whose primary budget is spent.

        Returns:
            Terminal outcome found in the window, or None.
        """
        attempts = self._timing.recovery_extra_attempts
        logger.warning(
            f"Poll budget for {session.intent_id} spent with "
            f"{session.transient_errors} network errors; "
            f"recovery window of {attempts} polls"
        )
        return await poller.poll_window(session, attempts)

    # =========================================================================
    # Background Observation
    # =========================================================================

    async def _monitor_loop(self) -> None:
        while self._is_monitoring:
            try:
                reachable = await self._probe.is_reachable()
            except Exception as e:
                logger.error(f"Connectivity probe error: {e}")
                reachable = False

            self.handle_reachability(reachable)
            await asyncio.sleep(self._check_interval)

    async def start(self) -> None:
        """Start observing connectivity in the background."""
        if self._is_monitoring:
            return
        if self._probe is None:
            logger.warning("No connectivity probe configured; reconnect recovery disabled")
            return

        self._is_monitoring = True
        self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def stop(self) -> None:
        """Stop observing connectivity and wait for the loop to exit."""
        self._is_monitoring = False

        task, self._monitor_task = self._monitor_task, None
        if task is not None:
            await task

        if self._verification_tasks:
            await asyncio.gather(*self._verification_tasks, return_exceptions=True)
