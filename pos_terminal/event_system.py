"""
Event system for the POS terminal.

Decouples state notifications of the transaction state machine from
their delivery to the front end. Notifications are put on an asyncio
queue synchronously and handled by a background consumer.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Union

from pos_terminal.loggers import logger


class EventType(str, Enum):
    """
    Enumeration of event types in the POS terminal.

    These events are published when the transaction state changes.
    """

    STATE_CHANGED = "state_changed"


class EventPublisher:
    """
    Publisher for sending events to the event queue.

    Attributes:
        event_queue: The asyncio queue to publish events to.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue

    def publish_nowait(self, event_type: Union[EventType, str], **data: Any) -> None:
        """
        Publish an event without waiting.

        Used from synchronous state listeners.

        Args:
            event_type: The type of event to publish.
            **data: Additional event data as keyword arguments.
        """
        self.event_queue.put_nowait({"type": event_type, **data})


class EventConsumer:
    """
    Consumer for processing events from the event queue.

    Handlers run in registration order, one event at a time, so the
    front end receives state snapshots in the order they were produced.

    Attributes:
        event_queue: The asyncio queue to consume events from.
        handlers: Mapping of event types to their handler functions.
        is_consuming: Flag indicating if the consumer is active.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue
        self.handlers: dict[Union[EventType, str], list[Callable]] = {}
        self.is_consuming = False
        self._consume_task: asyncio.Task | None = None

    def register_handler(
        self,
        event_type: Union[EventType, str],
        handler: Callable,
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event type to handle.
            handler: The handler function (sync or async).
        """
        self.handlers.setdefault(event_type, []).append(handler)

    async def _process_event(self, event: dict[str, Any]) -> None:
        """
        Process a single event by calling all registered handlers.

        Args:
            event: The event dictionary containing type and data.
        """
        for handler in self.handlers.get(event.get("type"), []):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Event handler error for {event.get('type')}: {e}")

    async def _consume_loop(self) -> None:
        while self.is_consuming:
            try:
                # Timeout lets the loop observe is_consuming
                event = await asyncio.wait_for(self.event_queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            await self._process_event(event)
            self.event_queue.task_done()

    async def drain(self) -> None:
        """Process every queued event now."""
        while not self.event_queue.empty():
            event = self.event_queue.get_nowait()
            await self._process_event(event)
            self.event_queue.task_done()

    async def start_consuming(self) -> None:
        """Start the event consumption loop."""
        if self.is_consuming:
            return

        self.is_consuming = True
        self._consume_task = asyncio.create_task(self._consume_loop())

    async def stop_consuming(self) -> None:
        """Stop the event consumption loop and wait for it to exit."""
        self.is_consuming = False

        if self._consume_task:
            await self._consume_task
            self._consume_task = None
