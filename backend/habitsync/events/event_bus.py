"""Event bus implementation for decoupled state observation.

Each :class:`~habitsync.services.state_store.AppStateStore` owns its own bus
so tests can build isolated instances; there is no module-level singleton.
"""

import asyncio
import logging
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Set

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventType(str, Enum):
    """Events emitted by the sync core for UI observers."""

    # Application state
    STATE_CHANGED = "state_changed"
    RECORD_CHANGED = "record_changed"

    # Sync status
    SYNC_STATUS_CHANGED = "sync_status_changed"
    CONNECTIVITY_CHANGED = "connectivity_changed"

    # Session lifecycle
    SESSION_CHANGED = "session_changed"

    ERROR = "error"


class EventBus:
    """Async publish/subscribe hub."""

    def __init__(self):
        self._subscribers: Dict[EventType, Set[Handler]] = {}
        # Fire-and-forget tasks are tracked so they can be awaited on shutdown
        self._active_tasks: Set[asyncio.Task] = set()

    async def publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event to all subscribers.

        Handler failures are logged and never reach the publisher.
        """
        if event_type not in self._subscribers:
            return

        logger.debug(f"Publishing event {event_type} with data: {data}")

        for callback in list(self._subscribers[event_type]):
            try:
                await callback(data)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type}: {str(e)}")

    def publish_nowait(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Schedule :meth:`publish` without waiting for it.

        Used from synchronous mutation paths.  Outside a running loop the
        event is dropped because nobody can be awaiting it.
        """
        if event_type not in self._subscribers:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, dropping {event_type}")
            return

        task = loop.create_task(self.publish(event_type, data))
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding fire-and-forget publications."""
        while self._active_tasks:
            pending = list(self._active_tasks)
            try:
                await asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Timeout waiting for {len(pending)} event tasks, cancelling them")
                for task in pending:
                    task.cancel()
                return

    def subscribe(self, event_type: EventType, callback: Handler) -> None:
        """Subscribe an async callback to an event type."""
        self._subscribers.setdefault(event_type, set()).add(callback)
        logger.debug(f"Added subscriber for event {event_type}")

    def unsubscribe(self, event_type: EventType, callback: Handler) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._subscribers:
            self._subscribers[event_type].discard(callback)
            logger.debug(f"Removed subscriber for event {event_type}")

            # Clean up empty subscriber sets
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]
