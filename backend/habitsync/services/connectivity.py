"""Connectivity Monitor – online/offline transitions, purely event-driven.

The platform's reachability signal is fed in through :meth:`handle_signal`
(the HTTP surface exposes it as ``POST /api/connectivity``).  Repeated
signals with the same value are ignored, so subscribers hear about each
transition exactly once.  The monitor never probes or polls.
"""

from __future__ import annotations

from typing import Awaitable
from typing import Callable
from typing import List
from typing import Optional

from habitsync.events import EventType
from habitsync.services.state_store import AppStateStore
from habitsync.utils.log import get_logger

log = get_logger(component="connectivity")

TransitionHandler = Callable[[bool], Awaitable[None]]


class ConnectivityMonitor:
    def __init__(self, store: Optional[AppStateStore] = None, *, initial: bool = True):
        self.store = store
        self._online = initial
        self._callbacks: List[TransitionHandler] = []
        if store is not None:
            store.set_online(initial)

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: TransitionHandler) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: TransitionHandler) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def handle_signal(self, online: bool) -> bool:
        """Apply a reachability signal; return ``True`` if it was a transition."""

        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        log.info("connectivity-transition", online=online)

        if self.store is not None:
            self.store.set_online(online)
            self.store.bus.publish_nowait(EventType.CONNECTIVITY_CHANGED, {"is_online": online})

        # Subscribers run in registration order; one failing handler does
        # not stop the others from hearing about the transition.
        for callback in list(self._callbacks):
            try:
                await callback(online)
            except Exception as exc:  # noqa: BLE001
                log.error("connectivity-handler-failed", online=online, error=str(exc))
        return True

    async def go_online(self) -> bool:
        return await self.handle_signal(True)

    async def go_offline(self) -> bool:
        return await self.handle_signal(False)
