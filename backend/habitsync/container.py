"""Composition root.

Builds one isolated set of sync components from :class:`Settings`.  There
are no module-level singletons: the FastAPI app holds its container on
``app.state`` and tests build their own.
"""

from __future__ import annotations

import logging
from typing import Optional

from habitsync.config import Settings
from habitsync.events import EventBus
from habitsync.gateway.base import RemoteDataGateway
from habitsync.gateway.base import guarded
from habitsync.services.connectivity import ConnectivityMonitor
from habitsync.services.mutation_coordinator import OptimisticMutationCoordinator
from habitsync.services.pending_queue import PendingOperationQueue
from habitsync.services.session_service import SessionService
from habitsync.services.state_store import AppStateStore
from habitsync.services.sync_engine import SyncEngine
from habitsync.storage.local_store import LocalDurableStore

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings) -> RemoteDataGateway:
    """Instantiate the configured remote backend (unguarded)."""

    if settings.remote_backend == "rest":
        from habitsync.gateway.rest import RestGateway

        return RestGateway(settings.rest_url, settings.rest_api_key)

    from habitsync.gateway.sql import SqlGateway

    return SqlGateway.from_url(settings.database_url)


class SyncContainer:
    def __init__(
        self,
        settings: Settings,
        *,
        gateway: Optional[RemoteDataGateway] = None,
        local_store: Optional[LocalDurableStore] = None,
    ):
        self.settings = settings

        self.bus = EventBus()
        self.store = AppStateStore(self.bus, is_online=settings.start_online)
        self.local_store = local_store if local_store is not None else LocalDurableStore(settings.local_store_path)
        self.gateway = guarded(gateway or build_gateway(settings), settings.gateway_timeout_seconds)

        self.monitor = ConnectivityMonitor(self.store, initial=settings.start_online)
        self.queue = PendingOperationQueue(self.store, self.local_store)
        self.coordinator = OptimisticMutationCoordinator(self.store, self.gateway, self.monitor, self.queue)
        self.engine = SyncEngine(
            self.store,
            self.gateway,
            self.monitor,
            self.queue,
            self.local_store,
            interval_seconds=settings.sync_interval_seconds,
            max_retries=settings.max_retries,
        )
        self.sessions = SessionService(
            self.store, self.gateway, self.monitor, self.queue, self.local_store, self.engine
        )

    async def start(self, *, run_scheduler: bool = True) -> None:
        """Restore the stored session and (optionally) start the periodic timer."""
        if run_scheduler:
            await self.engine.start()
        await self.sessions.initialize()
        logger.info(
            f"Sync container started (backend={self.settings.remote_backend}, "
            f"online={self.monitor.is_online}, scheduler={run_scheduler})"
        )

    async def stop(self) -> None:
        await self.engine.stop()
        await self.store.drain_events()
        await self.gateway.aclose()
        logger.info("Sync container stopped")
