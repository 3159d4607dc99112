"""
Sync Engine for periodic and event-triggered reconciliation.

This module provides the SyncEngine class that handles:
- The periodic sync job (APScheduler interval trigger, armed only while online)
- Reacting to connectivity transitions (re-arm + immediate sync / disarm)
- One reconciliation cycle: pull authoritative state, drain the queue
- Draining pending operations with a per-operation retry ceiling

Sync failures never propagate to callers; they end up on ``sync_error``.
"""

from __future__ import annotations

import asyncio
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from habitsync.gateway.base import NotConnectedError
from habitsync.gateway.base import RemoteDataGateway
from habitsync.gateway.base import RemoteError
from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.models.enums import RecordStatus
from habitsync.schemas.schemas import PendingOperation
from habitsync.schemas.schemas import SyncStatusOut
from habitsync.schemas.schemas import TrackedRecord
from habitsync.services.connectivity import ConnectivityMonitor
from habitsync.services.mutation_coordinator import is_temporary_id
from habitsync.services.pending_queue import PendingOperationQueue
from habitsync.services.state_store import AppStateStore
from habitsync.storage.local_store import LocalDurableStore
from habitsync.utils.log import get_logger
from habitsync.utils.time import utc_now_iso

log = get_logger(component="sync-engine")

PERIODIC_JOB_ID = "periodic_sync"
DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 5


class SyncEngine:
    """Owns the reconciliation loop between the state store and the gateway."""

    def __init__(
        self,
        store: AppStateStore,
        gateway: RemoteDataGateway,
        monitor: ConnectivityMonitor,
        queue: PendingOperationQueue,
        local_store: Optional[LocalDurableStore] = None,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.monitor = monitor
        self.queue = queue
        self.local_store = local_store
        self.interval_seconds = interval_seconds
        self.max_retries = max_retries
        self.scheduler = scheduler or AsyncIOScheduler()
        self._started = False

        # temp key -> server id, learned when queued creates are applied
        self._resolved_ids: Dict[str, str] = {}

        # Connectivity drives the timer from construction on, not only after start()
        self.monitor.subscribe(self._handle_connectivity)
        if self.monitor.is_online:
            self.start_auto_sync()

        if local_store is not None and store.last_sync_time is None:
            last_sync = local_store.get_last_sync()
            if last_sync:
                store.set_last_sync_time(last_sync)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler so the periodic job actually fires."""
        if not self._started:
            self.scheduler.start()
            self._started = True
            log.info("sync-engine-started", interval=self.interval_seconds, online=self.monitor.is_online)

    async def stop(self) -> None:
        """Shutdown the scheduler and stop reacting to connectivity."""
        self.monitor.unsubscribe(self._handle_connectivity)
        self.stop_auto_sync()
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            log.info("sync-engine-stopped")

    # ------------------------------------------------------------------
    # Periodic timer
    # ------------------------------------------------------------------

    @property
    def auto_sync_active(self) -> bool:
        return self.scheduler.get_job(PERIODIC_JOB_ID) is not None

    def start_auto_sync(self) -> None:
        if self.auto_sync_active:
            return
        self.scheduler.add_job(
            self._periodic_tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=PERIODIC_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        log.debug("auto-sync-armed", interval=self.interval_seconds)

    def stop_auto_sync(self) -> None:
        if self.auto_sync_active:
            self.scheduler.remove_job(PERIODIC_JOB_ID)
            log.debug("auto-sync-disarmed")

    async def _periodic_tick(self) -> None:
        await self.sync_now()

    async def _handle_connectivity(self, online: bool) -> None:
        if online:
            self.start_auto_sync()
            # Do not wait for the next tick after an outage
            await self.sync_now()
        else:
            self.stop_auto_sync()

    # ------------------------------------------------------------------
    # Reconciliation cycle
    # ------------------------------------------------------------------

    async def sync_now(self) -> bool:
        """Run one cycle; return ``False`` when the guard made it a no-op."""

        if not self.monitor.is_online or self.store.is_syncing:
            return False

        session_key = self.store.session_key
        if not session_key:
            return False

        self.store.set_syncing(True)
        self.store.set_sync_error(None)
        log.info("sync-cycle-start", pending=len(self.queue))

        try:
            await self.gateway.set_session_context(session_key)

            daily, weekly, goals = await asyncio.gather(
                self.gateway.list_daily_entries(),
                self.gateway.list_weekly_entries(),
                self.gateway.list_latest_goals_config(),
            )

            if self.store.session_key != session_key:
                # Logged out or switched sessions mid-cycle; the rows are stale
                log.info("sync-cycle-abandoned", reason="session changed")
                return True

            self._apply_remote(EntityTable.DAILY_ENTRIES, daily)
            self._apply_remote(EntityTable.WEEKLY_ENTRIES, weekly)
            self._apply_remote(EntityTable.GOALS_CONFIG, goals)

            now = utc_now_iso()
            self.store.set_last_sync_time(now)
            if self.local_store is not None:
                self.local_store.set_last_sync(now)

            await self.drain_pending()
            log.info("sync-cycle-done", pending=len(self.queue), error=self.store.sync_error)
        except Exception as exc:  # noqa: BLE001 – reported, never propagated
            message = exc.message if isinstance(exc, RemoteError) else str(exc)
            self.store.set_sync_error(message or exc.__class__.__name__)
            log.warning("sync-cycle-failed", error=message)
        finally:
            self.store.set_syncing(False)

        return True

    def _apply_remote(self, table: EntityTable, rows: List[Dict[str, Any]]) -> None:
        # Rows with a queued delete stay hidden until the delete is applied
        deleted = {
            op.data.get("id")
            for op in self.queue.dequeue_all()
            if op.type is OperationType.DELETE and op.table is table
        }
        self.store.replace_collection(table, [row for row in rows if row.get("id") not in deleted])

    async def force_sync_now(self) -> bool:
        """Manual trigger from the UI layer; refuses to run while offline."""
        if not self.monitor.is_online:
            raise NotConnectedError("Cannot sync while offline")
        return await self.sync_now()

    def get_sync_status(self) -> SyncStatusOut:
        status = self.store.sync_status()
        pending = len(status.pending_operations)
        return SyncStatusOut(
            is_online=status.is_online,
            is_syncing=status.is_syncing,
            last_sync_time=status.last_sync_time,
            pending_count=pending,
            has_pending_changes=pending > 0,
            can_sync=status.is_online and not status.is_syncing,
            sync_error=status.sync_error,
            phase=status.phase,
        )

    # ------------------------------------------------------------------
    # Queue drain
    # ------------------------------------------------------------------

    async def drain_pending(self) -> int:
        """Apply queued operations in FIFO order; return how many succeeded.

        Each operation stands alone: a failure bumps its retry counter (or
        drops it at the ceiling) and the drain moves on to the next one.
        """
        applied = 0

        for snapshot in self.queue.dequeue_all():
            operation = self.queue.get(snapshot.id)
            if operation is None:
                continue  # removed or cancelled earlier in this drain
            operation = self._resolve_target(operation)
            if self._awaits_insert(operation):
                log.debug("op-deferred", op=operation.type.value, table=operation.table.value, op_id=operation.id)
                continue

            try:
                result = await self._execute(operation)
            except Exception as exc:  # noqa: BLE001 – per-operation isolation
                self._record_failure(operation, exc)
                continue

            cancelled = not self.queue.remove(operation.id)
            self._reconcile(operation, result, cancelled=cancelled)
            applied += 1

        self._prune_resolved_ids()
        return applied

    def _awaits_insert(self, operation: PendingOperation) -> bool:
        """True for an update/delete whose record has not been created remotely yet."""
        return (
            operation.type is not OperationType.INSERT
            and is_temporary_id(operation.data.get("id"))
            and bool(operation.ref)
            and self.queue.has_pending_insert(operation.ref)
        )

    def _prune_resolved_ids(self) -> None:
        self._resolved_ids = {ref: sid for ref, sid in self._resolved_ids.items() if self.queue.has_ref(ref)}

    def clear_resolved_ids(self) -> None:
        """Forget temporary id mappings; called when the session changes."""
        self._resolved_ids.clear()

    async def _execute(self, operation: PendingOperation) -> Optional[Dict[str, Any]]:
        session_key = self.store.session_key
        if not session_key:
            raise RemoteError("No session key")

        await self.gateway.set_session_context(session_key)

        if operation.type is OperationType.INSERT:
            return await self.gateway.create(operation.table, operation.data)

        if operation.type is OperationType.UPDATE:
            patch = {k: v for k, v in operation.data.items() if k != "id"}
            return await self.gateway.update(operation.table, operation.data["id"], patch)

        await self.gateway.delete(operation.table, operation.data["id"])
        return None

    def _resolve_target(self, operation: PendingOperation) -> PendingOperation:
        """Point an update/delete queued against a temporary id at the server id."""
        target = operation.data.get("id")
        if operation.type is OperationType.INSERT or not is_temporary_id(target):
            return operation

        server_id = self._resolved_ids.get(target)
        if server_id is None and operation.ref:
            record = self.store.get_record(operation.table, operation.ref)
            if record is not None and not is_temporary_id(record.id):
                server_id = record.id
        if server_id is None:
            return operation

        resolved = operation.model_copy(update={"data": {**operation.data, "id": server_id}})
        self.queue.replace(resolved)
        return resolved

    def _reconcile(
        self, operation: PendingOperation, result: Optional[Dict[str, Any]], *, cancelled: bool = False
    ) -> None:
        if operation.type is OperationType.DELETE:
            self.store.remove_record(operation.table, operation.data["id"])
            return
        if result is None:
            return

        if operation.type is OperationType.INSERT and operation.ref:
            self._resolved_ids[operation.ref] = result["id"]
            updated = self.store.update_record(
                operation.table, operation.ref, entity=result, status=RecordStatus.CONFIRMED
            )
            if updated is not None:
                return
            if cancelled and self.store.session_key:
                # Deleted locally while the create was in flight; remove it remotely too
                self.queue.enqueue(
                    self.queue.build(OperationType.DELETE, operation.table, {"id": result["id"]}, ref=operation.ref)
                )
            else:
                self.store.add_record(
                    operation.table,
                    TrackedRecord(key=operation.ref, status=RecordStatus.CONFIRMED, entity=dict(result)),
                )
        elif operation.type is OperationType.UPDATE:
            self.store.update_record(
                operation.table, operation.ref or result["id"], entity=result, status=RecordStatus.CONFIRMED
            )

    def _record_failure(self, operation: PendingOperation, exc: Exception) -> None:
        retries = self.queue.increment_retry(operation.id)
        error = exc.message if isinstance(exc, RemoteError) else str(exc)

        if retries < self.max_retries:
            log.info(
                "op-retry-scheduled",
                op=operation.type.value,
                table=operation.table.value,
                op_id=operation.id,
                attempts=retries,
                error=error,
            )
            return

        self.queue.remove(operation.id)
        log.warning(
            "op-dropped",
            op=operation.type.value,
            table=operation.table.value,
            op_id=operation.id,
            attempts=retries,
            error=error,
        )

        if operation.type is OperationType.INSERT and operation.ref:
            self.store.update_record(operation.table, operation.ref, status=RecordStatus.FAILED, reason=error)
            # Queued writes to a record that was never created go with it
            dependents = self.queue.remove_by_ref(operation.ref)
            if dependents:
                log.warning("dependent-ops-dropped", table=operation.table.value, ref=operation.ref, count=dependents)

        self.store.set_sync_error(
            f"Failed to sync {operation.type.value} on {operation.table.value} after {self.max_retries} attempts: {error}"
        )
