"""Optimistic Mutation Coordinator – single entry point for every write.

Each command applies its change to the :class:`AppStateStore` first, with
no ``await`` in between, so the UI never waits on the network.  A single
connectivity check then picks one of two strategies:

* :class:`ImmediateAttempt` – call the gateway now, reconcile the record
  with the server's answer, or mark/roll back and re-raise on failure.
* :class:`Enqueue` – append a :class:`PendingOperation` for the sync
  engine to drain once connectivity returns.

Failure handling per command:

=========  ==========================================================
create     record kept, variant ``FAILED`` with the reason
update     record rolled back to its pre-update value, reason attached
delete     record restored at its old position
=========  ==========================================================

In every case the message lands on the store's global ``error`` and the
:class:`RemoteError` propagates to the caller.  Immediate failures are not
retried automatically; only queued operations are.
"""

from __future__ import annotations

import uuid
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any
from typing import Callable
from typing import Dict
from typing import Optional
from typing import Union

from pydantic import BaseModel

from habitsync.gateway.base import RemoteDataGateway
from habitsync.gateway.base import RemoteError
from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.models.enums import RecordStatus
from habitsync.schemas.schemas import CREATE_SCHEMAS
from habitsync.schemas.schemas import UPDATE_SCHEMAS
from habitsync.schemas.schemas import TrackedRecord
from habitsync.services.connectivity import ConnectivityMonitor
from habitsync.services.pending_queue import PendingOperationQueue
from habitsync.services.state_store import AppStateStore
from habitsync.utils.log import get_logger
from habitsync.utils.time import utc_now_iso

log = get_logger(component="coordinator")

TEMP_ID_PREFIX = "temp_"

_TEMP_LABELS = {
    EntityTable.DAILY_ENTRIES: "daily",
    EntityTable.WEEKLY_ENTRIES: "weekly",
    EntityTable.GOALS_CONFIG: "goals",
}

Payload = Union[Dict[str, Any], BaseModel]


def is_temporary_id(entity_id: Optional[str]) -> bool:
    return bool(entity_id) and entity_id.startswith(TEMP_ID_PREFIX)


def default_temp_id(table: EntityTable) -> str:
    return f"{TEMP_ID_PREFIX}{_TEMP_LABELS[table]}_{uuid.uuid4().hex[:12]}"


class UnknownRecordError(LookupError):
    """Update/delete addressed a record the store does not hold."""


@dataclass
class Mutation:
    """One optimistic write, already applied locally."""

    type: OperationType
    table: EntityTable
    key: str
    payload: Dict[str, Any]
    target_id: Optional[str] = None
    previous: Optional[TrackedRecord] = None
    position: Optional[int] = None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class MutationStrategy(ABC):
    name = "base"

    @abstractmethod
    async def apply(self, coordinator: "OptimisticMutationCoordinator", mutation: Mutation) -> Optional[TrackedRecord]:
        ...


class ImmediateAttempt(MutationStrategy):
    name = "immediate"

    async def apply(self, coordinator, mutation):
        store = coordinator.store
        gateway = coordinator.gateway
        store.set_error(None)

        try:
            if not store.session_key:
                raise RemoteError("No active session", status_code=401)
            await gateway.set_session_context(store.session_key)

            if mutation.type is OperationType.INSERT:
                server = await gateway.create(mutation.table, mutation.payload)
            elif mutation.type is OperationType.UPDATE:
                server = await gateway.update(mutation.table, mutation.target_id, mutation.payload)
            else:
                await gateway.delete(mutation.table, mutation.target_id)
                return None
        except RemoteError as exc:
            coordinator.handle_immediate_failure(mutation, exc)
            raise

        # Reconcile in place: same key, server fields (including the server id)
        return store.update_record(mutation.table, mutation.key, entity=server, status=RecordStatus.CONFIRMED)


class Enqueue(MutationStrategy):
    name = "enqueue"

    async def apply(self, coordinator, mutation):
        queue = coordinator.queue

        if mutation.type is OperationType.INSERT:
            queue.enqueue(queue.build(OperationType.INSERT, mutation.table, mutation.payload, ref=mutation.key))
        elif mutation.type is OperationType.UPDATE:
            data = {"id": mutation.target_id, **mutation.payload}
            queue.enqueue(queue.build(OperationType.UPDATE, mutation.table, data, ref=mutation.key))
        elif queue.has_pending_insert(mutation.key):
            # Never reached the server: cancel its queued writes instead
            queue.remove_by_ref(mutation.key)
            return None
        else:
            queue.enqueue(queue.build(OperationType.DELETE, mutation.table, {"id": mutation.target_id}, ref=mutation.key))

        return coordinator.store.get_record(mutation.table, mutation.key)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class OptimisticMutationCoordinator:
    def __init__(
        self,
        store: AppStateStore,
        gateway: RemoteDataGateway,
        monitor: ConnectivityMonitor,
        queue: PendingOperationQueue,
        *,
        id_factory: Callable[[EntityTable], str] = default_temp_id,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.store = store
        self.gateway = gateway
        self.monitor = monitor
        self.queue = queue
        self.id_factory = id_factory
        self.clock = clock

        self.immediate = ImmediateAttempt()
        self.enqueue = Enqueue()

    def select_strategy(self, mutation: Mutation) -> MutationStrategy:
        if not self.monitor.is_online:
            return self.enqueue
        # A record whose create is still queued cannot be addressed remotely yet
        if mutation.type is not OperationType.INSERT and self.queue.has_pending_insert(mutation.key):
            return self.enqueue
        return self.immediate

    # ------------------------------------------------------------------
    # Generic commands
    # ------------------------------------------------------------------

    async def create(self, table: EntityTable, payload: Payload) -> TrackedRecord:
        data = self._validated(table, payload, create=True)
        if "session_id" not in data and self.store.current_session and self.store.current_session.get("id"):
            data["session_id"] = self.store.current_session["id"]

        now = self.clock()
        temp_id = self.id_factory(table)
        record = TrackedRecord(
            key=temp_id,
            status=RecordStatus.OPTIMISTIC,
            entity={**data, "id": temp_id, "created_at": now, "updated_at": now},
        )
        self.store.add_record(table, record)

        mutation = Mutation(type=OperationType.INSERT, table=table, key=temp_id, payload=data)
        return await self._dispatch(mutation) or record

    async def update(self, table: EntityTable, key_or_id: str, patch: Payload) -> TrackedRecord:
        data = self._validated(table, patch, create=False)
        previous = self._require(table, key_or_id)

        applied = self.store.update_record(
            table,
            previous.key,
            patch={**data, "updated_at": self.clock()},
            status=RecordStatus.OPTIMISTIC,
        )

        mutation = Mutation(
            type=OperationType.UPDATE,
            table=table,
            key=previous.key,
            payload=data,
            target_id=previous.id,
            previous=previous,
        )
        return await self._dispatch(mutation) or applied

    async def delete(self, table: EntityTable, key_or_id: str) -> None:
        previous = self._require(table, key_or_id)
        position = self.store.position_of(table, previous.key)
        self.store.remove_record(table, previous.key)

        if is_temporary_id(previous.id) and not self.queue.has_pending_insert(previous.key):
            # Failed or in-flight create: nothing exists remotely
            log.info("local-only-delete", table=table.value, key=previous.key)
            return

        mutation = Mutation(
            type=OperationType.DELETE,
            table=table,
            key=previous.key,
            payload={},
            target_id=previous.id,
            previous=previous,
            position=position,
        )
        await self._dispatch(mutation)

    # ------------------------------------------------------------------
    # Named commands used by the UI layer
    # ------------------------------------------------------------------

    async def create_daily_entry_optimistic(self, payload: Payload) -> TrackedRecord:
        return await self.create(EntityTable.DAILY_ENTRIES, payload)

    async def update_daily_entry_optimistic(self, entry_id: str, patch: Payload) -> TrackedRecord:
        return await self.update(EntityTable.DAILY_ENTRIES, entry_id, patch)

    async def delete_daily_entry_optimistic(self, entry_id: str) -> None:
        await self.delete(EntityTable.DAILY_ENTRIES, entry_id)

    async def create_weekly_entry_optimistic(self, payload: Payload) -> TrackedRecord:
        return await self.create(EntityTable.WEEKLY_ENTRIES, payload)

    async def update_weekly_entry_optimistic(self, entry_id: str, patch: Payload) -> TrackedRecord:
        return await self.update(EntityTable.WEEKLY_ENTRIES, entry_id, patch)

    async def delete_weekly_entry_optimistic(self, entry_id: str) -> None:
        await self.delete(EntityTable.WEEKLY_ENTRIES, entry_id)

    async def create_goals_config_optimistic(self, payload: Payload) -> TrackedRecord:
        return await self.create(EntityTable.GOALS_CONFIG, payload)

    async def update_goals_config_optimistic(self, config_id: str, patch: Payload) -> TrackedRecord:
        return await self.update(EntityTable.GOALS_CONFIG, config_id, patch)

    async def delete_goals_config_optimistic(self, config_id: str) -> None:
        await self.delete(EntityTable.GOALS_CONFIG, config_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, mutation: Mutation) -> Optional[TrackedRecord]:
        strategy = self.select_strategy(mutation)
        log.debug("mutation", op=mutation.type.value, table=mutation.table.value, key=mutation.key, strategy=strategy.name)
        return await strategy.apply(self, mutation)

    def handle_immediate_failure(self, mutation: Mutation, exc: RemoteError) -> None:
        reason = exc.message
        log.warning("mutation-failed", op=mutation.type.value, table=mutation.table.value, key=mutation.key, error=reason)

        if mutation.type is OperationType.INSERT:
            self.store.update_record(mutation.table, mutation.key, status=RecordStatus.FAILED, reason=reason)
        elif mutation.type is OperationType.UPDATE and mutation.previous is not None:
            self.store.update_record(
                mutation.table,
                mutation.key,
                entity=mutation.previous.entity,
                status=mutation.previous.status,
                reason=reason,
            )
        elif mutation.type is OperationType.DELETE and mutation.previous is not None:
            self.store.restore_record(
                mutation.table,
                mutation.previous.model_copy(update={"reason": reason}),
                mutation.position,
            )

        self.store.set_error(reason)

    def _require(self, table: EntityTable, key_or_id: str) -> TrackedRecord:
        record = self.store.get_record(table, key_or_id)
        if record is None:
            raise UnknownRecordError(f"No {table.value} record {key_or_id}")
        return record

    @staticmethod
    def _validated(table: EntityTable, payload: Payload, *, create: bool) -> Dict[str, Any]:
        schema = CREATE_SCHEMAS[table] if create else UPDATE_SCHEMAS[table]
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(exclude_unset=True)
        model = schema.model_validate(payload)
        if create:
            return model.model_dump(exclude_none=True)
        return model.model_dump(exclude_unset=True)
