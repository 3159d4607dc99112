"""Application State Store – the in-memory single source of truth.

Holds the session, the three entity collections (as tagged
:class:`TrackedRecord` variants) and the sync status flags.  Every mutation
is one synchronous step followed by a fire-and-forget event on the store's
own :class:`EventBus`, so observers never see a half-applied change.

Only the mutation coordinator, the sync engine, the pending queue, the
connectivity monitor and the session service call the mutating methods;
UI-facing code reads :meth:`snapshot` / :meth:`sync_status`.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

from habitsync.events import EventBus
from habitsync.events import EventType
from habitsync.models.enums import EntityTable
from habitsync.models.enums import RecordStatus
from habitsync.schemas.schemas import AppSnapshot
from habitsync.schemas.schemas import PendingOperation
from habitsync.schemas.schemas import SyncStatus
from habitsync.schemas.schemas import TrackedRecord

logger = logging.getLogger(__name__)


class AppStateStore:
    def __init__(self, bus: Optional[EventBus] = None, *, is_online: bool = True):
        self.bus = bus or EventBus()

        # Session ------------------------------------------------------
        self.current_session: Optional[Dict[str, Any]] = None
        self.session_key: Optional[str] = None
        self.is_initialized = False
        self.error: Optional[str] = None

        # Entities -----------------------------------------------------
        self._records: Dict[EntityTable, List[TrackedRecord]] = {table: [] for table in EntityTable}

        # Sync status --------------------------------------------------
        self.is_online = is_online
        self.is_syncing = False
        self.last_sync_time: Optional[str] = None
        self.pending_operations: List[PendingOperation] = []
        self.sync_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def records(self, table: EntityTable) -> List[TrackedRecord]:
        return list(self._records[table])

    def entities(self, table: EntityTable) -> List[Dict[str, Any]]:
        return [dict(record.entity) for record in self._records[table]]

    def get_record(self, table: EntityTable, key_or_id: str) -> Optional[TrackedRecord]:
        """Find a record by its stable key or by its current entity id."""
        index = self._index_of(table, key_or_id)
        return None if index is None else self._records[table][index]

    def snapshot(self) -> AppSnapshot:
        return AppSnapshot(
            current_session=dict(self.current_session) if self.current_session else None,
            session_key=self.session_key,
            is_initialized=self.is_initialized,
            daily_entries=self.records(EntityTable.DAILY_ENTRIES),
            weekly_entries=self.records(EntityTable.WEEKLY_ENTRIES),
            goals_config=self.records(EntityTable.GOALS_CONFIG),
            error=self.error,
        )

    def sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.is_online,
            is_syncing=self.is_syncing,
            last_sync_time=self.last_sync_time,
            pending_operations=[op.model_copy() for op in self.pending_operations],
            sync_error=self.sync_error,
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def set_session(self, session: Dict[str, Any], session_key: str) -> None:
        self.current_session = dict(session)
        self.session_key = session_key
        self.is_initialized = True
        self._emit_state("current_session", "session_key", "is_initialized")
        self.bus.publish_nowait(EventType.SESSION_CHANGED, {"session_id": session.get("id")})

    def clear_session(self) -> None:
        self.current_session = None
        self.session_key = None
        self.is_initialized = False
        for table in EntityTable:
            self._records[table] = []
        self._emit_state("current_session", "session_key", "is_initialized", *[t.value for t in EntityTable])
        self.bus.publish_nowait(EventType.SESSION_CHANGED, {"session_id": None})

    def mark_initialized(self) -> None:
        self.is_initialized = True
        self._emit_state("is_initialized")

    def set_error(self, message: Optional[str]) -> None:
        self.error = message
        self._emit_state("error")
        if message:
            self.bus.publish_nowait(EventType.ERROR, {"error": message})

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def add_record(self, table: EntityTable, record: TrackedRecord) -> TrackedRecord:
        self._records[table] = [*self._records[table], record]
        self._emit_record(table, record)
        return record

    def update_record(
        self,
        table: EntityTable,
        key_or_id: str,
        *,
        entity: Optional[Dict[str, Any]] = None,
        patch: Optional[Dict[str, Any]] = None,
        status: Optional[RecordStatus] = None,
        reason: Optional[str] = None,
    ) -> Optional[TrackedRecord]:
        """Replace a record's entity (or merge *patch* into it) in one step.

        Returns the new record, or ``None`` when nothing matches.
        """
        index = self._index_of(table, key_or_id)
        if index is None:
            logger.debug(f"No {table.value} record for {key_or_id}; update ignored")
            return None

        current = self._records[table][index]
        new_entity = dict(entity) if entity is not None else dict(current.entity)
        if patch:
            new_entity.update(patch)

        updated = TrackedRecord(
            key=current.key,
            status=status or current.status,
            entity=new_entity,
            reason=reason,
        )
        records = list(self._records[table])
        records[index] = updated
        self._records[table] = records
        self._emit_record(table, updated)
        return updated

    def remove_record(self, table: EntityTable, key_or_id: str) -> Optional[TrackedRecord]:
        index = self._index_of(table, key_or_id)
        if index is None:
            return None
        records = list(self._records[table])
        removed = records.pop(index)
        self._records[table] = records
        self._emit_state(table.value)
        return removed

    def restore_record(self, table: EntityTable, record: TrackedRecord, position: Optional[int] = None) -> None:
        """Put a previously removed record back (delete rollback)."""
        records = list(self._records[table])
        if position is None or position > len(records):
            records.append(record)
        else:
            records.insert(position, record)
        self._records[table] = records
        self._emit_record(table, record)

    def position_of(self, table: EntityTable, key_or_id: str) -> Optional[int]:
        return self._index_of(table, key_or_id)

    def replace_collection(self, table: EntityTable, entities: Iterable[Dict[str, Any]]) -> None:
        """Overwrite *table* with authoritative remote rows.

        Confirmed records are replaced wholesale.  Records that never
        reached the server (optimistic or failed, with an id the remote
        does not know) are kept after the remote rows.
        """
        remote = [TrackedRecord(key=e["id"], status=RecordStatus.CONFIRMED, entity=dict(e)) for e in entities]
        remote_ids = {record.key for record in remote}
        local_only = [
            record
            for record in self._records[table]
            if record.status is not RecordStatus.CONFIRMED and record.id not in remote_ids
        ]
        self._records[table] = remote + local_only
        self._emit_state(table.value)

    # ------------------------------------------------------------------
    # Sync status
    # ------------------------------------------------------------------

    def set_online(self, online: bool) -> None:
        self.is_online = online
        self._emit_sync("is_online")

    def set_syncing(self, syncing: bool) -> None:
        self.is_syncing = syncing
        self._emit_sync("is_syncing")

    def set_last_sync_time(self, timestamp: Optional[str]) -> None:
        self.last_sync_time = timestamp
        self._emit_sync("last_sync_time")

    def set_sync_error(self, message: Optional[str]) -> None:
        self.sync_error = message
        self._emit_sync("sync_error")

    def set_pending_operations(self, operations: List[PendingOperation]) -> None:
        self.pending_operations = list(operations)
        self._emit_sync("pending_operations")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def drain_events(self) -> None:
        """Wait until every queued notification has been delivered."""
        await self.bus.drain()

    def _index_of(self, table: EntityTable, key_or_id: str) -> Optional[int]:
        records = self._records[table]
        for index, record in enumerate(records):
            if record.key == key_or_id:
                return index
        for index, record in enumerate(records):
            if record.id == key_or_id:
                return index
        return None

    def _emit_state(self, *fields: str) -> None:
        self.bus.publish_nowait(EventType.STATE_CHANGED, {"fields": list(fields)})

    def _emit_record(self, table: EntityTable, record: TrackedRecord) -> None:
        self.bus.publish_nowait(
            EventType.RECORD_CHANGED,
            {"table": table.value, "key": record.key, "status": record.status.value, "id": record.id},
        )

    def _emit_sync(self, *fields: str) -> None:
        self.bus.publish_nowait(EventType.SYNC_STATUS_CHANGED, {"fields": list(fields)})
