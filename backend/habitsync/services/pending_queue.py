"""Pending Operation Queue – FIFO log of mutations awaiting the remote.

The operative list lives on the :class:`AppStateStore` (so observers see
``pending_operations``); every change is also written to the
:class:`LocalDurableStore` and :meth:`restore` reloads it after a restart.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import ValidationError

from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.schemas.schemas import PendingOperation
from habitsync.services.state_store import AppStateStore
from habitsync.storage.local_store import LocalDurableStore
from habitsync.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


class PendingOperationQueue:
    def __init__(self, store: AppStateStore, local_store: Optional[LocalDurableStore] = None):
        self.store = store
        self.local_store = local_store

    def __len__(self) -> int:
        return len(self.store.pending_operations)

    @staticmethod
    def build(
        op_type: OperationType,
        table: EntityTable,
        data: Dict[str, Any],
        *,
        ref: Optional[str] = None,
    ) -> PendingOperation:
        return PendingOperation(
            id=f"op_{uuid.uuid4().hex}",
            type=op_type,
            table=table,
            data=dict(data),
            timestamp=utc_now_iso(),
            retry_count=0,
            ref=ref,
        )

    def enqueue(self, operation: PendingOperation) -> PendingOperation:
        self._commit([*self.store.pending_operations, operation])
        logger.debug(f"Queued {operation.type.value} on {operation.table.value} ({operation.id})")
        return operation

    def dequeue_all(self) -> List[PendingOperation]:
        """Ordered copy of the queue; operations stay queued until removed."""
        return list(self.store.pending_operations)

    def get(self, op_id: str) -> Optional[PendingOperation]:
        for operation in self.store.pending_operations:
            if operation.id == op_id:
                return operation
        return None

    def remove(self, op_id: str) -> bool:
        remaining = [op for op in self.store.pending_operations if op.id != op_id]
        if len(remaining) == len(self.store.pending_operations):
            return False
        self._commit(remaining)
        return True

    def replace(self, operation: PendingOperation) -> None:
        """Swap in a modified copy of a queued operation, keeping its position."""
        self._commit([operation if op.id == operation.id else op for op in self.store.pending_operations])

    def increment_retry(self, op_id: str) -> int:
        operation = self.get(op_id)
        if operation is None:
            return 0
        bumped = operation.model_copy(update={"retry_count": operation.retry_count + 1})
        self.replace(bumped)
        return bumped.retry_count

    def has_pending_insert(self, ref: str) -> bool:
        return any(op.type is OperationType.INSERT and op.ref == ref for op in self.store.pending_operations)

    def has_ref(self, ref: str) -> bool:
        return any(op.ref == ref for op in self.store.pending_operations)

    def remove_by_ref(self, ref: str) -> int:
        """Drop every queued operation for the record keyed *ref*; return how many."""
        remaining = [op for op in self.store.pending_operations if op.ref != ref]
        removed = len(self.store.pending_operations) - len(remaining)
        if removed:
            self._commit(remaining)
        return removed

    def clear(self) -> None:
        self._commit([])

    def restore(self) -> int:
        """Load operations persisted by a previous process; return how many."""
        if self.local_store is None:
            return 0

        known = {op.id for op in self.store.pending_operations}
        restored = []
        for raw in self.local_store.get_pending_sync():
            try:
                operation = PendingOperation.model_validate(raw)
            except ValidationError as exc:
                logger.warning(f"Dropping unreadable persisted operation: {exc}")
                continue
            if operation.id not in known:
                restored.append(operation)

        if restored:
            # Persisted operations predate anything queued in this process
            self._commit([*restored, *self.store.pending_operations])
            logger.info(f"Restored {len(restored)} pending operation(s) from local store")
        return len(restored)

    def _commit(self, operations: List[PendingOperation]) -> None:
        self.store.set_pending_operations(operations)
        if self.local_store is not None:
            self.local_store.set_pending_sync([op.model_dump(mode="json") for op in operations])
