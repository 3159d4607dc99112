"""Session lifecycle: initialize, create, join, pair and logout.

A session key is the shared secret every entity row is scoped to.  The
first :data:`PAIRING_CODE_LENGTH` characters, upper-cased, form the
pairing code another device can type (or scan, wrapped in the JSON
pairing artifact) to join the same session.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any
from typing import Dict
from typing import Optional

from habitsync.gateway.base import NotConnectedError
from habitsync.gateway.base import RemoteDataGateway
from habitsync.gateway.base import RemoteError
from habitsync.gateway.base import SessionNotFoundError
from habitsync.models.enums import OperationType
from habitsync.models.enums import RecordStatus
from habitsync.schemas.schemas import TrackedRecord
from habitsync.services.connectivity import ConnectivityMonitor
from habitsync.services.pending_queue import PendingOperationQueue
from habitsync.services.state_store import AppStateStore
from habitsync.services.sync_engine import SyncEngine
from habitsync.storage.local_store import LAST_SYNC
from habitsync.storage.local_store import PAIRING_CODE_LENGTH
from habitsync.storage.local_store import LocalDurableStore
from habitsync.storage.local_store import pairing_code_for
from habitsync.utils.log import redact_key

logger = logging.getLogger(__name__)

PAIRING_APP = "habitsync"


def decode_pairing_input(raw: str) -> str:
    """Extract the code from a typed code, a full key or a scanned artifact."""

    text = (raw or "").strip()
    if not text:
        raise ValueError("Pairing code is empty")

    try:
        artifact = json.loads(text)
    except ValueError:
        return text

    if isinstance(artifact, dict) and artifact.get("app") == PAIRING_APP and artifact.get("code"):
        return str(artifact["code"]).strip()
    raise ValueError("Unrecognised pairing data")


class SessionService:
    def __init__(
        self,
        store: AppStateStore,
        gateway: RemoteDataGateway,
        monitor: ConnectivityMonitor,
        queue: PendingOperationQueue,
        local_store: LocalDurableStore,
        engine: SyncEngine,
    ):
        self.store = store
        self.gateway = gateway
        self.monitor = monitor
        self.queue = queue
        self.local_store = local_store
        self.engine = engine

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Restore the stored session, if any; return whether one is active."""

        if self.store.is_initialized:
            return self.store.session_key is not None

        stored_key = self.local_store.get_session_key()
        if not stored_key:
            self.store.mark_initialized()
            return False

        if not self.monitor.is_online:
            self._resume_unvalidated(stored_key)
            logger.info(f"Restored session {redact_key(stored_key)} offline")
            return True

        try:
            session = await self.gateway.get_session(stored_key)
        except SessionNotFoundError as exc:
            logger.warning(f"Stored session {redact_key(stored_key)} no longer exists: {exc.message}")
            self.local_store.clear_session_key()
            self.local_store.clear_pending_sync()
            self.store.clear_session()
            self.store.mark_initialized()
            return False
        except RemoteError as exc:
            # Transient failure: keep the key and its queue, the timer retries
            self._resume_unvalidated(stored_key)
            logger.warning(f"Stored session {redact_key(stored_key)} could not be validated: {exc.message}")
            return True

        self.store.set_session(session, stored_key)
        self._restore_pending()
        logger.info(f"Restored session {redact_key(stored_key)}")

        await self.engine.sync_now()
        return True

    # ------------------------------------------------------------------
    # Create / join
    # ------------------------------------------------------------------

    async def create_session(self) -> Dict[str, Any]:
        self._require_online("create a session")
        session_key = self.local_store.generate_session_key()

        self.store.set_error(None)
        try:
            session = await self.gateway.create_session(session_key)
        except RemoteError as exc:
            self.store.set_error(exc.message)
            raise

        await self._adopt(session, session_key)
        logger.info(f"Created session {redact_key(session_key)}")
        return session

    async def join_session(self, session_key: str) -> Dict[str, Any]:
        self._require_online("join a session")
        session_key = session_key.strip()

        self.store.set_error(None)
        try:
            session = await self.gateway.get_session(session_key)
        except RemoteError as exc:
            self.store.set_error(exc.message)
            raise

        await self._adopt(session, session_key)
        logger.info(f"Joined session {redact_key(session_key)}")
        return session

    async def join_by_pairing_code(self, raw: str) -> Dict[str, Any]:
        """Join with a pairing code, a scanned pairing artifact or a full key."""

        code = decode_pairing_input(raw)
        if len(code) > PAIRING_CODE_LENGTH:
            return await self.join_session(code)

        self._require_online("join a session")
        self.store.set_error(None)
        try:
            session = await self.gateway.find_session_by_pairing_code(code)
        except RemoteError as exc:
            self.store.set_error(exc.message)
            raise

        session_key = session["session_key"]
        await self._adopt(session, session_key)
        logger.info(f"Paired with session {redact_key(session_key)}")
        return session

    # ------------------------------------------------------------------
    # Pairing display
    # ------------------------------------------------------------------

    def pairing_code(self) -> Optional[str]:
        if not self.store.session_key:
            return None
        return pairing_code_for(self.store.session_key)

    def pairing_artifact(self) -> Optional[str]:
        """JSON payload a QR code would carry for the current session."""
        code = self.pairing_code()
        if code is None:
            return None
        return json.dumps({"app": PAIRING_APP, "code": code, "timestamp": int(time.time() * 1000)})

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self) -> None:
        key = self.store.session_key
        self.local_store.clear_session_key()
        self.local_store.remove(LAST_SYNC)
        self.queue.clear()
        self.engine.clear_resolved_ids()
        self.store.clear_session()
        self.store.set_last_sync_time(None)
        self.store.set_sync_error(None)
        self.store.set_error(None)
        self.store.mark_initialized()
        logger.info(f"Logged out of session {redact_key(key)}")

    # ------------------------------------------------------------------

    async def _adopt(self, session: Dict[str, Any], session_key: str) -> None:
        if session_key != self.store.session_key:
            # Operations queued under another session must not leak into this one
            self.queue.clear()
            self.engine.clear_resolved_ids()
            self.store.clear_session()

        self.local_store.set_session_key(session_key)
        self.store.set_session(session, session_key)
        await self.engine.sync_now()

    def _resume_unvalidated(self, session_key: str) -> None:
        """Use the stored key locally; the next sync cycle reports a bad key."""
        self.store.set_session({"id": None, "session_key": session_key}, session_key)
        self._restore_pending()

    def _restore_pending(self) -> None:
        """Reload the persisted queue and show its creates as optimistic records.

        Updates queued after a create are folded into the restored entity so
        it shows the latest local edit.
        """
        if not self.queue.restore():
            return

        restored: Dict[str, Dict[str, Any]] = {}
        for op in self.queue.dequeue_all():
            if not op.ref:
                continue
            if op.type is OperationType.INSERT and self.store.get_record(op.table, op.ref) is None:
                restored[op.ref] = {
                    "table": op.table,
                    "entity": {**op.data, "id": op.ref, "created_at": op.timestamp, "updated_at": op.timestamp},
                }
            elif op.type is OperationType.UPDATE and op.ref in restored:
                entity = restored[op.ref]["entity"]
                entity.update({k: v for k, v in op.data.items() if k != "id"})
                entity["updated_at"] = op.timestamp

        for ref, item in restored.items():
            self.store.add_record(
                item["table"], TrackedRecord(key=ref, status=RecordStatus.OPTIMISTIC, entity=item["entity"])
            )

    def _require_online(self, action: str) -> None:
        if not self.monitor.is_online:
            raise NotConnectedError(f"Cannot {action} while offline")
