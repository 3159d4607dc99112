"""Relational reference backend for the Remote Data Gateway.

Runs the blocking SQLAlchemy work in a worker thread so the event loop
stays responsive.  ``set_session_context`` resolves the session key to a
session id; every subsequent read and write is filtered by that id, which
is the row-level policy the hosted backend applies.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import SQLAlchemyError

from habitsync.database import db_session
from habitsync.database import initialize_database
from habitsync.database import make_engine
from habitsync.database import make_sessionmaker
from habitsync.gateway.base import Entity
from habitsync.gateway.base import RemoteDataGateway
from habitsync.gateway.base import RemoteError
from habitsync.gateway.base import SessionNotFoundError
from habitsync.models.enums import ORDER_FIELDS
from habitsync.models.enums import EntityTable
from habitsync.models.models import TABLE_MODELS
from habitsync.models.models import Session
from habitsync.utils.log import redact_key
from habitsync.utils.time import utc_now

logger = logging.getLogger(__name__)

# Columns the client may never set directly
_PROTECTED = {"id", "session_id", "created_at", "updated_at"}


def _row_to_dict(row: Any) -> Entity:
    data = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if isinstance(value, datetime):
            value = value.isoformat()
        data[column.name] = value
    return data


class SqlGateway(RemoteDataGateway):
    """SQLAlchemy-backed gateway with session-key row scoping."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._session_id: Optional[str] = None

    @classmethod
    def from_url(cls, database_url: str) -> "SqlGateway":
        engine = make_engine(database_url)
        initialize_database(engine)
        return cls(make_sessionmaker(engine))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _require_context(self) -> str:
        if self._session_id is None:
            raise RemoteError("No session context set", status_code=401)
        return self._session_id

    @staticmethod
    def _columns(table: EntityTable) -> set:
        return {c.name for c in TABLE_MODELS[table.value].__table__.columns}

    def _clean(self, table: EntityTable, payload: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(payload) - self._columns(table)
        if unknown:
            raise RemoteError(
                f"Unknown column(s) for {table.value}: {', '.join(sorted(unknown))}",
                status_code=400,
                table=table.value,
            )
        return {k: v for k, v in payload.items() if k not in _PROTECTED}

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except IntegrityError as exc:
            raise RemoteError(f"Constraint violation: {exc.orig}", status_code=409) from exc
        except SQLAlchemyError as exc:
            raise RemoteError(f"Database error: {exc}", status_code=500) from exc

    # ------------------------------------------------------------------
    # session context
    # ------------------------------------------------------------------

    async def set_session_context(self, session_key: str) -> None:
        session = await self.get_session(session_key)
        self._session_id = session["id"]

    # ------------------------------------------------------------------
    # entity CRUD
    # ------------------------------------------------------------------

    async def create(self, table: EntityTable, payload: Dict[str, Any]) -> Entity:
        session_id = self._require_context()
        values = self._clean(table, payload)
        model = TABLE_MODELS[table.value]

        def _insert():
            with db_session(self.session_factory) as db:
                row = model(session_id=session_id, **values)
                db.add(row)
                db.flush()
                return _row_to_dict(row)

        created = await self._run(_insert)
        logger.debug(f"Inserted {table.value} row {created['id']}")
        return created

    async def update(self, table: EntityTable, entity_id: str, patch: Dict[str, Any]) -> Entity:
        session_id = self._require_context()
        values = self._clean(table, patch)
        model = TABLE_MODELS[table.value]

        def _update():
            with db_session(self.session_factory) as db:
                row = db.query(model).filter(model.id == entity_id, model.session_id == session_id).one_or_none()
                if row is None:
                    return None
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = utc_now()
                db.flush()
                return _row_to_dict(row)

        updated = await self._run(_update)
        if updated is None:
            raise RemoteError(f"{table.value} row {entity_id} not found", status_code=404, table=table.value)
        return updated

    async def delete(self, table: EntityTable, entity_id: str) -> None:
        session_id = self._require_context()
        model = TABLE_MODELS[table.value]

        def _delete():
            with db_session(self.session_factory) as db:
                db.query(model).filter(model.id == entity_id, model.session_id == session_id).delete()

        await self._run(_delete)

    async def _list(self, table: EntityTable, limit: Optional[int] = None) -> List[Entity]:
        session_id = self._require_context()
        model = TABLE_MODELS[table.value]
        order_col = getattr(model, ORDER_FIELDS[table])

        def _select():
            with db_session(self.session_factory) as db:
                query = db.query(model).filter(model.session_id == session_id).order_by(order_col.desc())
                if limit is not None:
                    query = query.limit(limit)
                return [_row_to_dict(row) for row in query.all()]

        return await self._run(_select)

    async def list_daily_entries(self) -> List[Entity]:
        return await self._list(EntityTable.DAILY_ENTRIES)

    async def list_weekly_entries(self) -> List[Entity]:
        return await self._list(EntityTable.WEEKLY_ENTRIES)

    async def list_latest_goals_config(self) -> List[Entity]:
        return await self._list(EntityTable.GOALS_CONFIG, limit=1)

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------

    async def create_session(self, session_key: str) -> Entity:
        def _insert():
            with db_session(self.session_factory) as db:
                row = Session(session_key=session_key)
                db.add(row)
                db.flush()
                return _row_to_dict(row)

        created = await self._run(_insert)
        logger.info(f"Created session {redact_key(session_key)}")
        return created

    async def get_session(self, session_key: str) -> Entity:
        def _select():
            with db_session(self.session_factory) as db:
                row = db.query(Session).filter(Session.session_key == session_key).one_or_none()
                if row is None:
                    return None
                row.last_active = utc_now()
                db.flush()
                return _row_to_dict(row)

        found = await self._run(_select)
        if found is None:
            raise SessionNotFoundError("Session not found", status_code=404)
        return found

    async def find_session_by_pairing_code(self, pairing_code: str) -> Entity:
        prefix = pairing_code.strip().lower()

        def _select():
            with db_session(self.session_factory) as db:
                return [
                    _row_to_dict(row)
                    for row in db.query(Session).filter(Session.session_key.like(f"{prefix}%")).limit(2).all()
                ]

        matches = await self._run(_select)
        if len(matches) != 1:
            # Zero or ambiguous matches are both "no such pairing code"
            raise SessionNotFoundError(f"No session for pairing code {pairing_code.upper()}", status_code=404)
        return matches[0]

    async def aclose(self) -> None:
        bind = getattr(self.session_factory, "kw", {}).get("bind")
        if bind is not None:
            bind.dispose()
