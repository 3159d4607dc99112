"""Remote Data Gateway contract.

The gateway is the only component that talks to the remote backend.  The
sync core depends on :class:`RemoteDataGateway` alone; concrete backends
live in :mod:`habitsync.gateway.sql` and :mod:`habitsync.gateway.rest`.

:class:`GuardedGateway` wraps any implementation so that every call has a
timeout and every failure surfaces as :class:`RemoteError`.
"""

from __future__ import annotations

import asyncio
from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Awaitable
from typing import Dict
from typing import List
from typing import Optional
from typing import TypeVar

from habitsync.models.enums import EntityTable
from habitsync.utils.log import get_logger

log = get_logger(component="gateway")

_T = TypeVar("_T")

Entity = Dict[str, Any]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RemoteError(Exception):
    """A gateway call failed (validation, network, server error, timeout)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, table: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.table = table


class GatewayTimeoutError(RemoteError):
    """The gateway did not answer within the configured timeout."""


class SessionNotFoundError(RemoteError):
    """No session matches the given key or pairing code."""


class NotConnectedError(Exception):
    """A command that needs the network was issued while offline."""


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class RemoteDataGateway(ABC):
    """Typed create/update/read access to the remote backend."""

    @abstractmethod
    async def set_session_context(self, session_key: str) -> None:
        """Scope subsequent calls to *session_key*; fails if the key is unknown."""

    @abstractmethod
    async def create(self, table: EntityTable, payload: Dict[str, Any]) -> Entity: ...

    @abstractmethod
    async def update(self, table: EntityTable, entity_id: str, patch: Dict[str, Any]) -> Entity: ...

    @abstractmethod
    async def delete(self, table: EntityTable, entity_id: str) -> None: ...

    @abstractmethod
    async def list_daily_entries(self) -> List[Entity]:
        """All daily entries of the current session, newest ``date`` first."""

    @abstractmethod
    async def list_weekly_entries(self) -> List[Entity]:
        """All weekly entries, newest ``week_start_date`` first."""

    @abstractmethod
    async def list_latest_goals_config(self) -> List[Entity]:
        """At most one goals config: the most recently created."""

    # Session lifecycle ---------------------------------------------------

    @abstractmethod
    async def create_session(self, session_key: str) -> Entity: ...

    @abstractmethod
    async def get_session(self, session_key: str) -> Entity: ...

    @abstractmethod
    async def find_session_by_pairing_code(self, pairing_code: str) -> Entity: ...

    async def aclose(self) -> None:  # noqa: B027 – optional hook
        """Release network/database resources."""


# ---------------------------------------------------------------------------
# Timeout + error normalisation
# ---------------------------------------------------------------------------


class GuardedGateway(RemoteDataGateway):
    """Bound every call by *timeout* seconds and normalise failures.

    Anything other than :class:`RemoteError` raised by the inner gateway is
    re-raised as :class:`RemoteError` so callers have a single failure type.
    """

    def __init__(self, inner: RemoteDataGateway, timeout: float):
        self.inner = inner
        self.timeout = timeout

    async def _call(self, name: str, coro: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            log.warning("gateway-timeout", call=name, timeout=self.timeout)
            raise GatewayTimeoutError(f"{name} timed out after {self.timeout:g}s") from exc
        except RemoteError:
            raise
        except Exception as exc:  # noqa: BLE001 – normalised below
            log.warning("gateway-error", call=name, error=str(exc))
            raise RemoteError(str(exc) or exc.__class__.__name__) from exc

    async def set_session_context(self, session_key: str) -> None:
        await self._call("set_session_context", self.inner.set_session_context(session_key))

    async def create(self, table: EntityTable, payload: Dict[str, Any]) -> Entity:
        return await self._call(f"create:{table.value}", self.inner.create(table, payload))

    async def update(self, table: EntityTable, entity_id: str, patch: Dict[str, Any]) -> Entity:
        return await self._call(f"update:{table.value}", self.inner.update(table, entity_id, patch))

    async def delete(self, table: EntityTable, entity_id: str) -> None:
        await self._call(f"delete:{table.value}", self.inner.delete(table, entity_id))

    async def list_daily_entries(self) -> List[Entity]:
        return await self._call("list_daily_entries", self.inner.list_daily_entries())

    async def list_weekly_entries(self) -> List[Entity]:
        return await self._call("list_weekly_entries", self.inner.list_weekly_entries())

    async def list_latest_goals_config(self) -> List[Entity]:
        return await self._call("list_latest_goals_config", self.inner.list_latest_goals_config())

    async def create_session(self, session_key: str) -> Entity:
        return await self._call("create_session", self.inner.create_session(session_key))

    async def get_session(self, session_key: str) -> Entity:
        return await self._call("get_session", self.inner.get_session(session_key))

    async def find_session_by_pairing_code(self, pairing_code: str) -> Entity:
        return await self._call("find_session_by_pairing_code", self.inner.find_session_by_pairing_code(pairing_code))

    async def aclose(self) -> None:
        await self.inner.aclose()


def guarded(inner: RemoteDataGateway, timeout: float) -> GuardedGateway:
    """Wrap *inner* unless it is already guarded."""

    if isinstance(inner, GuardedGateway):
        return inner
    return GuardedGateway(inner, timeout)


__all__ = [
    "Entity",
    "GatewayTimeoutError",
    "GuardedGateway",
    "NotConnectedError",
    "RemoteDataGateway",
    "RemoteError",
    "SessionNotFoundError",
    "guarded",
]
