"""Session lifecycle endpoints: create, join, pair, logout."""

from __future__ import annotations

import logging
from typing import Any
from typing import Dict

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import status

from habitsync.container import SyncContainer
from habitsync.dependencies.container import get_container
from habitsync.schemas.schemas import JoinRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["session"])


def _session_view(container: SyncContainer) -> Dict[str, Any]:
    store = container.store
    return {
        "session": store.current_session,
        "session_key": store.session_key,
        "pairing_code": container.sessions.pairing_code(),
        "is_initialized": store.is_initialized,
        "error": store.error,
    }


@router.get("")
async def read_session(container: SyncContainer = Depends(get_container)) -> Dict[str, Any]:
    return _session_view(container)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(container: SyncContainer = Depends(get_container)) -> Dict[str, Any]:
    """Start a new session and make it the active one."""

    await container.sessions.create_session()
    return _session_view(container)


@router.post("/join")
async def join_session(payload: JoinRequest, container: SyncContainer = Depends(get_container)) -> Dict[str, Any]:
    """Join with a full session key, a pairing code or a scanned pairing artifact."""

    if payload.session_key:
        await container.sessions.join_session(payload.session_key)
    elif payload.pairing_code:
        try:
            await container.sessions.join_by_pairing_code(payload.pairing_code)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide session_key or pairing_code",
        )
    return _session_view(container)


@router.get("/pairing")
async def read_pairing(container: SyncContainer = Depends(get_container)) -> Dict[str, Any]:
    code = container.sessions.pairing_code()
    if code is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session")
    return {"pairing_code": code, "artifact": container.sessions.pairing_artifact()}


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(container: SyncContainer = Depends(get_container)) -> None:
    container.sessions.logout()
