"""Sync status, manual sync, connectivity signal and state snapshot."""

from __future__ import annotations

from typing import Any
from typing import Dict

from fastapi import APIRouter
from fastapi import Depends

from habitsync.container import SyncContainer
from habitsync.dependencies.container import get_container
from habitsync.schemas.schemas import AppSnapshot
from habitsync.schemas.schemas import ConnectivitySignal
from habitsync.schemas.schemas import SyncStatusOut

router = APIRouter(tags=["sync"])


@router.get("/sync/status", response_model=SyncStatusOut)
async def sync_status(container: SyncContainer = Depends(get_container)):
    return container.engine.get_sync_status()


@router.post("/sync/now", response_model=SyncStatusOut)
async def sync_now(container: SyncContainer = Depends(get_container)):
    """Run one reconciliation cycle now; 409 while offline."""

    await container.engine.force_sync_now()
    return container.engine.get_sync_status()


@router.get("/connectivity")
async def read_connectivity(container: SyncContainer = Depends(get_container)) -> Dict[str, Any]:
    return {"is_online": container.monitor.is_online}


@router.post("/connectivity")
async def connectivity_signal(
    signal: ConnectivitySignal, container: SyncContainer = Depends(get_container)
) -> Dict[str, Any]:
    """Feed the platform's reachability signal into the monitor."""

    changed = await container.monitor.handle_signal(signal.online)
    return {"is_online": container.monitor.is_online, "changed": changed}


@router.get("/state", response_model=AppSnapshot)
async def state_snapshot(container: SyncContainer = Depends(get_container)):
    return container.store.snapshot()
