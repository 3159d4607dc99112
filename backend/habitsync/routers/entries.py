"""Optimistic CRUD endpoints for daily entries, weekly entries and goals.

Writes return the tracked record straight from the state store: a
``confirmed`` record when the remote accepted it, an ``optimistic`` one
when it was queued for the next sync.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter
from fastapi import Depends
from fastapi import status

from habitsync.container import SyncContainer
from habitsync.dependencies.container import get_container
from habitsync.models.enums import EntityTable
from habitsync.schemas.schemas import DailyEntryCreate
from habitsync.schemas.schemas import DailyEntryUpdate
from habitsync.schemas.schemas import GoalsConfigCreate
from habitsync.schemas.schemas import GoalsConfigUpdate
from habitsync.schemas.schemas import TrackedRecord
from habitsync.schemas.schemas import WeeklyEntryCreate
from habitsync.schemas.schemas import WeeklyEntryUpdate

router = APIRouter(tags=["entries"])


# ---------------------------------------------------------------------------
# Daily entries
# ---------------------------------------------------------------------------


@router.get("/daily-entries", response_model=List[TrackedRecord])
async def list_daily_entries(container: SyncContainer = Depends(get_container)):
    return container.store.records(EntityTable.DAILY_ENTRIES)


@router.post("/daily-entries", response_model=TrackedRecord, status_code=status.HTTP_201_CREATED)
async def create_daily_entry(payload: DailyEntryCreate, container: SyncContainer = Depends(get_container)):
    return await container.coordinator.create_daily_entry_optimistic(payload)


@router.patch("/daily-entries/{entry_id}", response_model=TrackedRecord)
async def update_daily_entry(
    entry_id: str, payload: DailyEntryUpdate, container: SyncContainer = Depends(get_container)
):
    return await container.coordinator.update_daily_entry_optimistic(entry_id, payload)


@router.delete("/daily-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_daily_entry(entry_id: str, container: SyncContainer = Depends(get_container)):
    await container.coordinator.delete_daily_entry_optimistic(entry_id)


# ---------------------------------------------------------------------------
# Weekly entries
# ---------------------------------------------------------------------------


@router.get("/weekly-entries", response_model=List[TrackedRecord])
async def list_weekly_entries(container: SyncContainer = Depends(get_container)):
    return container.store.records(EntityTable.WEEKLY_ENTRIES)


@router.post("/weekly-entries", response_model=TrackedRecord, status_code=status.HTTP_201_CREATED)
async def create_weekly_entry(payload: WeeklyEntryCreate, container: SyncContainer = Depends(get_container)):
    return await container.coordinator.create_weekly_entry_optimistic(payload)


@router.patch("/weekly-entries/{entry_id}", response_model=TrackedRecord)
async def update_weekly_entry(
    entry_id: str, payload: WeeklyEntryUpdate, container: SyncContainer = Depends(get_container)
):
    return await container.coordinator.update_weekly_entry_optimistic(entry_id, payload)


@router.delete("/weekly-entries/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_weekly_entry(entry_id: str, container: SyncContainer = Depends(get_container)):
    await container.coordinator.delete_weekly_entry_optimistic(entry_id)


# ---------------------------------------------------------------------------
# Goals config
# ---------------------------------------------------------------------------


@router.get("/goals", response_model=List[TrackedRecord])
async def list_goals(container: SyncContainer = Depends(get_container)):
    return container.store.records(EntityTable.GOALS_CONFIG)


@router.post("/goals", response_model=TrackedRecord, status_code=status.HTTP_201_CREATED)
async def create_goals(payload: GoalsConfigCreate, container: SyncContainer = Depends(get_container)):
    return await container.coordinator.create_goals_config_optimistic(payload)


@router.patch("/goals/{config_id}", response_model=TrackedRecord)
async def update_goals(config_id: str, payload: GoalsConfigUpdate, container: SyncContainer = Depends(get_container)):
    return await container.coordinator.update_goals_config_optimistic(config_id, payload)


@router.delete("/goals/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goals(config_id: str, container: SyncContainer = Depends(get_container)):
    await container.coordinator.delete_goals_config_optimistic(config_id)
