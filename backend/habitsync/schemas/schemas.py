from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import Field

from habitsync.models.enums import EntityTable
from habitsync.models.enums import OperationType
from habitsync.models.enums import RecordStatus
from habitsync.models.enums import SyncPhase


# ------------------------------------------------------------
# Entity payloads
# ------------------------------------------------------------


class DailyEntryCreate(BaseModel):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    strength_workout: bool = False
    other_workout_type: Optional[str] = None
    other_workout_completed: bool = False
    pages_read: int = Field(0, ge=0)
    supplements_morning: bool = False
    supplements_night: bool = False
    weight: Optional[float] = Field(None, gt=0)
    body_fat_percentage: Optional[float] = Field(None, ge=0, le=100)
    sleep_hours: Optional[float] = Field(None, ge=0, le=24)
    calories_consumed: Optional[int] = Field(None, ge=0)
    dog_training_minutes: int = Field(0, ge=0)
    session_id: Optional[str] = None


class DailyEntryUpdate(BaseModel):
    date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    strength_workout: Optional[bool] = None
    other_workout_type: Optional[str] = None
    other_workout_completed: Optional[bool] = None
    pages_read: Optional[int] = Field(None, ge=0)
    supplements_morning: Optional[bool] = None
    supplements_night: Optional[bool] = None
    weight: Optional[float] = Field(None, gt=0)
    body_fat_percentage: Optional[float] = Field(None, ge=0, le=100)
    sleep_hours: Optional[float] = Field(None, ge=0, le=24)
    calories_consumed: Optional[int] = Field(None, ge=0)
    dog_training_minutes: Optional[int] = Field(None, ge=0)


class WeeklyEntryCreate(BaseModel):
    week_start_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    work_blockers_unlocked: int = Field(0, ge=0)
    family_house_hours: float = Field(0, ge=0)
    session_id: Optional[str] = None


class WeeklyEntryUpdate(BaseModel):
    week_start_date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    work_blockers_unlocked: Optional[int] = Field(None, ge=0)
    family_house_hours: Optional[float] = Field(None, ge=0)


class GoalsConfigCreate(BaseModel):
    month_year: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    strength_workouts_per_week: int = Field(0, ge=0)
    pages_per_day: int = Field(0, ge=0)
    target_weight: Optional[float] = Field(None, gt=0)
    target_body_fat: Optional[float] = Field(None, ge=0, le=100)
    dog_training_minutes_per_day: int = Field(0, ge=0)
    family_hours_per_week: float = Field(0, ge=0)
    work_blockers_per_week: int = Field(0, ge=0)
    session_id: Optional[str] = None


class GoalsConfigUpdate(BaseModel):
    month_year: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}$")
    strength_workouts_per_week: Optional[int] = Field(None, ge=0)
    pages_per_day: Optional[int] = Field(None, ge=0)
    target_weight: Optional[float] = Field(None, gt=0)
    target_body_fat: Optional[float] = Field(None, ge=0, le=100)
    dog_training_minutes_per_day: Optional[int] = Field(None, ge=0)
    family_hours_per_week: Optional[float] = Field(None, ge=0)
    work_blockers_per_week: Optional[int] = Field(None, ge=0)


CREATE_SCHEMAS = {
    EntityTable.DAILY_ENTRIES: DailyEntryCreate,
    EntityTable.WEEKLY_ENTRIES: WeeklyEntryCreate,
    EntityTable.GOALS_CONFIG: GoalsConfigCreate,
}

UPDATE_SCHEMAS = {
    EntityTable.DAILY_ENTRIES: DailyEntryUpdate,
    EntityTable.WEEKLY_ENTRIES: WeeklyEntryUpdate,
    EntityTable.GOALS_CONFIG: GoalsConfigUpdate,
}


class SessionOut(BaseModel):
    id: str
    session_key: str
    created_at: Optional[str] = None
    last_active: Optional[str] = None


# ------------------------------------------------------------
# Sync core
# ------------------------------------------------------------


class PendingOperation(BaseModel):
    """A mutation waiting for the remote gateway.

    ``data`` is the raw payload; for UPDATE/DELETE it embeds the target
    ``id``.  ``ref`` is the local record key the operation belongs to so a
    queued INSERT can reconcile its optimistic record once applied.
    """

    id: str
    type: OperationType
    table: EntityTable
    data: Dict[str, Any]
    timestamp: str
    retry_count: int = 0
    ref: Optional[str] = None


class TrackedRecord(BaseModel):
    """Tagged variant wrapping one entity held in the state store."""

    key: str
    status: RecordStatus
    entity: Dict[str, Any]
    reason: Optional[str] = None

    @property
    def id(self) -> Optional[str]:
        return self.entity.get("id")


class SyncStatus(BaseModel):
    is_online: bool
    is_syncing: bool
    last_sync_time: Optional[str] = None
    pending_operations: List[PendingOperation] = Field(default_factory=list)
    sync_error: Optional[str] = None

    @property
    def phase(self) -> SyncPhase:
        if self.is_syncing:
            return SyncPhase.SYNCING
        if self.sync_error:
            return SyncPhase.ERROR
        return SyncPhase.IDLE


class SyncStatusOut(BaseModel):
    """Sync status plus derived helpers for the UI layer."""

    is_online: bool
    is_syncing: bool
    last_sync_time: Optional[str] = None
    pending_count: int
    has_pending_changes: bool
    can_sync: bool
    sync_error: Optional[str] = None
    phase: SyncPhase


class AppSnapshot(BaseModel):
    current_session: Optional[Dict[str, Any]] = None
    session_key: Optional[str] = None
    is_initialized: bool = False
    daily_entries: List[TrackedRecord] = Field(default_factory=list)
    weekly_entries: List[TrackedRecord] = Field(default_factory=list)
    goals_config: List[TrackedRecord] = Field(default_factory=list)
    error: Optional[str] = None


class JoinRequest(BaseModel):
    session_key: Optional[str] = None
    pairing_code: Optional[str] = None


class ConnectivitySignal(BaseModel):
    online: bool
