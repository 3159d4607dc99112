"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so JSON serialisation renders plain strings
and comparisons against raw literals (``op.type == "INSERT"``) keep working.
"""

from __future__ import annotations

from enum import Enum


class EntityTable(str, Enum):
    """Remote table names, one per entity kind."""

    DAILY_ENTRIES = "daily_entries"
    WEEKLY_ENTRIES = "weekly_entries"
    GOALS_CONFIG = "goals_config"


class OperationType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class RecordStatus(str, Enum):
    """Tagged variant of a locally held record."""

    CONFIRMED = "confirmed"
    OPTIMISTIC = "optimistic"
    FAILED = "failed"


class SyncPhase(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


# Natural ordering field per table (newest first on list calls)
ORDER_FIELDS = {
    EntityTable.DAILY_ENTRIES: "date",
    EntityTable.WEEKLY_ENTRIES: "week_start_date",
    EntityTable.GOALS_CONFIG: "created_at",
}
