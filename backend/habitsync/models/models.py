"""Tables of the relational reference backend.

Every entity row belongs to exactly one :class:`Session`; the SQL gateway
filters all reads and writes by the session resolved from the caller's
session key.
"""

import uuid

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Float
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import UniqueConstraint

from habitsync.database import Base
from habitsync.utils.time import utc_now


def _new_id() -> str:
    return str(uuid.uuid4())


class Session(Base):
    """A pairing session; ``session_key`` is the shared secret."""

    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=_new_id)
    session_key = Column(String, unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    last_active = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class DailyEntry(Base):
    __tablename__ = "daily_entries"

    id = Column(String, primary_key=True, default=_new_id)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False, index=True)
    date = Column(String, nullable=False)  # YYYY-MM-DD

    strength_workout = Column(Boolean, default=False, nullable=False)
    other_workout_type = Column(String, nullable=True)
    other_workout_completed = Column(Boolean, default=False, nullable=False)
    pages_read = Column(Integer, default=0, nullable=False)
    supplements_morning = Column(Boolean, default=False, nullable=False)
    supplements_night = Column(Boolean, default=False, nullable=False)
    weight = Column(Float, nullable=True)
    body_fat_percentage = Column(Float, nullable=True)
    sleep_hours = Column(Float, nullable=True)
    calories_consumed = Column(Integer, nullable=True)
    dog_training_minutes = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class WeeklyEntry(Base):
    __tablename__ = "weekly_entries"

    id = Column(String, primary_key=True, default=_new_id)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False, index=True)
    week_start_date = Column(String, nullable=False)  # YYYY-MM-DD (Monday)

    work_blockers_unlocked = Column(Integer, default=0, nullable=False)
    family_house_hours = Column(Float, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class GoalsConfig(Base):
    __tablename__ = "goals_config"
    __table_args__ = (UniqueConstraint("session_id", "month_year", name="uq_goals_config_session_month"),)

    id = Column(String, primary_key=True, default=_new_id)
    session_id = Column(String, ForeignKey("sessions.id"), nullable=False, index=True)
    month_year = Column(String, nullable=False)  # YYYY-MM

    strength_workouts_per_week = Column(Integer, default=0, nullable=False)
    pages_per_day = Column(Integer, default=0, nullable=False)
    target_weight = Column(Float, nullable=True)
    target_body_fat = Column(Float, nullable=True)
    dog_training_minutes_per_day = Column(Integer, default=0, nullable=False)
    family_hours_per_week = Column(Float, default=0, nullable=False)
    work_blockers_per_week = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


TABLE_MODELS = {
    "daily_entries": DailyEntry,
    "weekly_entries": WeeklyEntry,
    "goals_config": GoalsConfig,
}
