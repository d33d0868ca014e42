"""
tracker/models/records.py -- Record models for the progress store.

Stored records are deliberately lenient: they accept whatever shape the
database holds (out-of-range progress, empty names, unknown difficulty)
so that the validator can *report* bad data instead of failing to load
it.  Seeds are the strict counterpart used when creating new rows.

Usage::

    from tracker.models import DayRecord, ProblemSeed

    day = DayRecord.from_row(row)
    seed = ProblemSeed(name="Two Sum", external_ref="1", difficulty="Easy")
"""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime, time
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tracker.utils import parse_date, parse_datetime, parse_time

TOTAL_DAYS = 100


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class BackupFormat(str, Enum):
    BINARY = "binary"
    STRUCTURED = "structured"
    BOTH = "both"


# ------------------------------------------------------------------
# Stored records
# ------------------------------------------------------------------

class _StoredRecord(BaseModel):
    """Common behaviour for records loaded from ``sqlite3.Row`` objects."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_row(cls, row):
        return cls.model_validate(dict(row))


class DayRecord(_StoredRecord):
    id: int
    day_number: int
    date: Optional[dt.date] = None
    dsa_progress: float = 0.0
    system_design_progress: float = 0.0
    is_completed: bool = False
    daily_reflection: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value):
        return parse_date(value)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, value):
        return parse_datetime(value)


class ProblemRecord(_StoredRecord):
    id: int
    day_id: Optional[int] = None
    name: str = ""
    external_ref: Optional[str] = None
    difficulty: str = Difficulty.EASY.value
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    time_spent_minutes: int = 0
    notes: Optional[str] = None
    is_bonus: bool = False

    @field_validator("completed_at", mode="before")
    @classmethod
    def _coerce_completed_at(cls, value):
        return parse_datetime(value)


class TopicRecord(_StoredRecord):
    id: int
    day_id: Optional[int] = None
    name: str = ""
    description: Optional[str] = None
    is_completed: bool = False
    video_watched: bool = False
    task_completed: bool = False
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("completed_at", mode="before")
    @classmethod
    def _coerce_completed_at(cls, value):
        return parse_datetime(value)


class SettingsRecord(_StoredRecord):
    id: int
    current_streak: int = 0
    longest_streak: int = 0
    morning_notification_time: Optional[time] = None
    evening_notification_time: Optional[time] = None
    is_notifications_enabled: bool = True
    start_date: Optional[date] = None
    last_backup_date: Optional[datetime] = None
    app_version: Optional[str] = None

    @field_validator("morning_notification_time", "evening_notification_time", mode="before")
    @classmethod
    def _coerce_times(cls, value):
        return parse_time(value)

    @field_validator("start_date", mode="before")
    @classmethod
    def _coerce_start_date(cls, value):
        return parse_date(value)

    @field_validator("last_backup_date", mode="before")
    @classmethod
    def _coerce_last_backup(cls, value):
        return parse_datetime(value)


# ------------------------------------------------------------------
# Seeds (strict, used for inserts)
# ------------------------------------------------------------------

class ProblemSeed(BaseModel):
    """A DSA problem as supplied by the curriculum or a bonus-problem form."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1)
    external_ref: Optional[str] = None
    difficulty: Difficulty = Difficulty.EASY


class TopicSeed(BaseModel):
    """A system-design topic as supplied by the curriculum."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None


# ------------------------------------------------------------------
# Backups
# ------------------------------------------------------------------

class BackupRecord(BaseModel):
    """A backup file discovered in the backup directory."""

    model_config = ConfigDict(frozen=True)

    location: Path
    created_at: datetime
    size_bytes: int
    format: BackupFormat
    label: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.location.name
