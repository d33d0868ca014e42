"""
tracker/models/document.py -- The structured (JSON) backup document.

The document is the portable, human-inspectable backup format.  Keys are
camelCase on the wire; every timestamp is ISO 8601.  Problems and topics
are nested under their owning day, so ownership is carried by position
rather than by database ids.

Documents written by older releases used different key names for a few
fields (``problemName``, ``leetcodeNumber``, ``timeSpent`` ...).
``normalize_legacy_keys`` rewrites those before validation.

Usage::

    from tracker.models.document import BackupDocument

    doc = BackupDocument.from_records(days, problems_by_day, topics_by_day, settings, "1.0")
    payload = doc.to_json_dict()
    again = BackupDocument.model_validate(payload)
"""

from __future__ import annotations

import datetime as dt
from datetime import datetime, time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tracker.utils import now_utc, parse_date, parse_datetime, parse_time

DOCUMENT_FORMAT_VERSION = 1

# Older key name -> current key name, per nesting level
_LEGACY_TOP_KEYS = {"version": "appVersion"}
_LEGACY_PROBLEM_KEYS = {
    "problemName": "name",
    "leetcodeNumber": "externalRef",
    "timeSpent": "timeSpentMinutes",
    "isBonusProblem": "isBonus",
}
_LEGACY_TOPIC_KEYS = {
    "topicName": "name",
    "topicDescription": "description",
}


class _DocumentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProblemDocument(_DocumentModel):
    name: str
    external_ref: Optional[str] = None
    difficulty: str
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    time_spent_minutes: int = 0
    notes: Optional[str] = None
    is_bonus: bool = False

    @field_validator("completed_at", mode="before")
    @classmethod
    def _coerce_completed_at(cls, value):
        return parse_datetime(value)

    @field_validator("external_ref", mode="before")
    @classmethod
    def _ref_as_text(cls, value):
        # older releases wrote leetcodeNumber as a bare number
        if value is None or isinstance(value, str):
            return value
        return str(value)


class TopicDocument(_DocumentModel):
    name: str
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


class DayDocument(_DocumentModel):
    day_number: int
    date: Optional[dt.date] = None
    dsa_progress: float = 0.0
    system_design_progress: float = 0.0
    is_completed: bool = False
    daily_reflection: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    dsa_problems: list[ProblemDocument] = Field(default_factory=list)
    system_design_topics: list[TopicDocument] = Field(default_factory=list)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamps(cls, value):
        return parse_datetime(value)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value):
        return parse_date(value)


class SettingsDocument(_DocumentModel):
    current_streak: int = 0
    longest_streak: int = 0
    morning_notification_time: Optional[time] = None
    evening_notification_time: Optional[time] = None
    is_notifications_enabled: bool = True
    start_date: Optional[dt.date] = None
    last_backup_date: Optional[datetime] = None
    app_version: Optional[str] = None

    @field_validator("last_backup_date", mode="before")
    @classmethod
    def _coerce_last_backup(cls, value):
        return parse_datetime(value)

    @field_validator("morning_notification_time", "evening_notification_time", mode="before")
    @classmethod
    def _coerce_times(cls, value):
        return parse_time(value)

    @field_validator("start_date", mode="before")
    @classmethod
    def _coerce_start_date(cls, value):
        return parse_date(value)


class BackupDocument(_DocumentModel):
    """The whole data set: every day with its children, plus settings."""

    timestamp: datetime
    app_version: Optional[str] = None
    format_version: int = DOCUMENT_FORMAT_VERSION
    days: list[DayDocument] = Field(default_factory=list)
    user_settings: Optional[SettingsDocument] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value):
        return parse_datetime(value)

    @classmethod
    def from_records(cls, days, problems_by_day, topics_by_day, settings, app_version):
        """Build a document from stored records.

        Parameters
        ----------
        days : list[DayRecord]
            Days in the order they should appear (normally by day number).
        problems_by_day, topics_by_day : dict[int, list]
            Children keyed by the owning day's database id.
        settings : SettingsRecord or None
        app_version : str or None
        """
        day_docs = []
        for day in days:
            day_docs.append(DayDocument(
                day_number=day.day_number,
                date=day.date,
                dsa_progress=day.dsa_progress,
                system_design_progress=day.system_design_progress,
                is_completed=day.is_completed,
                daily_reflection=day.daily_reflection,
                created_at=day.created_at,
                updated_at=day.updated_at,
                dsa_problems=[
                    ProblemDocument(**p.model_dump(exclude={"id", "day_id"}))
                    for p in problems_by_day.get(day.id, [])
                ],
                system_design_topics=[
                    TopicDocument(**t.model_dump(exclude={"id", "day_id"}))
                    for t in topics_by_day.get(day.id, [])
                ],
            ))

        settings_doc = None
        if settings is not None:
            settings_doc = SettingsDocument(**settings.model_dump(exclude={"id"}))

        return cls(
            timestamp=now_utc(),
            app_version=app_version,
            days=day_docs,
            user_settings=settings_doc,
        )

    def to_json_dict(self) -> dict[str, Any]:
        """Return the wire representation (camelCase, ISO 8601 strings)."""
        return self.model_dump(mode="json", by_alias=True)


# ------------------------------------------------------------------
# Legacy key handling
# ------------------------------------------------------------------

def _rename(obj: dict, mapping: dict) -> dict:
    renamed = dict(obj)
    for old, new in mapping.items():
        if old in renamed and new not in renamed:
            renamed[new] = renamed.pop(old)
    return renamed


def normalize_legacy_keys(data):
    """Return *data* with older key names rewritten to current ones.

    Non-dict input is returned unchanged so that schema validation can
    report it.
    """
    if not isinstance(data, dict):
        return data

    result = _rename(data, _LEGACY_TOP_KEYS)
    days = result.get("days")
    if isinstance(days, list):
        new_days = []
        for day in days:
            if isinstance(day, dict):
                day = dict(day)
                if isinstance(day.get("dsaProblems"), list):
                    day["dsaProblems"] = [
                        _rename(p, _LEGACY_PROBLEM_KEYS) if isinstance(p, dict) else p
                        for p in day["dsaProblems"]
                    ]
                if isinstance(day.get("systemDesignTopics"), list):
                    day["systemDesignTopics"] = [
                        _rename(t, _LEGACY_TOPIC_KEYS) if isinstance(t, dict) else t
                        for t in day["systemDesignTopics"]
                    ]
            new_days.append(day)
        result["days"] = new_days

    return result
