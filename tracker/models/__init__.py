"""
tracker/models/ -- Pydantic v2 models for the tracker core.

Submodules:
    records   Stored records (Day, Problem, Topic, Settings), seeds and
              the filesystem-derived BackupRecord.
    document  The structured (JSON) backup document.
"""

from tracker.models.records import (
    BackupFormat,
    BackupRecord,
    DayRecord,
    Difficulty,
    ProblemRecord,
    ProblemSeed,
    SettingsRecord,
    TopicRecord,
    TopicSeed,
)

__all__ = [
    "BackupFormat",
    "BackupRecord",
    "DayRecord",
    "Difficulty",
    "ProblemRecord",
    "ProblemSeed",
    "SettingsRecord",
    "TopicRecord",
    "TopicSeed",
]
