"""
tracker/errors.py -- Error taxonomy for the tracker core.

Every error carries a ``kind`` so callers (mainly the recovery
orchestrator) can branch on the category without parsing messages, and a
``message`` written for non-technical users.

    TrackerError
      ValidationError    bad data shape (day number, progress, names ...)
      BackupError        backup directory / source / write problems
      RestoreError       unreadable or malformed backup, bad result
      PersistenceError   the store could not be opened or saved
      ExportError        nothing to export, or the export file not written
"""

from __future__ import annotations

from enum import Enum


class TrackerError(Exception):
    """Base class for all tracker errors."""

    def __init__(self, kind: Enum, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationKind(Enum):
    INVALID_DAY_NUMBER = "invalid_day_number"
    PROGRESS_OUT_OF_RANGE = "progress_out_of_range"
    EMPTY_FIELD = "empty_field"
    INVALID_DIFFICULTY = "invalid_difficulty"
    NEGATIVE_VALUE = "negative_value"
    INVALID_STREAK = "invalid_streak"
    DUPLICATE_RECORD = "duplicate_record"
    MISSING_RECORD = "missing_record"
    INVALID_BONUS_REMOVAL = "invalid_bonus_removal"


class ValidationError(TrackerError):
    """Raised when a caller tries to write data that breaks a model rule."""


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------

class BackupKind(Enum):
    DIRECTORY_UNAVAILABLE = "directory_unavailable"
    SOURCE_MISSING = "source_missing"
    WRITE_FAILED = "write_failed"


class BackupError(TrackerError):
    """Raised when a backup could not be written. Live data is untouched.

    ``records`` lists backups that *were* written before the failure (a
    partially successful ``both`` request).
    """

    def __init__(self, kind: Enum, message: str, records: list | None = None):
        super().__init__(kind, message)
        self.records = list(records or [])


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

class RestoreKind(Enum):
    SOURCE_UNREADABLE = "source_unreadable"
    MALFORMED_DOCUMENT = "malformed_document"
    POST_VALIDATION_FAILED = "post_validation_failed"
    EMPTY_RESULT = "empty_result"


class RestoreError(TrackerError):
    """Raised when a backup could not be loaded back into the store."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class PersistenceKind(Enum):
    OPEN_FAILED = "open_failed"
    SAVE_FAILED = "save_failed"
    MIGRATION_FAILED = "migration_failed"


class PersistenceError(TrackerError):
    """Raised when the progress store cannot be opened, queried or saved."""


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class ExportKind(Enum):
    NO_DATA = "no_data"
    WRITE_FAILED = "write_failed"


class ExportError(TrackerError):
    """Raised when a progress report or statistics export cannot be made."""
