"""
tracker/validator.py -- Data validation, auto-fix and severity classification

Walks the whole progress graph and reports every broken invariant:

    Errors (data unusable until repaired or restored)
        - day count is not 100, missing or duplicate day numbers
        - day numbers outside 1..100, progress outside [0, 1]
        - orphaned problems/topics (no owner, or owner missing)
        - empty names, unknown difficulty, negative time spent
        - zero or several settings records, negative streaks

    Warnings (cosmetic, resolved by ``auto_fix`` without data loss)
        - missing created/updated timestamps on a day
        - cached progress or day completion out of date
        - completion flag and completion timestamp disagree
        - topic completion disagrees with its video/task gates
        - longest streak below current streak
        - duplicate item names within a day, missing notification times

``validate`` never writes.  ``auto_fix`` applies its fixes in a fixed
order inside one transaction, so either all of them land or none do.
``assess`` turns a validation run into a ``Severity`` for the recovery
orchestrator.

Usage:
    from tracker.validator import DataValidator, Severity

    validator = DataValidator()
    report = validator.validate(store)
    if report.warnings:
        validator.auto_fix(store, report)
    severity, report = validator.assess(store)
"""

from __future__ import annotations

import logging
import math
import sqlite3
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from pydantic import ValidationError as PydanticValidationError

from tracker.errors import TrackerError, ValidationKind
from tracker.models.records import TOTAL_DAYS, Difficulty
from tracker.repository import ProgressRepository, day_is_completed, section_progress
from tracker.utils import now_utc, to_iso

logger = logging.getLogger(__name__)

VALID_DIFFICULTIES = frozenset(d.value for d in Difficulty)

_PROGRESS_TOLERANCE = 1e-9


class Severity(IntEnum):
    """Ordered health ladder; the orchestrator compares these directly."""

    HEALTHY = 0
    MINOR = 1
    MAJOR = 2
    CRITICAL = 3


class IssueLevel(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class ValidationIssue:
    """A single broken invariant."""
    level: IssueLevel
    message: str
    kind: ValidationKind | None = None


@dataclass
class ValidationReport:
    """Everything one validation pass found."""
    issues: list[ValidationIssue] = field(default_factory=list)
    counts: dict = field(default_factory=dict)

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.level is IssueLevel.ERROR]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.level is IssueLevel.WARNING]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, message: str, kind: ValidationKind | None = None) -> None:
        self.issues.append(ValidationIssue(IssueLevel.ERROR, message, kind))

    def warning(self, message: str, kind: ValidationKind | None = None) -> None:
        self.issues.append(ValidationIssue(IssueLevel.WARNING, message, kind))

    def summary(self) -> str:
        """One line for logs and status text."""
        if not self.issues:
            return "All data checks passed."
        return f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"

    def format_human(self) -> str:
        """Format for display to the user."""
        if not self.issues:
            return "All data checks passed."
        parts = []
        if self.errors:
            parts.append(f"{len(self.errors)} error(s):")
            parts.extend(f"  {e}" for e in self.errors)
        if self.warnings:
            parts.append(f"{len(self.warnings)} warning(s):")
            parts.extend(f"  {w}" for w in self.warnings)
        return "\n".join(parts)


def classify(report: ValidationReport) -> Severity:
    """Map a report to a severity: 0 errors healthy, 1-2 minor, more major."""
    error_count = len(report.errors)
    if error_count == 0:
        return Severity.HEALTHY
    if error_count <= 2:
        return Severity.MINOR
    return Severity.MAJOR


def _progress_matches(stored: float, expected: float) -> bool:
    return math.isclose(stored, expected, rel_tol=0.0, abs_tol=_PROGRESS_TOLERANCE)


# ---------------------------------------------------------------------------
# DataValidator
# ---------------------------------------------------------------------------

class DataValidator:
    """Stateless checker/fixer for a ``ProgressStore``."""

    # ==================================================================
    # Validation
    # ==================================================================

    def validate(self, store) -> ValidationReport:
        """Check every invariant of the stored graph.

        Raises
        ------
        PersistenceError
            If the store cannot be opened.  ``sqlite3.Error`` or a pydantic
            error may also escape when rows are unreadable; ``assess``
            turns all of these into ``Severity.CRITICAL``.
        """
        graph = ProgressRepository(store).load_graph()
        report = ValidationReport()
        days = graph["days"]
        day_ids = {d.id for d in days}

        report.counts = {
            "days": len(days),
            "problems": len(graph["problems"]),
            "topics": len(graph["topics"]),
            "settings": len(graph["settings"]),
            "completed_problems": sum(1 for p in graph["problems"] if p.is_completed),
            "completed_topics": sum(1 for t in graph["topics"] if t.is_completed),
        }

        self._check_day_set(days, report)
        for day in days:
            self._check_day(
                day,
                graph["problems_by_day"].get(day.id, []),
                graph["topics_by_day"].get(day.id, []),
                report,
            )
        self._check_problems(graph["problems"], day_ids, report)
        self._check_topics(graph["topics"], day_ids, report)
        self._check_settings(graph["settings"], report)

        logger.debug("Validation finished: %s", report.summary())
        return report

    @staticmethod
    def _check_day_set(days, report):
        if len(days) != TOTAL_DAYS:
            report.error(f"Expected {TOTAL_DAYS} days, found {len(days)}")

        numbers = Counter(d.day_number for d in days)
        missing = sorted(set(range(1, TOTAL_DAYS + 1)) - set(numbers))
        if missing:
            report.error(f"Missing days: {missing}", ValidationKind.INVALID_DAY_NUMBER)
        duplicates = sorted(n for n, c in numbers.items() if c > 1)
        if duplicates:
            report.error(f"Duplicate days: {duplicates}", ValidationKind.DUPLICATE_RECORD)

    @staticmethod
    def _check_day(day, problems, topics, report):
        label = f"Day {day.day_number}"
        if not 1 <= day.day_number <= TOTAL_DAYS:
            report.error(
                f"Day record {day.id} has invalid day number {day.day_number}",
                ValidationKind.INVALID_DAY_NUMBER,
            )

        if day.created_at is None:
            report.warning(f"{label}: missing creation date")
        if day.updated_at is None:
            report.warning(f"{label}: missing update date")

        in_range = True
        for name, value in (("DSA", day.dsa_progress), ("system design", day.system_design_progress)):
            if not 0.0 <= value <= 1.0:
                in_range = False
                report.error(
                    f"{label}: {name} progress {value} is outside 0..1",
                    ValidationKind.PROGRESS_OUT_OF_RANGE,
                )
        if not in_range:
            return

        expected_dsa = section_progress(sum(1 for p in problems if p.is_completed), len(problems))
        expected_sd = section_progress(sum(1 for t in topics if t.is_completed), len(topics))
        if not _progress_matches(day.dsa_progress, expected_dsa):
            report.warning(
                f"{label}: DSA progress mismatch "
                f"(stored {day.dsa_progress:.3f}, calculated {expected_dsa:.3f})"
            )
        if not _progress_matches(day.system_design_progress, expected_sd):
            report.warning(
                f"{label}: system design progress mismatch "
                f"(stored {day.system_design_progress:.3f}, calculated {expected_sd:.3f})"
            )
        if day.is_completed != day_is_completed(day.dsa_progress, day.system_design_progress):
            report.warning(f"{label}: completion flag does not match its progress")

        for kind, names in (("problem", [p.name for p in problems]), ("topic", [t.name for t in topics])):
            dupes = sorted(n for n, c in Counter(names).items() if c > 1 and n)
            if dupes:
                report.warning(f"{label}: duplicate {kind} names {dupes}")

    @staticmethod
    def _check_problems(problems, day_ids, report):
        orphans = 0
        for p in problems:
            if p.day_id is None or p.day_id not in day_ids:
                orphans += 1
            label = f"Problem '{p.name}'" if p.name else f"Problem {p.id}"
            if not p.name.strip():
                report.error(f"Problem {p.id} has an empty name", ValidationKind.EMPTY_FIELD)
            if p.difficulty not in VALID_DIFFICULTIES:
                report.error(
                    f"{label} has invalid difficulty '{p.difficulty}'",
                    ValidationKind.INVALID_DIFFICULTY,
                )
            if p.time_spent_minutes < 0:
                report.error(
                    f"{label} has negative time spent ({p.time_spent_minutes})",
                    ValidationKind.NEGATIVE_VALUE,
                )
            if p.is_completed and p.completed_at is None:
                report.warning(f"{label} is completed but has no completion date")
            elif not p.is_completed and p.completed_at is not None:
                report.warning(f"{label} is not completed but has a completion date")
        if orphans:
            report.error(f"{orphans} orphaned problem(s) found", ValidationKind.MISSING_RECORD)

    @staticmethod
    def _check_topics(topics, day_ids, report):
        orphans = 0
        for t in topics:
            if t.day_id is None or t.day_id not in day_ids:
                orphans += 1
            label = f"Topic '{t.name}'" if t.name else f"Topic {t.id}"
            if not t.name.strip():
                report.error(f"Topic {t.id} has an empty name", ValidationKind.EMPTY_FIELD)
            if t.is_completed != (t.video_watched and t.task_completed):
                report.warning(f"{label}: completion does not match video/task state")
            if t.is_completed and t.completed_at is None:
                report.warning(f"{label} is completed but has no completion date")
            elif not t.is_completed and t.completed_at is not None:
                report.warning(f"{label} is not completed but has a completion date")
        if orphans:
            report.error(f"{orphans} orphaned topic(s) found", ValidationKind.MISSING_RECORD)

    @staticmethod
    def _check_settings(settings, report):
        if not settings:
            report.error("No settings record found", ValidationKind.MISSING_RECORD)
            return
        if len(settings) > 1:
            report.error(
                f"Multiple settings records found ({len(settings)})",
                ValidationKind.DUPLICATE_RECORD,
            )
        s = settings[0]
        if s.current_streak < 0 or s.longest_streak < 0:
            report.error(
                f"Negative streak values (current {s.current_streak}, longest {s.longest_streak})",
                ValidationKind.INVALID_STREAK,
            )
        elif s.longest_streak < s.current_streak:
            report.warning(
                f"Longest streak ({s.longest_streak}) is below current streak ({s.current_streak})",
                ValidationKind.INVALID_STREAK,
            )
        if s.morning_notification_time is None or s.evening_notification_time is None:
            report.warning("Notification times are not set")

    # ==================================================================
    # Auto-fix
    # ==================================================================

    def auto_fix(self, store, report: ValidationReport | None = None) -> int:
        """Apply every deterministic fix in one transaction.

        Order: (1) missing day timestamps, (2) topic completion from its
        gates and day progress/completion from child counts, (3) completion
        timestamps from completion flags, (4) longest streak raised to the
        current streak, (5) orphan deletion.

        Parameters
        ----------
        store : ProgressStore
        report : ValidationReport, optional
            A fresh report for this store.  When it shows no issues at all
            the store is left untouched.

        Returns
        -------
        int
            Number of rows changed or deleted.
        """
        if report is not None and not report.issues:
            return 0

        repo = ProgressRepository(store)
        now = now_utc()
        stamp = to_iso(now)
        fixed = 0

        with store.transaction() as conn:
            # 1. timestamps
            fixed += conn.execute(
                "UPDATE days SET created_at = ? WHERE created_at IS NULL OR created_at = ''",
                (stamp,),
            ).rowcount
            fixed += conn.execute(
                "UPDATE days SET updated_at = ? WHERE updated_at IS NULL OR updated_at = ''",
                (stamp,),
            ).rowcount

            # 2. progress
            fixed += conn.execute(
                "UPDATE topics SET is_completed = (video_watched != 0 AND task_completed != 0) "
                "WHERE is_completed != (video_watched != 0 AND task_completed != 0)"
            ).rowcount
            for day in repo.list_days():
                if self._day_needs_recompute(repo, day):
                    repo.recompute_day(day.id, now=now)
                    fixed += 1

            # 3. completion timestamps
            for table in ("problems", "topics"):
                fixed += conn.execute(
                    f"UPDATE {table} SET completed_at = ? "
                    f"WHERE is_completed != 0 AND (completed_at IS NULL OR completed_at = '')",
                    (stamp,),
                ).rowcount
                fixed += conn.execute(
                    f"UPDATE {table} SET completed_at = NULL "
                    f"WHERE is_completed = 0 AND completed_at IS NOT NULL"
                ).rowcount

            # 4. streak ordering
            fixed += conn.execute(
                "UPDATE settings SET longest_streak = current_streak "
                "WHERE longest_streak < current_streak"
            ).rowcount

            # 5. orphans
            deleted_problems, deleted_topics = repo.delete_orphans()
            fixed += deleted_problems + deleted_topics

        if fixed:
            logger.info("Auto-fix applied %d fix(es)", fixed)
        return fixed

    @staticmethod
    def _day_needs_recompute(repo, day) -> bool:
        problems = repo.problems_for_day(day.id)
        topics = repo.topics_for_day(day.id)
        dsa = section_progress(sum(1 for p in problems if p.is_completed), len(problems))
        sd = section_progress(sum(1 for t in topics if t.is_completed), len(topics))
        return (
            not _progress_matches(day.dsa_progress, dsa)
            or not _progress_matches(day.system_design_progress, sd)
            or day.is_completed != day_is_completed(dsa, sd)
        )

    # ==================================================================
    # Severity
    # ==================================================================

    def assess(self, store) -> tuple[Severity, ValidationReport | None]:
        """Validate and classify.

        Any failure to open, read or parse the store is ``CRITICAL`` with
        no report.
        """
        try:
            if not store.quick_check():
                logger.warning("Progress store failed SQLite's structural check")
                return Severity.CRITICAL, None
            report = self.validate(store)
        except (TrackerError, sqlite3.Error, PydanticValidationError, ValueError) as exc:
            logger.warning("Validation could not run: %s", exc, exc_info=True)
            return Severity.CRITICAL, None
        return classify(report), report
