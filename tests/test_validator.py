"""
Tests for tracker/validator.py

Covers:
    - A healthy store produces no issues
    - Cached progress drift and missing completion dates (warnings)
    - Structural errors (missing days, orphans, bad values) and severity
    - auto_fix: progress recomputation from random completion states,
      topic gates, timestamps, streak ordering, orphan removal
    - auto_fix rolls back every fix when one step fails
    - auto_fix idempotence
    - assess() on an unreadable store
"""

import random
import sqlite3
from unittest import mock

import pytest

from tracker.errors import PersistenceError, PersistenceKind, ValidationKind
from tracker.repository import ProgressRepository
from tracker.validator import (
    DataValidator,
    IssueLevel,
    Severity,
    ValidationReport,
    classify,
)


@pytest.fixture
def validator():
    return DataValidator()


def _trim_day(store, day_number, problems, topics):
    """Keep only the first *problems*/*topics* children of a day."""
    with store.transaction() as conn:
        day_id = conn.execute(
            "SELECT id FROM days WHERE day_number = ?", (day_number,)
        ).fetchone()[0]
        conn.execute(
            "DELETE FROM problems WHERE day_id = ? AND id NOT IN "
            "(SELECT id FROM problems WHERE day_id = ? ORDER BY id LIMIT ?)",
            (day_id, day_id, problems),
        )
        conn.execute(
            "DELETE FROM topics WHERE day_id = ? AND id NOT IN "
            "(SELECT id FROM topics WHERE day_id = ? ORDER BY id LIMIT ?)",
            (day_id, day_id, topics),
        )
    return day_id


# ---------------------------------------------------------------------------
# Report basics
# ---------------------------------------------------------------------------

class TestReport:
    def test_classify_thresholds(self):
        report = ValidationReport()
        assert classify(report) == Severity.HEALTHY
        report.warning("cosmetic")
        assert classify(report) == Severity.HEALTHY
        report.error("one")
        report.error("two")
        assert classify(report) == Severity.MINOR
        report.error("three")
        assert classify(report) == Severity.MAJOR

    def test_format_human(self):
        report = ValidationReport()
        assert report.format_human() == "All data checks passed."
        report.error("bad thing")
        report.warning("odd thing")
        text = report.format_human()
        assert "1 error(s):" in text
        assert "bad thing" in text
        assert "odd thing" in text
        assert report.summary() == "1 error(s), 1 warning(s)"

    def test_severity_ordering(self):
        assert Severity.HEALTHY < Severity.MINOR < Severity.MAJOR < Severity.CRITICAL


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidate:
    def test_healthy_store(self, validator, store):
        report = validator.validate(store)
        assert report.is_valid
        assert report.issues == []
        assert report.counts["days"] == 100

    def test_stale_progress_and_missing_completion_date(self, validator, store):
        day_id = _trim_day(store, 5, problems=3, topics=2)
        with store.transaction() as conn:
            ids = [r[0] for r in conn.execute(
                "SELECT id FROM problems WHERE day_id = ? ORDER BY id", (day_id,)
            )]
            conn.execute(
                "UPDATE problems SET is_completed = 1, completed_at = '2026-01-09T10:00:00+00:00' "
                "WHERE id = ?", (ids[0],)
            )
            conn.execute(
                "UPDATE problems SET is_completed = 1, completed_at = NULL WHERE id = ?",
                (ids[1],),
            )
            conn.execute("UPDATE days SET dsa_progress = 0.9 WHERE id = ?", (day_id,))

        report = validator.validate(store)
        assert report.errors == []
        assert len(report.warnings) == 2
        assert any("Day 5: DSA progress mismatch" in w for w in report.warnings)
        assert any("completed but has no completion date" in w for w in report.warnings)

        validator.auto_fix(store, report)
        day = store.connection.execute(
            "SELECT dsa_progress FROM days WHERE id = ?", (day_id,)
        ).fetchone()[0]
        assert day == pytest.approx(2 / 3)
        after = validator.validate(store)
        assert after.issues == []

    def test_missing_day_is_error(self, validator, store, repository):
        repository.delete_day(repository.get_day(50).id)
        report = validator.validate(store)
        assert any("Expected 100 days" in e for e in report.errors)
        assert any("Missing days: [50]" in e for e in report.errors)
        assert classify(report) == Severity.MINOR

    def test_orphans_are_errors(self, validator, store):
        with store.transaction() as conn:
            conn.execute("INSERT INTO problems (day_id, name) VALUES (NULL, 'Lost')")
            conn.execute("INSERT INTO topics (day_id, name) VALUES (9999, 'Lost')")
        report = validator.validate(store)
        assert "1 orphaned problem(s) found" in report.errors
        assert "1 orphaned topic(s) found" in report.errors
        kinds = {i.kind for i in report.issues if i.level is IssueLevel.ERROR}
        assert ValidationKind.MISSING_RECORD in kinds

    def test_bad_values(self, validator, store):
        with store.transaction() as conn:
            conn.execute("UPDATE days SET dsa_progress = 1.5 WHERE day_number = 2")
            conn.execute(
                "UPDATE problems SET difficulty = 'Impossible', time_spent_minutes = -4 "
                "WHERE id = (SELECT MIN(id) FROM problems)"
            )
            conn.execute("UPDATE topics SET name = '  ' WHERE id = (SELECT MIN(id) FROM topics)")
        report = validator.validate(store)
        kinds = {i.kind for i in report.issues if i.level is IssueLevel.ERROR}
        assert {
            ValidationKind.PROGRESS_OUT_OF_RANGE,
            ValidationKind.INVALID_DIFFICULTY,
            ValidationKind.NEGATIVE_VALUE,
            ValidationKind.EMPTY_FIELD,
        } <= kinds
        assert classify(report) == Severity.MAJOR

    def test_settings_problems(self, validator, store):
        with store.transaction() as conn:
            conn.execute("INSERT INTO settings (current_streak, longest_streak) VALUES (0, 0)")
        report = validator.validate(store)
        assert any("Multiple settings records" in e for e in report.errors)

        with store.transaction() as conn:
            conn.execute("DELETE FROM settings")
        report = validator.validate(store)
        assert "No settings record found" in report.errors

    def test_negative_streak(self, validator, store):
        with store.transaction() as conn:
            conn.execute("UPDATE settings SET current_streak = -1")
        report = validator.validate(store)
        kinds = {i.kind for i in report.issues if i.level is IssueLevel.ERROR}
        assert ValidationKind.INVALID_STREAK in kinds

    def test_duplicate_names_warn(self, validator, store, repository):
        day = repository.get_day(12)
        first = repository.problems_for_day(day.id)[0]
        with store.transaction() as conn:
            conn.execute(
                "INSERT INTO problems (day_id, name, difficulty) VALUES (?, ?, 'Easy')",
                (day.id, first.name),
            )
        report = validator.validate(store)
        assert report.errors == []
        assert any("duplicate problem names" in w for w in report.warnings)


# ---------------------------------------------------------------------------
# Auto-fix
# ---------------------------------------------------------------------------

class TestAutoFix:
    def test_progress_recomputed_from_random_states(self, validator, store, repository):
        rng = random.Random(1234)
        with store.transaction() as conn:
            for p in repository.list_problems():
                conn.execute(
                    "UPDATE problems SET is_completed = ? WHERE id = ?",
                    (int(rng.random() < 0.5), p.id),
                )
            for t in repository.list_topics():
                conn.execute(
                    "UPDATE topics SET video_watched = ?, task_completed = ? WHERE id = ?",
                    (int(rng.random() < 0.7), int(rng.random() < 0.7), t.id),
                )
            # a few fully completed days
            for n in (3, 30, 77):
                day_id = conn.execute(
                    "SELECT id FROM days WHERE day_number = ?", (n,)
                ).fetchone()[0]
                conn.execute("UPDATE problems SET is_completed = 1 WHERE day_id = ?", (day_id,))
                conn.execute(
                    "UPDATE topics SET video_watched = 1, task_completed = 1 WHERE day_id = ?",
                    (day_id,),
                )

        validator.auto_fix(store)

        for day in repository.list_days():
            problems = repository.problems_for_day(day.id)
            topics = repository.topics_for_day(day.id)
            done_p = sum(1 for p in problems if p.is_completed)
            done_t = sum(1 for t in topics if t.is_completed)
            assert day.dsa_progress == pytest.approx(done_p / len(problems))
            assert day.system_design_progress == pytest.approx(done_t / len(topics))
            assert day.is_completed == (
                day.dsa_progress >= 1.0 and day.system_design_progress >= 1.0
            )
            for t in topics:
                assert t.is_completed == (t.video_watched and t.task_completed)
        assert repository.get_day(30).is_completed
        assert validator.validate(store).issues == []

    def test_fixes_timestamps_streak_and_orphans(self, validator, store, repository):
        with store.transaction() as conn:
            conn.execute("UPDATE days SET created_at = NULL, updated_at = NULL WHERE day_number = 9")
            conn.execute("UPDATE settings SET current_streak = 5, longest_streak = 2")
            conn.execute(
                "UPDATE problems SET completed_at = '2026-01-01T00:00:00+00:00' "
                "WHERE id = (SELECT MIN(id) FROM problems)"
            )
            conn.execute("INSERT INTO problems (day_id, name) VALUES (NULL, 'Lost')")

        report = validator.validate(store)
        fixed = validator.auto_fix(store, report)
        assert fixed >= 5

        day = repository.get_day(9)
        assert day.created_at is not None and day.updated_at is not None
        assert repository.get_settings().longest_streak == 5
        assert repository.list_problems()[0].completed_at is None
        assert all(p.name != "Lost" for p in repository.list_problems())
        assert validator.validate(store).issues == []

    def test_idempotent(self, validator, store):
        with store.transaction() as conn:
            conn.execute("UPDATE days SET dsa_progress = 0.4 WHERE day_number BETWEEN 1 AND 10")
            conn.execute("UPDATE topics SET video_watched = 1, task_completed = 1, is_completed = 0")
        validator.auto_fix(store)
        first = validator.validate(store)
        assert validator.auto_fix(store) == 0
        second = validator.validate(store)
        assert first.issues == second.issues == []

    def test_healthy_report_leaves_store_untouched(self, validator, store):
        report = validator.validate(store)
        assert validator.auto_fix(store, report) == 0

    def test_failure_rolls_back_every_fix(self, validator, store):
        with store.transaction() as conn:
            conn.execute("UPDATE days SET created_at = NULL, dsa_progress = 0.5 WHERE day_number = 9")

        error = sqlite3.Error("disk I/O error")
        with mock.patch.object(ProgressRepository, "delete_orphans", side_effect=error):
            with pytest.raises(PersistenceError) as exc_info:
                validator.auto_fix(store)
        assert exc_info.value.kind == PersistenceKind.SAVE_FAILED

        created_at, dsa_progress = store.connection.execute(
            "SELECT created_at, dsa_progress FROM days WHERE day_number = 9"
        ).fetchone()
        assert created_at is None
        assert dsa_progress == 0.5


# ---------------------------------------------------------------------------
# Severity assessment
# ---------------------------------------------------------------------------

class TestAssess:
    def test_healthy(self, validator, store):
        severity, report = validator.assess(store)
        assert severity == Severity.HEALTHY
        assert report is not None

    def test_unreadable_store_is_critical(self, validator, store, corrupt_store):
        corrupt_store(store)
        severity, report = validator.assess(store)
        assert severity == Severity.CRITICAL
        assert report is None

    def test_unparseable_rows_are_critical(self, validator, store):
        with store.transaction() as conn:
            conn.execute("UPDATE days SET created_at = 'not a date' WHERE day_number = 1")
        severity, report = validator.assess(store)
        assert severity == Severity.CRITICAL
        assert report is None
