"""
tracker/repository.py -- Record access for the progress store

The repository is the only code that writes rows.  Because the store keeps
SQLite's own foreign keys and unique constraints switched off, the rules
that bind the object graph are enforced here:

    - a day number is unique and lies in 1..100
    - a problem/topic always has an owning day that exists
    - deleting a day deletes its problems and topics
    - at most one settings row is ever created
    - a problem name is unique within its day (bonus problems)

Every user-facing mutation also keeps the cached day state current:
completion timestamps follow completion flags, topic completion follows
its two gates (video watched + task completed), and the day's progress
ratios and completion flag are recomputed from its children.

Usage:
    from tracker.repository import ProgressRepository

    repo = ProgressRepository(store)
    day = repo.get_day(5)
    repo.toggle_problem(repo.problems_for_day(day.id)[0].id)
    repo.update_streak()
"""

import logging
from datetime import date, datetime, timedelta

from tracker.errors import ValidationError, ValidationKind
from tracker.models.records import (
    TOTAL_DAYS,
    DayRecord,
    ProblemRecord,
    ProblemSeed,
    SettingsRecord,
    TopicRecord,
    TopicSeed,
)
from tracker.utils import now_utc, to_iso

logger = logging.getLogger(__name__)


def section_progress(completed: int, total: int) -> float:
    """Completed-to-total ratio for one section, 0.0 for an empty section."""
    if total <= 0:
        return 0.0
    return completed / total


def day_is_completed(dsa_progress: float, system_design_progress: float) -> bool:
    return dsa_progress >= 1.0 and system_design_progress >= 1.0


def active_dates(start_date: date, days) -> set[date]:
    """Calendar dates of the days with any progress.

    Day *n* falls on ``start_date + (n - 1)``; a day is active when either
    of its progress ratios is above zero.
    """
    return {
        start_date + timedelta(days=day.day_number - 1)
        for day in days
        if day.dsa_progress > 0 or day.system_design_progress > 0
    }


def current_run(active: set[date], today: date) -> int:
    """Consecutive active dates ending today, or yesterday if today is idle."""
    cursor = today if today in active else today - timedelta(days=1)
    streak = 0
    while cursor in active:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_run(active: set[date]) -> int:
    longest = 0
    for start in active:
        if start - timedelta(days=1) in active:
            continue
        length = 1
        while start + timedelta(days=length) in active:
            length += 1
        longest = max(longest, length)
    return longest


def _clean_text(text):
    """Trim user text; blank input is stored as NULL."""
    if text is None:
        return None
    text = text.strip()
    return text or None


class ProgressRepository:
    """Typed reads and integrity-preserving writes over a ``ProgressStore``.

    Parameters
    ----------
    store : ProgressStore
        The store to operate on.  Every write opens (or joins) a
        ``store.transaction()``.
    """

    def __init__(self, store):
        self.store = store

    # ==================================================================
    # Reads
    # ==================================================================

    def _fetch(self, sql, params=()):
        return self.store.connection.execute(sql, params).fetchall()

    def list_days(self) -> list[DayRecord]:
        """All days ordered by day number (duplicates included)."""
        rows = self._fetch("SELECT * FROM days ORDER BY day_number, id")
        return [DayRecord.from_row(r) for r in rows]

    def get_day(self, day_number: int) -> DayRecord | None:
        rows = self._fetch(
            "SELECT * FROM days WHERE day_number = ? ORDER BY id LIMIT 1", (day_number,)
        )
        return DayRecord.from_row(rows[0]) if rows else None

    def get_day_by_id(self, day_id: int) -> DayRecord | None:
        rows = self._fetch("SELECT * FROM days WHERE id = ?", (day_id,))
        return DayRecord.from_row(rows[0]) if rows else None

    def list_problems(self) -> list[ProblemRecord]:
        rows = self._fetch("SELECT * FROM problems ORDER BY id")
        return [ProblemRecord.from_row(r) for r in rows]

    def problems_for_day(self, day_id: int) -> list[ProblemRecord]:
        rows = self._fetch("SELECT * FROM problems WHERE day_id = ? ORDER BY id", (day_id,))
        return [ProblemRecord.from_row(r) for r in rows]

    def get_problem(self, problem_id: int) -> ProblemRecord | None:
        rows = self._fetch("SELECT * FROM problems WHERE id = ?", (problem_id,))
        return ProblemRecord.from_row(rows[0]) if rows else None

    def list_topics(self) -> list[TopicRecord]:
        rows = self._fetch("SELECT * FROM topics ORDER BY id")
        return [TopicRecord.from_row(r) for r in rows]

    def topics_for_day(self, day_id: int) -> list[TopicRecord]:
        rows = self._fetch("SELECT * FROM topics WHERE day_id = ? ORDER BY id", (day_id,))
        return [TopicRecord.from_row(r) for r in rows]

    def get_topic(self, topic_id: int) -> TopicRecord | None:
        rows = self._fetch("SELECT * FROM topics WHERE id = ?", (topic_id,))
        return TopicRecord.from_row(rows[0]) if rows else None

    def list_settings(self) -> list[SettingsRecord]:
        rows = self._fetch("SELECT * FROM settings ORDER BY id")
        return [SettingsRecord.from_row(r) for r in rows]

    def get_settings(self) -> SettingsRecord | None:
        """Return the settings record (the first one if several exist)."""
        settings = self.list_settings()
        return settings[0] if settings else None

    def count_days(self) -> int:
        return self._fetch("SELECT COUNT(*) FROM days")[0][0]

    def counts(self) -> dict:
        """Row counts per entity type."""
        result = {}
        for table in ("days", "problems", "topics", "settings"):
            result[table] = self._fetch(f"SELECT COUNT(*) FROM {table}")[0][0]
        return result

    def load_graph(self) -> dict:
        """Read the whole object graph from one consistent snapshot.

        Returns
        -------
        dict
            ``days`` (list), ``problems`` and ``topics`` (lists, orphans
            included), ``problems_by_day`` / ``topics_by_day`` (dicts keyed
            by day id) and ``settings`` (list).
        """
        with self.store.read_transaction():
            days = self.list_days()
            problems = self.list_problems()
            topics = self.list_topics()
            settings = self.list_settings()

        problems_by_day: dict[int, list[ProblemRecord]] = {}
        for p in problems:
            if p.day_id is not None:
                problems_by_day.setdefault(p.day_id, []).append(p)
        topics_by_day: dict[int, list[TopicRecord]] = {}
        for t in topics:
            if t.day_id is not None:
                topics_by_day.setdefault(t.day_id, []).append(t)

        return {
            "days": days,
            "problems": problems,
            "topics": topics,
            "problems_by_day": problems_by_day,
            "topics_by_day": topics_by_day,
            "settings": settings,
        }

    # ==================================================================
    # Creation
    # ==================================================================

    def create_day(self, day_number: int, day_date: date | None, *, now: datetime | None = None) -> int:
        """Insert a day and return its id.

        Raises
        ------
        ValidationError
            If the day number is outside 1..100 or already exists.
        """
        if not 1 <= day_number <= TOTAL_DAYS:
            raise ValidationError(
                ValidationKind.INVALID_DAY_NUMBER,
                f"Day {day_number} is outside the {TOTAL_DAYS}-day curriculum.",
            )
        stamp = to_iso(now or now_utc())
        with self.store.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM days WHERE day_number = ?", (day_number,)
            ).fetchone()
            if exists:
                raise ValidationError(
                    ValidationKind.DUPLICATE_RECORD,
                    f"Day {day_number} already exists.",
                )
            cur = conn.execute(
                "INSERT INTO days (day_number, date, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (day_number, to_iso(day_date), stamp, stamp),
            )
            return cur.lastrowid

    def create_problem(self, day_id: int, seed: ProblemSeed, *, is_bonus: bool = False) -> int:
        with self.store.transaction() as conn:
            self._require_day(conn, day_id)
            cur = conn.execute(
                "INSERT INTO problems (day_id, name, external_ref, difficulty, is_bonus) "
                "VALUES (?, ?, ?, ?, ?)",
                (day_id, seed.name, seed.external_ref, seed.difficulty.value, int(is_bonus)),
            )
            return cur.lastrowid

    def create_topic(self, day_id: int, seed: TopicSeed) -> int:
        with self.store.transaction() as conn:
            self._require_day(conn, day_id)
            cur = conn.execute(
                "INSERT INTO topics (day_id, name, description) VALUES (?, ?, ?)",
                (day_id, seed.name, seed.description),
            )
            return cur.lastrowid

    def create_settings(
        self,
        *,
        start_date: date,
        morning_time,
        evening_time,
        app_version: str | None,
        notifications_enabled: bool = True,
    ) -> int:
        """Insert the settings record.

        Raises
        ------
        ValidationError
            If a settings record already exists.
        """
        with self.store.transaction() as conn:
            if conn.execute("SELECT COUNT(*) FROM settings").fetchone()[0]:
                raise ValidationError(
                    ValidationKind.DUPLICATE_RECORD,
                    "Settings already exist; only one settings record is allowed.",
                )
            cur = conn.execute(
                "INSERT INTO settings (current_streak, longest_streak, "
                "morning_notification_time, evening_notification_time, "
                "is_notifications_enabled, start_date, app_version) "
                "VALUES (0, 0, ?, ?, ?, ?, ?)",
                (
                    to_iso(morning_time),
                    to_iso(evening_time),
                    int(notifications_enabled),
                    to_iso(start_date),
                    app_version,
                ),
            )
            return cur.lastrowid

    @staticmethod
    def _require_day(conn, day_id):
        if day_id is None or not conn.execute(
            "SELECT 1 FROM days WHERE id = ?", (day_id,)
        ).fetchone():
            raise ValidationError(
                ValidationKind.MISSING_RECORD,
                "The day this item belongs to does not exist.",
            )

    # ==================================================================
    # Deletion
    # ==================================================================

    def delete_day(self, day_id: int) -> None:
        """Delete a day together with every problem and topic it owns."""
        with self.store.transaction() as conn:
            conn.execute("DELETE FROM problems WHERE day_id = ?", (day_id,))
            conn.execute("DELETE FROM topics WHERE day_id = ?", (day_id,))
            conn.execute("DELETE FROM days WHERE id = ?", (day_id,))

    def delete_orphans(self) -> tuple[int, int]:
        """Delete problems/topics whose owner is null or missing.

        Returns
        -------
        tuple[int, int]
            Number of problems and topics deleted.
        """
        orphan_clause = "day_id IS NULL OR day_id NOT IN (SELECT id FROM days)"
        with self.store.transaction() as conn:
            problems = conn.execute(f"DELETE FROM problems WHERE {orphan_clause}").rowcount
            topics = conn.execute(f"DELETE FROM topics WHERE {orphan_clause}").rowcount
        return problems, topics

    def wipe(self) -> None:
        """Delete every row of every entity type."""
        with self.store.transaction() as conn:
            for table in ("problems", "topics", "days", "settings"):
                conn.execute(f"DELETE FROM {table}")
        logger.info("All progress records deleted")

    # ==================================================================
    # Day state maintenance
    # ==================================================================

    def recompute_day(self, day_id: int, *, now: datetime | None = None) -> bool:
        """Recompute a day's progress ratios and completion flag.

        Returns True if the stored values changed.
        """
        with self.store.transaction() as conn:
            row = conn.execute(
                "SELECT dsa_progress, system_design_progress, is_completed "
                "FROM days WHERE id = ?", (day_id,)
            ).fetchone()
            if row is None:
                return False
            dsa = self._section_ratio(conn, "problems", day_id)
            sd = self._section_ratio(conn, "topics", day_id)
            completed = day_is_completed(dsa, sd)
            if (
                row["dsa_progress"] == dsa
                and row["system_design_progress"] == sd
                and bool(row["is_completed"]) == completed
            ):
                return False
            conn.execute(
                "UPDATE days SET dsa_progress = ?, system_design_progress = ?, "
                "is_completed = ?, updated_at = ? WHERE id = ?",
                (dsa, sd, int(completed), to_iso(now or now_utc()), day_id),
            )
            return True

    @staticmethod
    def _section_ratio(conn, table, day_id) -> float:
        row = conn.execute(
            f"SELECT COUNT(*), COALESCE(SUM(is_completed != 0), 0) FROM {table} WHERE day_id = ?",
            (day_id,),
        ).fetchone()
        return section_progress(row[1], row[0])

    # ==================================================================
    # User interaction
    # ==================================================================

    def toggle_problem(self, problem_id: int) -> ProblemRecord:
        """Flip a problem's completion, keeping its timestamp and day in step."""
        with self.store.transaction() as conn:
            problem = self._require_problem(problem_id)
            completed = not problem.is_completed
            conn.execute(
                "UPDATE problems SET is_completed = ?, completed_at = ? WHERE id = ?",
                (int(completed), to_iso(now_utc()) if completed else None, problem_id),
            )
            self.recompute_day(problem.day_id)
            return self.get_problem(problem_id)

    def toggle_video_watched(self, topic_id: int) -> TopicRecord:
        return self._toggle_topic_gate(topic_id, "video_watched")

    def toggle_task_completed(self, topic_id: int) -> TopicRecord:
        return self._toggle_topic_gate(topic_id, "task_completed")

    def _toggle_topic_gate(self, topic_id, column) -> TopicRecord:
        with self.store.transaction() as conn:
            topic = self._require_topic(topic_id)
            video = topic.video_watched
            task = topic.task_completed
            if column == "video_watched":
                video = not video
            else:
                task = not task
            completed = video and task
            completed_at = topic.completed_at
            if completed and completed_at is None:
                completed_at = now_utc()
            elif not completed:
                completed_at = None
            conn.execute(
                "UPDATE topics SET video_watched = ?, task_completed = ?, "
                "is_completed = ?, completed_at = ? WHERE id = ?",
                (int(video), int(task), int(completed), to_iso(completed_at), topic_id),
            )
            self.recompute_day(topic.day_id)
            return self.get_topic(topic_id)

    def add_time(self, problem_id: int, minutes: int) -> ProblemRecord:
        """Add *minutes* (> 0) to the time spent on a problem."""
        if minutes <= 0:
            raise ValidationError(
                ValidationKind.NEGATIVE_VALUE,
                "Time to add must be a positive number of minutes.",
            )
        with self.store.transaction() as conn:
            self._require_problem(problem_id)
            conn.execute(
                "UPDATE problems SET time_spent_minutes = time_spent_minutes + ? WHERE id = ?",
                (minutes, problem_id),
            )
            return self.get_problem(problem_id)

    def set_time(self, problem_id: int, minutes: int) -> ProblemRecord:
        """Replace the time spent on a problem (>= 0)."""
        if minutes < 0:
            raise ValidationError(
                ValidationKind.NEGATIVE_VALUE,
                "Time spent cannot be negative.",
            )
        with self.store.transaction() as conn:
            self._require_problem(problem_id)
            conn.execute(
                "UPDATE problems SET time_spent_minutes = ? WHERE id = ?",
                (minutes, problem_id),
            )
            return self.get_problem(problem_id)

    def update_problem_notes(self, problem_id: int, text: str | None) -> ProblemRecord:
        with self.store.transaction() as conn:
            self._require_problem(problem_id)
            conn.execute(
                "UPDATE problems SET notes = ? WHERE id = ?", (_clean_text(text), problem_id)
            )
            return self.get_problem(problem_id)

    def update_topic_notes(self, topic_id: int, text: str | None) -> TopicRecord:
        with self.store.transaction() as conn:
            self._require_topic(topic_id)
            conn.execute(
                "UPDATE topics SET notes = ? WHERE id = ?", (_clean_text(text), topic_id)
            )
            return self.get_topic(topic_id)

    def set_reflection(self, day_number: int, text: str | None) -> DayRecord:
        with self.store.transaction() as conn:
            day = self._require_day_number(day_number)
            conn.execute(
                "UPDATE days SET daily_reflection = ?, updated_at = ? WHERE id = ?",
                (_clean_text(text), to_iso(now_utc()), day.id),
            )
            return self.get_day_by_id(day.id)

    def add_bonus_problem(self, day_number: int, seed: ProblemSeed) -> ProblemRecord:
        """Add a user-created problem to a day.

        Raises
        ------
        ValidationError
            If the day does not exist or already has a problem of that name.
        """
        with self.store.transaction() as conn:
            day = self._require_day_number(day_number)
            clash = conn.execute(
                "SELECT 1 FROM problems WHERE day_id = ? AND lower(name) = lower(?)",
                (day.id, seed.name),
            ).fetchone()
            if clash:
                raise ValidationError(
                    ValidationKind.DUPLICATE_RECORD,
                    f"Day {day_number} already has a problem named '{seed.name}'.",
                )
            problem_id = self.create_problem(day.id, seed, is_bonus=True)
            self.recompute_day(day.id)
            return self.get_problem(problem_id)

    def remove_bonus_problem(self, problem_id: int) -> None:
        """Delete a bonus problem.  Curriculum problems cannot be removed."""
        with self.store.transaction() as conn:
            problem = self._require_problem(problem_id)
            if not problem.is_bonus:
                raise ValidationError(
                    ValidationKind.INVALID_BONUS_REMOVAL,
                    f"'{problem.name}' is part of the curriculum and cannot be removed.",
                )
            conn.execute("DELETE FROM problems WHERE id = ?", (problem_id,))
            self.recompute_day(problem.day_id)

    def set_last_backup_date(self, when: datetime) -> None:
        with self.store.transaction() as conn:
            conn.execute("UPDATE settings SET last_backup_date = ?", (to_iso(when),))

    def _require_problem(self, problem_id) -> ProblemRecord:
        problem = self.get_problem(problem_id)
        if problem is None:
            raise ValidationError(
                ValidationKind.MISSING_RECORD, f"Problem {problem_id} does not exist."
            )
        return problem

    def _require_topic(self, topic_id) -> TopicRecord:
        topic = self.get_topic(topic_id)
        if topic is None:
            raise ValidationError(
                ValidationKind.MISSING_RECORD, f"Topic {topic_id} does not exist."
            )
        return topic

    def _require_day_number(self, day_number) -> DayRecord:
        day = self.get_day(day_number)
        if day is None:
            raise ValidationError(
                ValidationKind.MISSING_RECORD, f"Day {day_number} does not exist."
            )
        return day

    # ==================================================================
    # Streaks
    # ==================================================================

    def compute_current_streak(self, today: date | None = None) -> int:
        """Count consecutive active days ending today (or yesterday).

        Day *n* falls on ``start_date + (n - 1)`` in local time and is
        active when either of its progress ratios is above zero.  The run
        may end yesterday so that a streak survives until the local
        midnight after the last active day.
        """
        settings = self.get_settings()
        if settings is None or settings.start_date is None:
            return 0
        active = active_dates(settings.start_date, self.list_days())
        return current_run(active, today or date.today())

    def update_streak(self, today: date | None = None) -> SettingsRecord | None:
        """Store the current streak and raise the longest streak to match."""
        with self.store.transaction() as conn:
            settings = self.get_settings()
            if settings is None:
                return None
            current = self.compute_current_streak(today)
            longest = max(settings.longest_streak, current)
            conn.execute(
                "UPDATE settings SET current_streak = ?, longest_streak = ? WHERE id = ?",
                (current, longest, settings.id),
            )
            return self.get_settings()

    # ==================================================================
    # Structured import
    # ==================================================================

    def import_document(self, document) -> None:
        """Recreate every row from a ``BackupDocument``.

        Must run on an empty store (call ``wipe()`` first, inside the same
        transaction).  Children are attached to the day parsed with them,
        so ownership is rebuilt from the document's nesting.
        """
        with self.store.transaction() as conn:
            for day_doc in document.days:
                cur = conn.execute(
                    "INSERT INTO days (day_number, date, dsa_progress, system_design_progress, "
                    "is_completed, daily_reflection, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        day_doc.day_number,
                        to_iso(day_doc.date),
                        day_doc.dsa_progress,
                        day_doc.system_design_progress,
                        int(day_doc.is_completed),
                        day_doc.daily_reflection,
                        to_iso(day_doc.created_at),
                        to_iso(day_doc.updated_at),
                    ),
                )
                day_id = cur.lastrowid
                for p in day_doc.dsa_problems:
                    conn.execute(
                        "INSERT INTO problems (day_id, name, external_ref, difficulty, "
                        "is_completed, completed_at, time_spent_minutes, notes, is_bonus) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            day_id, p.name, p.external_ref, p.difficulty,
                            int(p.is_completed), to_iso(p.completed_at),
                            p.time_spent_minutes, p.notes, int(p.is_bonus),
                        ),
                    )
                for t in day_doc.system_design_topics:
                    conn.execute(
                        "INSERT INTO topics (day_id, name, description, is_completed, "
                        "video_watched, task_completed, completed_at, notes) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            day_id, t.name, t.description, int(t.is_completed),
                            int(t.video_watched), int(t.task_completed),
                            to_iso(t.completed_at), t.notes,
                        ),
                    )

            s = document.user_settings
            if s is not None:
                conn.execute(
                    "INSERT INTO settings (current_streak, longest_streak, "
                    "morning_notification_time, evening_notification_time, "
                    "is_notifications_enabled, start_date, last_backup_date, app_version) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        s.current_streak, s.longest_streak,
                        to_iso(s.morning_notification_time),
                        to_iso(s.evening_notification_time),
                        int(s.is_notifications_enabled),
                        to_iso(s.start_date), to_iso(s.last_backup_date),
                        s.app_version,
                    ),
                )
