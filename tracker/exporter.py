"""
tracker/exporter.py -- Progress report and statistics export

Two user-facing exports built from one consistent read of the store:

    - a Markdown progress report: overall, DSA and system design figures,
      a weekly breakdown with each week's theme, and every day's details
    - a JSON data export: the same figures (camelCase keys) plus every day
      with its problems and topics, and the user settings

Streaks follow the same policy as the stored streak (a day is active when
either section has progress; the run may end yesterday).  Exports go to
their own directory with a local-time stamp in the file name; they never
touch the store or the backups.

Usage:
    from tracker.exporter import ProgressExporter

    exporter = ProgressExporter(repository, curriculum, config.export_dir, app_version="1.0")
    report_path, data_path = exporter.create_comprehensive_export()
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tracker.errors import ExportError, ExportKind
from tracker.models.document import BackupDocument
from tracker.models.records import TOTAL_DAYS
from tracker.repository import active_dates, current_run, longest_run
from tracker.utils import safe_write_json, safe_write_text

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7
WEEK_COUNT = math.ceil(TOTAL_DAYS / DAYS_PER_WEEK)

EXPORT_FORMAT = "comprehensive_data_export"
EXPORT_DATA_VERSION = "1.0"
REPORT_PREFIX = "Progress_Report"
DATA_PREFIX = "Data_Export"


# ------------------------------------------------------------------
# Export models
# ------------------------------------------------------------------

class _ExportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WeekStatistics(_ExportModel):
    week_number: int
    theme: str
    progress: float
    completed_days: list[int] = Field(default_factory=list)
    total_days: int


class ProgressStatistics(_ExportModel):
    total_days: int = 0
    completed_days: int = 0
    overall_progress: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    total_problems: int = 0
    completed_problems: int = 0
    dsa_progress: float = 0.0
    total_topics: int = 0
    completed_topics: int = 0
    system_design_progress: float = 0.0
    average_time_per_problem: int = 0
    total_time_spent: int = 0
    weeks: list[WeekStatistics] = Field(default_factory=list)


class ExportInfo(_ExportModel):
    timestamp: datetime
    app_version: str
    export_format: str = EXPORT_FORMAT
    data_version: str = EXPORT_DATA_VERSION


def _ratio(done: int, total: int) -> float:
    return done / total if total else 0.0


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def _day_status(day) -> str:
    if day.is_completed:
        return "completed"
    if day.dsa_progress > 0 or day.system_design_progress > 0:
        return "in progress"
    return "not started"


class ProgressExporter:
    """Builds and writes progress reports from the store.

    Parameters
    ----------
    repository : ProgressRepository
    curriculum : CurriculumProvider
        Supplies the week themes.
    export_dir : str or pathlib.Path
        Where export files are written (created on demand).
    app_version : str
        Recorded in every export.
    """

    def __init__(self, repository, curriculum, export_dir, app_version="1.0"):
        self.repository = repository
        self.curriculum = curriculum
        self.export_dir = Path(export_dir)
        self.app_version = app_version

    # ------------------------------------------------------------------
    # 1. Figures
    # ------------------------------------------------------------------

    def load(self) -> dict:
        """Read the object graph, refusing an empty store.

        Raises
        ------
        ExportError
            ``NO_DATA`` when the store holds no days.
        PersistenceError
            If the store cannot be read.
        """
        graph = self.repository.load_graph()
        if not graph["days"]:
            raise ExportError(ExportKind.NO_DATA, "There is no progress to export yet.")
        return graph

    def statistics(self, graph: dict | None = None, today: date | None = None) -> ProgressStatistics:
        """Compute the overall, per-section and weekly figures.

        Only problems and topics owned by a day are counted.  The longest
        streak is the longest run of active dates, never less than the
        stored longest streak or the current streak.
        """
        graph = graph if graph is not None else self.load()
        days = graph["days"]
        settings = graph["settings"][0] if graph["settings"] else None
        problems = [p for d in days for p in graph["problems_by_day"].get(d.id, [])]
        topics = [t for d in days for t in graph["topics_by_day"].get(d.id, [])]

        completed_days = sum(1 for d in days if d.is_completed)
        completed_problems = sum(1 for p in problems if p.is_completed)
        completed_topics = sum(1 for t in topics if t.is_completed)
        total_time = sum(p.time_spent_minutes for p in problems)

        current = longest = 0
        if settings is not None:
            if settings.start_date is not None:
                active = active_dates(settings.start_date, days)
                current = current_run(active, today or date.today())
                longest = longest_run(active)
            longest = max(longest, settings.longest_streak)
        longest = max(longest, current)

        return ProgressStatistics(
            total_days=len(days),
            completed_days=completed_days,
            overall_progress=_ratio(completed_days, len(days)),
            current_streak=current,
            longest_streak=longest,
            total_problems=len(problems),
            completed_problems=completed_problems,
            dsa_progress=_ratio(completed_problems, len(problems)),
            total_topics=len(topics),
            completed_topics=completed_topics,
            system_design_progress=_ratio(completed_topics, len(topics)),
            average_time_per_problem=total_time // completed_problems if completed_problems else 0,
            total_time_spent=total_time,
            weeks=self.weekly_statistics(days),
        )

    def weekly_statistics(self, days) -> list[WeekStatistics]:
        """Group days into weeks of seven; weeks without days are left out."""
        weeks = []
        for week_number in range(1, WEEK_COUNT + 1):
            first = (week_number - 1) * DAYS_PER_WEEK + 1
            members = [d for d in days if first <= d.day_number < first + DAYS_PER_WEEK]
            if not members:
                continue
            done = [d.day_number for d in members if d.is_completed]
            weeks.append(WeekStatistics(
                week_number=week_number,
                theme=self.curriculum.week_theme(first),
                progress=_ratio(len(done), len(members)),
                completed_days=done,
                total_days=len(members),
            ))
        return weeks

    # ------------------------------------------------------------------
    # 2. Rendering
    # ------------------------------------------------------------------

    def render_markdown(self, graph: dict | None = None, *, today: date | None = None,
                        now: datetime | None = None) -> str:
        """Return the progress report as Markdown text."""
        graph = graph if graph is not None else self.load()
        stats = self.statistics(graph, today)
        now = now or datetime.now().astimezone()

        lines = [
            "# 100 Day Progress Report",
            "",
            f"Generated: {now:%Y-%m-%d %H:%M}",
            "",
            "## Overall Progress",
            "",
            f"- **Total Days:** {stats.total_days}",
            f"- **Completed Days:** {stats.completed_days}",
            f"- **Overall Progress:** {_percent(stats.overall_progress)}",
            f"- **Current Streak:** {stats.current_streak} days",
            f"- **Longest Streak:** {stats.longest_streak} days",
            "",
            "## DSA Problems",
            "",
            f"- **Total Problems:** {stats.total_problems}",
            f"- **Completed Problems:** {stats.completed_problems}",
            f"- **DSA Progress:** {_percent(stats.dsa_progress)}",
            f"- **Average Time per Problem:** {stats.average_time_per_problem} minutes",
            f"- **Total Time Spent:** {stats.total_time_spent} minutes",
            "",
            "## System Design",
            "",
            f"- **Total Topics:** {stats.total_topics}",
            f"- **Completed Topics:** {stats.completed_topics}",
            f"- **System Design Progress:** {_percent(stats.system_design_progress)}",
            "",
            "## Weekly Progress",
            "",
        ]

        for week in stats.weeks:
            lines.append(f"### Week {week.week_number}: {week.theme}")
            lines.append("")
            lines.append(f"- **Days Completed:** {len(week.completed_days)}/{week.total_days}")
            lines.append(f"- **Week Progress:** {_percent(week.progress)}")
            if week.completed_days:
                lines.append(f"- **Completed Days:** {', '.join(map(str, week.completed_days))}")
            lines.append("")

        lines.append("## Daily Details")
        lines.append("")
        for day in graph["days"]:
            lines += self._day_lines(
                day,
                graph["problems_by_day"].get(day.id, []),
                graph["topics_by_day"].get(day.id, []),
            )

        lines.append("---")
        lines.append(f"Exported by the 100 Day Tracker {self.app_version} on {now:%Y-%m-%d}")
        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _day_lines(day, problems, topics) -> list[str]:
        lines = [f"### Day {day.day_number} ({_day_status(day)})", ""]
        if day.date is not None:
            lines.append(f"**Date:** {day.date:%b %d, %Y}")
        day_progress = (day.dsa_progress + day.system_design_progress) / 2
        lines.append(f"**Progress:** {_percent(day_progress)}")
        lines.append("")

        if problems:
            lines.append("#### DSA Problems")
            lines.append("")
            for p in problems:
                mark = "x" if p.is_completed else " "
                bonus = " (Bonus)" if p.is_bonus else ""
                lines.append(f"- [{mark}] **{p.name}**{bonus}")
                if p.external_ref:
                    lines.append(f"  - Ref: #{p.external_ref}")
                lines.append(f"  - Difficulty: {p.difficulty}")
                if p.time_spent_minutes > 0:
                    lines.append(f"  - Time Spent: {p.time_spent_minutes} minutes")
                if p.notes:
                    lines.append(f"  - Notes: {p.notes}")
                if p.completed_at is not None:
                    lines.append(f"  - Completed: {p.completed_at.astimezone():%H:%M}")
            lines.append("")

        if topics:
            lines.append("#### System Design Topics")
            lines.append("")
            for t in topics:
                mark = "x" if t.is_completed else " "
                lines.append(f"- [{mark}] **{t.name}**")
                if t.description:
                    lines.append(f"  - {t.description}")
                lines.append(f"  - Video: {'watched' if t.video_watched else 'not watched'}")
                lines.append(f"  - Task: {'done' if t.task_completed else 'not done'}")
                if t.notes:
                    lines.append(f"  - Notes: {t.notes}")
            lines.append("")

        if day.daily_reflection:
            lines.append("#### Reflection")
            lines.append("")
            lines.append(day.daily_reflection)
            lines.append("")
        return lines

    def build_json_export(self, graph: dict | None = None, *, today: date | None = None,
                          now: datetime | None = None) -> dict:
        """Return the data export as a JSON-ready dict (camelCase keys)."""
        graph = graph if graph is not None else self.load()
        stats = self.statistics(graph, today)
        settings = graph["settings"][0] if graph["settings"] else None
        document = BackupDocument.from_records(
            graph["days"], graph["problems_by_day"], graph["topics_by_day"],
            settings, self.app_version,
        ).to_json_dict()

        info = ExportInfo(timestamp=now or datetime.now().astimezone(), app_version=self.app_version)
        return {
            "exportInfo": info.model_dump(mode="json", by_alias=True),
            "overallStatistics": stats.model_dump(mode="json", by_alias=True, exclude={"weeks"}),
            "weeklyStatistics": [w.model_dump(mode="json", by_alias=True) for w in stats.weeks],
            "dailyProgress": document["days"],
            "userSettings": document["userSettings"],
        }

    # ------------------------------------------------------------------
    # 3. Files
    # ------------------------------------------------------------------

    def create_markdown_report(self, *, today: date | None = None, now: datetime | None = None) -> Path:
        """Write the Markdown report and return its path."""
        now = now or datetime.now().astimezone()
        text = self.render_markdown(self.load(), today=today, now=now)
        return self._write(self._path(REPORT_PREFIX, "md", now), safe_write_text, text)

    def create_json_export(self, *, today: date | None = None, now: datetime | None = None) -> Path:
        """Write the JSON data export and return its path."""
        now = now or datetime.now().astimezone()
        data = self.build_json_export(self.load(), today=today, now=now)
        return self._write(self._path(DATA_PREFIX, "json", now), safe_write_json, data)

    def create_comprehensive_export(self, *, today: date | None = None,
                                    now: datetime | None = None) -> list[Path]:
        """Write both exports from one read of the store.

        Returns
        -------
        list[Path]
            The Markdown report, then the JSON export.
        """
        now = now or datetime.now().astimezone()
        graph = self.load()
        report = self._write(
            self._path(REPORT_PREFIX, "md", now), safe_write_text,
            self.render_markdown(graph, today=today, now=now),
        )
        data = self._write(
            self._path(DATA_PREFIX, "json", now), safe_write_json,
            self.build_json_export(graph, today=today, now=now),
        )
        return [report, data]

    def _path(self, prefix: str, extension: str, now: datetime) -> Path:
        return self.export_dir / f"{prefix}_{now:%Y-%m-%d_%H-%M-%S}.{extension}"

    @staticmethod
    def _write(path: Path, writer, payload) -> Path:
        try:
            writer(path, payload)
        except OSError as exc:
            raise ExportError(
                ExportKind.WRITE_FAILED,
                f"The export could not be saved to {path}. Technical detail: {exc}",
            ) from exc
        logger.info("Export written to %s", path)
        return path
