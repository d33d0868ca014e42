"""
Tests for tracker/exporter.py

Covers:
    - Overall, per-section and weekly figures
    - Streaks from active dates, never below the stored longest streak
    - Markdown report content (weeks with themes, day details, reflection)
    - JSON export layout (camelCase, per-day data, settings)
    - Writing both files; empty store and unwritable directory
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from tracker.errors import ExportError, ExportKind
from tracker.exporter import EXPORT_FORMAT, ProgressExporter
from tracker.models.records import Difficulty, ProblemSeed

NOW = datetime(2026, 1, 7, 21, 30, 15, tzinfo=timezone.utc)


def _complete_day(repository, day_number):
    day = repository.get_day(day_number)
    for p in repository.problems_for_day(day.id):
        repository.toggle_problem(p.id)
    for t in repository.topics_for_day(day.id):
        repository.toggle_video_watched(t.id)
        repository.toggle_task_completed(t.id)


@pytest.fixture
def exporter(seeded_engine):
    return seeded_engine.exporter


@pytest.fixture
def progressed(seeded_engine):
    """Day 1 complete, day 2 started, 45 minutes on day 1's first problem."""
    repository = seeded_engine.repository
    _complete_day(repository, 1)
    first = repository.problems_for_day(repository.get_day(1).id)[0]
    repository.add_time(first.id, 45)
    second = repository.problems_for_day(repository.get_day(2).id)[0]
    repository.toggle_problem(second.id)
    return seeded_engine


# ---------------------------------------------------------------------------
# Figures
# ---------------------------------------------------------------------------

class TestStatistics:
    def test_fresh_curriculum(self, exporter, start_date):
        stats = exporter.statistics(today=start_date)
        assert stats.total_days == 100
        assert stats.completed_days == 0
        assert stats.overall_progress == 0.0
        assert stats.current_streak == stats.longest_streak == 0
        assert stats.average_time_per_problem == 0
        assert len(stats.weeks) == 15
        assert stats.weeks[0].theme == "FOUNDATIONS"
        assert stats.weeks[-1].total_days == 2

    def test_progress_figures(self, progressed, start_date):
        repository = progressed.repository
        stats = progressed.exporter.statistics(today=start_date + timedelta(days=1))

        day1 = repository.get_day(1)
        day1_problems = len(repository.problems_for_day(day1.id))
        assert stats.completed_days == 1
        assert stats.overall_progress == pytest.approx(0.01)
        assert stats.completed_problems == day1_problems + 1
        assert stats.total_problems == len(repository.list_problems())
        assert stats.dsa_progress == pytest.approx(stats.completed_problems / stats.total_problems)
        assert stats.completed_topics == len(repository.topics_for_day(day1.id))
        assert stats.total_time_spent == 45
        assert stats.average_time_per_problem == 45 // stats.completed_problems
        assert stats.current_streak == 2
        assert stats.longest_streak == 2

    def test_weekly_breakdown(self, progressed, start_date):
        week = progressed.exporter.statistics(today=start_date).weeks[0]
        assert week.week_number == 1
        assert week.completed_days == [1]
        assert week.total_days == 7
        assert week.progress == pytest.approx(1 / 7)

    def test_stored_longest_streak_kept(self, progressed, start_date):
        with progressed.store.transaction() as conn:
            conn.execute("UPDATE settings SET longest_streak = 9")
        stats = progressed.exporter.statistics(today=start_date + timedelta(days=30))
        assert stats.current_streak == 0
        assert stats.longest_streak == 9

    def test_orphans_not_counted(self, seeded_engine, exporter, start_date):
        before = exporter.statistics(today=start_date).total_problems
        with seeded_engine.store.transaction() as conn:
            conn.execute("INSERT INTO problems (day_id, name) VALUES (NULL, 'Lost')")
        assert exporter.statistics(today=start_date).total_problems == before


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------

class TestMarkdown:
    def test_sections(self, progressed, start_date):
        text = progressed.exporter.render_markdown(today=start_date, now=NOW)
        assert text.startswith("# 100 Day Progress Report\n")
        for heading in ("## Overall Progress", "## DSA Problems", "## System Design",
                        "## Weekly Progress", "## Daily Details"):
            assert heading in text
        assert "- **Completed Days:** 1\n" in text
        assert "- **Overall Progress:** 1.0%" in text
        assert "### Week 1: FOUNDATIONS" in text
        assert "- **Days Completed:** 1/7" in text
        assert "Exported by the 100 Day Tracker 1.0 on 2026-01-07" in text

    def test_day_details(self, progressed, start_date):
        repository = progressed.repository
        repository.set_reflection(2, "Two pointers finally clicked")
        repository.add_bonus_problem(3, ProblemSeed(name="Extra Practice", difficulty=Difficulty.HARD))

        text = progressed.exporter.render_markdown(today=start_date, now=NOW)
        assert "### Day 1 (completed)" in text
        assert "### Day 2 (in progress)" in text
        assert "### Day 4 (not started)" in text
        assert "**Date:** Jan 05, 2026" in text
        assert "**Progress:** 100.0%" in text
        assert "  - Time Spent: 45 minutes" in text
        assert "- [ ] **Extra Practice** (Bonus)" in text
        assert "Two pointers finally clicked" in text


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

class TestJsonExport:
    def test_layout(self, progressed, start_date):
        data = progressed.exporter.build_json_export(today=start_date, now=NOW)
        assert set(data) == {
            "exportInfo", "overallStatistics", "weeklyStatistics", "dailyProgress", "userSettings",
        }
        assert data["exportInfo"]["exportFormat"] == EXPORT_FORMAT
        assert data["exportInfo"]["appVersion"] == "1.0"
        assert data["exportInfo"]["timestamp"].startswith("2026-01-07T21:30:15")

    def test_statistics_keys(self, progressed, start_date):
        data = progressed.exporter.build_json_export(today=start_date, now=NOW)
        overall = data["overallStatistics"]
        assert overall["completedDays"] == 1
        assert overall["totalTimeSpent"] == 45
        assert "weeks" not in overall
        assert data["weeklyStatistics"][0] == {
            "weekNumber": 1,
            "theme": "FOUNDATIONS",
            "progress": pytest.approx(1 / 7),
            "completedDays": [1],
            "totalDays": 7,
        }

    def test_daily_progress_and_settings(self, progressed, start_date):
        data = progressed.exporter.build_json_export(today=start_date, now=NOW)
        days = data["dailyProgress"]
        assert [d["dayNumber"] for d in days] == list(range(1, 101))
        assert days[0]["isCompleted"] is True
        assert all(p["isCompleted"] for p in days[0]["dsaProblems"])
        assert days[0]["systemDesignTopics"]
        assert data["userSettings"]["startDate"] == start_date.isoformat()


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class TestFiles:
    def test_comprehensive_export(self, progressed, config, start_date):
        report, data = progressed.exporter.create_comprehensive_export(today=start_date, now=NOW)
        assert report.parent == config.export_dir
        assert report.name.startswith("Progress_Report_2026-01-07_")
        assert report.suffix == ".md"
        assert data.name.startswith("Data_Export_2026-01-07_")
        assert "### Day 1 (completed)" in report.read_text(encoding="utf-8")
        assert json.loads(data.read_text(encoding="utf-8"))["overallStatistics"]["completedDays"] == 1

    def test_single_exports(self, exporter, start_date):
        report = exporter.create_markdown_report(today=start_date, now=NOW)
        data = exporter.create_json_export(today=start_date, now=NOW)
        assert report.exists() and data.exists()
        assert sorted(p.name for p in report.parent.iterdir()) == sorted([report.name, data.name])

    def test_export_leaves_backups_alone(self, seeded_engine, exporter):
        exporter.create_comprehensive_export()
        assert seeded_engine.catalog.list_backups() == []

    def test_empty_store(self, seeded_engine, exporter):
        seeded_engine.repository.wipe()
        with pytest.raises(ExportError) as exc_info:
            exporter.create_comprehensive_export()
        assert exc_info.value.kind == ExportKind.NO_DATA

    def test_unwritable_directory(self, seeded_engine, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        exporter = ProgressExporter(
            seeded_engine.repository, seeded_engine.curriculum, blocker / "exports"
        )
        with pytest.raises(ExportError) as exc_info:
            exporter.create_markdown_report()
        assert exc_info.value.kind == ExportKind.WRITE_FAILED
        assert "Technical detail" in exc_info.value.message
