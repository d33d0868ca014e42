"""
tracker/curriculum.py -- Static curriculum content provider

Supplies the problems and topics that make up each of the 100 days.  The
hand-written content lives in ``tracker/data/curriculum.json``; days that
have no hand-written entry get generated placeholder items so that every
day always has something to track.

Usage:
    from tracker.curriculum import CurriculumProvider

    curriculum = CurriculumProvider()
    curriculum.week_theme(9)          # "SLIDING WINDOWS & HASH MAPS"
    curriculum.get_problems(1)        # [ProblemSeed(name="Build Array from Permutation", ...), ...]
    curriculum.get_topics(42)         # generated placeholders
"""

import logging
from pathlib import Path

from tracker.models.records import Difficulty, ProblemSeed, TopicSeed
from tracker.utils import safe_read_json

logger = logging.getLogger(__name__)

DEFAULT_CURRICULUM_PATH = Path(__file__).resolve().parent / "data" / "curriculum.json"

_PLACEHOLDER_DIFFICULTIES = (Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD)


class CurriculumProvider:
    """Read-only lookup of curriculum content by day number.

    Parameters
    ----------
    path : str or pathlib.Path, optional
        Alternative curriculum file (defaults to the bundled one).  A
        missing or unreadable file yields placeholders for every day.
    """

    def __init__(self, path=None):
        self.path = Path(path) if path else DEFAULT_CURRICULUM_PATH
        data = safe_read_json(self.path, default=None)
        if data is None:
            logger.warning("Curriculum file %s unreadable; using placeholders", self.path)
            data = {}
        self._themes = {int(k): v for k, v in data.get("week_themes", {}).items()}
        self._days = {int(k): v for k, v in data.get("days", {}).items()}

    def week_theme(self, day_number: int) -> str:
        week = (day_number - 1) // 7 + 1
        return self._themes.get(week, "UNKNOWN WEEK")

    def get_problems(self, day_number: int) -> list[ProblemSeed]:
        entry = self._days.get(day_number)
        if entry and entry.get("problems"):
            return [ProblemSeed(**item) for item in entry["problems"]]
        return self._placeholder_problems(day_number)

    def get_topics(self, day_number: int) -> list[TopicSeed]:
        entry = self._days.get(day_number)
        if entry and entry.get("topics"):
            return [TopicSeed(**item) for item in entry["topics"]]
        return self._placeholder_topics(day_number)

    # ------------------------------------------------------------------
    # Placeholders
    # ------------------------------------------------------------------

    @staticmethod
    def _placeholder_problems(day_number: int) -> list[ProblemSeed]:
        # 3-5 problems per day
        count = (day_number % 3) + 3
        return [
            ProblemSeed(
                name=f"Day {day_number} Problem {i}",
                external_ref=str(day_number * 100 + i),
                difficulty=_PLACEHOLDER_DIFFICULTIES[i % 3],
            )
            for i in range(1, count + 1)
        ]

    def _placeholder_topics(self, day_number: int) -> list[TopicSeed]:
        # 2-3 topics per day
        count = (day_number % 2) + 2
        theme = self.week_theme(day_number)
        return [
            TopicSeed(
                name=f"Day {day_number} System Topic {i}",
                description=f"System design topic for Day {day_number} - {theme}",
            )
            for i in range(1, count + 1)
        ]
