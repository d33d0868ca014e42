"""
tracker/initializer.py -- First-launch curriculum load and full reinitialization

Creates the 100 days (with their curriculum problems and topics) and the
single settings record.  ``reinitialize()`` is the recovery orchestrator's
last resort: it throws away every row, recreating the database file first
if it cannot even be opened, and loads a fresh curriculum.

Usage:
    from tracker.initializer import CurriculumInitializer

    init = CurriculumInitializer(store, repository, CurriculumProvider(), app_version="1.0")
    init.initialize_if_needed()
"""

import logging
from datetime import date, time, timedelta

from tracker.errors import PersistenceError
from tracker.models.records import TOTAL_DAYS
from tracker.utils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_MORNING_TIME = time(8, 0)
DEFAULT_EVENING_TIME = time(20, 0)


class CurriculumInitializer:
    """Loads the curriculum into an empty store.

    Parameters
    ----------
    store : ProgressStore
    repository : ProgressRepository
    curriculum : CurriculumProvider
    app_version : str
        Written to the new settings record.
    """

    def __init__(self, store, repository, curriculum, app_version="1.0"):
        self.store = store
        self.repository = repository
        self.curriculum = curriculum
        self.app_version = app_version

    def initialize_if_needed(self, start_date: date | None = None) -> bool:
        """Load the curriculum if the store holds no days.

        Returns
        -------
        bool
            True if the curriculum was loaded by this call.
        """
        with self.store.transaction():
            if self.repository.count_days() > 0:
                return False
            self._load(start_date or date.today())
        logger.info("Initialized %d-day curriculum", TOTAL_DAYS)
        return True

    def reinitialize(self, start_date: date | None = None) -> None:
        """Delete all progress and load a fresh curriculum.

        A database that cannot be opened, fails SQLite's structural check
        or cannot be wiped is recreated from scratch.
        """
        start = start_date or date.today()
        self.store.ensure_usable()
        try:
            self._replace_all(start)
        except PersistenceError:
            logger.warning("Could not wipe the progress store; recreating it", exc_info=True)
            self.store.reset_files()
            self._replace_all(start)
        logger.warning("Progress store reinitialized from curriculum")

    def _replace_all(self, start_date: date) -> None:
        with self.store.transaction():
            self.repository.wipe()
            self._load(start_date)

    def _load(self, start_date: date) -> None:
        now = now_utc()
        for day_number in range(1, TOTAL_DAYS + 1):
            day_id = self.repository.create_day(
                day_number, start_date + timedelta(days=day_number - 1), now=now
            )
            for seed in self.curriculum.get_problems(day_number):
                self.repository.create_problem(day_id, seed)
            for seed in self.curriculum.get_topics(day_number):
                self.repository.create_topic(day_id, seed)

        self.repository.create_settings(
            start_date=start_date,
            morning_time=DEFAULT_MORNING_TIME,
            evening_time=DEFAULT_EVENING_TIME,
            app_version=self.app_version,
        )
