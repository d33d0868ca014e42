"""
tracker/engine.py -- Wiring for the tracker core

Builds every core component once, from one ``TrackerConfig``, and hands
them out by attribute.  There is no global instance: the application
shell constructs a ``TrackerEngine`` at startup and passes it (or the
pieces it needs) to whoever uses them.

Usage:
    from tracker.config import TrackerConfig
    from tracker.engine import TrackerEngine

    engine = TrackerEngine(TrackerConfig(data_dir="/tmp/tracker"))
    engine.monitor.on_store_opened()
    engine.backups.create_backup()
    engine.exporter.create_comprehensive_export()
    engine.close()
"""

import logging

from tracker.backup_catalog import BackupCatalog
from tracker.backup_manager import BackupManager
from tracker.curriculum import CurriculumProvider
from tracker.errors import PersistenceError
from tracker.exporter import ProgressExporter
from tracker.initializer import CurriculumInitializer
from tracker.integrity_monitor import IntegrityMonitor
from tracker.journal import RecoveryJournal
from tracker.preferences import Preferences
from tracker.recovery import RecoveryOrchestrator
from tracker.repository import ProgressRepository
from tracker.restore_engine import RestoreEngine
from tracker.store import ProgressStore
from tracker.validator import DataValidator

logger = logging.getLogger(__name__)


class TrackerEngine:
    """Owns the store and every service built on it.

    Parameters
    ----------
    config : TrackerConfig
    curriculum : CurriculumProvider, optional
        Override the bundled curriculum (tests use small ones).
    """

    def __init__(self, config, curriculum=None):
        self.config = config

        self.store = ProgressStore(config.store_path)
        self.repository = ProgressRepository(self.store)
        self.validator = DataValidator()
        self.curriculum = curriculum or CurriculumProvider()
        self.preferences = Preferences(config.preferences_path)
        self.journal = RecoveryJournal(config.journal_path)
        self.catalog = BackupCatalog(config.backup_dir)
        self.initializer = CurriculumInitializer(
            self.store, self.repository, self.curriculum, app_version=config.app_version
        )
        self.backups = BackupManager(
            self.store,
            self.repository,
            self.catalog,
            self.preferences,
            self.validator,
            max_backup_count=config.max_backup_count,
            app_version=config.app_version,
        )
        self.restorer = RestoreEngine(self.store, self.repository, self.validator, self.backups)
        self.exporter = ProgressExporter(
            self.repository, self.curriculum, config.export_dir, app_version=config.app_version
        )
        self.orchestrator = RecoveryOrchestrator(
            self.store,
            self.validator,
            self.catalog,
            self.backups,
            self.restorer,
            self.initializer,
            self.journal,
            self.preferences,
        )
        self.monitor = IntegrityMonitor(
            self.store,
            self.validator,
            self.catalog,
            self.backups,
            self.orchestrator,
            self.initializer,
            self.journal,
            self.preferences,
            app_version=config.app_version,
            build_number=config.build_number,
        )

    def close(self) -> None:
        """Flush and close the store."""
        if self.store.is_open:
            try:
                self.store.checkpoint()
            except PersistenceError:
                logger.warning("Final checkpoint failed", exc_info=True)
        self.store.close()
