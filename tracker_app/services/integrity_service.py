"""
tracker_app/services/integrity_service.py -- Qt-facing integrity service.

Exposes the tracker core to the application shell:

    get_health_status()             -> HealthStatus          (synchronous)
    list_backups()                  -> list[BackupRecord]    (synchronous)
    create_backup(fmt)              -> Future[list[BackupRecord]]
    restore_from_backup(record, confirm=True)
                                    -> Future[Severity]
    attempt_recovery(token)         -> Future[RecoveryOutcome]
    create_export()                 -> Future[list[Path]]

Long-running work (validation, backup, restore, recovery, export) runs on a
single background worker, so mutating operations never interleave and the
UI thread never blocks.  Results are delivered both as futures and as Qt
signals.  A QTimer drives the monitor's periodic check.

Usage::

    from tracker_app.services.integrity_service import IntegrityService

    service = IntegrityService(engine)
    service.health_changed.connect(on_health)
    service.start()
    future = service.create_backup()
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from PySide6.QtCore import QObject, QTimer, Signal

from tracker.backup_catalog import LABEL_MANUAL
from tracker.errors import TrackerError
from tracker.models.records import BackupFormat

logger = logging.getLogger(__name__)


class IntegrityService(QObject):
    """Background executor and signal hub for the tracker core.

    Signals
    -------
    health_changed(object)
        Emitted with the new ``HealthStatus`` whenever the monitor
        publishes one.
    backup_finished(object)
        Emitted with the list of ``BackupRecord`` written.
    backup_failed(str)
        Emitted with a user-facing message when a backup fails.
    restore_finished(str)
        Emitted with the restored backup's file name.
    restore_failed(str)
        Emitted with a user-facing message when a restore fails.
    recovery_finished(object)
        Emitted with the ``RecoveryOutcome`` of every recovery run.
    export_finished(object)
        Emitted with the list of export file paths written.
    export_failed(str)
        Emitted with a user-facing message when an export fails.
    status_message(str)
        Short progress messages for the status bar.
    """

    health_changed = Signal(object)
    backup_finished = Signal(object)
    backup_failed = Signal(str)
    restore_finished = Signal(str)
    restore_failed = Signal(str)
    recovery_finished = Signal(object)
    export_finished = Signal(object)
    export_failed = Signal(str)
    status_message = Signal(str)

    def __init__(self, engine, parent: QObject | None = None):
        super().__init__(parent)
        self._engine = engine
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tracker-integrity")
        self._engine.monitor.subscribe(self._on_health_changed)

        self._periodic_timer = QTimer(self)
        self._periodic_timer.setInterval(engine.config.periodic_check_minutes * 60_000)
        self._periodic_timer.timeout.connect(self.on_background_periodic_tick)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> Future:
        """Run the launch-time check and start the periodic timer."""
        self.status_message.emit("Checking your data...")
        future = self._executor.submit(self._engine.monitor.on_store_opened)
        self._periodic_timer.start()
        return future

    def on_foreground_resume(self) -> Future:
        return self._executor.submit(self._engine.monitor.on_foreground_resume)

    def on_background_periodic_tick(self) -> Future:
        return self._executor.submit(self._engine.monitor.on_background_periodic_tick)

    def on_will_resign_active(self) -> Future:
        return self._executor.submit(self._engine.monitor.on_will_resign_active)

    def shutdown(self) -> None:
        """Stop the timer, let queued work finish and close the store."""
        self._periodic_timer.stop()
        self._engine.monitor.unsubscribe(self._on_health_changed)
        self._executor.shutdown(wait=True)
        self._engine.close()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    def get_health_status(self):
        return self._engine.monitor.get_health_status()

    def list_backups(self):
        return self._engine.catalog.list_backups()

    def last_recovery_outcome(self) -> dict | None:
        return self._engine.orchestrator.last_outcome

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_backup(self, fmt: BackupFormat = BackupFormat.BOTH) -> Future:
        """Queue a manual backup; resolves to the list of records written."""
        self.status_message.emit("Creating backup...")
        future = self._executor.submit(self._engine.backups.create_backup, fmt, LABEL_MANUAL)
        future.add_done_callback(self._on_backup_done)
        return future

    def restore_from_backup(self, record, *, confirm: bool = False) -> Future:
        """Queue a restore of *record*.

        Without ``confirm=True`` nothing is changed: the future resolves to
        a preview comparing the backup with the current data.  With
        ``confirm=True`` a ``PreRestore`` safety backup is taken and the
        restore runs; the future resolves to the post-restore ``Severity``.
        """
        if not confirm:
            return self._executor.submit(self._preview_restore, record)

        self.status_message.emit(f"Restoring {record.filename}...")
        future = self._executor.submit(self._restore, record)
        future.add_done_callback(lambda f: self._on_restore_done(f, record))
        return future

    def attempt_recovery(self, token=None) -> Future:
        """Queue a recovery run; resolves to a ``RecoveryOutcome``."""
        self.status_message.emit("Recovering your data...")
        future = self._executor.submit(self._recover, token)
        future.add_done_callback(self._on_recovery_done)
        return future

    def create_export(self) -> Future:
        """Queue the Markdown report and JSON export; resolves to their paths."""
        self.status_message.emit("Exporting your progress...")
        future = self._executor.submit(self._engine.exporter.create_comprehensive_export)
        future.add_done_callback(self._on_export_done)
        return future

    def wait(self, future: Future, timeout: float | None = None):
        """Wait for a queued operation, bounding the wait.

        On timeout the operation may or may not have committed, so the
        published health becomes ``unknown`` and a re-validation is queued
        behind it.  The timeout is then re-raised.
        """
        if timeout is None:
            timeout = self._engine.config.restore_timeout_seconds
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning("Operation did not finish within %.0f seconds", timeout)
            self._engine.monitor.mark_unknown("An operation did not finish in time.")
            self._executor.submit(self._engine.monitor.check)
            raise

    # ------------------------------------------------------------------
    # Worker-thread bodies
    # ------------------------------------------------------------------

    def _preview_restore(self, record) -> dict:
        try:
            current = self._engine.repository.counts()
        except (TrackerError, sqlite3.Error):
            current = None

        backup_days = None
        if record.format == BackupFormat.STRUCTURED:
            document = self._engine.restorer.load_document(record.location)
            backup_days = len(document.days)

        return {
            "backup": record.filename,
            "format": record.format.value,
            "created_at": record.created_at.isoformat(),
            "size_bytes": record.size_bytes,
            "backup_days": backup_days,
            "current_counts": current,
        }

    def _restore(self, record):
        severity = self._engine.restorer.restore(record, safety_snapshot=True)
        self._engine.monitor.check()
        return severity

    def _recover(self, token):
        outcome = self._engine.orchestrator.attempt_recovery(token=token)
        self._engine.monitor.check()
        return outcome

    # ------------------------------------------------------------------
    # Completion callbacks
    # ------------------------------------------------------------------

    def _on_health_changed(self, status) -> None:
        self.health_changed.emit(status)
        self.status_message.emit(status.describe())

    def _on_backup_done(self, future: Future) -> None:
        exc = future.exception()
        if exc is None:
            self.backup_finished.emit(future.result())
            self.status_message.emit("Backup complete")
        else:
            logger.warning("Backup failed: %s", exc)
            self.backup_failed.emit(str(exc))

    def _on_restore_done(self, future: Future, record) -> None:
        exc = future.exception()
        if exc is None:
            self.restore_finished.emit(record.filename)
            self.status_message.emit("Restore complete")
        else:
            logger.warning("Restore failed: %s", exc)
            self.restore_failed.emit(str(exc))

    def _on_export_done(self, future: Future) -> None:
        exc = future.exception()
        if exc is None:
            self.export_finished.emit(future.result())
            self.status_message.emit("Export complete")
        else:
            logger.warning("Export failed: %s", exc)
            self.export_failed.emit(str(exc))

    def _on_recovery_done(self, future: Future) -> None:
        exc = future.exception()
        if exc is None:
            self.recovery_finished.emit(future.result())
        else:
            logger.error("Recovery run crashed: %s", exc)
            self.status_message.emit(f"Recovery failed: {exc}")
