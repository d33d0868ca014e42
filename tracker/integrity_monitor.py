"""
tracker/integrity_monitor.py -- Lifecycle-driven integrity checks

Runs the validator (and, when needed, the recovery orchestrator) at the
moments the application shell reports:

    on_store_opened()              app launch / store first opened
    on_foreground_resume()         app returns to the foreground
    on_background_periodic_tick()  periodic timer while running
    on_will_resign_active()        app is about to lose the foreground

and publishes the result as a ``HealthStatus`` (verified / issues /
corrupted / unknown).  Listeners registered with ``subscribe`` are called
with every new status; the UI only ever reads this derived status.

Launch-time decisions:
    - an empty store with no regular backups is a first launch: load the
      curriculum
    - an empty store *with* backups lost its data: run recovery
    - a healthy store with warnings gets a quiet auto-fix
    - a changed app version or build (upgrade / rebuild) triggers an
      ``Upgrade`` backup once the data is verified healthy
    - a recovery journal showing an unfinished run is logged and the
      store is re-checked from scratch

Backups are only ever taken from a healthy store.

Usage:
    from tracker.integrity_monitor import IntegrityMonitor

    monitor = IntegrityMonitor(store, validator, catalog, backups,
                               orchestrator, initializer, journal, preferences,
                               app_version="1.2", build_number="7")
    monitor.subscribe(lambda status: print(status.describe()))
    monitor.on_store_opened()
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError as PydanticValidationError

from tracker.backup_catalog import LABEL_UPGRADE
from tracker.errors import BackupError, TrackerError
from tracker.models.records import BackupFormat
from tracker.recovery import RecoveryMethod
from tracker.validator import Severity

logger = logging.getLogger(__name__)


class HealthState(Enum):
    VERIFIED = "verified"
    ISSUES = "issues"
    CORRUPTED = "corrupted"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class HealthStatus:
    """Published integrity state with an optional human-readable detail."""
    state: HealthState
    detail: str = ""

    @classmethod
    def verified(cls) -> HealthStatus:
        return cls(HealthState.VERIFIED)

    @classmethod
    def issues(cls, detail: str) -> HealthStatus:
        return cls(HealthState.ISSUES, detail)

    @classmethod
    def corrupted(cls, detail: str) -> HealthStatus:
        return cls(HealthState.CORRUPTED, detail)

    @classmethod
    def unknown(cls, detail: str = "") -> HealthStatus:
        return cls(HealthState.UNKNOWN, detail)

    @property
    def is_healthy(self) -> bool:
        return self.state is HealthState.VERIFIED

    def describe(self) -> str:
        labels = {
            HealthState.VERIFIED: "Data verified",
            HealthState.ISSUES: "Data issues",
            HealthState.CORRUPTED: "Data corrupted",
            HealthState.UNKNOWN: "Data status unknown",
        }
        text = labels[self.state]
        return f"{text}: {self.detail}" if self.detail else text

    def to_dict(self) -> dict:
        return {"state": self.state.value, "detail": self.detail}


class IntegrityMonitor:
    """Triggers validation and recovery at lifecycle events.

    Parameters
    ----------
    store, validator, catalog, backup_manager, orchestrator, initializer,
    journal, preferences
        Core collaborators (see ``tracker.engine.TrackerEngine``).
    app_version, build_number : str
        The running app's identity, compared against what preferences
        recorded last time to detect upgrades and rebuilds.
    """

    def __init__(
        self,
        store,
        validator,
        catalog,
        backup_manager,
        orchestrator,
        initializer,
        journal,
        preferences,
        *,
        app_version: str = "1.0",
        build_number: str = "1",
    ):
        self.store = store
        self.validator = validator
        self.catalog = catalog
        self.backup_manager = backup_manager
        self.orchestrator = orchestrator
        self.initializer = initializer
        self.journal = journal
        self.preferences = preferences
        self.app_version = app_version
        self.build_number = build_number

        self._lock = threading.RLock()
        self._status = HealthStatus.unknown()
        self._listeners = []

    # ------------------------------------------------------------------
    # Published status
    # ------------------------------------------------------------------

    def get_health_status(self) -> HealthStatus:
        with self._lock:
            return self._status

    def subscribe(self, callback) -> None:
        """Register ``callback(status)`` for every status change."""
        with self._lock:
            self._listeners.append(callback)

    def unsubscribe(self, callback) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def mark_unknown(self, detail: str = "") -> None:
        """Record that the store's state cannot currently be vouched for."""
        self._publish(HealthStatus.unknown(detail))

    def _publish(self, status: HealthStatus) -> None:
        with self._lock:
            self._status = status
            listeners = list(self._listeners)
        try:
            self.preferences.set("last_health_status", status.to_dict())
        except OSError:
            logger.warning("Could not persist health status", exc_info=True)
        for callback in listeners:
            try:
                callback(status)
            except Exception:
                logger.warning("Health status listener failed", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def on_store_opened(self) -> HealthStatus:
        """Full launch-time check: first launch, recovery, upgrade backup."""
        interrupted = self.journal.interrupted_recovery()
        if interrupted is not None:
            logger.warning(
                "Previous recovery started at %s did not finish; re-checking data",
                interrupted.get("timestamp"),
            )

        if self._is_first_launch():
            self.initializer.initialize_if_needed()

        status = self.check()
        if status.state in (HealthState.VERIFIED, HealthState.ISSUES):
            self._check_version_change()
            self._daily_backup()
        return status

    def on_foreground_resume(self) -> HealthStatus:
        status = self.check()
        if status.state in (HealthState.VERIFIED, HealthState.ISSUES):
            self._daily_backup()
        return status

    def on_background_periodic_tick(self) -> HealthStatus:
        return self.check()

    def on_will_resign_active(self) -> None:
        """Best-effort backup before the app loses the foreground."""
        if self.get_health_status().is_healthy:
            self.backup_manager.create_background_backup()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check(self) -> HealthStatus:
        """Validate; repair quietly or run recovery as needed; publish."""
        severity, report = self.validator.assess(self.store)

        if severity == Severity.HEALTHY:
            if report.warnings:
                try:
                    fixed = self.validator.auto_fix(self.store, report)
                    logger.info("Quietly fixed %d warning(s)", fixed)
                except (TrackerError, sqlite3.Error, PydanticValidationError):
                    logger.warning("Quiet auto-fix failed", exc_info=True)
            status = HealthStatus.verified()
        else:
            outcome = self.orchestrator.attempt_recovery(severity)
            if outcome.cancelled:
                status = HealthStatus.unknown(outcome.message)
            elif not outcome.success:
                status = HealthStatus.corrupted(outcome.message)
            elif outcome.method == RecoveryMethod.REPAIR:
                status = HealthStatus.verified()
            else:
                status = HealthStatus.issues(outcome.message)

        self._publish(status)
        return status

    def _is_first_launch(self) -> bool:
        try:
            empty = self.initializer.repository.count_days() == 0
        except (TrackerError, sqlite3.Error):
            return False
        return empty and not self.catalog.has_regular_backups()

    def _check_version_change(self) -> None:
        previous_version = self.preferences.get("app_version")
        previous_build = self.preferences.get("build_number")
        if previous_version == self.app_version and previous_build == self.build_number:
            return

        if previous_version is not None:
            logger.info(
                "App changed from %s (%s) to %s (%s); backing up",
                previous_version, previous_build, self.app_version, self.build_number,
            )
            severity, _ = self.validator.assess(self.store)
            if severity != Severity.HEALTHY:
                logger.warning("Skipping upgrade backup: store severity is %s", severity.name)
                return
            try:
                self.backup_manager.create_backup(BackupFormat.BOTH, LABEL_UPGRADE)
            except BackupError:
                logger.warning("Upgrade backup failed", exc_info=True)

        self.preferences.update({
            "app_version": self.app_version,
            "build_number": self.build_number,
        })

    def _daily_backup(self) -> None:
        try:
            self.backup_manager.create_daily_backup()
        except BackupError:
            logger.warning("Daily backup failed", exc_info=True)
