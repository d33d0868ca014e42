"""
Tests for tracker_app/services/integrity_service.py -- background worker
and signal hub around the tracker core.
"""

import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from unittest import mock
from unittest.mock import MagicMock

import pytest
from PySide6.QtCore import QCoreApplication

from tracker.backup_catalog import LABEL_MANUAL, LABEL_PRE_RESTORE
from tracker.engine import TrackerEngine
from tracker.integrity_monitor import HealthState, HealthStatus
from tracker.models.records import BackupFormat
from tracker.recovery import RecoveryOutcome
from tracker.validator import Severity
from tracker_app.services.integrity_service import IntegrityService


@pytest.fixture()
def _ensure_qapp():
    """Make sure a QCoreApplication exists for signal/slot machinery."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


@pytest.fixture()
def service(_ensure_qapp, config):
    svc = IntegrityService(TrackerEngine(config))
    yield svc
    svc.shutdown()


@pytest.fixture()
def started(service):
    service.start().result(timeout=30)
    return service


# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------


class TestLifecycle:
    def test_start_runs_launch_check(self, service):
        status = service.start().result(timeout=30)
        assert status == HealthStatus.verified()
        assert service.get_health_status().is_healthy

    def test_periodic_tick_returns_status(self, started):
        assert started.on_background_periodic_tick().result(timeout=30).is_healthy

    def test_foreground_resume(self, started):
        assert started.on_foreground_resume().result(timeout=30).is_healthy

    def test_resign_active_backs_up(self, started):
        started.on_will_resign_active().result(timeout=30)
        assert "Background" in {r.label for r in started.list_backups()}

    def test_health_signal_forwarded(self, service):
        receiver = MagicMock()
        service.health_changed.connect(receiver)
        service._engine.monitor.mark_unknown("checking")
        receiver.assert_called_once_with(HealthStatus.unknown("checking"))


# ------------------------------------------------------------------
# Backups and restores
# ------------------------------------------------------------------


class TestBackups:
    def test_manual_backup(self, started):
        records = started.create_backup(BackupFormat.BINARY).result(timeout=30)
        assert [r.label for r in records] == [LABEL_MANUAL]
        assert records[0].location.exists()

    def test_backup_listed(self, started):
        started.create_backup().result(timeout=30)
        labels = [r.label for r in started.list_backups()]
        assert labels.count(LABEL_MANUAL) == 2


class TestRestore:
    def test_unconfirmed_restore_is_a_preview(self, started):
        (record,) = started.create_backup(BackupFormat.STRUCTURED).result(timeout=30)
        preview = started.restore_from_backup(record).result(timeout=30)
        assert preview["backup"] == record.filename
        assert preview["format"] == "structured"
        assert preview["backup_days"] == 100
        assert preview["current_counts"]["days"] == 100
        assert LABEL_PRE_RESTORE not in {r.label for r in started.list_backups()}

    def test_binary_preview_has_no_day_count(self, started):
        (record,) = started.create_backup(BackupFormat.BINARY).result(timeout=30)
        preview = started.restore_from_backup(record).result(timeout=30)
        assert preview["backup_days"] is None

    def test_confirmed_restore(self, started):
        (record,) = started.create_backup(BackupFormat.BINARY).result(timeout=30)
        severity = started.restore_from_backup(record, confirm=True).result(timeout=30)
        assert severity == Severity.HEALTHY
        assert LABEL_PRE_RESTORE in {r.label for r in started.list_backups()}
        assert started.get_health_status().is_healthy


# ------------------------------------------------------------------
# Recovery and timeouts
# ------------------------------------------------------------------


class TestRecovery:
    def test_attempt_recovery_on_healthy_store(self, started):
        outcome = started.attempt_recovery().result(timeout=30)
        assert isinstance(outcome, RecoveryOutcome)
        assert outcome.success
        assert outcome.method is None

    def test_last_outcome_after_recovery(self, started, corrupt_store):
        corrupt_store(started._engine.store)
        outcome = started.attempt_recovery().result(timeout=30)
        assert outcome.success
        assert started.last_recovery_outcome()["success"] is True

    def test_wait_returns_result(self, started):
        assert started.wait(started.on_background_periodic_tick()).is_healthy

    def test_wait_timeout_marks_unknown(self, started):
        def slow_backup(*args):
            time.sleep(0.5)
            return []

        with mock.patch.object(started._engine.backups, "create_backup", side_effect=slow_backup):
            future = started.create_backup()
            with pytest.raises(FutureTimeoutError):
                started.wait(future, timeout=0.05)
            assert started.get_health_status().state == HealthState.UNKNOWN
            future.result(timeout=30)


class TestExport:
    def test_export_writes_both_files(self, started):
        paths = started.create_export().result(timeout=30)
        assert [p.suffix for p in paths] == [".md", ".json"]
        assert all(p.exists() for p in paths)
        assert all(p.parent == started._engine.config.export_dir for p in paths)
