"""
Tests for tracker/integrity_monitor.py

Covers:
    - First launch: curriculum load, verified status, first daily backup
    - Quiet auto-fix of warnings on launch
    - Recovery triggered by a damaged store, and the resulting status
    - Version / build change detection and the Upgrade backup
    - Listener notification and status persistence
    - Background backup on resign-active
"""

from unittest import mock

import pytest
from pydantic import ValidationError as PydanticValidationError

from tracker.backup_catalog import LABEL_BACKGROUND, LABEL_DAILY, LABEL_UPGRADE
from tracker.engine import TrackerEngine
from tracker.integrity_monitor import HealthState, HealthStatus
from tracker.journal import RECOVERY_STARTED
from tracker.models.records import BackupFormat, DayRecord
from tracker.recovery import RecoveryMethod, RecoveryOutcome, RecoveryState
from tracker.validator import Severity


def _labels(engine):
    return {r.label for r in engine.catalog.list_backups()}


# ---------------------------------------------------------------------------
# HealthStatus
# ---------------------------------------------------------------------------

class TestHealthStatus:
    def test_describe(self):
        assert HealthStatus.verified().describe() == "Data verified"
        assert HealthStatus.issues("restored").describe() == "Data issues: restored"
        assert HealthStatus.unknown().state == HealthState.UNKNOWN

    def test_only_verified_is_healthy(self):
        assert HealthStatus.verified().is_healthy
        assert not HealthStatus.issues("x").is_healthy
        assert not HealthStatus.corrupted("x").is_healthy

    def test_to_dict(self):
        assert HealthStatus.corrupted("bad").to_dict() == {"state": "corrupted", "detail": "bad"}


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------

class TestStoreOpened:
    def test_first_launch(self, engine):
        status = engine.monitor.on_store_opened()
        assert status == HealthStatus.verified()
        assert engine.repository.count_days() == 100
        assert LABEL_DAILY in _labels(engine)
        assert engine.preferences.get("app_version") == engine.config.app_version

    def test_initial_status_is_unknown(self, engine):
        assert engine.monitor.get_health_status().state == HealthState.UNKNOWN

    def test_second_launch_same_day_no_new_backup(self, engine):
        engine.monitor.on_store_opened()
        count = len(engine.catalog.list_backups())
        engine.monitor.on_store_opened()
        assert len(engine.catalog.list_backups()) == count

    def test_warnings_fixed_quietly(self, seeded_engine):
        with seeded_engine.store.transaction() as conn:
            conn.execute("UPDATE days SET dsa_progress = 0.5 WHERE day_number = 20")
        status = seeded_engine.monitor.check()
        assert status.is_healthy
        assert seeded_engine.repository.get_day(20).dsa_progress == 0.0
        assert seeded_engine.journal.events() == []

    def test_unreadable_row_during_quiet_fix(self, seeded_engine):
        with seeded_engine.store.transaction() as conn:
            conn.execute("UPDATE days SET dsa_progress = 0.5 WHERE day_number = 20")
        try:
            DayRecord.model_validate({"day_number": "twenty"})
        except PydanticValidationError as exc:
            row_error = exc
        with mock.patch.object(seeded_engine.validator, "auto_fix", side_effect=row_error):
            status = seeded_engine.monitor.check()
        assert status == HealthStatus.verified()

    def test_empty_store_with_backups_is_recovered(self, seeded_engine):
        seeded_engine.backups.create_backup(BackupFormat.BINARY)
        seeded_engine.repository.wipe()
        status = seeded_engine.monitor.on_store_opened()
        assert status.state == HealthState.ISSUES
        assert seeded_engine.repository.count_days() == 100

    def test_interrupted_recovery_is_rechecked(self, seeded_engine, caplog):
        seeded_engine.journal.log_event(RECOVERY_STARTED, {"severity": "MAJOR"})
        with caplog.at_level("WARNING"):
            status = seeded_engine.monitor.on_store_opened()
        assert status.is_healthy
        assert "did not finish" in caplog.text


# ---------------------------------------------------------------------------
# Recovery status mapping
# ---------------------------------------------------------------------------

class TestRecoveryStatus:
    def test_repair_is_verified(self, seeded_engine):
        with seeded_engine.store.transaction() as conn:
            conn.execute("INSERT INTO topics (day_id, name) VALUES (NULL, 'Lost')")
        assert seeded_engine.monitor.check() == HealthStatus.verified()

    def test_restore_reports_issues(self, seeded_engine, corrupt_store):
        seeded_engine.backups.create_backup(BackupFormat.BINARY)
        corrupt_store(seeded_engine.store)
        status = seeded_engine.monitor.check()
        assert status.state == HealthState.ISSUES
        assert "restored" in status.detail

    def test_failure_reports_corrupted(self, seeded_engine):
        failed = RecoveryOutcome(
            success=False, final_state=RecoveryState.FAILED, message="Data has been lost."
        )
        with mock.patch.object(seeded_engine.validator, "assess", return_value=(Severity.CRITICAL, None)), \
                mock.patch.object(seeded_engine.orchestrator, "attempt_recovery", return_value=failed):
            status = seeded_engine.monitor.check()
        assert status == HealthStatus.corrupted("Data has been lost.")

    def test_cancelled_reports_unknown(self, seeded_engine):
        cancelled = RecoveryOutcome(
            success=False, final_state=RecoveryState.IDLE, message="cancelled", cancelled=True
        )
        with mock.patch.object(seeded_engine.validator, "assess", return_value=(Severity.MAJOR, None)), \
                mock.patch.object(seeded_engine.orchestrator, "attempt_recovery", return_value=cancelled):
            status = seeded_engine.monitor.check()
        assert status.state == HealthState.UNKNOWN

    def test_reinitialize_reports_issues(self, seeded_engine):
        done = RecoveryOutcome(
            success=True, final_state=RecoveryState.IDLE, message="reset",
            method=RecoveryMethod.REINITIALIZE,
        )
        with mock.patch.object(seeded_engine.validator, "assess", return_value=(Severity.MAJOR, None)), \
                mock.patch.object(seeded_engine.orchestrator, "attempt_recovery", return_value=done):
            status = seeded_engine.monitor.check()
        assert status == HealthStatus.issues("reset")


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

class TestPublishing:
    def test_listeners_called(self, seeded_engine):
        seen = []
        seeded_engine.monitor.subscribe(seen.append)
        seeded_engine.monitor.check()
        seeded_engine.monitor.mark_unknown("timed out")
        assert seen == [HealthStatus.verified(), HealthStatus.unknown("timed out")]

    def test_unsubscribe(self, seeded_engine):
        seen = []
        seeded_engine.monitor.subscribe(seen.append)
        seeded_engine.monitor.unsubscribe(seen.append)
        seeded_engine.monitor.check()
        assert seen == []

    def test_failing_listener_does_not_break_check(self, seeded_engine):
        def broken(status):
            raise RuntimeError("listener bug")

        seeded_engine.monitor.subscribe(broken)
        assert seeded_engine.monitor.check().is_healthy

    def test_status_persisted(self, seeded_engine):
        seeded_engine.monitor.check()
        assert seeded_engine.preferences.get("last_health_status") == {
            "state": "verified", "detail": "",
        }


# ---------------------------------------------------------------------------
# Version changes
# ---------------------------------------------------------------------------

class TestVersionChange:
    def test_upgrade_backup_on_new_version(self, config):
        first = TrackerEngine(config)
        first.monitor.on_store_opened()
        first.close()

        upgraded = TrackerEngine(config.model_copy(update={"app_version": "1.1"}))
        try:
            upgraded.monitor.on_store_opened()
            assert LABEL_UPGRADE in _labels(upgraded)
            assert upgraded.preferences.get("app_version") == "1.1"
        finally:
            upgraded.close()

    def test_rebuild_also_backs_up(self, config):
        first = TrackerEngine(config)
        first.monitor.on_store_opened()
        first.close()

        rebuilt = TrackerEngine(config.model_copy(update={"build_number": "2"}))
        try:
            rebuilt.monitor.on_store_opened()
            assert LABEL_UPGRADE in _labels(rebuilt)
            assert rebuilt.preferences.get("build_number") == "2"
        finally:
            rebuilt.close()

    def test_same_version_no_upgrade_backup(self, engine):
        engine.monitor.on_store_opened()
        engine.monitor.on_store_opened()
        assert LABEL_UPGRADE not in _labels(engine)


# ---------------------------------------------------------------------------
# Other lifecycle hooks
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_resign_active_backs_up_when_healthy(self, seeded_engine):
        seeded_engine.monitor.check()
        seeded_engine.monitor.on_will_resign_active()
        assert LABEL_BACKGROUND in _labels(seeded_engine)

    def test_resign_active_skipped_when_unverified(self, seeded_engine):
        seeded_engine.monitor.on_will_resign_active()
        assert LABEL_BACKGROUND not in _labels(seeded_engine)

    def test_periodic_tick_checks(self, seeded_engine):
        assert seeded_engine.monitor.on_background_periodic_tick().is_healthy

    def test_foreground_resume_takes_daily_backup(self, seeded_engine):
        seeded_engine.monitor.on_foreground_resume()
        assert LABEL_DAILY in _labels(seeded_engine)

    @pytest.mark.parametrize("hook", ["on_foreground_resume", "on_background_periodic_tick"])
    def test_hooks_publish(self, seeded_engine, hook):
        getattr(seeded_engine.monitor, hook)()
        assert seeded_engine.monitor.get_health_status().is_healthy
