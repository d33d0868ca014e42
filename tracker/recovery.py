"""
tracker/recovery.py -- Recovery orchestrator

A state machine that tries progressively less data-preserving strategies
until the store validates healthy again:

    Idle -> Repairing -> RestoringBinary -> RestoringStructured
         -> Reinitializing -> Failed

    - MINOR / MAJOR severity starts at Repairing (auto-fix in place).
    - CRITICAL severity (store unopenable or unreadable) skips Repairing.
    - A restore state with no usable backup advances immediately.
    - Any state that ends with a healthy store returns to Idle (success).
    - Reinitializing failing ends in Failed: reported as data loss, with
      the emergency snapshot path so the user can attempt manual recovery.

Before every state that mutates data an ``Emergency`` snapshot is taken,
so a failed attempt never destroys the evidence needed for manual repair.
Every start, transition and finish goes to the recovery journal.  The
machine checks its cancellation token at each state boundary; a cancelled
or interrupted run leaves nothing to resume, and the next integrity check
simply starts again from Idle.

Every ``TrackerError`` (and raw ``sqlite3``/OS failure) raised by a
strategy is caught here and becomes a transition; nothing propagates to
the caller.

Usage:
    from tracker.recovery import RecoveryOrchestrator, CancellationToken

    orchestrator = RecoveryOrchestrator(store, validator, catalog, backups,
                                        restorer, initializer, journal, preferences)
    outcome = orchestrator.attempt_recovery()
    if not outcome.success:
        show_data_loss_dialog(outcome.message)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from tracker.errors import TrackerError
from tracker.journal import RECOVERY_FINISHED, RECOVERY_STARTED, RECOVERY_TRANSITION
from tracker.models.records import BackupFormat, BackupRecord
from tracker.utils import now_iso
from tracker.validator import Severity

logger = logging.getLogger(__name__)

_RECOVERABLE_ERRORS = (TrackerError, sqlite3.Error, OSError, PydanticValidationError)


class RecoveryState(Enum):
    IDLE = "idle"
    REPAIRING = "repairing"
    RESTORING_BINARY = "restoring_binary"
    RESTORING_STRUCTURED = "restoring_structured"
    REINITIALIZING = "reinitializing"
    FAILED = "failed"


class RecoveryMethod(IntEnum):
    """Strategies in order of decreasing trust."""

    REPAIR = 1
    BINARY_RESTORE = 2
    STRUCTURED_RESTORE = 3
    REINITIALIZE = 4


_STATE_METHODS = {
    RecoveryState.REPAIRING: RecoveryMethod.REPAIR,
    RecoveryState.RESTORING_BINARY: RecoveryMethod.BINARY_RESTORE,
    RecoveryState.RESTORING_STRUCTURED: RecoveryMethod.STRUCTURED_RESTORE,
    RecoveryState.REINITIALIZING: RecoveryMethod.REINITIALIZE,
}


@dataclass
class RecoveryOutcome:
    """Terminal result of one ``attempt_recovery`` run."""
    success: bool
    final_state: RecoveryState
    message: str
    method: RecoveryMethod | None = None
    initial_severity: Severity | None = None
    backup_used: BackupRecord | None = None
    emergency_backups: list[Path] = field(default_factory=list)
    attempts: list[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "final_state": self.final_state.value,
            "message": self.message,
            "method": self.method.name if self.method else None,
            "initial_severity": self.initial_severity.name if self.initial_severity is not None else None,
            "backup_used": str(self.backup_used.location) if self.backup_used else None,
            "emergency_backups": [str(p) for p in self.emergency_backups],
            "attempts": list(self.attempts),
            "cancelled": self.cancelled,
        }


class CancellationToken:
    """Cooperative cancellation flag shared between caller and orchestrator."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ---------------------------------------------------------------------------
# RecoveryOrchestrator
# ---------------------------------------------------------------------------

class RecoveryOrchestrator:
    """Chooses and runs recovery strategies for an unhealthy store.

    Parameters
    ----------
    store : ProgressStore
    validator : DataValidator
    catalog : BackupCatalog
    backup_manager : BackupManager
    restore_engine : RestoreEngine
    initializer : CurriculumInitializer
    journal : RecoveryJournal
    preferences : Preferences
        Receives the last recovery outcome.
    """

    def __init__(
        self,
        store,
        validator,
        catalog,
        backup_manager,
        restore_engine,
        initializer,
        journal,
        preferences,
    ):
        self.store = store
        self.validator = validator
        self.catalog = catalog
        self.backup_manager = backup_manager
        self.restore_engine = restore_engine
        self.initializer = initializer
        self.journal = journal
        self.preferences = preferences
        self._state = RecoveryState.IDLE
        self._run_lock = threading.Lock()

    @property
    def state(self) -> RecoveryState:
        return self._state

    @property
    def last_outcome(self) -> dict | None:
        return self.preferences.get("last_recovery_outcome")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def attempt_recovery(
        self,
        severity: Severity | None = None,
        token: CancellationToken | None = None,
    ) -> RecoveryOutcome:
        """Run the state machine to a terminal state.

        Parameters
        ----------
        severity : Severity, optional
            Severity already observed by the caller.  When omitted the
            store is assessed first.
        token : CancellationToken, optional
            Checked before each state; cancellation returns to Idle.

        Returns
        -------
        RecoveryOutcome
        """
        with self._run_lock:
            if severity is None:
                severity, _ = self.validator.assess(self.store)

            if severity == Severity.HEALTHY:
                return RecoveryOutcome(
                    success=True,
                    final_state=RecoveryState.IDLE,
                    message="Your data is healthy; no recovery was needed.",
                    initial_severity=severity,
                )

            self.journal.log_event(RECOVERY_STARTED, {"severity": severity.name})
            logger.warning("Starting recovery for %s severity", severity.name)

            states = [
                RecoveryState.RESTORING_BINARY,
                RecoveryState.RESTORING_STRUCTURED,
                RecoveryState.REINITIALIZING,
            ]
            if severity != Severity.CRITICAL:
                states.insert(0, RecoveryState.REPAIRING)

            outcome = RecoveryOutcome(
                success=False,
                final_state=RecoveryState.FAILED,
                message="",
                initial_severity=severity,
            )
            try:
                for state in states:
                    if token is not None and token.cancelled:
                        outcome.cancelled = True
                        outcome.final_state = RecoveryState.IDLE
                        outcome.message = "Recovery was cancelled; data will be checked again."
                        return outcome

                    self._transition(state)
                    if self._run_state(state, outcome):
                        outcome.success = True
                        outcome.method = _STATE_METHODS[state]
                        outcome.final_state = RecoveryState.IDLE
                        outcome.message = self._success_message(outcome)
                        return outcome

                outcome.final_state = RecoveryState.FAILED
                outcome.message = self._failure_message(outcome)
                logger.error("Recovery failed: %s", outcome.message)
                return outcome
            finally:
                self._state = outcome.final_state
                self._finish(outcome)

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _transition(self, state: RecoveryState) -> None:
        logger.info("Recovery: %s -> %s", self._state.value, state.value)
        self.journal.log_event(RECOVERY_TRANSITION, {
            "from": self._state.value,
            "to": state.value,
        })
        self._state = state

    def _run_state(self, state, outcome) -> bool:
        try:
            if state == RecoveryState.REPAIRING:
                return self._repair(outcome)
            if state == RecoveryState.RESTORING_BINARY:
                return self._restore(BackupFormat.BINARY, outcome)
            if state == RecoveryState.RESTORING_STRUCTURED:
                return self._restore(BackupFormat.STRUCTURED, outcome)
            return self._reinitialize(outcome)
        except _RECOVERABLE_ERRORS as exc:
            logger.warning("Recovery step %s failed: %s", state.value, exc, exc_info=True)
            outcome.attempts.append(f"{state.value}: {exc}")
            return False

    def _snapshot(self, outcome) -> None:
        record = self.backup_manager.create_emergency_backup()
        if record is not None:
            outcome.emergency_backups.append(record.location)

    def _repair(self, outcome) -> bool:
        self._snapshot(outcome)
        report = self.validator.validate(self.store)
        fixed = self.validator.auto_fix(self.store, report)
        healthy = self._is_healthy()
        outcome.attempts.append(f"repairing: {fixed} fix(es), healthy={healthy}")
        return healthy

    def _restore(self, fmt, outcome) -> bool:
        record = self.catalog.latest(fmt)
        if record is None:
            outcome.attempts.append(f"restoring {fmt.value}: no backup available")
            return False
        self._snapshot(outcome)
        self.restore_engine.restore(record, safety_snapshot=False)
        self._quiet_fix()
        healthy = self._is_healthy()
        outcome.attempts.append(f"restoring {fmt.value} from {record.filename}: healthy={healthy}")
        if healthy:
            outcome.backup_used = record
        return healthy

    def _reinitialize(self, outcome) -> bool:
        self._snapshot(outcome)
        self.initializer.reinitialize()
        healthy = self._is_healthy()
        outcome.attempts.append(f"reinitializing: healthy={healthy}")
        return healthy

    def _quiet_fix(self) -> None:
        severity, report = self.validator.assess(self.store)
        if report is not None and report.issues:
            self.validator.auto_fix(self.store, report)

    def _is_healthy(self) -> bool:
        severity, _ = self.validator.assess(self.store)
        return severity == Severity.HEALTHY

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _success_message(outcome) -> str:
        if outcome.method == RecoveryMethod.REPAIR:
            return "Some data problems were found and repaired automatically."
        if outcome.method in (RecoveryMethod.BINARY_RESTORE, RecoveryMethod.STRUCTURED_RESTORE):
            when = outcome.backup_used.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
            return (
                f"Your data was restored from the backup made on {when}. "
                f"Progress made after that backup may be missing."
            )
        return (
            "Your data could not be repaired or restored, so the curriculum was "
            "reset. Previous progress has been lost."
            + RecoveryOrchestrator._evidence_note(outcome)
        )

    @staticmethod
    def _failure_message(outcome) -> str:
        return (
            "Your progress could not be recovered and the app could not create "
            "fresh data. Data has been lost." + RecoveryOrchestrator._evidence_note(outcome)
        )

    @staticmethod
    def _evidence_note(outcome) -> str:
        if not outcome.emergency_backups:
            return ""
        return f" An emergency copy of your data was saved at: {outcome.emergency_backups[0]}"

    def _finish(self, outcome) -> None:
        self.journal.log_event(RECOVERY_FINISHED, outcome.to_dict())
        try:
            self.preferences.set("last_recovery_outcome", {
                **outcome.to_dict(),
                "timestamp": now_iso(),
            })
        except OSError:
            logger.warning("Could not record recovery outcome", exc_info=True)
