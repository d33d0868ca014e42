"""
tracker/journal.py -- Append-only recovery journal

Every recovery run writes its start, each state transition and its end to
a JSON Lines file.  Lines are never rewritten, so the journal survives a
crash in the middle of a recovery: a ``recovery_started`` without a
matching ``recovery_finished`` tells the next launch that the previous
attempt was interrupted.

Event format:
    {"timestamp": "<ISO>", "event_type": "<type>", "data": {...}}

Usage:
    from tracker.journal import RecoveryJournal

    journal = RecoveryJournal("/path/to/logs/recovery.jsonl")
    journal.log_event("recovery_started", {"severity": "MAJOR"})
    if journal.interrupted_recovery():
        ...
"""

import logging
from pathlib import Path

from tracker.utils import now_iso, read_jsonl, safe_append_jsonl

logger = logging.getLogger(__name__)

RECOVERY_STARTED = "recovery_started"
RECOVERY_TRANSITION = "recovery_transition"
RECOVERY_FINISHED = "recovery_finished"


class RecoveryJournal:
    """Append-only log of recovery activity."""

    def __init__(self, path):
        self.path = Path(path)

    def log_event(self, event_type: str, data: dict | None = None) -> None:
        """Append one event.  Write failures are logged, never raised."""
        record = {
            "timestamp": now_iso(),
            "event_type": event_type,
            "data": data or {},
        }
        try:
            safe_append_jsonl(self.path, record)
        except OSError:
            logger.warning("Could not write to recovery journal %s", self.path, exc_info=True)

    def events(self, event_type: str | None = None) -> list[dict]:
        """Return all events, optionally filtered by type, oldest first."""
        records = read_jsonl(self.path)
        if event_type is not None:
            records = [r for r in records if r.get("event_type") == event_type]
        return records

    def interrupted_recovery(self) -> dict | None:
        """Return the last ``recovery_started`` event if it never finished."""
        pending = None
        for record in read_jsonl(self.path):
            event_type = record.get("event_type")
            if event_type == RECOVERY_STARTED:
                pending = record
            elif event_type == RECOVERY_FINISHED:
                pending = None
        return pending
