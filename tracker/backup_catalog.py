"""
tracker/backup_catalog.py -- Discovery, selection and retention of backups

Backups are plain files in one directory; the catalog never keeps an index
of its own.  Everything it knows (format, creation time, label) is parsed
from the file name:

    Tracker_Backup_[<Label>_]<YYYYmmdd_HHMMSS_ffffff>.sqlite   binary
    Tracker_Backup_[<Label>_]<YYYYmmdd_HHMMSS_ffffff>.json     structured

Binary backups may have ``-wal`` / ``-shm`` side files next to them; those
belong to their main file and are never listed on their own.

Safety snapshots (``Emergency`` and ``PreRestore`` labels) capture state
that is already suspect, so ``latest()`` skips them.  Retention counts
them against the same bound as regular backups but never deletes what
``latest()`` would return.

Usage:
    from tracker.backup_catalog import BackupCatalog

    catalog = BackupCatalog("/path/to/backups")
    for record in catalog.list_backups():
        print(record.filename, record.format, record.size_bytes)
    newest_binary = catalog.latest(BackupFormat.BINARY)
    catalog.retain(7)
"""

import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

from tracker.models.records import BackupFormat, BackupRecord
from tracker.store import SIDE_FILE_SUFFIXES

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "Tracker_Backup"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

FORMAT_EXTENSIONS = {
    BackupFormat.BINARY: "sqlite",
    BackupFormat.STRUCTURED: "json",
}
_EXTENSION_FORMATS = {ext: fmt for fmt, ext in FORMAT_EXTENSIONS.items()}

LABEL_EMERGENCY = "Emergency"
LABEL_PRE_RESTORE = "PreRestore"
LABEL_BACKGROUND = "Background"
LABEL_DAILY = "Daily"
LABEL_MANUAL = "Manual"
LABEL_UPGRADE = "Upgrade"

SAFETY_LABELS = frozenset({LABEL_EMERGENCY, LABEL_PRE_RESTORE})

_NAME_RE = re.compile(
    rf"^{BACKUP_PREFIX}_"
    r"(?:(?P<label>[A-Za-z]+)_)?"
    r"(?P<stamp>\d{8}_\d{6}_\d{6})"
    r"\.(?P<ext>sqlite|json)$"
)


def backup_filename(fmt: BackupFormat, created_at: datetime, label: str | None = None) -> str:
    """Build the deterministic file name for a backup."""
    stamp = created_at.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
    middle = f"{label}_{stamp}" if label else stamp
    return f"{BACKUP_PREFIX}_{middle}.{FORMAT_EXTENSIONS[fmt]}"


def parse_backup_filename(name: str):
    """Return ``(format, created_at, label)`` or ``None`` for foreign files."""
    match = _NAME_RE.match(name)
    if match is None:
        return None
    created_at = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT).replace(
        tzinfo=timezone.utc
    )
    return _EXTENSION_FORMATS[match.group("ext")], created_at, match.group("label")


def side_files_for(path) -> list[Path]:
    """Return the side files that exist next to a binary backup."""
    return [
        Path(str(path) + suffix)
        for suffix in SIDE_FILE_SUFFIXES
        if Path(str(path) + suffix).exists()
    ]


class BackupCatalog:
    """Read-mostly view over the backup directory.

    Parameters
    ----------
    backup_dir : str or pathlib.Path
        Directory scanned for backups.  It is not created here; a missing
        directory simply has no backups.
    """

    def __init__(self, backup_dir):
        self.backup_dir = Path(backup_dir).resolve()

    def list_backups(self) -> list[BackupRecord]:
        """Return all backups sorted by creation time (newest first)."""
        records: list[BackupRecord] = []
        if not self.backup_dir.is_dir():
            return records

        for entry in os.scandir(str(self.backup_dir)):
            if not entry.is_file():
                continue
            parsed = parse_backup_filename(entry.name)
            if parsed is None:
                continue
            fmt, created_at, label = parsed
            try:
                size = entry.stat().st_size
            except OSError:
                logger.warning("Could not stat backup %s", entry.path, exc_info=True)
                continue
            records.append(BackupRecord(
                location=Path(entry.path),
                created_at=created_at,
                size_bytes=size,
                format=fmt,
                label=label,
            ))

        records.sort(key=lambda r: (r.created_at, r.filename), reverse=True)
        return records

    def latest(self, fmt: BackupFormat, *, include_safety: bool = False) -> BackupRecord | None:
        """Return the newest backup of *fmt*, skipping safety snapshots by default."""
        for record in self.list_backups():
            if record.format != fmt:
                continue
            if not include_safety and record.label in SAFETY_LABELS:
                continue
            return record
        return None

    def has_regular_backups(self) -> bool:
        return any(r.label not in SAFETY_LABELS for r in self.list_backups())

    def retain(self, max_count: int = 7, *, keep=()) -> list[BackupRecord]:
        """Delete the oldest backups so that at most *max_count* remain.

        One bound covers every backup, safety snapshots included, and
        deletion goes strictly oldest-first with two exceptions: the
        newest regular backup of each format (what ``latest()`` returns)
        and any path in *keep* are never deleted.  A file that cannot be
        deleted is logged and skipped.

        Returns
        -------
        list[BackupRecord]
            The records that were removed.
        """
        records = self.list_backups()
        listed = {r.location for r in records}
        kept = {Path(p).resolve() for p in keep} & listed
        for fmt in FORMAT_EXTENSIONS:
            newest = self.latest(fmt)
            if newest is not None:
                kept.add(newest.location)
        for record in records:
            if len(kept) >= max_count:
                break
            kept.add(record.location)

        removed: list[BackupRecord] = []
        for record in records:
            if record.location not in kept and self._delete(record):
                removed.append(record)
        if removed:
            logger.info("Retention removed %d old backup(s)", len(removed))
        return removed

    @staticmethod
    def _delete(record: BackupRecord) -> bool:
        try:
            os.remove(str(record.location))
        except OSError:
            logger.warning("Could not delete old backup %s", record.location, exc_info=True)
            return False
        for side in side_files_for(record.location):
            try:
                os.remove(str(side))
            except OSError:
                logger.warning("Could not delete backup side file %s", side, exc_info=True)
        return True
