"""
tracker/backup_manager.py -- Backup writer for the progress store

Produces point-in-time backups in two interchangeable formats:

    binary      A copy of the SQLite file (plus its -wal/-shm side files,
                copied best-effort) taken right after a WAL checkpoint
                while the store lock is held.
    structured  A JSON document of the full object graph read from one
                read transaction; portable and human-inspectable.

A successful backup records the "last backup" time (in preferences and in
the settings record) and then runs retention, never before, so there is
no window with zero backups.  Emergency snapshots skip the bookkeeping
(they exist only to preserve evidence before a destructive operation) but
still count against retention.

Scheduling policy: at most one ``Daily`` backup per local calendar day,
taken only when the store validates healthy, plus a best-effort
``Background`` backup whenever the app is about to lose the foreground.

Usage:
    from tracker.backup_manager import BackupManager

    bm = BackupManager(store, repository, catalog, preferences, validator)
    records = bm.create_backup(BackupFormat.BOTH, label="Manual")
    bm.create_emergency_backup()
    if bm.should_create_daily_backup():
        bm.create_daily_backup()
"""

import logging
import os
import shutil
import sqlite3
from datetime import date, timedelta

from pydantic import ValidationError as PydanticValidationError

from tracker.backup_catalog import (
    LABEL_BACKGROUND,
    LABEL_DAILY,
    LABEL_EMERGENCY,
    backup_filename,
)
from tracker.errors import BackupError, BackupKind, PersistenceError, TrackerError
from tracker.models.document import BackupDocument
from tracker.models.records import BackupFormat, BackupRecord
from tracker.store import SIDE_FILE_SUFFIXES
from tracker.utils import now_utc, safe_write_json
from tracker.validator import Severity

logger = logging.getLogger(__name__)


class BackupManager:
    """Creates backups of a ``ProgressStore``.

    Parameters
    ----------
    store : ProgressStore
    repository : ProgressRepository
    catalog : BackupCatalog
        Supplies the backup directory and performs retention.
    preferences : Preferences
        Receives the last-backup timestamp.
    validator : DataValidator
        Gates the daily backup on a healthy store.
    max_backup_count : int
        Retention bound applied after each successful backup.
    app_version : str
        Written into structured documents.
    """

    def __init__(
        self,
        store,
        repository,
        catalog,
        preferences,
        validator,
        *,
        max_backup_count: int = 7,
        app_version: str = "1.0",
    ):
        self.store = store
        self.repository = repository
        self.catalog = catalog
        self.preferences = preferences
        self.validator = validator
        self.max_backup_count = max_backup_count
        self.app_version = app_version

    @property
    def backup_dir(self):
        return self.catalog.backup_dir

    # ------------------------------------------------------------------
    # 1. On-demand backups
    # ------------------------------------------------------------------

    def create_backup(self, fmt: BackupFormat = BackupFormat.BOTH, label: str | None = None) -> list[BackupRecord]:
        """Write a backup in one or both formats.

        Parameters
        ----------
        fmt : BackupFormat
            ``BINARY``, ``STRUCTURED`` or ``BOTH``.
        label : str, optional
            Letters only; becomes part of the file name.

        Returns
        -------
        list[BackupRecord]
            One record per format written.

        Raises
        ------
        BackupError
            If any requested format could not be written.  For ``BOTH``
            the format that did succeed is kept (see ``BackupError.records``)
            and its side effects still run; the failure is only reported.
        """
        self._ensure_backup_dir()
        formats = (
            [BackupFormat.BINARY, BackupFormat.STRUCTURED]
            if fmt == BackupFormat.BOTH
            else [BackupFormat(fmt)]
        )
        created_at = self._unique_timestamp(formats, label)

        records: list[BackupRecord] = []
        failures: list[BackupError] = []
        for single in formats:
            try:
                records.append(self._write(single, label, created_at))
            except BackupError as exc:
                logger.warning("%s backup failed: %s", single.value, exc)
                failures.append(exc)

        if records:
            self._after_success(records)

        if failures:
            if records:
                written = ", ".join(r.format.value for r in records)
                raise BackupError(
                    failures[0].kind,
                    f"Only part of the backup was saved ({written}). {failures[0].message}",
                    records,
                )
            raise failures[0]

        logger.info("Backup created: %s", ", ".join(r.filename for r in records))
        return records

    def create_emergency_backup(self, label: str = LABEL_EMERGENCY, *, keep=()) -> BackupRecord | None:
        """Best-effort binary snapshot taken before a destructive operation.

        Never raises.  Does not update the last-backup time.  Retention
        runs afterwards with the paths in *keep* (for example the backup
        about to be restored) protected from deletion.

        Returns
        -------
        BackupRecord or None
            ``None`` when there is nothing to snapshot or the copy failed.
        """
        if not self.store.db_path.exists():
            logger.info("No progress file to snapshot before %s", label)
            return None
        try:
            self._ensure_backup_dir()
            created_at = self._unique_timestamp([BackupFormat.BINARY], label)
            record = self._write(BackupFormat.BINARY, label, created_at)
        except BackupError:
            logger.warning("%s backup failed; continuing without it", label, exc_info=True)
            return None
        logger.info("%s backup saved to %s", label, record.location)
        self.catalog.retain(self.max_backup_count, keep=keep)
        return record

    # ------------------------------------------------------------------
    # 2. Scheduled backups
    # ------------------------------------------------------------------

    def should_create_daily_backup(self, today: date | None = None) -> bool:
        """True if no backup has been made on *today* (local calendar day)."""
        last = self.preferences.last_backup_date
        if last is None:
            return True
        return last.astimezone().date() != (today or date.today())

    def create_daily_backup(self, today: date | None = None) -> list[BackupRecord]:
        """Write today's scheduled backup if it is due and the store is healthy.

        Returns an empty list when nothing was written.
        """
        if not self.should_create_daily_backup(today):
            return []
        severity, _ = self.validator.assess(self.store)
        if severity != Severity.HEALTHY:
            logger.warning("Skipping daily backup: store severity is %s", severity.name)
            return []
        return self.create_backup(BackupFormat.BOTH, LABEL_DAILY)

    def create_background_backup(self) -> BackupRecord | None:
        """Best-effort binary backup before the app leaves the foreground."""
        try:
            records = self.create_backup(BackupFormat.BINARY, LABEL_BACKGROUND)
        except BackupError:
            logger.warning("Background backup failed", exc_info=True)
            return None
        return records[0]

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def _ensure_backup_dir(self) -> None:
        try:
            os.makedirs(str(self.backup_dir), exist_ok=True)
        except OSError as exc:
            raise BackupError(
                BackupKind.DIRECTORY_UNAVAILABLE,
                f"Could not create the backup folder {self.backup_dir}. There may be "
                f"a disk space or permissions issue. Technical detail: {exc}",
            ) from exc

    def _unique_timestamp(self, formats, label):
        """Return a creation time whose file names are not taken yet."""
        created_at = now_utc()
        while any(
            (self.backup_dir / backup_filename(f, created_at, label)).exists() for f in formats
        ):
            created_at += timedelta(microseconds=1)
        return created_at

    def _write(self, fmt, label, created_at) -> BackupRecord:
        path = self.backup_dir / backup_filename(fmt, created_at, label)
        if fmt == BackupFormat.BINARY:
            self._write_binary(path)
        else:
            self._write_structured(path)
        return BackupRecord(
            location=path,
            created_at=created_at,
            size_bytes=os.path.getsize(str(path)),
            format=fmt,
            label=label,
        )

    def _write_binary(self, path) -> None:
        with self.store.lock:
            if self.store.exists():
                try:
                    self.store.checkpoint()
                except PersistenceError:
                    logger.warning("Checkpoint failed; copying store files as they are", exc_info=True)
            if not self.store.exists():
                raise BackupError(
                    BackupKind.SOURCE_MISSING,
                    "There is no progress file to back up yet.",
                )

            tmp_path = path.with_name(path.name + ".tmp")
            try:
                shutil.copy2(str(self.store.db_path), str(tmp_path))
                os.replace(str(tmp_path), str(path))
            except OSError as exc:
                try:
                    os.remove(str(tmp_path))
                except OSError:
                    pass
                raise BackupError(
                    BackupKind.WRITE_FAILED,
                    f"Could not copy your progress file. There may be a disk space "
                    f"or permissions issue. Technical detail: {exc}",
                ) from exc

            for side, suffix in zip(self.store.side_file_paths(), SIDE_FILE_SUFFIXES):
                if not side.exists():
                    continue
                try:
                    shutil.copy2(str(side), str(path) + suffix)
                except OSError:
                    logger.warning("Could not copy side file %s", side, exc_info=True)

    def _write_structured(self, path) -> None:
        try:
            graph = self.repository.load_graph()
        except (TrackerError, sqlite3.Error, PydanticValidationError) as exc:
            raise BackupError(
                BackupKind.SOURCE_MISSING,
                f"Could not read your progress to export it. Technical detail: {exc}",
            ) from exc

        settings = graph["settings"][0] if graph["settings"] else None
        document = BackupDocument.from_records(
            graph["days"],
            graph["problems_by_day"],
            graph["topics_by_day"],
            settings,
            self.app_version,
        )
        try:
            safe_write_json(path, document.to_json_dict())
        except OSError as exc:
            raise BackupError(
                BackupKind.WRITE_FAILED,
                f"Could not write the backup file. There may be a disk space or "
                f"permissions issue. Technical detail: {exc}",
            ) from exc

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _after_success(self, records) -> None:
        when = records[0].created_at
        try:
            self.preferences.last_backup_date = when
        except OSError:
            logger.warning("Could not record last backup time in preferences", exc_info=True)
        try:
            self.repository.set_last_backup_date(when)
        except (TrackerError, sqlite3.Error):
            logger.warning("Could not record last backup time in settings", exc_info=True)
        self.catalog.retain(self.max_backup_count)
