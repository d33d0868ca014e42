"""
tracker/store.py -- SQLite progress store for the Hundred Days Tracker

Owns the single SQLite database file holding days, problems, topics and
settings.  The database runs in WAL mode, so at any time the store may
consist of up to three files: the main file plus ``-wal`` and ``-shm``
side files.  Backups and restores treat all three as one unit.

Referential integrity is NOT delegated to SQLite (``foreign_keys=OFF``,
no UNIQUE constraints): the repository enforces ownership and uniqueness
and the validator reports violations, which lets a damaged database still
be opened, inspected and repaired.

All mutating work goes through ``transaction()``; reads that must see a
consistent snapshot go through ``read_transaction()``.  Both are
serialized on one re-entrant lock, so two mutating operations never
interleave.

Usage:
    from tracker.store import ProgressStore

    store = ProgressStore("/path/to/tracker.sqlite")
    with store.transaction() as conn:
        conn.execute("UPDATE days SET dsa_progress = 0 WHERE day_number = 1")
    store.checkpoint()
    store.close()
"""

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from tracker.errors import PersistenceError, PersistenceKind

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SIDE_FILE_SUFFIXES = ("-wal", "-shm")

SQLITE_HEADER = b"SQLite format 3\x00"


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS days (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    day_number INTEGER NOT NULL,
    date TEXT,
    dsa_progress REAL NOT NULL DEFAULT 0,
    system_design_progress REAL NOT NULL DEFAULT 0,
    is_completed INTEGER NOT NULL DEFAULT 0,
    daily_reflection TEXT,
    created_at TEXT,
    updated_at TEXT
);

-- day_id is nullable: a row whose owner went missing is an orphan that
-- the validator reports and auto-fix deletes.
CREATE TABLE IF NOT EXISTS problems (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    day_id INTEGER,
    name TEXT NOT NULL DEFAULT '',
    external_ref TEXT,
    difficulty TEXT NOT NULL DEFAULT 'Easy',
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    time_spent_minutes INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    is_bonus INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS topics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    day_id INTEGER,
    name TEXT NOT NULL DEFAULT '',
    description TEXT,
    is_completed INTEGER NOT NULL DEFAULT 0,
    video_watched INTEGER NOT NULL DEFAULT 0,
    task_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    notes TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    current_streak INTEGER NOT NULL DEFAULT 0,
    longest_streak INTEGER NOT NULL DEFAULT 0,
    morning_notification_time TEXT,
    evening_notification_time TEXT,
    is_notifications_enabled INTEGER NOT NULL DEFAULT 1,
    start_date TEXT,
    last_backup_date TEXT,
    app_version TEXT
);

CREATE INDEX IF NOT EXISTS idx_days_number ON days(day_number);
CREATE INDEX IF NOT EXISTS idx_problems_day ON problems(day_id);
CREATE INDEX IF NOT EXISTS idx_topics_day ON topics(day_id);
"""


def looks_like_sqlite(path) -> bool:
    """Return True if *path* exists and starts with the SQLite file header."""
    try:
        with open(path, "rb") as fh:
            return fh.read(len(SQLITE_HEADER)) == SQLITE_HEADER
    except OSError:
        return False


# ---------------------------------------------------------------------------
# ProgressStore
# ---------------------------------------------------------------------------

class ProgressStore:
    """Connection owner and transaction boundary for the progress database.

    Parameters
    ----------
    db_path : str or pathlib.Path
        Location of the main database file.  The parent directory is
        created on first open.
    """

    def __init__(self, db_path):
        self.db_path = Path(db_path).resolve()
        self._conn = None
        self._lock = threading.RLock()
        self._depth = 0

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def lock(self):
        """The re-entrant lock serializing every store operation."""
        return self._lock

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def exists(self) -> bool:
        """Return True if the main database file is present on disk."""
        return self.db_path.exists()

    def open(self) -> None:
        """Open the database, creating the schema if needed.

        Raises
        ------
        PersistenceError
            ``OPEN_FAILED`` when the file is not a usable database,
            ``MIGRATION_FAILED`` when it was written by a newer schema.
        """
        with self._lock:
            if self._conn is not None:
                return
            os.makedirs(str(self.db_path.parent), exist_ok=True)
            conn = None
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=OFF")
                version = conn.execute("PRAGMA user_version").fetchone()[0]
                if version > SCHEMA_VERSION:
                    conn.close()
                    raise PersistenceError(
                        PersistenceKind.MIGRATION_FAILED,
                        f"Your progress file was created by a newer version of the "
                        f"app (schema {version}) and cannot be opened by this one.",
                    )
                conn.executescript(_SCHEMA_SQL)
                if version < SCHEMA_VERSION:
                    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            except sqlite3.Error as exc:
                if conn is not None:
                    try:
                        conn.close()
                    except sqlite3.Error:
                        pass
                raise PersistenceError(
                    PersistenceKind.OPEN_FAILED,
                    f"Could not open your progress file. It may be damaged. "
                    f"Technical detail: {exc}",
                ) from exc
            self._conn = conn
            logger.debug("Opened progress store at %s", self.db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the open connection, opening the store lazily."""
        if self._conn is None:
            self.open()
        return self._conn

    def close(self) -> None:
        """Close the connection.  Safe to call when already closed."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            except sqlite3.Error:
                logger.warning("Error while closing progress store", exc_info=True)
            self._conn = None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self):
        """Run the enclosed block in one write transaction.

        Nested use joins the outer transaction.  Any exception rolls the
        whole transaction back.

        Raises
        ------
        PersistenceError
            ``SAVE_FAILED`` if SQLite rejects the statements or the commit.
        """
        with self._lock:
            conn = self.connection
            if self._depth > 0:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise PersistenceError(
                    PersistenceKind.SAVE_FAILED,
                    f"Could not start saving your progress. Technical detail: {exc}",
                ) from exc

            self._depth = 1
            try:
                yield conn
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise PersistenceError(
                    PersistenceKind.SAVE_FAILED,
                    f"Your changes could not be saved. Technical detail: {exc}",
                ) from exc
            except BaseException:
                self._rollback(conn)
                raise
            else:
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    self._rollback(conn)
                    raise PersistenceError(
                        PersistenceKind.SAVE_FAILED,
                        f"Your changes could not be saved. Technical detail: {exc}",
                    ) from exc
            finally:
                self._depth = 0

    @contextmanager
    def read_transaction(self):
        """Run the enclosed block against one consistent snapshot."""
        with self._lock:
            conn = self.connection
            if self._depth > 0:
                yield conn
                return
            conn.execute("BEGIN")
            self._depth = 1
            try:
                yield conn
            finally:
                self._depth = 0
                try:
                    conn.execute("COMMIT")
                except sqlite3.Error:
                    logger.warning("Could not end read transaction", exc_info=True)

    @staticmethod
    def _rollback(conn) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.warning("Rollback failed", exc_info=True)

    # ------------------------------------------------------------------
    # File-level operations
    # ------------------------------------------------------------------

    def checkpoint(self) -> None:
        """Flush the write-ahead log into the main file."""
        with self._lock:
            try:
                self.connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as exc:
                raise PersistenceError(
                    PersistenceKind.SAVE_FAILED,
                    f"Could not flush pending changes to disk. Technical detail: {exc}",
                ) from exc

    def quick_check(self) -> bool:
        """Return True if SQLite's own structural check passes."""
        with self._lock:
            try:
                row = self.connection.execute("PRAGMA quick_check").fetchone()
            except (sqlite3.Error, PersistenceError):
                return False
            return row is not None and row[0] == "ok"

    def side_file_paths(self) -> list[Path]:
        """Return the WAL/SHM side-file paths (whether or not they exist)."""
        return [Path(str(self.db_path) + suffix) for suffix in SIDE_FILE_SUFFIXES]

    def file_paths(self) -> list[Path]:
        """Return every store file currently present on disk, main file first."""
        return [p for p in [self.db_path, *self.side_file_paths()] if p.exists()]

    def delete_files(self) -> None:
        """Close the store and delete its main and side files."""
        with self._lock:
            self.close()
            for path in [self.db_path, *self.side_file_paths()]:
                try:
                    os.remove(str(path))
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    raise PersistenceError(
                        PersistenceKind.SAVE_FAILED,
                        f"Could not remove the old progress file {path.name}. "
                        f"Technical detail: {exc}",
                    ) from exc

    def reset_files(self) -> None:
        """Replace the store with a fresh, empty database."""
        with self._lock:
            self.delete_files()
            self.open()
            logger.info("Progress store recreated at %s", self.db_path)

    def ensure_usable(self) -> bool:
        """Open the store, recreating it if it fails SQLite's structural check.

        Only for callers about to replace every row anyway.

        Returns
        -------
        bool
            True if the old files were discarded.
        """
        with self._lock:
            if self.quick_check():
                return False
            logger.warning("Progress store at %s is damaged; recreating it", self.db_path)
            self.reset_files()
            return True
