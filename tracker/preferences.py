"""
tracker/preferences.py -- Process-wide preferences persisted as JSON

Holds the small amount of state that lives outside the progress store:
when the last backup ran, which app version/build last opened the data,
the last health status and the outcome of the last recovery.  The file is
rewritten atomically on every change so a crash never leaves it torn.

Usage:
    from tracker.preferences import Preferences

    prefs = Preferences("/path/to/preferences.json")
    prefs.last_backup_date = datetime.now(timezone.utc)
    prefs.get("app_version")
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from tracker.utils import parse_datetime, safe_read_json, safe_write_json

logger = logging.getLogger(__name__)


class Preferences:
    """Thread-safe key/value store backed by one JSON file.

    Parameters
    ----------
    path : str or pathlib.Path
        Location of the JSON file.  Missing or corrupt files start empty.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.RLock()
        data = safe_read_json(self.path, default={})
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed preferences file %s", self.path)
            data = {}
        self._data: dict[str, Any] = data

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        """Set several keys and write the file once."""
        with self._lock:
            self._data.update(values)
            safe_write_json(self.path, self._data)

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def last_backup_date(self) -> datetime | None:
        try:
            return parse_datetime(self.get("last_backup_date"))
        except ValueError:
            logger.warning("Ignoring malformed last_backup_date in preferences")
            return None

    @last_backup_date.setter
    def last_backup_date(self, value: datetime | None) -> None:
        self.set("last_backup_date", value.isoformat() if value else None)
