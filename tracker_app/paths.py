"""
tracker_app/paths.py -- Path resolution for the tracker's data files.

Uses platformdirs so that the progress store, backups and logs live in the
platform-appropriate per-user data directory.
"""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir, user_log_dir

from tracker.config import TrackerConfig

_APP_NAME = "HundredDaysTracker"
_APP_AUTHOR = "HundredDaysTracker"


def get_user_data_dir() -> str:
    """Return the platform-appropriate user data directory."""
    path = user_data_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path


def get_log_dir() -> str:
    """Return the platform-appropriate log directory."""
    path = user_log_dir(_APP_NAME, _APP_AUTHOR)
    os.makedirs(path, exist_ok=True)
    return path


def default_config(data_dir: str | None = None, **overrides) -> TrackerConfig:
    """Build a ``TrackerConfig`` rooted at *data_dir* (or the user data dir)."""
    root = Path(data_dir) if data_dir else Path(get_user_data_dir())
    return TrackerConfig(data_dir=root, **overrides)
