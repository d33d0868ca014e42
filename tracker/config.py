"""
tracker/config.py -- Runtime configuration for the tracker core.

All filesystem locations used by the core are derived from a single
``data_dir`` so that tests can point the whole subsystem at ``tmp_path``.

Usage:
    from tracker.config import TrackerConfig

    config = TrackerConfig(data_dir="/home/me/.local/share/HundredDays")
    config.store_path      # .../tracker.sqlite
    config.backup_dir      # .../backups
    config.export_dir      # .../exports
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class TrackerConfig(BaseModel):
    """Locations and tunables for one tracker installation."""

    model_config = ConfigDict(frozen=True)

    data_dir: Path
    store_filename: str = "tracker.sqlite"
    backup_dirname: str = "backups"
    export_dirname: str = "exports"
    max_backup_count: int = Field(default=7, ge=1)
    app_version: str = "1.0"
    build_number: str = "1"
    restore_timeout_seconds: float = Field(default=120.0, gt=0)
    periodic_check_minutes: int = Field(default=30, ge=1)

    @property
    def store_path(self) -> Path:
        return self.data_dir / self.store_filename

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / self.backup_dirname

    @property
    def export_dir(self) -> Path:
        return self.data_dir / self.export_dirname

    @property
    def journal_path(self) -> Path:
        return self.data_dir / "logs" / "recovery.jsonl"

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / "preferences.json"
