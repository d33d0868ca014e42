"""
tracker_app/main.py -- Service construction for the application shell.

Configures logging (console plus a log file in the platform log
directory), builds the tracker core from a ``TrackerConfig`` and
wraps it in an ``IntegrityService``.  Run as a module it performs the
launch-time integrity check once and prints the resulting status, which
is handy for checking a data directory without the UI.

Usage::

    python -m tracker_app.main [DATA_DIR]
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from tracker.engine import TrackerEngine
from tracker_app.paths import default_config, get_log_dir


LOG_FILENAME = "tracker.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _setup_logging(log_dir: str | None = None) -> Path:
    """Configure logging to the console and to ``tracker.log`` in *log_dir*.

    *log_dir* defaults to the platform log directory.  Returns the log
    file path.
    """
    log_path = Path(log_dir or get_log_dir()) / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[console, logging.FileHandler(log_path, encoding="utf-8")],
        force=True,
    )
    return log_path


def create_engine(data_dir: str | None = None, **overrides) -> TrackerEngine:
    """Build the tracker core rooted at *data_dir* (default: user data dir)."""
    config = default_config(data_dir, **overrides)
    logging.getLogger("tracker_app").info("Data directory: %s", config.data_dir)
    return TrackerEngine(config)


def create_service(data_dir: str | None = None, parent=None, **overrides):
    """Build the core and the Qt-facing ``IntegrityService`` around it.

    A ``QCoreApplication`` (or ``QApplication``) must already exist.
    """
    from tracker_app.services.integrity_service import IntegrityService

    return IntegrityService(create_engine(data_dir, **overrides), parent)


def main(argv: list[str] | None = None) -> int:
    """Run the launch-time integrity check once and report the status."""
    _setup_logging()
    logger = logging.getLogger("tracker_app")
    argv = sys.argv[1:] if argv is None else argv

    from PySide6.QtCore import QCoreApplication

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    service = create_service(argv[0] if argv else None, parent=app)
    try:
        status = service.start().result()
        logger.info("%s", status.describe())
        for record in service.list_backups():
            logger.info("Backup: %s (%d bytes)", record.filename, record.size_bytes)
    finally:
        service.shutdown()
    return 0 if status.is_healthy else 1


if __name__ == "__main__":
    sys.exit(main())
