"""
Tests for tracker_app/main.py and tracker_app/paths.py -- logging setup
and platform directories.
"""

import logging

import pytest

from tracker_app import main as app_main
from tracker_app import paths


@pytest.fixture
def restore_logging():
    """Put the root logger's handlers and level back after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogging:
    def test_log_file_written(self, tmp_path, restore_logging):
        log_path = app_main._setup_logging(str(tmp_path / "logs"))
        assert log_path == tmp_path / "logs" / app_main.LOG_FILENAME

        logging.getLogger("tracker.recovery").warning("Recovery failed at restoring")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "[WARNING] tracker.recovery: Recovery failed at restoring" in log_path.read_text(
            encoding="utf-8"
        )

    def test_defaults_to_platform_log_dir(self, tmp_path, monkeypatch, restore_logging):
        monkeypatch.setattr(paths, "user_log_dir", lambda *args: str(tmp_path / "platform"))
        monkeypatch.setattr(app_main, "get_log_dir", paths.get_log_dir)
        log_path = app_main._setup_logging()
        assert log_path.parent == tmp_path / "platform"
        assert log_path.exists()


class TestPaths:
    def test_default_config_uses_given_dir(self, tmp_path):
        config = paths.default_config(str(tmp_path), app_version="2.0")
        assert config.data_dir == tmp_path
        assert config.app_version == "2.0"

    def test_user_data_dir_created(self, tmp_path, monkeypatch):
        target = tmp_path / "data"
        monkeypatch.setattr(paths, "user_data_dir", lambda *args: str(target))
        assert paths.get_user_data_dir() == str(target)
        assert target.is_dir()
