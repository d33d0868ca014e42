"""
Shared pytest fixtures for the Hundred Days Tracker test suite.

Provides:
    - config: a TrackerConfig rooted in a temporary data directory
    - engine: a TrackerEngine over an empty (not yet created) store
    - seeded_engine: the same engine with the 100-day curriculum loaded
    - store / repository: shortcuts into the seeded engine
    - start_date: the fixed start date the seeded curriculum uses
    - corrupt_store: a callable that overwrites the store with garbage bytes
    - damage_pages: a callable that damages every page after the first
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Ensure tracker/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tracker.config import TrackerConfig  # noqa: E402
from tracker.engine import TrackerEngine  # noqa: E402

START_DATE = date(2026, 1, 5)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def start_date():
    return START_DATE


@pytest.fixture
def config(tmp_path):
    """Return a TrackerConfig whose every path lives under tmp_path."""
    return TrackerConfig(data_dir=tmp_path / "data")


@pytest.fixture
def engine(config):
    """Return a TrackerEngine with no data yet; closed after the test."""
    eng = TrackerEngine(config)
    yield eng
    eng.close()


@pytest.fixture
def seeded_engine(engine):
    """Return the engine with the full curriculum loaded."""
    engine.initializer.initialize_if_needed(start_date=START_DATE)
    return engine


@pytest.fixture
def store(seeded_engine):
    return seeded_engine.store


@pytest.fixture
def repository(seeded_engine):
    return seeded_engine.repository


@pytest.fixture
def corrupt_store():
    """Return a function that replaces a store's files with garbage."""

    def _corrupt(store):
        store.delete_files()
        with open(str(store.db_path), "wb") as fh:
            fh.write(b"definitely not a database\n" * 200)

    return _corrupt


@pytest.fixture
def damage_pages():
    """Return a function that overwrites every page after the first.

    The header and schema page stay intact, so the store still opens but
    its tables are unreadable.
    """

    def _damage(store, page_size=4096):
        store.checkpoint()
        store.close()
        for side in store.side_file_paths():
            if side.exists():
                side.unlink()
        data = bytearray(store.db_path.read_bytes())
        assert len(data) > page_size
        data[page_size:] = b"\xa5" * (len(data) - page_size)
        store.db_path.write_bytes(bytes(data))

    return _damage
