"""
tracker/utils.py -- Small helpers shared by the tracker core.

Backup documents, preferences and the recovery journal are all plain JSON
files on disk.  Whole-file writes go through a sibling temp file and
``os.replace()``; a crash mid-write leaves the previous version intact.
"""

import json
import logging
import os
import tempfile
from datetime import date, datetime, time, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON files
# ---------------------------------------------------------------------------

def safe_read_json(path, default=None):
    """Load a JSON file, or return *default* when it is absent or unreadable.

    Parameters
    ----------
    path : str or pathlib.Path
        File to load.
    default
        Returned for a missing file, invalid JSON or bad encoding.
    """
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError, OSError):
        return default


def safe_write_json(path, data, *, indent=2):
    """Replace *path* with *data* serialised as JSON, all or nothing."""
    safe_write_text(path, json.dumps(data, indent=indent, ensure_ascii=False))


def safe_write_text(path, text):
    """Replace *path* with *text*, all or nothing.

    The temp file lives in the target's directory (created on demand) so
    the final rename never crosses filesystems.  On any failure the temp
    file is removed and the exception propagates.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as out:
            out.write(text)
            out.flush()
            os.fsync(out.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def safe_append_jsonl(path, record):
    """Add *record* as one line at the end of a JSON Lines file.

    The line is written with a single call and fsynced, so a crash loses
    at most the record being written.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    encoded = json.dumps(record, ensure_ascii=False)
    with target.open("a", encoding="utf-8") as out:
        out.write(encoded + "\n")
        out.flush()
        os.fsync(out.fileno())


def read_jsonl(path):
    """Return every parseable record of a JSONL file, skipping corrupt lines."""
    records = []
    try:
        with Path(path).open(encoding="utf-8") as src:
            for lineno, line in enumerate(src, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except ValueError:
                    logger.warning("Skipping corrupt line %d in %s", lineno, path)
    except FileNotFoundError:
        pass
    return records


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def now_utc() -> datetime:
    """Current time, timezone-aware, in UTC."""
    return datetime.now(tz=timezone.utc)


def now_iso() -> str:
    return now_utc().isoformat()


def to_iso(value) -> str | None:
    """Encode a date, time or datetime as ISO 8601 (``None`` passes through)."""
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value) -> date | None:
    """Parse an ISO 8601 date, accepting full timestamps as well."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if len(text) > 10:
        return parse_datetime(text).date()
    return date.fromisoformat(text)


def parse_time(value) -> time | None:
    """Parse an ISO 8601 time of day, accepting full timestamps as well."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    if isinstance(value, datetime):
        return value.time().replace(tzinfo=None)
    text = str(value)
    if "T" in text:
        return parse_datetime(text).time().replace(tzinfo=None)
    return time.fromisoformat(text)
