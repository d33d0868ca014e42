"""
tracker/restore_engine.py -- Loads a backup back into the live store

Sequence for ``restore(record)``:

    1. Snapshot the current store (``PreRestore`` label).  Best-effort: a
       store that is already broken must still be restorable.
    2. Binary: check the backup really is a SQLite file, close the store,
       delete the current files, copy the backup (and any side files) into
       place, reopen.
       Structured: read, schema-check and parse the document, then in one
       write transaction delete every row and recreate every row from the
       document, attaching problems and topics to the day they are nested
       under.
    3. Re-validate.  A restore that leaves zero days, or a store that
       cannot be validated at all, is a failed restore even though the
       copy itself worked.

Each failure is a ``RestoreError`` with a distinct kind so the recovery
orchestrator can fall through to the next strategy.

Usage:
    from tracker.restore_engine import RestoreEngine

    engine = RestoreEngine(store, repository, validator, backup_manager)
    severity = engine.restore(catalog.latest(BackupFormat.BINARY))
"""

import json
import logging
import shutil
from pathlib import Path

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match
from pydantic import ValidationError as PydanticValidationError

from tracker.backup_catalog import LABEL_PRE_RESTORE, side_files_for
from tracker.errors import PersistenceError, RestoreError, RestoreKind
from tracker.models.document import BackupDocument, normalize_legacy_keys
from tracker.models.records import BackupFormat, BackupRecord
from tracker.store import looks_like_sqlite
from tracker.validator import Severity

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "backup_document.json"


def _humanize_error(error) -> str:
    """Turn a jsonschema error into a short, readable sentence."""
    location = "/".join(str(p) for p in error.absolute_path) or "document"
    if error.validator == "required":
        return f"{location}: {error.message}"
    if error.validator == "type":
        return f"{location}: expected {error.validator_value}, got {type(error.instance).__name__}"
    return f"{location}: {error.message}"


def _humanize_pydantic(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = "/".join(str(p) for p in first.get("loc", ())) or "document"
    return f"{location}: {first.get('msg', 'invalid value')}"


class RestoreEngine:
    """Restores binary or structured backups into a ``ProgressStore``.

    Parameters
    ----------
    store : ProgressStore
    repository : ProgressRepository
    validator : DataValidator
    backup_manager : BackupManager
        Used for the pre-restore safety snapshot.
    """

    def __init__(self, store, repository, validator, backup_manager):
        self.store = store
        self.repository = repository
        self.validator = validator
        self.backup_manager = backup_manager
        with open(SCHEMA_PATH, "r", encoding="utf-8") as fh:
            self._schema_validator = Draft202012Validator(json.load(fh))

    def restore(self, record: BackupRecord, *, safety_snapshot: bool = True) -> Severity:
        """Replace the live data with the contents of *record*.

        Parameters
        ----------
        record : BackupRecord
        safety_snapshot : bool
            Take a ``PreRestore`` snapshot first (default True).  The
            recovery orchestrator passes False because it has already
            taken its own emergency snapshot.

        Returns
        -------
        Severity
            Post-restore severity (never ``CRITICAL``).

        Raises
        ------
        RestoreError
            ``SOURCE_UNREADABLE``, ``MALFORMED_DOCUMENT``, ``EMPTY_RESULT``
            or ``POST_VALIDATION_FAILED``.
        PersistenceError
            If the restored rows could not be committed.
        """
        if safety_snapshot:
            self.backup_manager.create_emergency_backup(LABEL_PRE_RESTORE, keep=[record.location])

        logger.info("Restoring %s backup %s", record.format.value, record.filename)
        if record.format == BackupFormat.BINARY:
            self._restore_binary(Path(record.location))
        else:
            self._restore_structured(Path(record.location))

        return self._verify()

    # ------------------------------------------------------------------
    # Binary
    # ------------------------------------------------------------------

    def _restore_binary(self, source: Path) -> None:
        if not looks_like_sqlite(source):
            raise RestoreError(
                RestoreKind.SOURCE_UNREADABLE,
                f"The backup {source.name} is missing or is not a valid progress file.",
            )

        with self.store.lock:
            self.store.delete_files()
            try:
                shutil.copy2(str(source), str(self.store.db_path))
                for side in side_files_for(source):
                    suffix = side.name[len(source.name):]
                    shutil.copy2(str(side), str(self.store.db_path) + suffix)
            except OSError as exc:
                raise RestoreError(
                    RestoreKind.SOURCE_UNREADABLE,
                    f"Could not copy the backup {source.name} into place. "
                    f"Technical detail: {exc}",
                ) from exc

            try:
                self.store.open()
            except PersistenceError as exc:
                raise RestoreError(
                    RestoreKind.POST_VALIDATION_FAILED,
                    f"The backup {source.name} could not be opened after restoring it. "
                    f"Technical detail: {exc}",
                ) from exc

    # ------------------------------------------------------------------
    # Structured
    # ------------------------------------------------------------------

    def load_document(self, source) -> BackupDocument:
        """Read, schema-check and parse a structured backup file."""
        source = Path(source)
        try:
            with open(source, "r", encoding="utf-8") as fh:
                text = fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise RestoreError(
                RestoreKind.SOURCE_UNREADABLE,
                f"Could not read the backup {source.name}. Technical detail: {exc}",
            ) from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RestoreError(
                RestoreKind.MALFORMED_DOCUMENT,
                f"The backup {source.name} is damaged (not valid JSON at line "
                f"{exc.lineno}, column {exc.colno}).",
            ) from exc

        data = normalize_legacy_keys(data)
        error = best_match(self._schema_validator.iter_errors(data))
        if error is not None:
            raise RestoreError(
                RestoreKind.MALFORMED_DOCUMENT,
                f"The backup {source.name} does not have the expected layout: "
                f"{_humanize_error(error)}",
            )

        try:
            return BackupDocument.model_validate(data)
        except PydanticValidationError as exc:
            raise RestoreError(
                RestoreKind.MALFORMED_DOCUMENT,
                f"The backup {source.name} contains invalid values: {_humanize_pydantic(exc)}",
            ) from exc

    def _restore_structured(self, source: Path) -> None:
        document = self.load_document(source)

        with self.store.lock:
            self.store.ensure_usable()
            try:
                self._replace_with(document)
            except PersistenceError:
                # a failure on a structurally sound store is the document's fault
                if self.store.quick_check():
                    raise
                logger.warning("Progress store damaged during restore; recreating it", exc_info=True)
                self.store.reset_files()
                self._replace_with(document)

    def _replace_with(self, document) -> None:
        with self.store.transaction():
            self.repository.wipe()
            self.repository.import_document(document)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _verify(self) -> Severity:
        severity, report = self.validator.assess(self.store)
        if severity == Severity.CRITICAL:
            raise RestoreError(
                RestoreKind.POST_VALIDATION_FAILED,
                "The restored data could not be validated; the backup may be "
                "damaged or from an incompatible version.",
            )
        if report.counts.get("days", 0) == 0:
            raise RestoreError(
                RestoreKind.EMPTY_RESULT,
                "The backup did not contain any days.",
            )
        logger.info("Restore finished with severity %s (%s)", severity.name, report.summary())
        return severity
