"""
Hundred Days Tracker -- local data-integrity, backup and recovery core.

Package layout:
    models/       Pydantic v2 records and the structured backup document
    schemas/      JSON Schema for structured backups
    data/         Static curriculum content
    store         SQLite progress store (days, problems, topics, settings)
    repository    Record access with manual referential integrity
    validator     Invariant checks, auto-fix, severity classification
    backup_*      Backup writer and catalog
    restore_engine, recovery, integrity_monitor
                  Restore, recovery state machine, lifecycle triggers
"""
