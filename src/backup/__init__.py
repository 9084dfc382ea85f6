"""Backup creation, import and restore."""

from src.backup.service import (
    BackupDocument,
    BackupHistoryEntry,
    BackupMetadata,
    BackupService,
    RestoreResult,
    backup_filename,
    parse_backup,
)

__all__ = [
    "BackupDocument",
    "BackupHistoryEntry",
    "BackupMetadata",
    "BackupService",
    "RestoreResult",
    "backup_filename",
    "parse_backup",
]
