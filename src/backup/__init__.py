"""
Backup and restore of the whole application data store.
"""

from .manager import (
    BackupError,
    BackupManager,
    BackupResult,
    FileBackupSink,
    InvalidPasswordOrCorrupt,
    OwnershipMismatch,
    PasswordRequired,
    RestoreFailed,
)

__all__ = [
    "BackupError",
    "BackupManager",
    "BackupResult",
    "FileBackupSink",
    "InvalidPasswordOrCorrupt",
    "OwnershipMismatch",
    "PasswordRequired",
    "RestoreFailed",
]
