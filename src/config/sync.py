"""Cloud sync configuration: remote layout, retention and network tunables."""

from datetime import timedelta
from enum import Enum


class BackupTag(str, Enum):
    """Operation tags used to name local safety backups."""

    PRE_PUSH = "pre-push"
    PRE_PULL = "pre-pull"
    PRE_RESTORE = "pre-restore"
    PRE_RESET = "pre-reset"
    PRE_CLEAR = "pre-clear"
    MANUAL = "manual"


class SyncSettings:
    """Sync engine configuration and settings."""

    # Remote layout
    REMOTE_BACKUP_FILENAME = "puffin-backup.duckdb"
    REMOTE_CONTENT_TYPE = "application/x-duckdb"
    FINGERPRINT_METADATA_KEY = "puffin_db_fingerprint"

    # Tolerance applied when comparing remote mtime with the last sync time
    CLOCK_SKEW_BUFFER = timedelta(milliseconds=60_000)

    # Local safety backups
    BACKUP_EXTENSION = ".duckdb"
    BACKUP_RETENTION = {
        BackupTag.PRE_PUSH: 5,
        BackupTag.PRE_PULL: 5,
    }
    MAX_IMPORT_SIZE_BYTES = 100 * 1024 * 1024

    # Database side files removed together with the live file
    DB_SIDE_FILE_SUFFIXES = (".wal",)

    # Network settings
    REQUEST_TIMEOUT_SECONDS = 120
    RETRY_INITIAL_DELAY = 1.0
    RETRY_MAX_DELAY = 10.0
    RETRY_MULTIPLIER = 2.0

    # Hashing
    HASH_CHUNK_SIZE = 1024 * 1024

    @classmethod
    def retention_for(cls, tag: BackupTag) -> int | None:
        """Number of backups kept for a tag, or None when unmanaged."""
        return cls.BACKUP_RETENTION.get(BackupTag(tag))
