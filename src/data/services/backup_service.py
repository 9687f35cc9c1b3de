"""Local safety backups of the database file: create, prune, list, restore, import, reset."""

from __future__ import annotations

import logging
import os
import re
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from backend.connection_manager import (
    checkpoint_database,
    close_connections,
    has_pending_wal,
    remove_side_files,
)
from config.settings import Settings
from config.sync import BackupTag, SyncSettings
from data.services.sync_errors import InvalidBackupError, NoLocalDataError, ReplaceFailedError
from data.services.sync_types import BackupInfo, utc_now

BACKUP_FILENAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.duckdb$")
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%f"
_NAME_PARTS = re.compile(
    r"^(?P<tag>[a-z][a-z-]*?)-(?P<stamp>\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6})\.duckdb$"
)

# DuckDB files carry their magic bytes after an 8-byte checksum
DUCKDB_MAGIC = b"DUCK"
DUCKDB_MAGIC_OFFSET = 8


def backup_filename(tag: BackupTag | str, created_at: datetime) -> str:
    """Name a backup so that names of one tag sort chronologically."""
    stamp = created_at.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)
    return f"{BackupTag(tag).value}-{stamp}{SyncSettings.BACKUP_EXTENSION}"


def validate_backup_filename(filename: str) -> str:
    """Reject anything that is not a plain backup file name."""
    if not filename or not BACKUP_FILENAME_PATTERN.match(filename):
        raise InvalidBackupError(f"Invalid backup filename: {filename!r}")
    return filename


def is_duckdb_file(path: Path) -> bool:
    """Check the DuckDB magic header."""
    with open(path, "rb") as f:
        header = f.read(DUCKDB_MAGIC_OFFSET + len(DUCKDB_MAGIC))
    return header[DUCKDB_MAGIC_OFFSET:] == DUCKDB_MAGIC


class BackupService:
    """
    Manages point-in-time copies of the live database under ``backups/``.

    Every destructive operation on the live file (push, pull, restore,
    import, reset) takes a tagged copy first. ``pre-push`` and ``pre-pull``
    copies are pruned automatically; other tags are kept until deleted.
    """

    def __init__(self, settings: Any = Settings, logger_obj: Optional[logging.Logger] = None):
        self.settings = settings
        self.db_path: Path = settings.DEFAULT_DB_PATH
        self.backups_dir: Path = settings.BACKUPS_DIR
        self.logger = logger_obj or logging.getLogger(__name__)

    def create_backup(self, tag: BackupTag | str) -> Path:
        """
        Copy the live database into the backups directory.

        The write-ahead log is checkpointed first so the copy is complete.
        Applies the tag's retention policy afterwards.

        Raises:
            NoLocalDataError: if there is no live database to copy
        """
        tag = BackupTag(tag)
        if not self.db_path.exists():
            raise NoLocalDataError()

        if has_pending_wal(self.db_path) and not checkpoint_database(self.db_path, self.logger):
            self.logger.warning(f"Backing up {self.db_path.name} with an unflushed write-ahead log")

        self.backups_dir.mkdir(parents=True, exist_ok=True)
        created_at = utc_now()
        backup_path = self.backups_dir / backup_filename(tag, created_at)
        while backup_path.exists():
            created_at += timedelta(microseconds=1)
            backup_path = self.backups_dir / backup_filename(tag, created_at)

        shutil.copy2(self.db_path, backup_path)
        self.logger.info(f"Created {tag.value} backup: {backup_path.name}")

        keep = SyncSettings.retention_for(tag)
        if keep is not None:
            self.prune(tag, keep)
        return backup_path

    def prune(self, tag: BackupTag | str, keep: int) -> list[Path]:
        """Delete all but the ``keep`` newest backups of ``tag``. Returns deleted paths."""
        tag = BackupTag(tag)
        matching = sorted(
            (info.path for info in self.list_backups() if info.tag == tag.value),
            key=lambda p: p.name,
            reverse=True,
        )
        deleted = []
        for stale in matching[keep:]:
            try:
                stale.unlink()
                deleted.append(stale)
            except FileNotFoundError:
                continue
        if deleted:
            self.logger.info(f"Pruned {len(deleted)} old {tag.value} backup(s)")
        return deleted

    def list_backups(self) -> list[BackupInfo]:
        """All backups, newest first."""
        if not self.backups_dir.exists():
            return []

        backups = []
        for path in self.backups_dir.iterdir():
            if not path.is_file() or not BACKUP_FILENAME_PATTERN.match(path.name):
                continue
            stat = path.stat()
            tag, created_at = self._parse_name(path.name)
            if created_at is None:
                created_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            backups.append(
                BackupInfo(filename=path.name, tag=tag, size=stat.st_size, created_at=created_at, path=path)
            )

        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups

    def get_backup_path(self, filename: str) -> Path:
        """Resolve a validated backup name to an existing file."""
        path = self.backups_dir / validate_backup_filename(filename)
        if not path.is_file():
            raise InvalidBackupError(f"Backup not found: {filename}")
        return path

    def delete_backup(self, filename: str) -> None:
        path = self.get_backup_path(filename)
        path.unlink()
        self.logger.info(f"Deleted backup {filename}")

    def restore_backup(self, filename: str) -> Optional[Path]:
        """
        Replace the live database with a stored backup.

        Returns the ``pre-restore`` backup of the previous live file, or None
        when there was no live file.
        """
        source = self.get_backup_path(filename)
        return self._install(source, f"backup {filename}")

    def import_backup(self, source_path: Path) -> Optional[Path]:
        """
        Replace the live database with an external DuckDB file.

        Raises:
            InvalidBackupError: if the file is missing, too large or not a DuckDB database
        """
        source_path = Path(source_path)
        if not source_path.is_file():
            raise InvalidBackupError(f"Import file not found: {source_path}")

        size = source_path.stat().st_size
        if size > SyncSettings.MAX_IMPORT_SIZE_BYTES:
            limit_mb = SyncSettings.MAX_IMPORT_SIZE_BYTES // (1024 * 1024)
            raise InvalidBackupError(f"File too large. Maximum size is {limit_mb}MB.")

        if not is_duckdb_file(source_path):
            raise InvalidBackupError("Invalid database file. Not a valid DuckDB database.")

        return self._install(source_path, f"imported file {source_path.name}")

    def reset_database(self) -> Optional[Path]:
        """Delete the live database (and side files) after a ``pre-reset`` copy."""
        backup_path = self.create_backup(BackupTag.PRE_RESET) if self.db_path.exists() else None
        close_connections(self.db_path, self.logger)
        if self.db_path.exists():
            self.db_path.unlink()
        remove_side_files(self.db_path, self.logger)
        self.logger.info("Local database reset")
        return backup_path

    def _install(self, source: Path, description: str) -> Optional[Path]:
        """Copy ``source`` over the live file, keeping a ``pre-restore`` copy of it."""
        backup_path = self.create_backup(BackupTag.PRE_RESTORE) if self.db_path.exists() else None

        staging = self.db_path.with_name(self.db_path.name + ".restore-tmp")
        try:
            shutil.copy2(source, staging)
            close_connections(self.db_path, self.logger)
            remove_side_files(self.db_path, self.logger)
            os.replace(staging, self.db_path)
        except OSError as e:
            staging.unlink(missing_ok=True)
            self.logger.error(f"Failed to restore local database from {description}: {e}")
            raise ReplaceFailedError(
                f"Could not restore from {description}: {e}", backup_path
            ) from e

        self.logger.info(f"Restored local database from {description}")
        return backup_path

    @staticmethod
    def _parse_name(filename: str) -> tuple[str, Optional[datetime]]:
        match = _NAME_PARTS.match(filename)
        if not match:
            return "unknown", None
        created_at = datetime.strptime(match.group("stamp"), _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        return match.group("tag"), created_at
