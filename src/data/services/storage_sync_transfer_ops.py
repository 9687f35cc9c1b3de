"""Push/pull operations for storage sync service."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any

from backend.connection_manager import close_connections, remove_side_files
from config.sync import BackupTag
from data.services.fingerprint_service import hash_file
from data.services.sync_errors import (
    NoLocalDataError,
    NotConfiguredError,
    ReplaceFailedError,
    RestoreFailedError,
    SyncError,
)
from data.services.sync_types import PullResult, PushResult, utc_now


def push_database(service: Any, settings: Any) -> PushResult:
    """
    Upload the local database to the configured target.

    Sync markers are written only after the upload succeeded; on any
    remote failure the configuration is left untouched and the error raised.
    """
    config = service.config_store.get()
    if not config.is_configured:
        raise NotConfiguredError()

    db_path: Path = settings.DEFAULT_DB_PATH
    if not db_path.exists():
        raise NoLocalDataError()

    client = service.get_client()

    service.logger.info("Starting upload to cloud storage...")
    backup_path = service.backup_service.create_backup(BackupTag.PRE_PUSH)
    db_hash = service.fingerprint_service.current_hash()
    if db_hash is None:
        raise NoLocalDataError()

    try:
        remote_file_id = client.upload(config.target, db_path, db_hash)
    except SyncError as exc:
        service.logger.error(f"Upload failed, sync markers unchanged: {exc}")
        raise

    synced_at = utc_now()
    service.config_store.mark_synced(db_hash, synced_at)
    service.logger.info(f"Upload complete: {db_path.name} -> {remote_file_id}")

    return PushResult(
        success=True,
        last_synced_at=synced_at,
        db_hash=db_hash,
        backup_path=backup_path,
        remote_file_id=remote_file_id,
    )


def pull_database(service: Any, settings: Any) -> PullResult:
    """
    Replace the local database with the cloud copy.

    The download lands in a temporary file first; the live file is only
    touched once the whole object is on disk. If swapping it into place
    fails, the ``pre-pull`` backup is copied back before the error is raised.
    """
    config = service.config_store.get()
    if not config.is_configured:
        raise NotConfiguredError()

    db_path: Path = settings.DEFAULT_DB_PATH
    temp_path: Path = settings.TEMP_DOWNLOAD_PATH
    client = service.get_client()

    service.logger.info("Starting download from cloud storage...")
    backup_path = None
    if db_path.exists():
        backup_path = service.backup_service.create_backup(BackupTag.PRE_PULL)

    temp_path.unlink(missing_ok=True)
    try:
        client.download(config.target, temp_path)
    except SyncError as exc:
        temp_path.unlink(missing_ok=True)
        service.logger.error(f"Download failed, local database untouched: {exc}")
        raise

    db_hash = hash_file(temp_path)

    try:
        _swap_into_place(temp_path, db_path, service.logger)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        service.logger.error(f"Failed to replace local database: {exc}", exc_info=True)
        _restore_after_failed_swap(service, db_path, backup_path)
        raise ReplaceFailedError(
            f"Failed to replace local database: {exc}. The local database was left as it was.",
            backup_path,
        ) from exc

    synced_at = utc_now()
    service.config_store.mark_synced(db_hash, synced_at)
    service.logger.info(f"Download complete: {db_path.name} replaced from cloud copy")

    return PullResult(success=True, last_synced_at=synced_at, db_hash=db_hash, backup_path=backup_path)


def _swap_into_place(temp_path: Path, db_path: Path, logger: Any) -> None:
    """Release handles, drop the old file and its side files, move the download in."""
    close_connections(db_path, logger)
    if db_path.exists():
        db_path.unlink()
    remove_side_files(db_path, logger)
    os.replace(temp_path, db_path)


def _restore_file(backup_path: Path, db_path: Path) -> None:
    shutil.copy2(backup_path, db_path)


def _restore_after_failed_swap(service: Any, db_path: Path, backup_path: Path | None) -> None:
    """Put the pre-pull copy back. Raises RestoreFailedError if that fails too."""
    if backup_path is None:
        db_path.unlink(missing_ok=True)
        return

    try:
        remove_side_files(db_path, service.logger)
        _restore_file(backup_path, db_path)
    except OSError as exc:
        service.logger.critical(
            f"Could not restore local database from {backup_path}: {exc}. "
            f"Copy the backup over {db_path} manually.",
            exc_info=True,
        )
        raise RestoreFailedError(
            f"Failed to restore local database after a failed download. Backup kept at {backup_path}",
            backup_path,
        ) from exc

    service.logger.info(f"Restored local database from {backup_path.name}")
