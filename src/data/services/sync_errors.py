"""Error taxonomy for sync operations."""

from enum import Enum
from pathlib import Path
from typing import Optional


class SyncErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""

    NOT_CONFIGURED = "not_configured"
    NO_LOCAL_DATA = "no_local_data"
    REMOTE_NOT_FOUND = "remote_not_found"
    REMOTE_TRANSPORT_ERROR = "remote_transport_error"
    REPLACE_FAILED = "replace_failed"
    RESTORE_FAILED = "restore_failed"
    INVALID_BACKUP = "invalid_backup"


class SyncError(Exception):
    """Base exception for sync operations."""

    code = SyncErrorCode.REMOTE_TRANSPORT_ERROR
    not_found = False
    unrecoverable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code.value}
        if self.not_found:
            payload["notFound"] = True
        if self.unrecoverable:
            payload["unrecoverable"] = True
        return payload


class NotConfiguredError(SyncError):
    """Sync has no active target."""

    code = SyncErrorCode.NOT_CONFIGURED

    def __init__(self, message: str = "Sync not configured"):
        super().__init__(message)


class NoLocalDataError(SyncError):
    """The local database file does not exist."""

    code = SyncErrorCode.NO_LOCAL_DATA

    def __init__(self, message: str = "Local database not found"):
        super().__init__(message)


class RemoteNotFoundError(SyncError):
    """The remote backup vanished or was never created."""

    code = SyncErrorCode.REMOTE_NOT_FOUND
    not_found = True

    def __init__(self, message: str = "No backup found in sync folder"):
        super().__init__(message)


class RemoteTransportError(SyncError):
    """Network, auth or timeout failure talking to the remote store."""

    code = SyncErrorCode.REMOTE_TRANSPORT_ERROR


class ReplaceFailedError(SyncError):
    """Swapping the downloaded file into place failed; the old file was restored."""

    code = SyncErrorCode.REPLACE_FAILED

    def __init__(self, message: str, backup_path: Optional[Path] = None):
        self.backup_path = backup_path
        super().__init__(message)


class RestoreFailedError(SyncError):
    """Rolling back to the safety backup failed. Needs manual intervention."""

    code = SyncErrorCode.RESTORE_FAILED
    unrecoverable = True

    def __init__(self, message: str, backup_path: Optional[Path] = None):
        self.backup_path = backup_path
        super().__init__(message)


class InvalidBackupError(SyncError):
    """A backup filename or file failed validation."""

    code = SyncErrorCode.INVALID_BACKUP
