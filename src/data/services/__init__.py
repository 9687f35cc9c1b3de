"""Service layer for sync checks, transfers and local backups."""

from .sync_errors import SyncError, SyncErrorCode
from .sync_types import SyncCheckResult, SyncConfig, SyncState

__all__ = ["SyncCheckResult", "SyncConfig", "SyncError", "SyncErrorCode", "SyncState"]
