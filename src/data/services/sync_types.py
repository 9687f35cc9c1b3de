"""Typed contracts for local/cloud synchronization flows."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Union


class SyncState(str, Enum):
    """Relationship between the local database and its cloud copy."""

    NOT_CONFIGURED = "not_configured"
    NO_CLOUD_BACKUP = "no_cloud_backup"
    NEVER_SYNCED = "never_synced"
    IN_SYNC = "in_sync"
    LOCAL_ONLY = "local_only"
    CLOUD_ONLY = "cloud_only"
    CONFLICT = "conflict"
    CHECK_FAILED = "check_failed"


@dataclass(frozen=True)
class FolderTarget:
    """Folder-based sync: the backup object is searched inside a folder."""

    folder_id: str
    folder_name: str | None = None

    kind = "folder"


@dataclass(frozen=True)
class FileTarget:
    """File-based sync: the backup is one fixed, previously selected object."""

    backup_file_id: str
    file_name: str | None = None

    kind = "file"


SyncTarget = Union[FolderTarget, FileTarget]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def target_to_dict(target: SyncTarget | None) -> dict[str, Any] | None:
    if isinstance(target, FolderTarget):
        return {"kind": "folder", "folder_id": target.folder_id, "folder_name": target.folder_name}
    if isinstance(target, FileTarget):
        return {"kind": "file", "backup_file_id": target.backup_file_id, "file_name": target.file_name}
    return None


def target_key(target: SyncTarget | None) -> tuple[str, str] | None:
    """Identity of a target; display names do not take part."""
    if isinstance(target, FolderTarget):
        return ("folder", target.folder_id)
    if isinstance(target, FileTarget):
        return ("file", target.backup_file_id)
    return None


def target_from_dict(data: Any) -> SyncTarget | None:
    """Rebuild a target from its stored form; anything malformed is ``None``."""
    if not isinstance(data, dict):
        return None
    kind = data.get("kind")
    if kind == "folder" and data.get("folder_id"):
        return FolderTarget(folder_id=str(data["folder_id"]), folder_name=data.get("folder_name"))
    if kind == "file" and data.get("backup_file_id"):
        return FileTarget(backup_file_id=str(data["backup_file_id"]), file_name=data.get("file_name"))
    return None


@dataclass(frozen=True)
class SyncConfig:
    """Persisted sync configuration (singleton per data directory)."""

    target: SyncTarget | None = None
    last_synced_at: datetime | None = None
    synced_db_hash: str | None = None
    user_email: str | None = None

    @property
    def is_configured(self) -> bool:
        return self.target is not None

    @property
    def is_file_based_sync(self) -> bool:
        return isinstance(self.target, FileTarget)

    def with_changes(self, **changes: Any) -> SyncConfig:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": target_to_dict(self.target),
            "last_synced_at": format_timestamp(self.last_synced_at),
            "synced_db_hash": self.synced_db_hash,
            "user_email": self.user_email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        return cls(
            target=target_from_dict(data.get("target")),
            last_synced_at=parse_timestamp(data.get("last_synced_at")),
            synced_db_hash=data.get("synced_db_hash") or None,
            user_email=data.get("user_email") or None,
        )


@dataclass(frozen=True)
class RemoteBackupInfo:
    """What the remote store reports about the backup for one target."""

    exists: bool
    modified_time: datetime | None = None
    file_id: str | None = None
    fingerprint_from_metadata: str | None = None


@dataclass(frozen=True)
class SyncCheckResult:
    """Evaluator output: current state plus the edit-permission decision."""

    state: SyncState
    can_edit: bool
    message: str
    has_local_changes: bool = False
    has_cloud_changes: bool = False
    last_synced_at: datetime | None = None
    cloud_modified_at: datetime | None = None
    warning: str | None = None

    @property
    def sync_required(self) -> bool:
        return not self.can_edit or self.state is SyncState.NO_CLOUD_BACKUP

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "syncRequired": self.sync_required,
            "reason": self.state.value,
            "message": self.message,
            "canEdit": self.can_edit,
            "hasLocalChanges": self.has_local_changes,
            "hasCloudChanges": self.has_cloud_changes,
        }
        if self.last_synced_at is not None:
            payload["lastSyncedAt"] = format_timestamp(self.last_synced_at)
        if self.cloud_modified_at is not None:
            payload["cloudModifiedAt"] = format_timestamp(self.cloud_modified_at)
        if self.warning:
            payload["warning"] = self.warning
        return payload


@dataclass(frozen=True)
class PushResult:
    success: bool
    last_synced_at: datetime
    db_hash: str
    backup_path: Path | None = None
    remote_file_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "lastSyncedAt": format_timestamp(self.last_synced_at),
            "dbHash": self.db_hash,
        }
        if self.backup_path is not None:
            payload["backupFilename"] = self.backup_path.name
            payload["backupPath"] = str(self.backup_path)
        if self.remote_file_id:
            payload["fileId"] = self.remote_file_id
        return payload


@dataclass(frozen=True)
class PullResult:
    success: bool
    last_synced_at: datetime
    db_hash: str
    backup_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "lastSyncedAt": format_timestamp(self.last_synced_at),
            "dbHash": self.db_hash,
        }
        if self.backup_path is not None:
            payload["backupFilename"] = self.backup_path.name
            payload["backupPath"] = str(self.backup_path)
        return payload


@dataclass(frozen=True)
class BackupInfo:
    """A safety backup file found in the backups directory."""

    filename: str
    tag: str
    size: int
    created_at: datetime
    path: Path

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "tag": self.tag,
            "size": self.size,
            "createdAt": format_timestamp(self.created_at),
        }

