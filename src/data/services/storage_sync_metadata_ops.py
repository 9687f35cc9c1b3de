"""Status and metadata operations for storage sync service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from data.services.sync_types import format_timestamp, target_to_dict


def get_local_last_modified(settings: Any) -> datetime | None:
    """Last modification time of the local database file."""
    db_path = settings.DEFAULT_DB_PATH
    if not db_path.exists():
        return None
    return datetime.fromtimestamp(db_path.stat().st_mtime, tz=timezone.utc)


def get_sync_status(service: Any, settings: Any) -> dict[str, Any]:
    """
    Summarize the configured target, local file and remote backup.

    Remote failures are reported in ``remote.error`` instead of raised.
    """
    config = service.config_store.get()
    if not config.is_configured:
        return {"configured": False}

    local_modified = get_local_last_modified(settings)
    status: dict[str, Any] = {
        "configured": True,
        "target": target_to_dict(config.target),
        "isFileBasedSync": config.is_file_based_sync,
        "lastSyncedAt": format_timestamp(config.last_synced_at),
        "userEmail": config.user_email,
        "local": {
            "exists": local_modified is not None,
            "modifiedTime": format_timestamp(local_modified),
        },
    }

    try:
        remote = service.get_client().exists(config.target)
        status["remote"] = {
            "exists": remote.exists,
            "modifiedTime": format_timestamp(remote.modified_time),
            "fileId": remote.file_id,
        }
    except Exception as exc:
        service.logger.error(f"Error getting remote backup info: {exc}")
        status["remote"] = {"exists": False, "error": str(exc)}

    return status
