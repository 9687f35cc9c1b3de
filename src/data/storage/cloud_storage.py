"""Google Cloud Storage client for the remote database backup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from google.cloud import storage
from google.cloud.storage.retry import DEFAULT_RETRY

from config.sync import SyncSettings
from data.services.sync_errors import RemoteNotFoundError
from data.services.sync_types import FileTarget, FolderTarget, RemoteBackupInfo, SyncTarget, parse_timestamp
from data.storage import cloud_storage_ops as ops


class RemoteBackupClient(Protocol):
    """Narrow interface the sync engine needs from the remote store.

    Every method raises ``RemoteTransportError`` on network/auth/timeout
    failures; ``download`` raises ``RemoteNotFoundError`` when the backup
    is gone.
    """

    def exists(self, target: SyncTarget) -> RemoteBackupInfo: ...

    def download(self, target: SyncTarget, destination_path: Path) -> None: ...

    def upload(self, target: SyncTarget, source_path: Path, fingerprint: str) -> str: ...

    def get_metadata_fingerprint(self, file_id: str) -> Optional[str]: ...


class GCSRemoteBackupClient:
    """
    Stores the database backup as one object in a GCS bucket.

    Folder targets map to an object-name prefix holding the conventionally
    named backup object; file targets name one object directly. The local
    fingerprint travels as custom object metadata.
    """

    def __init__(
        self,
        bucket_name: str,
        credentials: Any = None,
        project: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Any = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        """
        Initialize the backup client.

        Args:
            bucket_name: Name of the GCS bucket
            credentials: google-auth credentials (None uses application default)
            project: Optional GCP project for the storage client
            timeout: Per-request timeout in seconds
            client: Pre-built storage client (tests inject a mock)
            logger_obj: Logger instance
        """
        self.bucket_name = bucket_name
        self.logger = logger_obj or logging.getLogger(__name__)
        self.timeout = timeout or SyncSettings.REQUEST_TIMEOUT_SECONDS
        self.retry = DEFAULT_RETRY.with_delay(
            initial=SyncSettings.RETRY_INITIAL_DELAY,
            maximum=SyncSettings.RETRY_MAX_DELAY,
            multiplier=SyncSettings.RETRY_MULTIPLIER,
        )

        self.client = client or storage.Client(project=project, credentials=credentials)
        self.bucket = self.client.bucket(bucket_name)

        self.logger.info(f"Initialized GCSRemoteBackupClient for bucket: {bucket_name}")

    def object_name(self, target: SyncTarget) -> str:
        """Resolve the object holding the backup for ``target``."""
        if isinstance(target, FolderTarget):
            prefix = ops.validate_object_id(target.folder_id, "folder id").strip("/")
            return f"{prefix}/{SyncSettings.REMOTE_BACKUP_FILENAME}"
        if isinstance(target, FileTarget):
            return ops.validate_object_id(target.backup_file_id, "backup file id")
        raise TypeError(f"Unsupported sync target: {target!r}")

    def exists(self, target: SyncTarget) -> RemoteBackupInfo:
        """Report existence, mtime and fingerprint metadata of the backup."""
        name = self.object_name(target)
        try:
            blob = self.bucket.get_blob(name, timeout=self.timeout, retry=self.retry)
        except Exception as e:
            self.logger.error(f"Error checking backup gs://{self.bucket_name}/{name}: {e}")
            raise ops.to_sync_error(e, "backup lookup") from e

        if blob is None:
            self.logger.info(f"No backup found at gs://{self.bucket_name}/{name}")
            return RemoteBackupInfo(exists=False)

        return RemoteBackupInfo(
            exists=True,
            modified_time=parse_timestamp(blob.updated),
            file_id=blob.name,
            fingerprint_from_metadata=self._fingerprint_of(blob),
        )

    def download(self, target: SyncTarget, destination_path: Path) -> None:
        """Download the backup to ``destination_path``."""
        name = self.object_name(target)
        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)
            blob = self.bucket.blob(name)
            blob.download_to_filename(str(destination_path), timeout=self.timeout, retry=self.retry)
        except Exception as e:
            error = ops.to_sync_error(e, "download")
            if isinstance(error, RemoteNotFoundError):
                self.logger.info(f"Backup vanished before download: gs://{self.bucket_name}/{name}")
            else:
                self.logger.error(f"Error downloading {name}: {e}", exc_info=True)
            raise error from e

        self.logger.info(f"Downloaded gs://{self.bucket_name}/{name} to {destination_path}")

    def upload(self, target: SyncTarget, source_path: Path, fingerprint: str) -> str:
        """Upload ``source_path`` as the backup, tagging it with ``fingerprint``."""
        name = self.object_name(target)
        try:
            blob = self.bucket.blob(name)
            blob.metadata = {SyncSettings.FINGERPRINT_METADATA_KEY: fingerprint}
            blob.upload_from_filename(
                str(source_path),
                content_type=SyncSettings.REMOTE_CONTENT_TYPE,
                timeout=self.timeout,
                retry=self.retry,
            )
        except Exception as e:
            self.logger.error(f"Error uploading {source_path}: {e}", exc_info=True)
            raise ops.to_sync_error(e, "upload") from e

        self.logger.info(f"Uploaded {source_path.name} to gs://{self.bucket_name}/{name}")
        return name

    def get_metadata_fingerprint(self, file_id: str) -> Optional[str]:
        """Fingerprint stored on the object, or None if absent or missing."""
        name = ops.validate_object_id(file_id, "backup file id")
        try:
            blob = self.bucket.get_blob(name, timeout=self.timeout, retry=self.retry)
        except Exception as e:
            raise ops.to_sync_error(e, "metadata lookup") from e
        return self._fingerprint_of(blob) if blob is not None else None

    @staticmethod
    def _fingerprint_of(blob: Any) -> Optional[str]:
        metadata = blob.metadata or {}
        return metadata.get(SyncSettings.FINGERPRINT_METADATA_KEY) or None


def create_remote_client_from_config(
    config: dict[str, Any],
    logger_obj: Optional[logging.Logger] = None,
) -> Optional[GCSRemoteBackupClient]:
    """
    Create a GCSRemoteBackupClient from a configuration dictionary.

    The config dict should have:
    - 'bucket_name': GCS bucket name (required)
    - 'credentials': StoredCredentials (required)
    - 'on_token_refresh': callback receiving a refreshed token (optional)
    - 'timeout': per-request timeout in seconds (optional)

    Returns:
        Client instance, or None when bucket or credentials are missing
    """
    return ops.create_client_from_config(GCSRemoteBackupClient, config, logger_obj)
