"""Storage synchronization service: the entry point for sync checks and transfers."""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from config.settings import Settings
from config.sync import BackupTag, SyncSettings
from data.services import storage_sync_metadata_ops as metadata_ops
from data.services import storage_sync_transfer_ops as transfer_ops
from data.services.backup_service import BackupService
from data.services.fingerprint_service import FingerprintService
from data.services.sync_config_store import SyncConfigStore
from data.services.sync_errors import RemoteTransportError
from data.services.sync_state_evaluator import SyncStateEvaluator
from data.services.sync_types import (
    BackupInfo,
    FileTarget,
    FolderTarget,
    PullResult,
    PushResult,
    SyncCheckResult,
    SyncConfig,
)
from data.storage.cloud_storage import RemoteBackupClient, create_remote_client_from_config
from data.storage.cloud_storage_ops import revoke_credentials, validate_object_id
from data.storage.credential_resolver import SyncCredentialResolver
from data.storage.credential_store import CredentialStore, StoredCredentials

ClientFactory = Callable[[], Optional[RemoteBackupClient]]


class StorageSyncService:
    """
    Service for reconciling the local database with its cloud copy.

    Exposes the check used before editing, push/pull with backup-before-
    overwrite, status, target configuration and disconnect. Operations that
    replace or upload the live file are serialized; ``check`` is not and
    never raises.
    """

    def __init__(
        self,
        settings: Any = Settings,
        config_store: Optional[SyncConfigStore] = None,
        credential_store: Optional[CredentialStore] = None,
        client_factory: Optional[ClientFactory] = None,
        fingerprint_service: Optional[FingerprintService] = None,
        backup_service: Optional[BackupService] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        """
        Initialize storage sync service.

        Args:
            settings: Settings class providing data paths
            config_store: Sync configuration store
            credential_store: Encrypted credential store
            client_factory: Callable returning an authenticated remote client, or None
                when no usable credentials exist (defaults to GCS from stored credentials)
            fingerprint_service: Local database fingerprinting
            backup_service: Local safety backups
            logger_obj: Logger instance
        """
        self.settings = settings
        self.logger = logger_obj or logging.getLogger(__name__)
        self.config_store = config_store or SyncConfigStore(settings.SYNC_CONFIG_FILE, self.logger)
        self.credential_store = credential_store or CredentialStore(
            settings.CREDENTIALS_FILE, settings.CREDENTIALS_KEY_FILE, self.logger
        )
        self.fingerprint_service = fingerprint_service or FingerprintService(settings.DEFAULT_DB_PATH, self.logger)
        self.backup_service = backup_service or BackupService(settings, self.logger)
        self.client_factory = client_factory or self._create_default_client

        self._client: Optional[RemoteBackupClient] = None
        self._lock = threading.Lock()
        self.evaluator = SyncStateEvaluator(
            self.config_store,
            self.fingerprint_service,
            self.get_client,
            logger_obj=self.logger,
        )

    def _create_default_client(self) -> Optional[RemoteBackupClient]:
        credentials = SyncCredentialResolver.resolve(self.credential_store, self.logger)
        return create_remote_client_from_config(
            {
                "bucket_name": SyncCredentialResolver.get_bucket_name(self.settings.GCS_BUCKET_NAME),
                "credentials": credentials,
                "on_token_refresh": self.credential_store.update_tokens,
                "timeout": SyncSettings.REQUEST_TIMEOUT_SECONDS,
            },
            self.logger,
        )

    def get_client(self) -> RemoteBackupClient:
        """Authenticated remote client. Raises RemoteTransportError when unavailable."""
        if self._client is None:
            client = self.client_factory()
            if client is None:
                raise RemoteTransportError("Not authenticated with cloud storage")
            self._client = client
        return self._client

    def reset_client(self) -> None:
        """Forget the cached client so the next call re-reads credentials."""
        self._client = None

    # Sync checks and transfers

    def check(self) -> SyncCheckResult:
        """Evaluate whether editing is safe right now. Never raises."""
        return self.evaluator.evaluate()

    def push(self) -> PushResult:
        with self._lock:
            return transfer_ops.push_database(self, self.settings)

    def pull(self) -> PullResult:
        with self._lock:
            return transfer_ops.pull_database(self, self.settings)

    def status(self) -> dict[str, Any]:
        return metadata_ops.get_sync_status(self, self.settings)

    # Configuration

    def get_config(self) -> SyncConfig:
        return self.config_store.get()

    def configure_folder(self, folder_id: str, folder_name: Optional[str] = None) -> SyncConfig:
        """Sync against the backup object inside a folder."""
        target = FolderTarget(folder_id=validate_object_id(folder_id, "folder id"), folder_name=folder_name)
        with self._lock:
            return self.config_store.set_target(target)

    def configure_file(self, file_id: str, file_name: Optional[str] = None) -> SyncConfig:
        """Sync against one fixed backup object."""
        target = FileTarget(backup_file_id=validate_object_id(file_id, "backup file id"), file_name=file_name)
        with self._lock:
            return self.config_store.set_target(target)

    def set_credentials(self, credentials: StoredCredentials, user_email: Optional[str] = None) -> None:
        """
        Store credentials and record the account they belong to.

        ``user_email`` names the OAuth account; service accounts carry their own
        ``client_email``.
        """
        self.credential_store.save(credentials)
        self.config_store.set_user_email(user_email or credentials.account_email)
        self.reset_client()

    def clear_credentials(self) -> None:
        self.credential_store.clear()
        if self.config_store.get().user_email is not None:
            self.config_store.set_user_email(None)
        self.reset_client()

    def disconnect(self) -> bool:
        """
        Revoke access (best effort), then forget the target and credentials.

        Returns whether revocation succeeded. Local data is never touched.
        """
        with self._lock:
            revoked = True
            credentials = self.credential_store.load()
            if credentials is not None:
                revoked = revoke_credentials(credentials, SyncSettings.REQUEST_TIMEOUT_SECONDS, self.logger)
                if not revoked:
                    self.logger.warning("Could not revoke access token; clearing local credentials anyway")

            self.config_store.clear()
            self.credential_store.clear()
            self.reset_client()
            self.logger.info("Disconnected from cloud sync")
            return revoked

    # Local backups

    def list_backups(self) -> list[BackupInfo]:
        return self.backup_service.list_backups()

    def create_backup(self, tag: BackupTag = BackupTag.MANUAL) -> Path:
        with self._lock:
            return self.backup_service.create_backup(tag)

    def delete_backup(self, filename: str) -> None:
        with self._lock:
            self.backup_service.delete_backup(filename)

    def restore_backup(self, filename: str) -> Optional[Path]:
        with self._lock:
            return self.backup_service.restore_backup(filename)

    def import_backup(self, source_path: Path) -> Optional[Path]:
        with self._lock:
            return self.backup_service.import_backup(source_path)

    def reset_database(self) -> Optional[Path]:
        """
        Delete the local database and forget when it was last synced.

        The target is kept, so the next check reports the cloud copy as never
        synced and blocks editing until a direction is chosen.
        """
        with self._lock:
            backup_path = self.backup_service.reset_database()
            config = self.config_store.get()
            if config.last_synced_at is not None or config.synced_db_hash:
                self.config_store.update(last_synced_at=None, synced_db_hash=None)
                self.logger.info("Cleared sync markers after local reset")
            return backup_path
