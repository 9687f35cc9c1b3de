"""Dependency injection container for the application."""

from pathlib import Path
from typing import Any, Optional
import logging

from backend.connection_manager import close_connections
from config.settings import Settings
from data.services.backup_service import BackupService
from data.services.fingerprint_service import FingerprintService
from data.services.storage_sync_service import StorageSyncService
from data.services.sync_config_store import SyncConfigStore
from data.storage.credential_store import CredentialStore
from utils.logger_setup import setup_logging


class DependencyContainer:
    """Container for managing application dependencies."""

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        logger_name: str = "puffin_sync",
        log_level: int = logging.INFO,
        console_output: bool = False,
    ):
        self.settings: Any = Settings.for_data_dir(data_dir) if data_dir else Settings
        self.settings.ensure_directories()
        self.logger = setup_logging(
            logger_name, log_level=log_level, log_dir=self.settings.LOGS_DIR, console_output=console_output
        )
        self.db_path = self.settings.get_db_path()

        # Initialize services lazily
        self._config_store = None
        self._credential_store = None
        self._sync_service = None

    @property
    def config_store(self) -> SyncConfigStore:
        if self._config_store is None:
            self._config_store = SyncConfigStore(self.settings.SYNC_CONFIG_FILE, self.logger)
        return self._config_store

    @property
    def credential_store(self) -> CredentialStore:
        if self._credential_store is None:
            self._credential_store = CredentialStore(
                self.settings.CREDENTIALS_FILE, self.settings.CREDENTIALS_KEY_FILE, self.logger
            )
        return self._credential_store

    @property
    def sync_service(self) -> StorageSyncService:
        """Get or create the sync service."""
        if self._sync_service is None:
            self._sync_service = StorageSyncService(
                settings=self.settings,
                config_store=self.config_store,
                credential_store=self.credential_store,
                fingerprint_service=FingerprintService(self.db_path, self.logger),
                backup_service=BackupService(self.settings, self.logger),
                logger_obj=self.logger,
            )
        return self._sync_service

    def close(self) -> None:
        """Release open database handles and drop cached services."""
        close_connections(self.db_path, self.logger)
        self._sync_service = None
        self._config_store = None
        self._credential_store = None
