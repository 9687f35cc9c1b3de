"""Persistent storage for the singleton sync configuration."""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from config.settings import Settings
from data.services.sync_types import SyncConfig, SyncTarget, target_key


class SyncConfigStore:
    """
    Owns the sync configuration record.

    The record lives in a JSON file next to the database, outside of it, so a
    pulled database never carries another device's sync markers. One store
    instance is created at application start and handed to the evaluator and
    the sync operations.
    """

    def __init__(self, config_file: Optional[Path] = None, logger_obj: Optional[logging.Logger] = None):
        self.config_file = config_file or Settings.SYNC_CONFIG_FILE
        self.logger = logger_obj or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._config: SyncConfig = self._load_config()

    def _load_config(self) -> SyncConfig:
        """Load the configuration from disk; unreadable files load as empty."""
        if not self.config_file.exists():
            return SyncConfig()

        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("sync config root must be an object")
            return SyncConfig.from_dict(data)
        except json.JSONDecodeError:
            self.logger.warning(f"Could not decode sync config {self.config_file}. Starting fresh.")
            return SyncConfig()
        except (OSError, ValueError) as e:
            self.logger.warning(f"Error loading sync config: {e}. Starting fresh.")
            return SyncConfig()

    def _save_config(self, config: SyncConfig) -> None:
        """Write the configuration atomically (temp file + replace)."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.config_file.with_name(self.config_file.name + ".tmp")
        tmp_path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp_path, self.config_file)
        self.logger.debug(f"Sync config saved to {self.config_file}")

    def get(self) -> SyncConfig:
        with self._lock:
            return self._config

    def reload(self) -> SyncConfig:
        with self._lock:
            self._config = self._load_config()
            return self._config

    def update(self, **changes) -> SyncConfig:
        """Apply field changes and persist them."""
        with self._lock:
            updated = self._config.with_changes(**changes)
            self._save_config(updated)
            self._config = updated
            return updated

    def set_target(self, target: SyncTarget) -> SyncConfig:
        """
        Point sync at a target.

        A different object has never been synced. Renaming the same object keeps
        its sync markers.
        """
        with self._lock:
            if target == self._config.target:
                return self._config
            if target_key(target) == target_key(self._config.target):
                return self.update(target=target)
            self.logger.info(f"Sync target set to {target}")
            return self.update(target=target, last_synced_at=None, synced_db_hash=None)

    def mark_synced(self, db_hash: str, synced_at: datetime) -> SyncConfig:
        """Record that local and remote were confirmed equal at ``synced_at``."""
        return self.update(synced_db_hash=db_hash, last_synced_at=synced_at)

    def set_user_email(self, email: Optional[str]) -> SyncConfig:
        return self.update(user_email=email)

    def clear(self) -> None:
        """Drop the configuration (disconnect or full reset)."""
        with self._lock:
            if self.config_file.exists():
                self.config_file.unlink()
            self._config = SyncConfig()
            self.logger.info("Cleared sync configuration")
