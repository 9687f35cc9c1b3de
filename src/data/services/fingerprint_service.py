"""Content fingerprinting of the local database file."""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from backend.connection_manager import checkpoint_database, has_pending_wal
from config.settings import Settings
from config.sync import SyncSettings


def hash_file(path: Path, chunk_size: int = SyncSettings.HASH_CHUNK_SIZE) -> str:
    """SHA-256 of a file's bytes, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class FingerprintService:
    """Computes the fingerprint of the local database and detects local edits."""

    def __init__(self, db_path: Optional[Path] = None, logger_obj: Optional[logging.Logger] = None):
        self.db_path = db_path or Settings.DEFAULT_DB_PATH
        self.logger = logger_obj or logging.getLogger(__name__)

    def flush(self) -> None:
        """Fold pending write-ahead log contents into the main file."""
        if has_pending_wal(self.db_path):
            checkpoint_database(self.db_path, self.logger)

    def current_hash(self) -> Optional[str]:
        """
        Fingerprint of the database as it would be uploaded.

        Returns None when there is no local database (no local data to protect).
        Raises OSError when the file exists but cannot be read.
        """
        if not self.db_path.exists():
            return None

        self.flush()
        fingerprint = hash_file(self.db_path)
        self.logger.debug(f"Fingerprint of {self.db_path.name}: {fingerprint[:12]}...")
        return fingerprint

    def has_local_changes(self, synced_hash: Optional[str]) -> bool:
        """
        True when the database differs from the last confirmed-synced fingerprint.

        A missing database has nothing to protect and never counts as a change.
        """
        current = self.current_hash()
        if current is None:
            return False
        return current != synced_hash
