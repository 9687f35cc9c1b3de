"""Application-wide settings and configuration."""

import os
from pathlib import Path
from typing import Optional


class Settings:
    """Centralized application settings."""

    # Project paths
    PROJECT_ROOT = Path(__file__).parent.parent.parent
    DATA_DIR = Path(os.environ.get("PUFFIN_DATA_DIR", PROJECT_ROOT / "data"))
    LOGS_DIR = PROJECT_ROOT / "logs"

    # Default database settings
    DEFAULT_DB_PATH = DATA_DIR / "puffin.duckdb"
    BACKUPS_DIR = DATA_DIR / "backups"
    TEMP_DOWNLOAD_PATH = DATA_DIR / "puffin-download-temp.duckdb"

    # Sync persistence
    SYNC_CONFIG_FILE = DATA_DIR / "sync-config.json"
    CREDENTIALS_FILE = DATA_DIR / ".sync-credentials.enc"
    CREDENTIALS_KEY_FILE = DATA_DIR / ".sync-credentials.key"

    # Remote storage
    GCS_BUCKET_NAME = os.environ.get("PUFFIN_GCS_BUCKET", "")

    @classmethod
    def ensure_directories(cls) -> None:
        """Ensure all required directories exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        cls.BACKUPS_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_db_path(cls, custom_path: Optional[Path] = None) -> Path:
        """Get the database path, with optional override."""
        return custom_path or cls.DEFAULT_DB_PATH

    @classmethod
    def for_data_dir(cls, data_dir: Path) -> "type[Settings]":
        """Build a Settings variant rooted at another data directory."""
        data_dir = Path(data_dir)
        return type(
            "Settings",
            (cls,),
            {
                "DATA_DIR": data_dir,
                "LOGS_DIR": data_dir / "logs",
                "DEFAULT_DB_PATH": data_dir / "puffin.duckdb",
                "BACKUPS_DIR": data_dir / "backups",
                "TEMP_DOWNLOAD_PATH": data_dir / "puffin-download-temp.duckdb",
                "SYNC_CONFIG_FILE": data_dir / "sync-config.json",
                "CREDENTIALS_FILE": data_dir / ".sync-credentials.enc",
                "CREDENTIALS_KEY_FILE": data_dir / ".sync-credentials.key",
            },
        )
