"""Sync Credential Resolver - resolves credentials from multiple sources.

Provides a unified way to load cloud storage credentials from:
1. The encrypted credential store (written by the OAuth flow)
2. Environment variables (for local development)
3. .env file (for local development convenience)
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Dict

from data.storage.credential_store import CredentialStore, StoredCredentials


class SyncCredentialResolver:
    """Resolve sync credentials from multiple sources.

    Priority order:
    1. Encrypted credential store
    2. GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET / GOOGLE_REFRESH_TOKEN environment variables
    3. GOOGLE_APPLICATION_CREDENTIALS service account file
    4. .env file with the same keys
    """

    @classmethod
    def resolve(
        cls,
        store: Optional[CredentialStore] = None,
        logger: Optional[logging.Logger] = None,
        dotenv_paths: Optional[list] = None,
    ) -> Optional[StoredCredentials]:
        """
        Try each credential source in priority order.

        Args:
            store: Credential store to read first
            logger: Optional logger instance
            dotenv_paths: Override for .env search locations

        Returns:
            Usable credentials, or None if no source provides them
        """
        log = logger or logging.getLogger(__name__)

        # Priority 1: encrypted store
        if store is not None:
            stored = store.load()
            if stored and stored.is_usable:
                log.debug("Resolved sync credentials from encrypted store")
                return stored

        # Priority 2 and 3: environment
        credentials = cls._from_mapping(dict(os.environ), Path.cwd(), log)
        if credentials:
            log.info("Resolved sync credentials from environment variables")
            return credentials

        # Priority 4: .env file
        credentials = cls._from_dotenv(log, dotenv_paths)
        if credentials:
            log.info("Resolved sync credentials from .env file")
            return credentials

        log.debug("No sync credentials found from any source")
        return None

    @classmethod
    def _from_mapping(
        cls,
        env: Dict[str, str],
        base_dir: Path,
        logger: logging.Logger,
    ) -> Optional[StoredCredentials]:
        """Build credentials from an environment-like mapping."""
        client_id = env.get("GOOGLE_CLIENT_ID")
        client_secret = env.get("GOOGLE_CLIENT_SECRET")
        refresh_token = env.get("GOOGLE_REFRESH_TOKEN")
        if client_id and client_secret and refresh_token:
            return StoredCredentials(
                client_id=client_id,
                client_secret=client_secret,
                refresh_token=refresh_token,
            )

        credentials_path = env.get("GOOGLE_APPLICATION_CREDENTIALS")
        if not credentials_path:
            return None

        creds_path = Path(credentials_path)
        if not creds_path.is_absolute():
            creds_path = base_dir / creds_path
        if not creds_path.exists():
            logger.warning(f"Credentials file not found: {creds_path}")
            return None

        try:
            with open(creds_path, "r", encoding="utf-8") as f:
                info = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read service account file {creds_path}: {e}")
            return None

        return StoredCredentials(service_account_info=info)

    @classmethod
    def _from_dotenv(
        cls,
        logger: logging.Logger,
        dotenv_paths: Optional[list] = None,
    ) -> Optional[StoredCredentials]:
        """Try to load credentials from .env file."""
        candidates = dotenv_paths or [
            Path(".env"),
            Path(__file__).parent.parent.parent.parent / ".env",  # Project root
        ]

        dotenv_path = next((Path(p) for p in candidates if Path(p).exists()), None)
        if not dotenv_path:
            return None

        # Parse .env file manually (avoid adding python-dotenv dependency)
        env_vars = {}
        try:
            with open(dotenv_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" in line:
                        key, value = line.split("=", 1)
                        # Remove quotes if present
                        env_vars[key.strip()] = value.strip().strip('"').strip("'")
        except OSError as e:
            logger.debug(f"Error loading from .env file: {e}")
            return None

        return cls._from_mapping(env_vars, dotenv_path.parent, logger)

    @classmethod
    def get_bucket_name(cls, default: Optional[str] = None) -> Optional[str]:
        """Get the bucket holding sync backups without loading any credentials."""
        return os.environ.get("PUFFIN_GCS_BUCKET") or default or None
