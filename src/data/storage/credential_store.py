"""Encrypted-at-rest storage for cloud sync credentials.

Credentials (OAuth client id/secret, access/refresh tokens, or a service
account key) are kept as one Fernet token on disk. The symmetric key lives in
a sibling key file readable only by the owner.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from config.settings import Settings

if TYPE_CHECKING:
    from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_SCOPES = ("https://www.googleapis.com/auth/devstorage.read_write",)


@dataclass(frozen=True)
class StoredCredentials:
    """Secrets needed to build an authenticated storage client."""

    client_id: str | None = None
    client_secret: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expiry: float | None = None
    token_uri: str = GOOGLE_TOKEN_URI
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    service_account_info: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def is_service_account(self) -> bool:
        return bool(self.service_account_info)

    @property
    def account_email(self) -> str | None:
        if self.is_service_account:
            return self.service_account_info.get("client_email")
        return None

    @property
    def is_usable(self) -> bool:
        """True when a client can be built without user interaction."""
        if self.is_service_account:
            return True
        has_client = bool(self.client_id and self.client_secret)
        return has_client and bool(self.refresh_token or self.access_token)

    def with_tokens(self, access_token: str, token_expiry: float | None) -> StoredCredentials:
        return replace(self, access_token=access_token, token_expiry=token_expiry)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["scopes"] = list(self.scopes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredCredentials:
        known = {k: data.get(k) for k in cls.__dataclass_fields__ if k in data}
        if "scopes" in known and known["scopes"] is not None:
            known["scopes"] = tuple(known["scopes"])
        if not known.get("token_uri"):
            known.pop("token_uri", None)
        return cls(**known)

    def __repr__(self) -> str:
        kind = "service_account" if self.is_service_account else "oauth"
        return f"StoredCredentials(kind={kind}, client_id={self.client_id!r})"


class CredentialStore:
    """Fernet-encrypted credential record with an owner-only key file."""

    def __init__(
        self,
        credentials_file: Path | None = None,
        key_file: Path | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self.credentials_file = credentials_file or Settings.CREDENTIALS_FILE
        self.key_file = key_file or Settings.CREDENTIALS_KEY_FILE
        self.logger = logger_obj or logger
        self._cipher: Fernet | None = None

    def _get_or_create_cipher(self) -> Fernet:
        from cryptography.fernet import Fernet

        if self._cipher is not None:
            return self._cipher

        if self.key_file.exists():
            key = self.key_file.read_bytes().strip()
        else:
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            key = Fernet.generate_key()
            self.key_file.write_bytes(key)
            try:
                self.key_file.chmod(0o600)
            except OSError:
                self.logger.warning("Could not restrict key file permissions: %s", self.key_file)
            self.logger.info("Generated new credential encryption key at %s", self.key_file)

        self._cipher = Fernet(key)
        return self._cipher

    def save(self, credentials: StoredCredentials) -> None:
        """Encrypt and persist the credential record."""
        cipher = self._get_or_create_cipher()
        token = cipher.encrypt(json.dumps(credentials.to_dict()).encode("utf-8"))

        self.credentials_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.credentials_file.with_name(self.credentials_file.name + ".tmp")
        tmp_path.write_bytes(token)
        os.replace(tmp_path, self.credentials_file)
        try:
            self.credentials_file.chmod(0o600)
        except OSError:
            self.logger.warning("Could not restrict credential file permissions: %s", self.credentials_file)
        self.logger.info("Saved sync credentials (%r)", credentials)

    def load(self) -> StoredCredentials | None:
        """Decrypt the stored record. Missing or undecryptable records yield None."""
        from cryptography.fernet import InvalidToken

        if not self.credentials_file.exists() or not self.key_file.exists():
            return None

        try:
            cipher = self._get_or_create_cipher()
            plaintext = cipher.decrypt(self.credentials_file.read_bytes().strip())
            return StoredCredentials.from_dict(json.loads(plaintext.decode("utf-8")))
        except InvalidToken:
            self.logger.warning("Stored sync credentials could not be decrypted")
            return None
        except (OSError, ValueError, TypeError) as e:
            self.logger.warning(f"Failed to read stored sync credentials: {e}")
            return None

    def has_credentials(self) -> bool:
        return self.load() is not None

    def update_tokens(self, access_token: str, token_expiry: float | None) -> None:
        """Persist a refreshed access token, keeping the rest of the record."""
        current = self.load()
        if current is None:
            return
        self.save(current.with_tokens(access_token, token_expiry))

    def clear(self) -> None:
        """Delete the stored record. The key file is kept for the next save."""
        if self.credentials_file.exists():
            self.credentials_file.unlink()
            self.logger.info("Cleared stored sync credentials")
