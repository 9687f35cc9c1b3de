"""Internal operations for the cloud backup client and factory helpers."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

import requests
from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions

from data.services.sync_errors import RemoteNotFoundError, RemoteTransportError, SyncError
from data.storage.credential_store import StoredCredentials

ClientT = TypeVar("ClientT")

REVOKE_URL = "https://oauth2.googleapis.com/revoke"

_OBJECT_ID_PATTERN = re.compile(r"[A-Za-z0-9_.\-/]+")


class ErrorCategory(Enum):
    """Categories for remote storage failures."""

    NOT_FOUND = "not_found"
    AUTH = "auth"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"


def categorize_error(exception: BaseException) -> ErrorCategory:
    """Categorize a remote exception into error types for better handling."""
    if isinstance(exception, google_exceptions.NotFound):
        return ErrorCategory.NOT_FOUND
    if isinstance(exception, (google_exceptions.Unauthorized, google_exceptions.Forbidden)):
        return ErrorCategory.AUTH
    if isinstance(exception, (auth_exceptions.RefreshError, auth_exceptions.DefaultCredentialsError)):
        return ErrorCategory.AUTH
    if isinstance(
        exception,
        (
            TimeoutError,
            requests.exceptions.Timeout,
            google_exceptions.DeadlineExceeded,
            google_exceptions.RetryError,
        ),
    ):
        return ErrorCategory.TIMEOUT
    if isinstance(exception, (ConnectionError, requests.exceptions.ConnectionError)):
        return ErrorCategory.NETWORK
    if isinstance(exception, google_exceptions.ServerError):
        return ErrorCategory.SERVER
    return ErrorCategory.UNKNOWN


def to_sync_error(exception: BaseException, operation: str) -> SyncError:
    """Translate a remote exception into the sync error taxonomy."""
    if isinstance(exception, SyncError):
        return exception

    category = categorize_error(exception)
    if category is ErrorCategory.NOT_FOUND:
        return RemoteNotFoundError(f"Backup file not found during {operation}")
    if category is ErrorCategory.AUTH:
        return RemoteTransportError(
            f"Access denied during {operation}. Check the sharing settings or re-authenticate: {exception}"
        )
    if category is ErrorCategory.TIMEOUT:
        return RemoteTransportError(f"{operation} timed out: {exception}")
    return RemoteTransportError(f"{operation} failed: {exception}")


def validate_object_id(value: str, what: str = "target id") -> str:
    """Reject ids that could escape their prefix or inject into object names."""
    cleaned = (value or "").strip()
    if not cleaned or not _OBJECT_ID_PATTERN.fullmatch(cleaned) or ".." in cleaned.split("/"):
        raise ValueError(f"Invalid {what}: {value!r}")
    return cleaned


def build_google_credentials(credentials: StoredCredentials) -> Any:
    """Create google-auth credentials from the stored record."""
    if credentials.is_service_account:
        from google.oauth2 import service_account

        return service_account.Credentials.from_service_account_info(
            credentials.service_account_info,
            scopes=list(credentials.scopes),
        )

    from google.oauth2.credentials import Credentials

    expiry = None
    if credentials.token_expiry:
        # google-auth compares expiry against naive UTC
        expiry = datetime.fromtimestamp(credentials.token_expiry, tz=timezone.utc).replace(tzinfo=None)

    return Credentials(
        token=credentials.access_token,
        refresh_token=credentials.refresh_token,
        token_uri=credentials.token_uri,
        client_id=credentials.client_id,
        client_secret=credentials.client_secret,
        scopes=list(credentials.scopes),
        expiry=expiry,
    )


def refresh_if_expired(
    google_credentials: Any,
    on_refresh: Optional[Callable[[str, Optional[float]], None]] = None,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """Refresh an expired OAuth token up front and report the new token."""
    log = logger or logging.getLogger(__name__)
    if not getattr(google_credentials, "refresh_token", None):
        return google_credentials
    if google_credentials.token and not google_credentials.expired:
        return google_credentials

    from google.auth.transport.requests import Request

    try:
        google_credentials.refresh(Request())
    except auth_exceptions.RefreshError as exc:
        log.error(f"Failed to refresh sync access token: {exc}")
        raise to_sync_error(exc, "token refresh") from exc

    if on_refresh is not None:
        expiry = google_credentials.expiry
        expiry_ts = expiry.replace(tzinfo=timezone.utc).timestamp() if expiry else None
        on_refresh(google_credentials.token, expiry_ts)
    log.info("Refreshed sync access token")
    return google_credentials


def revoke_credentials(
    credentials: StoredCredentials,
    timeout: float,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Revoke the OAuth grant. Service accounts have nothing to revoke."""
    log = logger or logging.getLogger(__name__)
    token = credentials.refresh_token or credentials.access_token
    if credentials.is_service_account or not token:
        return True

    try:
        response = requests.post(
            REVOKE_URL,
            params={"token": token},
            headers={"content-type": "application/x-www-form-urlencoded"},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as exc:
        log.warning(f"Token revocation request failed: {exc}")
        return False

    if response.status_code != 200:
        log.warning(f"Token revocation returned HTTP {response.status_code}")
        return False
    log.info("Revoked sync OAuth token")
    return True


def create_client_from_config(
    client_cls: Callable[..., ClientT],
    config: dict[str, Any],
    logger_obj: Optional[logging.Logger] = None,
) -> ClientT | None:
    """Create a remote backup client from a generic config dict."""
    logger = logger_obj or logging.getLogger(__name__)
    bucket_name = config.get("bucket_name")
    if not bucket_name:
        logger.info("GCS bucket name not configured")
        return None

    credentials: Optional[StoredCredentials] = config.get("credentials")
    if credentials is None or not credentials.is_usable:
        logger.info("No usable sync credentials available")
        return None

    try:
        google_credentials = build_google_credentials(credentials)
        google_credentials = refresh_if_expired(
            google_credentials, config.get("on_token_refresh"), logger
        )
        return client_cls(
            bucket_name=bucket_name,
            credentials=google_credentials,
            project=config.get("project"),
            timeout=config.get("timeout"),
            logger_obj=logger,
        )
    except SyncError:
        raise
    except (ValueError, auth_exceptions.GoogleAuthError) as exc:
        logger.error(f"Error creating remote backup client from config: {exc}", exc_info=True)
        raise to_sync_error(exc, "client initialization") from exc
