"""Sync state evaluation: decide how local and cloud copies relate and whether editing is safe.

The decision itself (:func:`evaluate_sync_state`) is a pure function over
already-gathered inputs. :class:`SyncStateEvaluator` does the I/O that gathers
them (config, local fingerprint, remote backup info) and never raises.

Editing policy: the engine fails open when verification is impossible or
uninformative (not configured, no cloud backup, check failed, local-only
changes) and fails closed only when proceeding could silently lose data
(never synced, cloud-only changes, conflict). This asymmetry is intentional.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from config.sync import SyncSettings
from data.services.fingerprint_service import FingerprintService
from data.services.sync_config_store import SyncConfigStore
from data.services.sync_types import RemoteBackupInfo, SyncCheckResult, SyncConfig, SyncState
from data.storage.cloud_storage import RemoteBackupClient

CHECK_FAILED_WARNING = "Could not verify sync status. Proceed with caution."

STATE_MESSAGES = {
    SyncState.NOT_CONFIGURED: "Cloud sync is not configured.",
    SyncState.CHECK_FAILED: "Could not verify sync status.",
    SyncState.NO_CLOUD_BACKUP: "No backup found in cloud. Please upload your data first.",
    SyncState.NEVER_SYNCED: (
        "Please sync with the cloud before making changes. "
        "Choose whether to keep the cloud copy or your local data."
    ),
    SyncState.IN_SYNC: "Your data is in sync with the cloud.",
    SyncState.LOCAL_ONLY: "You have local changes that are not in the cloud yet. Upload when convenient.",
    SyncState.CLOUD_ONLY: "A newer version exists in the cloud. Please download before editing.",
    SyncState.CONFLICT: (
        "Both your local data and the cloud backup changed since the last sync. "
        "Choose which version to keep."
    ),
}

# (has_local_changes, has_cloud_changes) -> (state, can_edit)
_CHANGE_MATRIX = {
    (False, False): (SyncState.IN_SYNC, True),
    (True, False): (SyncState.LOCAL_ONLY, True),
    (False, True): (SyncState.CLOUD_ONLY, False),
    (True, True): (SyncState.CONFLICT, False),
}


@dataclass(frozen=True)
class SyncInputs:
    """Everything the decision needs, gathered ahead of time."""

    config: SyncConfig
    remote: Optional[RemoteBackupInfo] = None
    remote_error: Optional[str] = None
    local_hash: Optional[str] = None


def cloud_changed_since_sync(
    config: SyncConfig,
    remote: RemoteBackupInfo,
    clock_skew_buffer: timedelta = SyncSettings.CLOCK_SKEW_BUFFER,
) -> bool:
    """
    Whether the cloud copy changed since the last confirmed sync.

    The content fingerprint decides when both sides have one. The remote mtime
    is corroborating only: it can flag a change the fingerprint missed (a writer
    that did not update the metadata) but never clears one. Without any
    fingerprint metadata the mtime comparison is all there is.
    """
    changed = False
    if remote.fingerprint_from_metadata and config.synced_db_hash:
        changed = remote.fingerprint_from_metadata != config.synced_db_hash

    if remote.modified_time is not None and config.last_synced_at is not None:
        if remote.modified_time > config.last_synced_at + clock_skew_buffer:
            changed = True

    return changed


def evaluate_sync_state(
    inputs: SyncInputs,
    clock_skew_buffer: timedelta = SyncSettings.CLOCK_SKEW_BUFFER,
) -> SyncCheckResult:
    """Map gathered inputs to a sync state and an edit-permission flag."""
    config = inputs.config

    # No sync means no constraint
    if not config.is_configured:
        return _result(SyncState.NOT_CONFIGURED, True)

    # Verification failure never blocks editing
    if inputs.remote_error is not None or inputs.remote is None:
        return _result(
            SyncState.CHECK_FAILED,
            True,
            last_synced_at=config.last_synced_at,
            warning=CHECK_FAILED_WARNING,
        )

    remote = inputs.remote
    if not remote.exists:
        return _result(SyncState.NO_CLOUD_BACKUP, True, last_synced_at=config.last_synced_at)

    # Nothing confirmed yet: either copy could be the authoritative one
    if config.last_synced_at is None:
        return _result(SyncState.NEVER_SYNCED, False, cloud_modified_at=remote.modified_time)

    has_local_changes = inputs.local_hash is not None and inputs.local_hash != config.synced_db_hash
    has_cloud_changes = cloud_changed_since_sync(config, remote, clock_skew_buffer)

    state, can_edit = _CHANGE_MATRIX[(has_local_changes, has_cloud_changes)]
    return _result(
        state,
        can_edit,
        has_local_changes=has_local_changes,
        has_cloud_changes=has_cloud_changes,
        last_synced_at=config.last_synced_at,
        cloud_modified_at=remote.modified_time,
    )


def _result(state: SyncState, can_edit: bool, **fields) -> SyncCheckResult:
    return SyncCheckResult(state=state, can_edit=can_edit, message=STATE_MESSAGES[state], **fields)


class SyncStateEvaluator:
    """Gathers config, local fingerprint and remote info, then evaluates them."""

    def __init__(
        self,
        config_store: SyncConfigStore,
        fingerprint_service: FingerprintService,
        client_provider: Callable[[], RemoteBackupClient],
        clock_skew_buffer: timedelta = SyncSettings.CLOCK_SKEW_BUFFER,
        logger_obj: Optional[logging.Logger] = None,
    ):
        self.config_store = config_store
        self.fingerprint_service = fingerprint_service
        self.client_provider = client_provider
        self.clock_skew_buffer = clock_skew_buffer
        self.logger = logger_obj or logging.getLogger(__name__)

    def gather(self) -> SyncInputs:
        """Collect decision inputs. Remote and local failures are captured, not raised."""
        config = self.config_store.get()
        if not config.is_configured:
            return SyncInputs(config=config)

        try:
            remote = self.client_provider().exists(config.target)
        except Exception as e:
            self.logger.warning(f"Sync check could not reach remote backup: {e}")
            return SyncInputs(config=config, remote_error=str(e))

        if not remote.exists or config.last_synced_at is None:
            return SyncInputs(config=config, remote=remote)

        try:
            local_hash = self.fingerprint_service.current_hash()
        except OSError as e:
            self.logger.warning(f"Sync check could not fingerprint local database: {e}")
            return SyncInputs(config=config, remote=remote, remote_error=f"local fingerprint failed: {e}")

        return SyncInputs(config=config, remote=remote, local_hash=local_hash)

    def evaluate(self) -> SyncCheckResult:
        """Current sync state. Never raises."""
        result = evaluate_sync_state(self.gather(), self.clock_skew_buffer)
        self.logger.info(
            f"Sync check: state={result.state.value} can_edit={result.can_edit} "
            f"local_changes={result.has_local_changes} cloud_changes={result.has_cloud_changes}"
        )
        return result
