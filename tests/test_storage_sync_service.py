"""
Tests for push/pull, sync checks and disconnect through StorageSyncService.
"""
import hashlib
import threading
from datetime import timedelta
from unittest.mock import patch

import pytest

from data.services import storage_sync_transfer_ops
from data.services.storage_sync_service import StorageSyncService
from data.services.sync_errors import (
    NoLocalDataError,
    NotConfiguredError,
    RemoteNotFoundError,
    RemoteTransportError,
    ReplaceFailedError,
    RestoreFailedError,
)
from data.services.sync_types import FileTarget, SyncState
from data.storage.credential_store import StoredCredentials
from tests.fixtures.cloud_fixtures import MOCK_SERVICE_ACCOUNT_INFO
from tests.fixtures.common_fixtures import CLOUD_DB_BYTES, LOCAL_DB_BYTES


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class TestPush:
    """Upload with backup-before-overwrite."""

    def test_push_requires_configuration(self, sync_service, local_db):
        with pytest.raises(NotConfiguredError):
            sync_service.push()

    def test_push_requires_local_database(self, configured_service):
        with pytest.raises(NoLocalDataError) as exc_info:
            configured_service.push()
        assert exc_info.value.to_dict()["code"] == "no_local_data"

    def test_push_uploads_and_records_sync_markers(self, configured_service, local_db, fake_remote, folder_target):
        result = configured_service.push()

        config = configured_service.get_config()
        assert result.success
        assert result.db_hash == sha256(LOCAL_DB_BYTES)
        assert config.synced_db_hash == result.db_hash
        assert config.last_synced_at == result.last_synced_at
        assert result.remote_file_id == "puffin-sync/puffin-backup.duckdb"

        stored = fake_remote.objects[fake_remote.object_name(folder_target)]
        assert stored.data == LOCAL_DB_BYTES
        assert stored.fingerprint == result.db_hash

    def test_push_then_check_is_in_sync(self, configured_service, local_db):
        configured_service.push()

        result = configured_service.check()

        assert result.state is SyncState.IN_SYNC
        assert result.can_edit is True

    def test_push_takes_pre_push_backup(self, configured_service, local_db):
        result = configured_service.push()

        assert result.backup_path.name.startswith("pre-push-")
        assert result.backup_path.read_bytes() == LOCAL_DB_BYTES

    def test_pre_push_backups_are_pruned_to_five(self, configured_service, local_db):
        for i in range(6):
            local_db.write_bytes(LOCAL_DB_BYTES + str(i).encode())
            configured_service.push()

        pre_push = [b for b in configured_service.list_backups() if b.tag == "pre-push"]
        assert len(pre_push) == 5
        # Oldest (content "...0") was pruned
        contents = {b.path.read_bytes() for b in pre_push}
        assert LOCAL_DB_BYTES + b"0" not in contents

    def test_failed_upload_leaves_config_untouched(self, configured_service, local_db, fake_remote):
        before = configured_service.get_config()
        fake_remote.fail_with = RemoteTransportError("upload timed out")

        with pytest.raises(RemoteTransportError):
            configured_service.push()

        assert configured_service.get_config() == before

    def test_push_without_credentials_fails(self, sync_settings, local_db, test_logger):
        service = StorageSyncService(settings=sync_settings, client_factory=lambda: None, logger_obj=test_logger)
        service.configure_folder("puffin-sync")

        with pytest.raises(RemoteTransportError, match="Not authenticated"):
            service.push()


class TestPull:
    """Download to a temp file, then swap it in."""

    def test_pull_requires_configuration(self, sync_service):
        with pytest.raises(NotConfiguredError):
            sync_service.pull()

    def test_pull_replaces_local_and_records_hash(self, configured_service, local_db, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES, fingerprint=sha256(CLOUD_DB_BYTES))

        result = configured_service.pull()

        assert local_db.read_bytes() == CLOUD_DB_BYTES
        assert result.db_hash == sha256(CLOUD_DB_BYTES)
        assert configured_service.get_config().synced_db_hash == sha256(CLOUD_DB_BYTES)
        assert result.backup_path.name.startswith("pre-pull-")
        assert result.backup_path.read_bytes() == LOCAL_DB_BYTES
        assert not configured_service.settings.TEMP_DOWNLOAD_PATH.exists()

    def test_pull_result_reports_backup_path(self, configured_service, local_db, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES)

        payload = configured_service.pull().to_dict()

        assert payload["success"] is True
        assert payload["backupPath"] == str(configured_service.list_backups()[0].path)
        assert payload["backupFilename"] == configured_service.list_backups()[0].filename

    def test_pull_then_check_is_in_sync(self, configured_service, local_db, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES, fingerprint=sha256(CLOUD_DB_BYTES))
        configured_service.pull()

        assert configured_service.check().state is SyncState.IN_SYNC

    def test_pull_without_local_database_skips_backup(self, configured_service, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES)

        result = configured_service.pull()

        assert result.backup_path is None
        assert configured_service.settings.DEFAULT_DB_PATH.read_bytes() == CLOUD_DB_BYTES

    def test_pull_removes_stale_wal(self, configured_service, local_db, fake_remote, folder_target):
        wal = local_db.with_name(local_db.name + ".wal")
        wal.write_bytes(b"stale wal")
        fake_remote.put(folder_target, CLOUD_DB_BYTES)

        configured_service.pull()

        assert not wal.exists()

    def test_missing_remote_reports_not_found(self, configured_service, local_db):
        before = configured_service.get_config()

        with pytest.raises(RemoteNotFoundError) as exc_info:
            configured_service.pull()

        assert exc_info.value.to_dict()["notFound"] is True
        assert local_db.read_bytes() == LOCAL_DB_BYTES
        assert configured_service.get_config() == before
        assert not configured_service.settings.TEMP_DOWNLOAD_PATH.exists()

    def test_download_failure_cleans_temp_file(self, configured_service, local_db, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES)
        temp_path = configured_service.settings.TEMP_DOWNLOAD_PATH

        def partial_download(target, destination_path):
            destination_path.write_bytes(b"partial")
            raise RemoteTransportError("connection reset")

        with patch.object(fake_remote, "download", side_effect=partial_download):
            with pytest.raises(RemoteTransportError):
                configured_service.pull()

        assert not temp_path.exists()
        assert local_db.read_bytes() == LOCAL_DB_BYTES

    def test_replace_failure_restores_previous_file(self, configured_service, local_db, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES)
        before = configured_service.get_config()

        def failing_swap(temp_path, db_path, logger):
            db_path.unlink()
            raise OSError("disk full")

        with patch.object(storage_sync_transfer_ops, "_swap_into_place", side_effect=failing_swap):
            with pytest.raises(ReplaceFailedError) as exc_info:
                configured_service.pull()

        assert local_db.read_bytes() == LOCAL_DB_BYTES
        assert exc_info.value.backup_path.exists()
        assert configured_service.get_config() == before

    def test_failed_restore_is_unrecoverable(self, configured_service, local_db, fake_remote, folder_target, mock_logger):
        configured_service.logger = mock_logger
        fake_remote.put(folder_target, CLOUD_DB_BYTES)

        with patch.object(storage_sync_transfer_ops, "_swap_into_place", side_effect=OSError("disk full")), \
                patch.object(storage_sync_transfer_ops, "_restore_file", side_effect=OSError("read-only fs")):
            with pytest.raises(RestoreFailedError) as exc_info:
                configured_service.pull()

        error = exc_info.value
        assert error.to_dict()["unrecoverable"] is True
        assert error.backup_path.read_bytes() == LOCAL_DB_BYTES
        mock_logger.assert_logged("critical", "Could not restore local database")


class TestCheckScenarios:
    """End-to-end sync checks against the in-memory remote."""

    def test_unconfigured(self, sync_service):
        assert sync_service.check().state is SyncState.NOT_CONFIGURED

    def test_no_cloud_backup(self, configured_service, local_db):
        result = configured_service.check()

        assert result.state is SyncState.NO_CLOUD_BACKUP
        assert result.can_edit is True

    def test_existing_cloud_backup_on_new_device(self, configured_service, local_db, fake_remote, folder_target):
        fake_remote.put(folder_target, CLOUD_DB_BYTES, fingerprint=sha256(CLOUD_DB_BYTES))

        result = configured_service.check()

        assert result.state is SyncState.NEVER_SYNCED
        assert result.can_edit is False

    def test_local_edit_after_sync(self, configured_service, local_db):
        configured_service.push()
        local_db.write_bytes(LOCAL_DB_BYTES + b" edited")

        result = configured_service.check()

        assert result.state is SyncState.LOCAL_ONLY
        assert result.can_edit is True

    def test_other_device_pushed(self, configured_service, local_db, fake_remote, folder_target):
        configured_service.push()
        fake_remote.put(folder_target, CLOUD_DB_BYTES, fingerprint=sha256(CLOUD_DB_BYTES))

        result = configured_service.check()

        assert result.state is SyncState.CLOUD_ONLY
        assert result.can_edit is False

    def test_other_device_pushed_without_fingerprint(self, configured_service, local_db, fake_remote, folder_target):
        pushed = configured_service.push()
        fake_remote.put(folder_target, CLOUD_DB_BYTES, updated=pushed.last_synced_at + timedelta(minutes=5))

        assert configured_service.check().state is SyncState.CLOUD_ONLY

    def test_both_sides_changed(self, configured_service, local_db, fake_remote, folder_target):
        configured_service.push()
        fake_remote.put(folder_target, CLOUD_DB_BYTES, fingerprint=sha256(CLOUD_DB_BYTES))
        local_db.write_bytes(LOCAL_DB_BYTES + b" edited")

        result = configured_service.check()

        assert result.state is SyncState.CONFLICT
        assert result.can_edit is False

    def test_remote_unreachable(self, configured_service, local_db, fake_remote):
        configured_service.push()
        fake_remote.fail_with = RemoteTransportError("offline")

        result = configured_service.check()

        assert result.state is SyncState.CHECK_FAILED
        assert result.can_edit is True
        assert result.warning

    def test_file_based_sync(self, sync_service, local_db, fake_remote):
        sync_service.configure_file("shared/puffin.duckdb", "puffin.duckdb")
        fake_remote.put(FileTarget("shared/puffin.duckdb"), CLOUD_DB_BYTES)

        assert sync_service.get_config().is_file_based_sync
        assert sync_service.check().state is SyncState.NEVER_SYNCED


class TestConfiguration:

    def test_new_target_resets_sync_markers(self, configured_service, local_db):
        configured_service.push()

        config = configured_service.configure_folder("another-folder")

        assert config.last_synced_at is None
        assert config.synced_db_hash is None

    def test_same_target_keeps_sync_markers(self, configured_service, local_db, folder_target):
        configured_service.push()

        config = configured_service.configure_folder(folder_target.folder_id, folder_target.folder_name)

        assert config.last_synced_at is not None

    def test_renaming_target_keeps_sync_markers(self, configured_service, local_db, folder_target):
        configured_service.push()

        config = configured_service.configure_folder(folder_target.folder_id, "Renamed Folder")

        assert config.target.folder_name == "Renamed Folder"
        assert config.last_synced_at is not None
        assert configured_service.check().state is SyncState.IN_SYNC

    @pytest.mark.parametrize("bad_id", ["", "../escape", "a b", "folder/../../x"])
    def test_invalid_target_ids_rejected(self, sync_service, bad_id):
        with pytest.raises(ValueError):
            sync_service.configure_folder(bad_id)

    def test_status_reports_local_and_remote(self, configured_service, local_db):
        configured_service.push()

        status = configured_service.status()

        assert status["configured"] is True
        assert status["local"]["exists"] is True
        assert status["remote"]["exists"] is True
        assert status["target"]["folder_id"] == "puffin-sync"

    def test_status_captures_remote_error(self, configured_service, fake_remote):
        fake_remote.fail_with = RemoteTransportError("offline")

        status = configured_service.status()

        assert status["remote"]["error"] == "offline"

    def test_status_unconfigured(self, sync_service):
        assert sync_service.status() == {"configured": False}


class TestCredentials:

    def test_service_account_email_is_recorded(self, configured_service):
        configured_service.set_credentials(StoredCredentials(service_account_info=MOCK_SERVICE_ACCOUNT_INFO))

        assert configured_service.get_config().user_email == MOCK_SERVICE_ACCOUNT_INFO["client_email"]
        assert configured_service.status()["userEmail"] == MOCK_SERVICE_ACCOUNT_INFO["client_email"]

    def test_oauth_account_email_is_recorded(self, configured_service):
        configured_service.set_credentials(
            StoredCredentials(client_id="id", client_secret="secret", refresh_token="refresh"),
            user_email="someone@example.com",
        )

        assert configured_service.status()["userEmail"] == "someone@example.com"

    def test_clearing_credentials_forgets_email(self, configured_service):
        configured_service.set_credentials(StoredCredentials(service_account_info=MOCK_SERVICE_ACCOUNT_INFO))

        configured_service.clear_credentials()

        assert configured_service.get_config().user_email is None
        assert configured_service.get_config().is_configured


class TestReset:

    def test_reset_forgets_sync_markers(self, configured_service, local_db, folder_target):
        configured_service.push()

        backup_path = configured_service.reset_database()

        config = configured_service.get_config()
        assert backup_path.name.startswith("pre-reset-")
        assert config.target == folder_target
        assert config.last_synced_at is None
        assert config.synced_db_hash is None
        result = configured_service.check()
        assert result.state is SyncState.NEVER_SYNCED
        assert result.can_edit is False

    def test_fresh_database_after_reset_cannot_silently_replace_cloud(
        self, configured_service, local_db, fake_remote, folder_target
    ):
        configured_service.push()
        configured_service.reset_database()
        local_db.write_bytes(b"fresh empty db")

        result = configured_service.check()

        assert result.state is SyncState.NEVER_SYNCED
        assert result.can_edit is False
        assert fake_remote.objects[fake_remote.object_name(folder_target)].data == LOCAL_DB_BYTES

    def test_reset_when_never_synced(self, configured_service, local_db):
        configured_service.reset_database()

        assert not local_db.exists()
        assert configured_service.get_config().last_synced_at is None


class TestDisconnect:

    def test_disconnect_clears_config_and_credentials(self, configured_service, local_db):
        configured_service.set_credentials(
            StoredCredentials(client_id="id", client_secret="secret", refresh_token="refresh")
        )

        with patch("data.services.storage_sync_service.revoke_credentials", return_value=True) as revoke:
            assert configured_service.disconnect() is True

        revoke.assert_called_once()
        assert not configured_service.get_config().is_configured
        assert configured_service.credential_store.load() is None
        assert local_db.exists()

    def test_disconnect_proceeds_when_revocation_fails(self, configured_service):
        configured_service.set_credentials(
            StoredCredentials(client_id="id", client_secret="secret", refresh_token="refresh")
        )

        with patch("data.services.storage_sync_service.revoke_credentials", return_value=False):
            assert configured_service.disconnect() is False

        assert not configured_service.get_config().is_configured
        assert not configured_service.settings.SYNC_CONFIG_FILE.exists()
        assert configured_service.credential_store.load() is None

    def test_disconnect_without_credentials(self, configured_service):
        with patch("data.services.storage_sync_service.revoke_credentials") as revoke:
            assert configured_service.disconnect() is True

        revoke.assert_not_called()


class TestSerialization:
    """A transfer in flight holds the service lock until it finishes."""

    @pytest.fixture
    def gated_upload(self, fake_remote):
        entered = threading.Event()
        release = threading.Event()
        calls = []
        original_upload = fake_remote.upload

        def upload(target, source_path, fingerprint):
            calls.append("upload")
            if len(calls) == 1:
                entered.set()
                release.wait(timeout=5)
            return original_upload(target, source_path, fingerprint)

        fake_remote.upload = upload
        return entered, release, calls

    @staticmethod
    def start(operation, errors):
        def run():
            try:
                operation()
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        return thread

    def test_second_push_waits_for_first(self, configured_service, local_db, gated_upload):
        entered, release, calls = gated_upload
        errors = []

        first = self.start(configured_service.push, errors)
        assert entered.wait(timeout=5)
        second = self.start(configured_service.push, errors)
        second.join(timeout=0.3)

        assert second.is_alive()
        assert calls == ["upload"]

        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert not errors
        assert calls == ["upload", "upload"]

    def test_pull_waits_for_push(self, configured_service, local_db, fake_remote, gated_upload):
        entered, release, calls = gated_upload
        downloads = []
        original_download = fake_remote.download

        def download(target, destination_path):
            downloads.append(calls[:])
            return original_download(target, destination_path)

        fake_remote.download = download
        errors = []

        pushing = self.start(configured_service.push, errors)
        assert entered.wait(timeout=5)
        pulling = self.start(configured_service.pull, errors)
        pulling.join(timeout=0.3)

        assert pulling.is_alive()
        assert downloads == []

        release.set()
        pushing.join(timeout=5)
        pulling.join(timeout=5)

        assert not errors
        assert downloads == [["upload"]]
        assert local_db.read_bytes() == LOCAL_DB_BYTES
        assert configured_service.check().state is SyncState.IN_SYNC
