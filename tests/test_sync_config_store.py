"""
Tests for the persisted sync configuration.
"""
import json
from datetime import datetime, timezone

import pytest

from data.services.sync_config_store import SyncConfigStore
from data.services.sync_types import FileTarget, FolderTarget, SyncConfig, target_from_dict

SYNCED_AT = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "sync-config.json"


class TestSyncConfigStore:

    def test_first_run_is_unconfigured(self, config_file):
        store = SyncConfigStore(config_file)

        assert store.get() == SyncConfig()
        assert not store.get().is_configured
        assert not config_file.exists()

    def test_round_trip_through_disk(self, config_file):
        store = SyncConfigStore(config_file)
        store.set_target(FolderTarget("puffin-sync", "Puffin Sync"))
        store.mark_synced("f" * 64, SYNCED_AT)
        store.set_user_email("someone@example.com")

        reloaded = SyncConfigStore(config_file).get()

        assert reloaded.target == FolderTarget("puffin-sync", "Puffin Sync")
        assert reloaded.last_synced_at == SYNCED_AT
        assert reloaded.synced_db_hash == "f" * 64
        assert reloaded.user_email == "someone@example.com"

    def test_file_layout(self, config_file):
        store = SyncConfigStore(config_file)
        store.set_target(FileTarget("shared/puffin.duckdb"))
        store.mark_synced("abc", SYNCED_AT)

        data = json.loads(config_file.read_text(encoding="utf-8"))

        assert data["target"]["kind"] == "file"
        assert data["target"]["backup_file_id"] == "shared/puffin.duckdb"
        assert data["last_synced_at"] == "2024-03-01T08:30:00Z"

    def test_changing_target_resets_markers(self, config_file):
        store = SyncConfigStore(config_file)
        store.set_target(FolderTarget("a"))
        store.mark_synced("abc", SYNCED_AT)

        config = store.set_target(FileTarget("b/puffin.duckdb"))

        assert config.is_file_based_sync
        assert config.last_synced_at is None
        assert config.synced_db_hash is None

    def test_renaming_target_keeps_markers(self, config_file):
        store = SyncConfigStore(config_file)
        store.set_target(FolderTarget("puffin-sync", "Puffin Sync"))
        store.mark_synced("abc", SYNCED_AT)

        config = store.set_target(FolderTarget("puffin-sync", "Household"))

        assert config.target.folder_name == "Household"
        assert config.synced_db_hash == "abc"
        assert SyncConfigStore(config_file).get().target.folder_name == "Household"

    def test_same_id_of_other_kind_is_a_new_target(self, config_file):
        store = SyncConfigStore(config_file)
        store.set_target(FileTarget("shared/puffin.duckdb"))
        store.mark_synced("abc", SYNCED_AT)

        config = store.set_target(FolderTarget("shared/puffin.duckdb"))

        assert config.last_synced_at is None

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", ""])
    def test_corrupt_file_loads_empty(self, config_file, content, mock_logger):
        config_file.write_text(content, encoding="utf-8")

        store = SyncConfigStore(config_file, mock_logger)

        assert store.get() == SyncConfig()
        assert mock_logger._calls["warning"]

    def test_clear_removes_file(self, config_file):
        store = SyncConfigStore(config_file)
        store.set_target(FolderTarget("a"))

        store.clear()

        assert not config_file.exists()
        assert store.get() == SyncConfig()

    def test_save_leaves_no_temp_file(self, config_file):
        SyncConfigStore(config_file).set_target(FolderTarget("a"))

        assert [p.name for p in config_file.parent.iterdir()] == ["sync-config.json"]

    def test_reload_picks_up_external_changes(self, config_file):
        store = SyncConfigStore(config_file)
        SyncConfigStore(config_file).set_target(FolderTarget("elsewhere"))

        assert store.reload().target == FolderTarget("elsewhere")


@pytest.mark.parametrize(
    "data",
    [None, {}, {"kind": "folder"}, {"kind": "file", "folder_id": "x"}, {"kind": "drive", "folder_id": "x"}],
)
def test_malformed_targets_are_dropped(data):
    assert target_from_dict(data) is None
