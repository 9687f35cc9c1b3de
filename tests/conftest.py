# tests/conftest.py
import logging
import os
import sys

import pytest

# 1. Make sure `src/` and the project root are on the import path:
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
sys.path.insert(0, os.path.join(ROOT, "src"))
sys.path.insert(0, ROOT)

from config.settings import Settings  # noqa: E402
from data.services.storage_sync_service import StorageSyncService  # noqa: E402
from data.services.sync_types import FolderTarget  # noqa: E402
from tests.fixtures.cloud_fixtures import FakeRemoteBackupClient  # noqa: E402
from tests.fixtures.common_fixtures import LOCAL_DB_BYTES  # noqa: E402


@pytest.fixture
def sync_settings(tmp_path):
    """Settings rooted at an isolated data directory."""
    settings = Settings.for_data_dir(tmp_path / "data")
    settings.ensure_directories()
    return settings


@pytest.fixture
def fake_remote():
    return FakeRemoteBackupClient()


@pytest.fixture
def test_logger():
    return logging.getLogger("puffin_sync_tests")


@pytest.fixture
def sync_service(sync_settings, fake_remote, test_logger):
    """Sync service wired to the in-memory remote."""
    return StorageSyncService(
        settings=sync_settings,
        client_factory=lambda: fake_remote,
        logger_obj=test_logger,
    )


@pytest.fixture
def folder_target():
    return FolderTarget(folder_id="puffin-sync", folder_name="Puffin Sync")


@pytest.fixture
def configured_service(sync_service, folder_target):
    sync_service.configure_folder(folder_target.folder_id, folder_target.folder_name)
    return sync_service


@pytest.fixture
def local_db(sync_settings):
    """A local database file with plain bytes (no engine needed)."""
    sync_settings.DEFAULT_DB_PATH.write_bytes(LOCAL_DB_BYTES)
    return sync_settings.DEFAULT_DB_PATH


@pytest.fixture
def mock_logger():
    """Provide a mock logger with assertion helpers."""
    from unittest.mock import MagicMock

    logger = MagicMock()

    # Track all log calls
    logger._calls = {
        "debug": [],
        "info": [],
        "warning": [],
        "error": [],
        "critical": [],
    }

    def make_log_method(level):
        def log_method(msg, *args, **kwargs):
            logger._calls[level].append(str(msg))

        return log_method

    for level in logger._calls:
        setattr(logger, level, make_log_method(level))

    def assert_logged(level, substring):
        messages = logger._calls.get(level, [])
        assert any(substring in msg for msg in messages), (
            f"'{substring}' not found in {level} logs: {messages}"
        )

    logger.assert_logged = assert_logged

    return logger
