"""
Unit tests for SyncConfigManager: defaults, persistence, env overrides, validation.
"""

import json
import logging
from datetime import timedelta
from pathlib import Path

import pytest

from catalog_sync.config import (
    DEFAULT_MAX_CHUNK_SIZE,
    DEFAULT_REFRESH_INTERVAL,
    SyncConfig,
    SyncConfigManager,
)


ENV_VARS = [
    "CATALOG_SYNC_DATA_DIR",
    "CATALOG_SYNC_REFRESH_INTERVAL",
    "CATALOG_SYNC_SYSTEM_CATALOG",
    "CATALOG_SYNC_MAX_CHUNK_SIZE",
    "CATALOG_SYNC_LOG_LEVEL",
    "CATALOG_SYNC_WORKERS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def manager(tmp_path):
    return SyncConfigManager(str(tmp_path / "data"))


class TestDefaults:
    """Defaults match the documented controller behavior."""

    def test_default_sections(self, manager):
        config = manager.create_default_config()

        assert config.refresh.interval_seconds == DEFAULT_REFRESH_INTERVAL
        assert config.refresh.interval == timedelta(minutes=5)
        assert config.refresh.system_catalog == "external"
        assert config.refresh.bundled_repositories == []
        assert config.chunking.max_chunk_size == DEFAULT_MAX_CHUNK_SIZE
        assert config.chunking.system_namespace == "cattle-system"
        assert config.scheduler.workers == 2

    def test_git_state_dir_defaults_under_data_dir(self, tmp_path):
        config = SyncConfig(data_dir=str(tmp_path))

        assert config.git.state_dir == str(tmp_path / "repos")
        assert config.database_path == str(tmp_path / "catalog.db")

    def test_data_dir_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CATALOG_SYNC_DATA_DIR", str(tmp_path / "from-env"))

        assert SyncConfigManager().data_dir == tmp_path / "from-env"


class TestPersistence:
    """Configuration is stored as JSON in the data directory."""

    def test_missing_file_loads_none(self, manager):
        assert manager.load_config() is None

    def test_save_then_load(self, manager):
        config = manager.create_default_config()
        config.refresh.interval_seconds = 60
        config.chunking.max_chunk_size = 5000
        config.refresh.bundled_repositories = ["system-charts"]

        manager.save_config(config)
        loaded = manager.load_config()

        assert loaded == config

    def test_partial_file_fills_defaults(self, manager):
        manager.data_dir.mkdir(parents=True)
        manager.config_file_path.write_text(json.dumps({"refresh": {"interval_seconds": 42}}))

        loaded = manager.load_config()

        assert loaded.refresh.interval_seconds == 42
        assert loaded.chunking.max_chunk_size == DEFAULT_MAX_CHUNK_SIZE
        assert loaded.data_dir == str(manager.data_dir)

    def test_malformed_json_raises_value_error(self, manager):
        manager.data_dir.mkdir(parents=True)
        manager.config_file_path.write_text("{broken")

        with pytest.raises(ValueError, match="parse"):
            manager.load_config()

    def test_unknown_field_raises_value_error(self, manager):
        manager.data_dir.mkdir(parents=True)
        manager.config_file_path.write_text(json.dumps({"refresh": {"bogus": 1}}))

        with pytest.raises(ValueError, match="Invalid configuration"):
            manager.load_config()


class TestEnvironmentOverrides:
    """CATALOG_SYNC_* variables override file values."""

    def test_overrides_applied(self, manager, monkeypatch):
        monkeypatch.setenv("CATALOG_SYNC_REFRESH_INTERVAL", "120")
        monkeypatch.setenv("CATALOG_SYNC_SYSTEM_CATALOG", "Bundled")
        monkeypatch.setenv("CATALOG_SYNC_MAX_CHUNK_SIZE", "2048")
        monkeypatch.setenv("CATALOG_SYNC_LOG_LEVEL", "debug")
        monkeypatch.setenv("CATALOG_SYNC_WORKERS", "4")

        config = manager.apply_env_overrides(manager.create_default_config())

        assert config.refresh.interval_seconds == 120
        assert config.refresh.system_catalog == "bundled"
        assert config.chunking.max_chunk_size == 2048
        assert config.log_level == "DEBUG"
        assert config.scheduler.workers == 4

    def test_invalid_integer_is_ignored_with_warning(self, manager, monkeypatch, caplog):
        monkeypatch.setenv("CATALOG_SYNC_REFRESH_INTERVAL", "soon")

        with caplog.at_level(logging.WARNING, logger="catalog_sync.config"):
            config = manager.apply_env_overrides(manager.create_default_config())

        assert config.refresh.interval_seconds == DEFAULT_REFRESH_INTERVAL
        assert "CATALOG_SYNC_REFRESH_INTERVAL" in caplog.text

    def test_load_or_create_applies_overrides_and_validates(self, manager, monkeypatch):
        monkeypatch.setenv("CATALOG_SYNC_WORKERS", "3")

        config = manager.load_or_create()

        assert config.scheduler.workers == 3
        assert not Path(manager.config_file_path).exists()


class TestValidation:
    """Invalid values are rejected with ValueError."""

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda c: setattr(c.refresh, "interval_seconds", 1),
            lambda c: setattr(c.refresh, "system_catalog", "embedded"),
            lambda c: setattr(c.chunking, "max_chunk_size", 0),
            lambda c: setattr(c.scheduler, "workers", 0),
            lambda c: setattr(c.http, "timeout_seconds", 0),
            lambda c: setattr(c, "log_level", "LOUD"),
        ],
    )
    def test_invalid_values_rejected(self, manager, mutate):
        config = manager.create_default_config()
        mutate(config)

        with pytest.raises(ValueError):
            manager.validate_config(config)

    def test_defaults_are_valid(self, manager):
        manager.validate_config(manager.create_default_config())

    def test_load_or_create_rejects_invalid_override(self, manager, monkeypatch):
        monkeypatch.setenv("CATALOG_SYNC_SYSTEM_CATALOG", "somewhere")

        with pytest.raises(ValueError):
            manager.load_or_create()
