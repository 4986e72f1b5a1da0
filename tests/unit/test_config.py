"""
Unit tests for environment configuration.
"""

import pytest

from backend.shelfsync_server.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
    SyncConfig,
)

ENV_VARS = (
    "DATABASE_PATH",
    "SQLITE_WAL_MODE",
    "SQLITE_BUSY_TIMEOUT_MS",
    "SQLITE_CACHE_SIZE",
    "HOST",
    "PORT",
    "CORS_ORIGIN",
    "SYNC_PULL_PAGE_SIZE",
    "SYNC_MAX_BATCH_OPERATIONS",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


class TestServerConfig:
    """Tests for ServerConfig.from_env."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = ServerConfig.from_env()

        assert config.storage.db_path == "./data/shelfsync.db"
        assert config.storage.wal_mode is True
        assert config.http.host == "0.0.0.0"
        assert config.http.port == 3000
        assert config.http.cors_origins == ("*",)
        assert config.sync.pull_page_size == 1000
        assert config.sync.max_batch_operations is None
        assert config.observability.log_format == "json"

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_PATH", "/tmp/sync.db")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("CORS_ORIGIN", "https://a.example, https://b.example")
        monkeypatch.setenv("SYNC_PULL_PAGE_SIZE", "50")
        monkeypatch.setenv("SYNC_MAX_BATCH_OPERATIONS", "200")
        monkeypatch.setenv("LOG_FORMAT", "TEXT")

        config = ServerConfig.from_env()

        assert config.storage.db_path == "/tmp/sync.db"
        assert config.storage.wal_mode is False
        assert config.http.port == 8080
        assert config.http.cors_origins == ("https://a.example", "https://b.example")
        assert config.sync.pull_page_size == 50
        assert config.sync.max_batch_operations == 200
        assert config.observability.log_format == "text"

    def test_non_integer_rejected(self, monkeypatch):
        monkeypatch.setenv("PORT", "http")

        with pytest.raises(ValueError, match="PORT must be an integer"):
            ServerConfig.from_env()

    def test_blank_batch_limit_means_unlimited(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_BATCH_OPERATIONS", "  ")

        assert ServerConfig.from_env().sync.max_batch_operations is None

    def test_non_integer_batch_limit_rejected(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_BATCH_OPERATIONS", "lots")

        with pytest.raises(ValueError, match="SYNC_MAX_BATCH_OPERATIONS must be an integer"):
            ServerConfig.from_env()

    @pytest.mark.parametrize(
        "config",
        [
            ServerConfig(storage=StorageConfig(db_path="")),
            ServerConfig(http=HttpConfig(port=0)),
            ServerConfig(sync=SyncConfig(pull_page_size=0)),
            ServerConfig(sync=SyncConfig(max_batch_operations=-1)),
            ServerConfig(observability=ObservabilityConfig(log_format="xml")),
        ],
    )
    def test_validate_rejects(self, config):
        with pytest.raises(ValueError):
            config.validate()
