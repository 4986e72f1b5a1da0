"""
Configuration management for the ShelfSync server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Invalid values fail fast at startup with a ValueError
    - The pull page size bounds every pull response

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep variable names stable; deployments depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


def _env_optional_int(name: str) -> int | None:
    if not os.getenv(name, "").strip():
        return None
    return _env_int(name, 0)


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        db_path: Path of the SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: How long a writer waits for the write lock
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    db_path: str = "./data/shelfsync.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("DATABASE_PATH", "./data/shelfsync.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=_env_int("SQLITE_BUSY_TIMEOUT_MS", 5000),
            cache_size_pages=_env_int("SQLITE_CACHE_SIZE", -64000),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" allows any)
    """

    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = tuple(
            origin.strip() for origin in os.getenv("CORS_ORIGIN", "*").split(",") if origin.strip()
        )
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
            cors_origins=origins or ("*",),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Sync protocol limits.

    Attributes:
        pull_page_size: Maximum events returned by one pull
        max_batch_operations: Maximum operations accepted in one push,
            or None for no limit
    """

    pull_page_size: int = 1000
    max_batch_operations: int | None = None

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            pull_page_size=_env_int("SYNC_PULL_PAGE_SIZE", 1000),
            max_batch_operations=_env_optional_int("SYNC_MAX_BATCH_OPERATIONS"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: SQLite storage configuration
        http: HTTP server configuration
        sync: Sync protocol limits
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            http=HttpConfig.from_env(),
            sync=SyncConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_path:
            raise ValueError("DATABASE_PATH must not be empty")
        if not 0 < self.http.port < 65536:
            raise ValueError(f"PORT must be between 1 and 65535, got {self.http.port}")
        if self.sync.pull_page_size <= 0:
            raise ValueError("SYNC_PULL_PAGE_SIZE must be positive")
        if self.sync.max_batch_operations is not None and self.sync.max_batch_operations <= 0:
            raise ValueError("SYNC_MAX_BATCH_OPERATIONS must be positive")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(os.path.dirname(os.path.abspath(self.storage.db_path))):
            logger.warning(
                f"Database directory does not exist: {self.storage.db_path}. "
                "It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "cors_origins": list(self.http.cors_origins),
                "pull_page_size": self.sync.pull_page_size,
                "max_batch_operations": self.sync.max_batch_operations,
                "log_level": self.observability.log_level,
            },
        )
