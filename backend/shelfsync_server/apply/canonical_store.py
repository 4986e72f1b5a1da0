"""
Canonical SQLite store for ShelfSync.

This module owns the server database file, which holds:
- Canonical entity tables (games, tags, views, settings)
- The append-only sync_events log
- The write-once idempotency_keys ledger

Connections are opened per unit of work. A push batch runs inside a single
``transaction()``; reads (pull, health, CLI) use ``read_connection()``.

Invariants:
    - One BEGIN IMMEDIATE transaction per push batch; writers are serialized
    - sync_events rows can be inserted but never updated or deleted (triggers)
    - idempotency_keys rows are write-once (trigger)
    - tags/views ids come from AUTOINCREMENT and are never reused

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS)
    - Never drop the immutability triggers
    - Use savepoints for anything that may need a partial rollback

Table schema:
    games:
        - igdb_game_id TEXT
        - platform_igdb_id INTEGER
        - payload_json TEXT
        - updated_at TEXT
        - PRIMARY KEY (igdb_game_id, platform_igdb_id)

    tags / views:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - payload_json TEXT
        - updated_at TEXT

    settings:
        - setting_key TEXT PRIMARY KEY
        - setting_value TEXT
        - updated_at TEXT

    sync_events:
        - event_id INTEGER PRIMARY KEY AUTOINCREMENT
        - entity_type TEXT
        - entity_key TEXT
        - operation TEXT
        - payload_json TEXT
        - server_timestamp TEXT

    idempotency_keys:
        - op_id TEXT PRIMARY KEY
        - result_json TEXT
        - created_at TEXT
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..sync.types import EntityType, utc_timestamp

logger = logging.getLogger(__name__)

RECORD_TABLES = {
    EntityType.TAG: "tags",
    EntityType.VIEW: "views",
}


class StoreNotInitializedError(Exception):
    """Database file does not exist yet."""

    pass


class CanonicalStore:
    """SQLite store for canonical entities, the event log and the ledger.

    Thread safety:
        Each unit of work opens its own connection, so the store can be
        shared by executor threads. SQLite WAL mode lets pulls read while
        a push holds the write lock.

    Example:
        >>> store = CanonicalStore("/var/lib/shelfsync/shelfsync.db")
        >>> store.initialize()
        >>> with store.transaction() as conn:
        ...     store.upsert_setting(conn, "theme", "dark")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: How long a writer waits for the write lock
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def _get_connection(self, create: bool = False) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Args:
            create: Whether to create the database file if missing

        Yields:
            SQLite connection in autocommit mode (explicit transactions)

        Raises:
            StoreNotInitializedError: If the file is missing and create=False
        """
        if not create and not self.db_path.exists():
            raise StoreNotInitializedError(f"Database not found: {self.db_path}")

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS games (
                igdb_game_id TEXT NOT NULL,
                platform_igdb_id INTEGER NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL,
                PRIMARY KEY (igdb_game_id, platform_igdb_id)
            );

            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                payload_json TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS views (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                payload_json TEXT NOT NULL DEFAULT '{}',
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS settings (
                setting_key TEXT PRIMARY KEY,
                setting_value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sync_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_type TEXT NOT NULL,
                entity_key TEXT NOT NULL,
                operation TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                server_timestamp TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sync_events_entity
                ON sync_events(entity_type, entity_key);

            CREATE TRIGGER IF NOT EXISTS sync_events_no_update
            BEFORE UPDATE ON sync_events
            BEGIN
                SELECT RAISE(ABORT, 'sync_events is append-only');
            END;

            CREATE TRIGGER IF NOT EXISTS sync_events_no_delete
            BEFORE DELETE ON sync_events
            BEGIN
                SELECT RAISE(ABORT, 'sync_events is append-only');
            END;

            CREATE TABLE IF NOT EXISTS idempotency_keys (
                op_id TEXT PRIMARY KEY,
                result_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TRIGGER IF NOT EXISTS idempotency_keys_no_update
            BEFORE UPDATE ON idempotency_keys
            BEGIN
                SELECT RAISE(ABORT, 'idempotency_keys is write-once');
            END;

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'));
        """)

    def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection(create=True) as conn:
            self._create_schema(conn)
        logger.info("Initialized sync database", extra={"db_path": str(self.db_path)})

    def exists(self) -> bool:
        return self.db_path.exists()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a unit of work in one write transaction.

        BEGIN IMMEDIATE takes the write lock up front, so concurrent batches
        are serialized and each batch's events get consecutive ids. Any
        exception rolls the whole transaction back and is re-raised.
        """
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def read_connection(self) -> Iterator[sqlite3.Connection]:
        """Connection for read-only work."""
        with self._get_connection() as conn:
            yield conn

    @staticmethod
    @contextmanager
    def savepoint(conn: sqlite3.Connection, name: str) -> Iterator[sqlite3.Connection]:
        """Nested scope that can be undone without aborting the transaction."""
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name}")

    # --- games ---

    def upsert_game(
        self,
        conn: sqlite3.Connection,
        igdb_game_id: str,
        platform_igdb_id: int,
        payload: dict[str, Any],
    ) -> None:
        conn.execute(
            """
            INSERT INTO games (igdb_game_id, platform_igdb_id, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (igdb_game_id, platform_igdb_id)
            DO UPDATE SET payload_json = excluded.payload_json, updated_at = excluded.updated_at
            """,
            (igdb_game_id, platform_igdb_id, json.dumps(payload), utc_timestamp()),
        )

    def delete_game(
        self,
        conn: sqlite3.Connection,
        igdb_game_id: str,
        platform_igdb_id: int,
    ) -> bool:
        cursor = conn.execute(
            "DELETE FROM games WHERE igdb_game_id = ? AND platform_igdb_id = ?",
            (igdb_game_id, platform_igdb_id),
        )
        return cursor.rowcount > 0

    def get_game(self, igdb_game_id: str, platform_igdb_id: int) -> dict[str, Any] | None:
        """Get the stored payload of a game, or None."""
        with self.read_connection() as conn:
            row = conn.execute(
                "SELECT payload_json FROM games WHERE igdb_game_id = ? AND platform_igdb_id = ?",
                (igdb_game_id, platform_igdb_id),
            ).fetchone()
            return json.loads(row["payload_json"]) if row else None

    # --- tags / views ---

    def _record_table(self, entity_type: EntityType) -> str:
        try:
            return RECORD_TABLES[entity_type]
        except KeyError:
            raise ValueError(f"{entity_type.value} is not an id-keyed entity") from None

    def upsert_record(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        record_id: int,
        payload: dict[str, Any],
    ) -> int:
        """Insert a row with an explicit id, or overwrite it on conflict."""
        table = self._record_table(entity_type)
        conn.execute(
            f"""
            INSERT INTO {table} (id, payload_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT (id)
            DO UPDATE SET payload_json = excluded.payload_json, updated_at = excluded.updated_at
            """,
            (record_id, json.dumps(payload), utc_timestamp()),
        )
        return record_id

    def insert_record(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        payload: dict[str, Any],
    ) -> int:
        """Insert a row and return the id the store allocated."""
        table = self._record_table(entity_type)
        cursor = conn.execute(
            f"INSERT INTO {table} (payload_json, updated_at) VALUES (?, ?)",
            (json.dumps(payload), utc_timestamp()),
        )
        return int(cursor.lastrowid)

    def update_record_payload(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        record_id: int,
        payload: dict[str, Any],
    ) -> None:
        table = self._record_table(entity_type)
        conn.execute(
            f"UPDATE {table} SET payload_json = ? WHERE id = ?",
            (json.dumps(payload), record_id),
        )

    def delete_record(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        record_id: int,
    ) -> bool:
        table = self._record_table(entity_type)
        cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def get_record(self, entity_type: EntityType, record_id: int) -> dict[str, Any] | None:
        """Get the stored payload of a tag or view, or None."""
        table = self._record_table(entity_type)
        with self.read_connection() as conn:
            row = conn.execute(
                f"SELECT payload_json FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row["payload_json"]) if row else None

    # --- settings ---

    def upsert_setting(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            """
            INSERT INTO settings (setting_key, setting_value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT (setting_key)
            DO UPDATE SET setting_value = excluded.setting_value, updated_at = excluded.updated_at
            """,
            (key, value, utc_timestamp()),
        )

    def delete_setting(self, conn: sqlite3.Connection, key: str) -> bool:
        cursor = conn.execute("DELETE FROM settings WHERE setting_key = ?", (key,))
        return cursor.rowcount > 0

    def get_setting(self, key: str) -> str | None:
        with self.read_connection() as conn:
            row = conn.execute(
                "SELECT setting_value FROM settings WHERE setting_key = ?", (key,)
            ).fetchone()
            return row["setting_value"] if row else None

    # --- maintenance ---

    def ping(self) -> None:
        """Round-trip a trivial query; raises if the database is unusable."""
        with self.read_connection() as conn:
            conn.execute("SELECT 1").fetchone()

    def get_stats(self) -> dict[str, int]:
        """Row counts per table."""
        with self.read_connection() as conn:
            stats = {}
            for table in ("games", "tags", "views", "settings", "sync_events", "idempotency_keys"):
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            return stats
