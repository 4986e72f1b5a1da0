"""
Append-only sync event log.

Every applied mutation is recorded here, inside the same transaction as the
mutation itself. Replicas replicate by reading the log from their cursor.

Invariants:
    - event_id is assigned by SQLite AUTOINCREMENT: strictly increasing, never reused
    - Rows are never updated or deleted (enforced by triggers in the schema)
    - Payloads are the normalized payloads, never the raw client input

How to change safely:
    - Do not add update/delete helpers; replay depends on immutability
    - Keep read_since ordered by event_id
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from ..sync.types import EntityType, OperationKind, SyncEvent, utc_timestamp

logger = logging.getLogger(__name__)


class EventLog:
    """Reads and appends sync events on a caller-supplied connection.

    The log holds no connection of its own; callers pass the connection of
    the enclosing transaction so that an event is committed or discarded
    together with the mutation it records.
    """

    def append(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        entity_key: str,
        operation: OperationKind,
        payload: dict[str, Any],
    ) -> int:
        """Append one event.

        Returns:
            The event_id assigned by the store
        """
        cursor = conn.execute(
            """
            INSERT INTO sync_events (entity_type, entity_key, operation, payload_json, server_timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                entity_type.value,
                entity_key,
                operation.value,
                json.dumps(payload),
                utc_timestamp(),
            ),
        )
        event_id = int(cursor.lastrowid)
        logger.debug(
            "Appended sync event",
            extra={
                "event_id": event_id,
                "entity_type": entity_type.value,
                "entity_key": entity_key,
                "operation": operation.value,
            },
        )
        return event_id

    def latest_event_id(self, conn: sqlite3.Connection) -> int:
        """Highest event_id in the log, 0 when empty."""
        row = conn.execute("SELECT COALESCE(MAX(event_id), 0) FROM sync_events").fetchone()
        return int(row[0])

    def read_since(self, conn: sqlite3.Connection, cursor: int, limit: int) -> list[SyncEvent]:
        """Events with event_id > cursor, ascending, at most ``limit``."""
        rows = conn.execute(
            """
            SELECT event_id, entity_type, entity_key, operation, payload_json, server_timestamp
            FROM sync_events
            WHERE event_id > ?
            ORDER BY event_id ASC
            LIMIT ?
            """,
            (cursor, limit),
        ).fetchall()

        return [
            SyncEvent(
                event_id=row["event_id"],
                entity_type=EntityType(row["entity_type"]),
                entity_key=row["entity_key"],
                operation=OperationKind(row["operation"]),
                payload=json.loads(row["payload_json"]),
                server_timestamp=row["server_timestamp"],
            )
            for row in rows
        ]
