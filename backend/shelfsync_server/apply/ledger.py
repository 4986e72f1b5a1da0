"""
Idempotency ledger for push operations.

Maps a client-chosen opId to the result computed the first time the
operation was seen. The push orchestrator consults it before applying
anything, so a retried operation has its effect exactly once.

Invariants:
    - Records are written in the same transaction as the mutation they guard
    - A record is written once and never changed (trigger in the schema)
    - Failed results are recorded too; a failed opId is never retried
"""

from __future__ import annotations

import json
import logging
import sqlite3

from ..sync.types import PushResult, utc_timestamp

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Durable opId -> PushResult map on the batch transaction."""

    def lookup(self, conn: sqlite3.Connection, op_id: str) -> PushResult | None:
        """Return the stored result for op_id, or None on first sight."""
        row = conn.execute(
            "SELECT result_json FROM idempotency_keys WHERE op_id = ? LIMIT 1",
            (op_id,),
        ).fetchone()
        if row is None:
            return None
        return PushResult.from_dict(json.loads(row["result_json"]))

    def record(self, conn: sqlite3.Connection, op_id: str, result: PushResult) -> None:
        """Store the result for op_id.

        Raises:
            sqlite3.IntegrityError: If op_id was already recorded
        """
        conn.execute(
            "INSERT INTO idempotency_keys (op_id, result_json, created_at) VALUES (?, ?, ?)",
            (op_id, json.dumps(result.to_dict()), utc_timestamp()),
        )
        logger.debug("Recorded operation result", extra={"op_id": op_id, "status": result.status.value})
