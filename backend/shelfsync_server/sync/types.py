"""
Shared types for the sync protocol.

This module defines the wire-level vocabulary shared by the push orchestrator,
the apply engine and the pull service:
- Operation: one client-submitted change
- PushResult: per-operation outcome returned to the client and kept in the ledger
- SyncEvent: one row of the append-only event log
- PushResponse / PullResponse: endpoint response envelopes

Invariants:
    - Operation.op_id is non-empty and trimmed
    - PushResult dictionaries use the camelCase wire names
    - Cursors are non-negative integers on the server, strings on the wire

How to change safely:
    - Wire names are a client contract; add fields, never rename them
    - New entity types must be added to EntityType and to the applier table
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

_LEADING_INT_RE = re.compile(r"\s*([+-]?[0-9]+)")

# Largest value a SQLite INTEGER column can hold.
SQLITE_MAX_INTEGER = 2**63 - 1


class MalformedBatchError(ValueError):
    """Push request body does not have the expected batch shape."""

    pass


class EntityType(str, Enum):
    """Entity families that can be synchronized."""

    GAME = "game"
    TAG = "tag"
    VIEW = "view"
    SETTING = "setting"


class OperationKind(str, Enum):
    """What an operation does to its entity."""

    UPSERT = "upsert"
    DELETE = "delete"


class PushStatus(str, Enum):
    """Outcome of one operation in a push batch."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    FAILED = "failed"


def utc_timestamp() -> str:
    """Current time as ISO-8601 UTC with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_int(value: Any) -> int | None:
    """Parse the leading integer of a value.

    Accepts ints, integral prefixes of strings ("130", " 130", "130abc")
    and floats (truncated). Booleans, None and non-numeric strings
    yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _LEADING_INT_RE.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def parse_cursor(value: Any) -> int:
    """Coerce a client cursor to a non-negative integer (0 when invalid).

    Cursors beyond the SQLite integer range are clamped to its maximum,
    which no event id can exceed.
    """
    parsed = parse_int(value)
    if parsed is None or parsed < 0:
        return 0
    return min(parsed, SQLITE_MAX_INTEGER)


@dataclass(frozen=True)
class Operation:
    """A client-submitted change.

    Attributes:
        op_id: Client-generated idempotency key
        entity_type: Entity family the change targets
        kind: Upsert or delete
        payload: Raw client payload (validated by the apply engine)
        client_timestamp: Advisory client clock reading
    """

    op_id: str
    entity_type: EntityType
    kind: OperationKind
    payload: Any
    client_timestamp: str

    @classmethod
    def from_dict(cls, data: Any) -> Operation:
        """Parse one batch entry.

        Raises:
            MalformedBatchError: If the entry is not an object or a
                required field is missing or unrecognized
        """
        if not isinstance(data, dict):
            raise MalformedBatchError("Operation entry must be an object")

        raw_op_id = data.get("opId")
        op_id = raw_op_id.strip() if isinstance(raw_op_id, str) else ""
        if not op_id:
            raise MalformedBatchError("Operation opId is required")

        try:
            entity_type = EntityType(data.get("entityType"))
            kind = OperationKind(data.get("operation"))
        except ValueError as e:
            raise MalformedBatchError(str(e)) from e

        client_timestamp = data.get("clientTimestamp")
        if not isinstance(client_timestamp, str):
            client_timestamp = utc_timestamp()

        return cls(
            op_id=op_id,
            entity_type=entity_type,
            kind=kind,
            payload=data.get("payload"),
            client_timestamp=client_timestamp,
        )


def parse_operations(value: Any, max_operations: int | None = None) -> list[Operation]:
    """Validate the outer shape of a push batch.

    Args:
        value: The ``operations`` member of the request body
        max_operations: Optional upper bound on batch length

    Returns:
        Parsed operations in request order

    Raises:
        MalformedBatchError: If the batch is rejected as a whole
    """
    if not isinstance(value, list):
        raise MalformedBatchError("operations must be an array")
    if max_operations is not None and len(value) > max_operations:
        raise MalformedBatchError(
            f"Batch has {len(value)} operations, limit is {max_operations}"
        )
    return [Operation.from_dict(entry) for entry in value]


@dataclass
class PushResult:
    """Outcome of one operation in a push call.

    Attributes:
        op_id: Operation idempotency key
        status: applied, duplicate or failed
        message: Failure reason (failed results only)
        normalized_payload: Canonical payload written (applied results only)
    """

    op_id: str
    status: PushStatus
    message: str | None = None
    normalized_payload: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"opId": self.op_id, "status": self.status.value}
        if self.message is not None:
            data["message"] = self.message
        if self.normalized_payload is not None:
            data["normalizedPayload"] = self.normalized_payload
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushResult:
        return cls(
            op_id=data["opId"],
            status=PushStatus(data["status"]),
            message=data.get("message"),
            normalized_payload=data.get("normalizedPayload"),
        )

    def as_duplicate(self) -> PushResult:
        """Replay of this result, tagged as a duplicate."""
        return PushResult(
            op_id=self.op_id,
            status=PushStatus.DUPLICATE,
            message=self.message,
            normalized_payload=self.normalized_payload,
        )


@dataclass(frozen=True)
class SyncEvent:
    """One entry of the append-only event log."""

    event_id: int
    entity_type: EntityType
    entity_key: str
    operation: OperationKind
    payload: dict[str, Any]
    server_timestamp: str

    def to_change_dict(self) -> dict[str, Any]:
        """Render as a pull ``changes`` entry."""
        return {
            "eventId": str(self.event_id),
            "entityType": self.entity_type.value,
            "operation": self.operation.value,
            "payload": self.payload,
            "serverTimestamp": self.server_timestamp,
        }


@dataclass
class PushResponse:
    """Response to a push: per-operation results aligned with the request."""

    results: list[PushResult] = field(default_factory=list)
    cursor: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [result.to_dict() for result in self.results],
            "cursor": str(self.cursor),
        }


@dataclass
class PullResponse:
    """Response to a pull: one ordered page of events plus the next cursor."""

    cursor: int
    changes: list[SyncEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cursor": str(self.cursor),
            "changes": [event.to_change_dict() for event in self.changes],
        }
