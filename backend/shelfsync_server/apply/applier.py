"""
Entity apply engine for ShelfSync.

The applier turns one client operation into a canonical mutation plus one
sync event. It:
- Normalizes the payload with the pure functions in sync.normalize
- Derives or allocates the entity identity
- Writes through to the canonical table (insert-or-update / delete)
- Appends the matching event to the log

Invariants:
    - Runs on the caller's connection; it never begins or commits a transaction
    - Exactly one event per successful mutation, carrying the normalized payload
    - Deletes log the identity fragment, not the prior record
    - Last-write-wins: upserts overwrite the whole payload, clientTimestamp is ignored

How to change safely:
    - A new entity type needs a normalizer, a handler pair and a table entry
    - Raise ApplyError subclasses for anything the client can fix; let
      storage faults propagate so the batch rolls back
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from ..events.log import EventLog
from ..sync.normalize import (
    ApplyError,
    normalize_game_identity,
    normalize_game_payload,
    normalize_record_identity,
    normalize_record_payload,
    normalize_setting_identity,
    normalize_setting_payload,
)
from ..sync.types import EntityType, Operation, OperationKind, PushResult, PushStatus
from .canonical_store import CanonicalStore

logger = logging.getLogger(__name__)


class EntityConflictError(ApplyError):
    """The store rejected the write (constraint violation)."""

    pass


@dataclass(frozen=True)
class AppliedChange:
    """A mutation that was written and logged.

    Attributes:
        entity_type: Entity family
        entity_key: String rendering of the identity
        operation: Upsert or delete
        payload: Normalized payload (identity fragment for deletes)
        event_id: Id of the event appended for this mutation
    """

    entity_type: EntityType
    entity_key: str
    operation: OperationKind
    payload: dict[str, Any]
    event_id: int

    def to_result(self, op_id: str) -> PushResult:
        return PushResult(
            op_id=op_id,
            status=PushStatus.APPLIED,
            normalized_payload=self.payload,
        )


Handler = Callable[[sqlite3.Connection, Any], AppliedChange]


class EntityApplier:
    """Validates and applies operations against the canonical store.

    Example:
        >>> applier = EntityApplier(store, EventLog())
        >>> with store.transaction() as conn:
        ...     change = applier.apply(conn, operation)
    """

    def __init__(self, store: CanonicalStore, event_log: EventLog) -> None:
        self.store = store
        self.event_log = event_log
        self._handlers: dict[EntityType, dict[OperationKind, Handler]] = {
            EntityType.GAME: {
                OperationKind.UPSERT: self._upsert_game,
                OperationKind.DELETE: self._delete_game,
            },
            EntityType.TAG: {
                OperationKind.UPSERT: partial(self._upsert_record, EntityType.TAG),
                OperationKind.DELETE: partial(self._delete_record, EntityType.TAG),
            },
            EntityType.VIEW: {
                OperationKind.UPSERT: partial(self._upsert_record, EntityType.VIEW),
                OperationKind.DELETE: partial(self._delete_record, EntityType.VIEW),
            },
            EntityType.SETTING: {
                OperationKind.UPSERT: self._upsert_setting,
                OperationKind.DELETE: self._delete_setting,
            },
        }

    def handles(self, entity_type: EntityType, kind: OperationKind) -> bool:
        return kind in self._handlers.get(entity_type, {})

    def apply(self, conn: sqlite3.Connection, operation: Operation) -> AppliedChange:
        """Apply a single operation on an open transaction.

        Args:
            conn: Connection of the enclosing transaction
            operation: Parsed client operation

        Returns:
            The change that was written and logged

        Raises:
            EntityValidationError: If the payload is invalid
            EntityConflictError: If the store rejected the write
        """
        return self.apply_payload(conn, operation.entity_type, operation.kind, operation.payload)

    def apply_payload(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        kind: OperationKind,
        payload: Any,
    ) -> AppliedChange:
        """Apply a raw payload; shared by client pushes and server-side writers."""
        try:
            handler = self._handlers[entity_type][kind]
        except KeyError:
            raise ApplyError(f"Unsupported entity type: {entity_type}") from None

        try:
            change = handler(conn, payload)
        except sqlite3.IntegrityError as e:
            raise EntityConflictError(f"Conflicting {entity_type.value} write: {e}") from e

        logger.debug(
            "Applied change",
            extra={
                "entity_type": change.entity_type.value,
                "entity_key": change.entity_key,
                "operation": change.operation.value,
                "event_id": change.event_id,
            },
        )
        return change

    def _record(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        entity_key: str,
        operation: OperationKind,
        payload: dict[str, Any],
    ) -> AppliedChange:
        event_id = self.event_log.append(conn, entity_type, entity_key, operation, payload)
        return AppliedChange(
            entity_type=entity_type,
            entity_key=entity_key,
            operation=operation,
            payload=payload,
            event_id=event_id,
        )

    def _upsert_game(self, conn: sqlite3.Connection, raw: Any) -> AppliedChange:
        game = normalize_game_payload(raw)
        payload = game.to_dict()
        self.store.upsert_game(
            conn,
            game.identity.igdb_game_id,
            game.identity.platform_igdb_id,
            payload,
        )
        return self._record(
            conn, EntityType.GAME, game.identity.entity_key, OperationKind.UPSERT, payload
        )

    def _delete_game(self, conn: sqlite3.Connection, raw: Any) -> AppliedChange:
        identity = normalize_game_identity(raw)
        self.store.delete_game(conn, identity.igdb_game_id, identity.platform_igdb_id)
        return self._record(
            conn, EntityType.GAME, identity.entity_key, OperationKind.DELETE, identity.to_dict()
        )

    def _upsert_record(
        self,
        entity_type: EntityType,
        conn: sqlite3.Connection,
        raw: Any,
    ) -> AppliedChange:
        record = normalize_record_payload(raw, entity_type.value)

        if record.id is not None:
            record_id = self.store.upsert_record(
                conn, entity_type, record.id, record.with_id(record.id)
            )
        else:
            # Allocate the id, then embed it in the stored payload.
            record_id = self.store.insert_record(conn, entity_type, record.fields)
            self.store.update_record_payload(conn, entity_type, record_id, record.with_id(record_id))

        return self._record(
            conn, entity_type, str(record_id), OperationKind.UPSERT, record.with_id(record_id)
        )

    def _delete_record(
        self,
        entity_type: EntityType,
        conn: sqlite3.Connection,
        raw: Any,
    ) -> AppliedChange:
        identity = normalize_record_identity(raw, entity_type.value)
        self.store.delete_record(conn, entity_type, identity.id)
        return self._record(
            conn, entity_type, identity.entity_key, OperationKind.DELETE, identity.to_dict()
        )

    def _upsert_setting(self, conn: sqlite3.Connection, raw: Any) -> AppliedChange:
        setting = normalize_setting_payload(raw)
        self.store.upsert_setting(conn, setting.key, setting.value)
        return self._record(
            conn, EntityType.SETTING, setting.entity_key, OperationKind.UPSERT, setting.to_dict()
        )

    def _delete_setting(self, conn: sqlite3.Connection, raw: Any) -> AppliedChange:
        identity = normalize_setting_identity(raw)
        self.store.delete_setting(conn, identity.key)
        return self._record(
            conn, EntityType.SETTING, identity.entity_key, OperationKind.DELETE, identity.to_dict()
        )
