"""
Push orchestrator and cursor pull service.

SyncService is the single entry point used by the HTTP layer (and by other
server subsystems) to change or read synchronized state.

Push state machine:
    Received -> Validating -> PerOperation(ledger check -> apply | replay)
             -> Committed | RolledBack

Invariants:
    - One write transaction per push batch
    - Operations are processed in array order; their events get ascending ids
    - ApplyError is contained to its operation (savepoint rollback + failed result)
    - Any other error rolls back the whole batch and surfaces as SyncPushError
    - The push cursor is the log's max event_id, read before commit

How to change safely:
    - Never catch storage errors inside the per-operation scope
    - Keep blocking SQLite work off the event loop (run_in_executor)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from functools import partial
from typing import Any

from ..apply.applier import EntityApplier
from ..apply.canonical_store import CanonicalStore, StoreNotInitializedError
from ..apply.ledger import IdempotencyLedger
from ..events.log import EventLog
from .normalize import ApplyError
from .types import (
    EntityType,
    Operation,
    OperationKind,
    PullResponse,
    PushResponse,
    PushResult,
    PushStatus,
    parse_cursor,
)

logger = logging.getLogger(__name__)

DEFAULT_PULL_PAGE_SIZE = 1000
DEFAULT_FAILURE_MESSAGE = "Failed to apply operation."


class SyncPushError(Exception):
    """A push batch was rolled back; nothing from it was committed."""

    pass


class SyncService:
    """Coordinates the ledger, apply engine and event log.

    Attributes:
        store: Canonical SQLite store
        ledger: Idempotency ledger
        event_log: Append-only event log
        applier: Entity apply engine
        pull_page_size: Maximum events returned per pull

    Example:
        >>> service = SyncService(store)
        >>> response = await service.push(parse_operations(body["operations"]))
        >>> page = await service.pull(response.cursor)
    """

    def __init__(
        self,
        store: CanonicalStore,
        pull_page_size: int = DEFAULT_PULL_PAGE_SIZE,
        ledger: IdempotencyLedger | None = None,
        event_log: EventLog | None = None,
        applier: EntityApplier | None = None,
    ) -> None:
        self.store = store
        self.pull_page_size = pull_page_size
        self.ledger = ledger or IdempotencyLedger()
        self.event_log = event_log or EventLog()
        self.applier = applier or EntityApplier(store, self.event_log)

    async def _run_blocking(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def push(self, operations: list[Operation]) -> PushResponse:
        """Apply a batch of operations with exactly-once effect.

        Args:
            operations: Operations already validated by parse_operations

        Returns:
            Results aligned with ``operations`` plus the new cursor

        Raises:
            SyncPushError: If the batch was rolled back
        """
        try:
            response = await self._run_blocking(self._push_batch, operations)
        except Exception as e:
            logger.error(
                f"Sync push rolled back: {e}",
                exc_info=True,
                extra={"operations": len(operations)},
            )
            raise SyncPushError("Unable to process sync push.") from e

        logger.info(
            "Processed sync push",
            extra={
                "operations": len(operations),
                "applied": sum(1 for r in response.results if r.status == PushStatus.APPLIED),
                "duplicate": sum(1 for r in response.results if r.status == PushStatus.DUPLICATE),
                "failed": sum(1 for r in response.results if r.status == PushStatus.FAILED),
                "cursor": response.cursor,
            },
        )
        return response

    def _push_batch(self, operations: list[Operation]) -> PushResponse:
        results: list[PushResult] = []

        with self.store.transaction() as conn:
            for operation in operations:
                existing = self.ledger.lookup(conn, operation.op_id)
                if existing is not None:
                    results.append(existing.as_duplicate())
                    continue

                result = self._apply_contained(conn, operation)
                self.ledger.record(conn, operation.op_id, result)
                results.append(result)

            cursor = self.event_log.latest_event_id(conn)

        return PushResponse(results=results, cursor=cursor)

    def _apply_contained(self, conn: sqlite3.Connection, operation: Operation) -> PushResult:
        """Apply one operation; its own failure never leaks into the batch."""
        try:
            with self.store.savepoint(conn, "sync_operation"):
                change = self.applier.apply(conn, operation)
        except ApplyError as e:
            logger.warning(
                "Sync operation failed",
                extra={
                    "op_id": operation.op_id,
                    "entity_type": operation.entity_type.value,
                    "kind": operation.kind.value,
                    "error": str(e),
                },
            )
            return PushResult(
                op_id=operation.op_id,
                status=PushStatus.FAILED,
                message=str(e) or DEFAULT_FAILURE_MESSAGE,
            )
        return change.to_result(operation.op_id)

    async def pull(self, cursor: Any) -> PullResponse:
        """Return the next page of events after ``cursor``.

        Args:
            cursor: Client cursor; malformed or missing values mean 0

        Returns:
            Up to pull_page_size events and the cursor to resume from
        """
        return await self._run_blocking(self._read_page, parse_cursor(cursor))

    def _read_page(self, cursor: int) -> PullResponse:
        with self.store.read_connection() as conn:
            events = self.event_log.read_since(conn, cursor, self.pull_page_size)

        next_cursor = events[-1].event_id if events else cursor
        return PullResponse(cursor=next_cursor, changes=events)

    async def apply_server_operation(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        payload: Any,
    ) -> int:
        """Apply a change made by the server itself.

        The change goes through the same apply engine and event log as client
        pushes, in its own transaction, but without a ledger entry. This is
        the entry point for server-side writers: `shelfsync-admin apply` uses
        it today, and a metadata refresh job would call it the same way.

        Returns:
            The event_id of the appended event

        Raises:
            EntityValidationError: If the payload is invalid
        """
        change = await self._run_blocking(self._apply_server_change, entity_type, kind, payload)
        logger.info(
            "Applied server change",
            extra={
                "entity_type": entity_type.value,
                "entity_key": change.entity_key,
                "event_id": change.event_id,
            },
        )
        return change.event_id

    def _apply_server_change(self, entity_type: EntityType, kind: OperationKind, payload: Any):
        with self.store.transaction() as conn:
            return self.applier.apply_payload(conn, entity_type, kind, payload)

    async def health(self) -> bool:
        """Whether the database answers a trivial query."""
        try:
            await self._run_blocking(self.store.ping)
        except (sqlite3.Error, StoreNotInitializedError) as e:
            logger.warning(f"Health check failed: {e}")
            return False
        return True
