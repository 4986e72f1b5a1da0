"""
Sync protocol module for ShelfSync.

This module handles:
- Wire types for operations, results and events
- Pure payload normalization per entity type
- The push orchestrator and cursor pull service (sync.service)

Invariants:
    - Per-operation failures are contained; infrastructure failures roll back the batch
    - A replayed opId never re-runs the apply engine
    - Pull never returns a cursor beyond the last event it returned

How to change safely:
    - Keep normalization functions free of storage access
    - Test replays of failed operations as well as applied ones
"""

from .normalize import ApplyError, EntityValidationError
from .types import (
    EntityType,
    MalformedBatchError,
    Operation,
    OperationKind,
    PullResponse,
    PushResponse,
    PushResult,
    PushStatus,
    SyncEvent,
    parse_cursor,
    parse_operations,
)

__all__ = [
    "ApplyError",
    "EntityValidationError",
    "EntityType",
    "MalformedBatchError",
    "Operation",
    "OperationKind",
    "PullResponse",
    "PushResponse",
    "PushResult",
    "PushStatus",
    "SyncEvent",
    "parse_cursor",
    "parse_operations",
]
