"""
Apply module for ShelfSync - canonical state and exactly-once effects.

This module handles:
- The canonical SQLite store (entity tables, event log and ledger schema)
- The idempotency ledger keyed by client opId
- The entity apply engine (normalize, write through, log)

Invariants:
    - A mutation and its event commit or roll back together
    - An opId found in the ledger is never applied again
    - SQLite uses WAL mode for concurrent reads during writes

How to change safely:
    - Use transactions for all multi-statement operations
    - Verify idempotency with duplicate operation injection tests
"""

from .applier import AppliedChange, EntityApplier, EntityConflictError
from .canonical_store import CanonicalStore, StoreNotInitializedError
from .ledger import IdempotencyLedger

__all__ = [
    "AppliedChange",
    "EntityApplier",
    "EntityConflictError",
    "CanonicalStore",
    "StoreNotInitializedError",
    "IdempotencyLedger",
]
