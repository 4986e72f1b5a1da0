"""
ShelfSync Server - offline-first sync backend for a personal game library.

This package implements the server side of a multi-device sync protocol:
- Clients push batches of operations (games, tags, views, settings)
- Each operation is validated, normalized and applied to SQLite exactly once
- Every applied mutation is appended to an ordered, immutable event log
- Clients pull the log from a cursor to converge on canonical state

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│   SyncService   │
    │   (SDK)     │     │   Server    │     │ (push / pull)   │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                ┌────────────────────┼────────────────────┐
                                │                    │                    │
                                ▼                    ▼                    ▼
                           ┌─────────┐          ┌─────────┐          ┌─────────┐
                           │ Ledger  │          │ Applier │          │Event Log│
                           │ (opIds) │          │ (apply) │          │(cursor) │
                           └────┬────┘          └────┬────┘          └────┬────┘
                                │                    │                    │
                                └────────────────────┼────────────────────┘
                                                     ▼
                                                ┌─────────┐
                                                │ SQLite  │
                                                └─────────┘

Invariants:
    - The event log is the source of truth for clients
    - An opId is applied at most once, ever
    - An entity mutation and its event commit together or not at all
    - Event ids are strictly increasing and never reused

How to change safely:
    - Response shapes are a client contract; only add fields
    - New entity types need a normalizer, handlers and a table
    - Never mutate sync_events or idempotency_keys rows
"""

from ._version import __version__

__all__ = ["__version__"]
