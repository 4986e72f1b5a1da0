"""
Event log module for ShelfSync.

The sync_events table is the source of truth for replication. Canonical
entity tables are the current state; the log is the history that replicas
replay through the pull cursor.

Invariants:
    - Events are appended in the same transaction as their mutation
    - Event ids are assigned by the store, never by clients or the application
"""

from .log import EventLog

__all__ = ["EventLog"]
