"""
Admin CLI tool for ShelfSync.

This tool inspects and prepares the sync database offline:
- init: Create the database file and schema
- stats: Print row counts per table as JSON
- events: Dump a slice of the event log as JSON lines
- ledger: Show the recorded result for one opId
- apply: Write a server-originated change through the sync engine

Usage:
    shelfsync-admin init
    shelfsync-admin stats
    shelfsync-admin events --since 120 --limit 50
    shelfsync-admin ledger 9f1c2a4e-...
    shelfsync-admin apply setting upsert '{"key": "theme", "value": "dark"}'

Invariants:
    - Read commands never write to the database
    - Unknown opIds cause a non-zero exit code
    - apply appends to the event log like a push but never writes the ledger

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from ..apply import CanonicalStore, IdempotencyLedger
from ..config import StorageConfig
from ..events import EventLog
from ..sync.normalize import EntityValidationError
from ..sync.service import SyncService
from ..sync.types import EntityType, OperationKind


class SyncCLI:
    """CLI tool for sync database administration.

    Example:
        >>> cli = SyncCLI(CanonicalStore("./data/shelfsync.db"))
        >>> cli.stats()
        {'games': 3, 'tags': 1, ...}
    """

    def __init__(self, store: CanonicalStore) -> None:
        self.store = store
        self.event_log = EventLog()
        self.ledger = IdempotencyLedger()

    def init(self) -> None:
        """Create the database and schema (no-op if present)."""
        self.store.initialize()

    def stats(self) -> dict[str, Any]:
        """Row counts per table plus the current log head."""
        stats: dict[str, Any] = dict(self.store.get_stats())
        with self.store.read_connection() as conn:
            stats["latest_event_id"] = self.event_log.latest_event_id(conn)
        return stats

    def events(self, since: int, limit: int) -> list[dict[str, Any]]:
        """Events after ``since``, rendered as pull changes."""
        with self.store.read_connection() as conn:
            return [event.to_change_dict() for event in self.event_log.read_since(conn, since, limit)]

    def ledger_entry(self, op_id: str) -> dict[str, Any] | None:
        """Recorded result for ``op_id``, or None if never seen."""
        with self.store.read_connection() as conn:
            result = self.ledger.lookup(conn, op_id)
        return result.to_dict() if result is not None else None

    def apply(self, entity_type: EntityType, kind: OperationKind, payload: Any) -> int:
        """Apply a server-side change and return its event_id.

        Raises:
            EntityValidationError: If the payload is invalid
        """
        service = SyncService(self.store, ledger=self.ledger, event_log=self.event_log)
        return asyncio.run(service.apply_server_operation(entity_type, kind, payload))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    parser = argparse.ArgumentParser(description="ShelfSync database administration tool")
    parser.add_argument(
        "--db",
        default=None,
        help="Path of the SQLite database (default: $DATABASE_PATH)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")
    subparsers.add_parser("stats", help="Print row counts as JSON")

    events_parser = subparsers.add_parser("events", help="Dump event log entries as JSON lines")
    events_parser.add_argument("--since", type=int, default=0, help="Cursor to read after")
    events_parser.add_argument("--limit", type=int, default=100, help="Maximum events to print")

    ledger_parser = subparsers.add_parser("ledger", help="Show the recorded result for an opId")
    ledger_parser.add_argument("op_id", help="Client operation id")

    apply_parser = subparsers.add_parser("apply", help="Apply a server-side change")
    apply_parser.add_argument("entity_type", choices=[t.value for t in EntityType])
    apply_parser.add_argument("operation", choices=[k.value for k in OperationKind])
    apply_parser.add_argument("payload", help="Entity payload as a JSON object")

    args = parser.parse_args(argv)

    payload = None
    if args.command == "apply":
        try:
            payload = json.loads(args.payload)
        except ValueError:
            parser.error("payload must be valid JSON")

    storage = StorageConfig.from_env()
    cli = SyncCLI(
        CanonicalStore(
            db_path=args.db or storage.db_path,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
        )
    )

    if args.command == "init":
        cli.init()
        print(f"Initialized {cli.store.db_path}", file=sys.stderr)

    elif args.command == "stats":
        print(json.dumps(cli.stats(), indent=2, sort_keys=True))

    elif args.command == "events":
        for change in cli.events(args.since, args.limit):
            print(json.dumps(change, sort_keys=True))

    elif args.command == "ledger":
        entry = cli.ledger_entry(args.op_id)
        if entry is None:
            print(f"Unknown opId: {args.op_id}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(entry, indent=2, sort_keys=True))

    elif args.command == "apply":
        try:
            event_id = cli.apply(EntityType(args.entity_type), OperationKind(args.operation), payload)
        except EntityValidationError as e:
            print(f"Rejected: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps({"eventId": str(event_id)}))


if __name__ == "__main__":
    main()
