"""
ShelfSync Python SDK - Client library for the ShelfSync sync server.

This SDK covers the client side of the sync protocol:
- SyncOperation for building queued changes with stable opIds
- SyncClient for push/pull over HTTP
- Typed push and pull responses

Example:
    >>> from shelfsync_sdk import SyncClient, SyncOperation
    >>>
    >>> op = SyncOperation.create(
    ...     "game", "upsert", {"igdbGameId": "1942", "platformIgdbId": 6, "title": "Witcher 3"}
    ... )
    >>> async with SyncClient("http://localhost:3000") as client:
    ...     response = await client.push([op])
    ...     outbox.remove(response.settled_op_ids())
    ...     page = await client.pull_all(saved_cursor)

Invariants:
    - Keep an operation (and its opId) until its push result is settled
    - Persist the cursor only after the pulled changes are applied locally

Version: 0.1.0
"""

__version__ = "0.1.0"

from .client import (
    PullResponse,
    PushResponse,
    PushResult,
    SyncChange,
    SyncClient,
    SyncOperation,
)
from .errors import (
    BatchRejectedError,
    ConnectionError,
    ServerError,
    ShelfSyncError,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "SyncClient",
    "SyncOperation",
    "PushResult",
    "PushResponse",
    "SyncChange",
    "PullResponse",
    # Errors
    "ShelfSyncError",
    "ConnectionError",
    "BatchRejectedError",
    "ServerError",
]
