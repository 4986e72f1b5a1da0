"""
ShelfSync client for the Python SDK.

This module provides the client side of the sync protocol:
- SyncOperation: One queued client change with a stable opId
- SyncClient: Push and pull over HTTP
- PushResponse / PullResponse: Parsed server responses

Example:
    >>> async with SyncClient("http://localhost:3000") as client:
    ...     op = SyncOperation.create("setting", "upsert", {"key": "theme", "value": "dark"})
    ...     response = await client.push([op])
    ...     page = await client.pull(response.cursor)

Invariants:
    - An operation's opId is generated once and reused on every retry
    - Cursors are opaque decimal strings; never do arithmetic on them
    - A push either returns one result per operation or raises
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from .errors import BatchRejectedError, ConnectionError, ServerError, ShelfSyncError

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("game", "tag", "view", "setting")
OPERATION_KINDS = ("upsert", "delete")
SETTLED_STATUSES = ("applied", "duplicate")


def _client_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class SyncOperation:
    """A client change waiting to be pushed.

    Attributes:
        op_id: Client-chosen unique id (idempotency key)
        entity_type: game, tag, view or setting
        operation: upsert or delete
        payload: Entity payload (identity fragment for deletes)
        client_timestamp: When the change was made on the client
    """

    op_id: str
    entity_type: str
    operation: str
    payload: dict[str, Any]
    client_timestamp: str

    @classmethod
    def create(
        cls,
        entity_type: str,
        operation: str,
        payload: dict[str, Any],
        client_timestamp: str | None = None,
    ) -> SyncOperation:
        """Build a new operation with a fresh opId.

        Raises:
            ValueError: If entity_type or operation is unknown
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity_type}")
        if operation not in OPERATION_KINDS:
            raise ValueError(f"Unknown operation: {operation}")

        return cls(
            op_id=str(uuid.uuid4()),
            entity_type=entity_type,
            operation=operation,
            payload=dict(payload),
            client_timestamp=client_timestamp or _client_timestamp(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "opId": self.op_id,
            "entityType": self.entity_type,
            "operation": self.operation,
            "payload": self.payload,
            "clientTimestamp": self.client_timestamp,
        }


@dataclass
class PushResult:
    """Per-operation push outcome."""

    op_id: str
    status: str
    message: str | None = None
    normalized_payload: dict[str, Any] | None = None

    @property
    def settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushResult:
        return cls(
            op_id=data["opId"],
            status=data["status"],
            message=data.get("message"),
            normalized_payload=data.get("normalizedPayload"),
        )


@dataclass
class PushResponse:
    """Push outcome: results aligned with the submitted operations."""

    cursor: str
    results: list[PushResult] = field(default_factory=list)

    def settled_op_ids(self) -> list[str]:
        """Op ids the server has durably accepted (safe to dequeue)."""
        return [result.op_id for result in self.results if result.settled]

    def failed(self) -> list[PushResult]:
        return [result for result in self.results if result.status == "failed"]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PushResponse:
        return cls(
            cursor=str(data["cursor"]),
            results=[PushResult.from_dict(item) for item in data.get("results", [])],
        )


@dataclass
class SyncChange:
    """One event read from the server log."""

    event_id: str
    entity_type: str
    operation: str
    payload: dict[str, Any]
    server_timestamp: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncChange:
        return cls(
            event_id=str(data["eventId"]),
            entity_type=data["entityType"],
            operation=data["operation"],
            payload=data.get("payload") or {},
            server_timestamp=data["serverTimestamp"],
        )


@dataclass
class PullResponse:
    """A page of changes and the cursor to resume from."""

    cursor: str
    changes: list[SyncChange] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PullResponse:
        return cls(
            cursor=str(data["cursor"]),
            changes=[SyncChange.from_dict(item) for item in data.get("changes", [])],
        )


class SyncClient:
    """Client for a ShelfSync server.

    Example:
        >>> async with SyncClient("http://localhost:3000") as client:
        ...     page = await client.pull("0")
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Server URL, e.g. http://localhost:3000
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Open the underlying HTTP client."""
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> SyncClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def push(self, operations: list[SyncOperation]) -> PushResponse:
        """Push a batch of operations.

        Raises:
            BatchRejectedError: If the server rejected the batch (400)
            ServerError: If the batch was rolled back (5xx); safe to resend
            ConnectionError: If the server could not be reached
        """
        data = await self._post(
            "/v1/sync/push",
            {"operations": [operation.to_dict() for operation in operations]},
        )
        response = PushResponse.from_dict(data)
        logger.debug(
            "Pushed operations",
            extra={
                "operations": len(operations),
                "settled": len(response.settled_op_ids()),
                "cursor": response.cursor,
            },
        )
        return response

    async def pull(self, cursor: str = "0") -> PullResponse:
        """Fetch the next page of changes after ``cursor``."""
        data = await self._post("/v1/sync/pull", {"cursor": cursor})
        return PullResponse.from_dict(data)

    async def pull_all(self, cursor: str = "0") -> PullResponse:
        """Pull pages until the server has nothing newer than the cursor.

        Returns:
            All changes after ``cursor`` and the final cursor
        """
        changes: list[SyncChange] = []
        while True:
            page = await self.pull(cursor)
            if not page.changes:
                return PullResponse(cursor=page.cursor, changes=changes)
            changes.extend(page.changes)
            cursor = page.cursor

    async def health(self) -> dict[str, Any]:
        """Check server health.

        Raises:
            ServerError: If the server reports the database unavailable
        """
        return await self._request("GET", "/v1/health")

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", path, json=body)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if self._http is None:
            await self.connect()
        assert self._http is not None

        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise ConnectionError(f"Failed to reach server: {e}", address=self.base_url) from e

        server_error = _error_message(response)
        if response.status_code == 400:
            raise BatchRejectedError(
                f"Request rejected by server: {server_error}", server_error=server_error
            )
        if response.status_code >= 500:
            raise ServerError(
                f"Server error {response.status_code}: {server_error}",
                status_code=response.status_code,
                server_error=server_error,
            )
        if response.status_code >= 300:
            raise ShelfSyncError(
                f"Unexpected response {response.status_code}",
                details={"status_code": response.status_code, "server_error": server_error},
            )

        return response.json()


def _error_message(response: httpx.Response) -> str | None:
    if response.status_code < 300:
        return None
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        return body.get("error")
    return None
