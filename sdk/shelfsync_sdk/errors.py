"""
Error types for the ShelfSync SDK.

This module defines all exception types raised by the SDK:
- ShelfSyncError: Base exception
- ConnectionError: Server unreachable or transport failure
- BatchRejectedError: The server refused a malformed request (400)
- ServerError: The server failed to process the request (5xx)

Invariants:
    - All errors inherit from ShelfSyncError
    - Errors include context for debugging
    - ``retryable`` tells an outbox whether to keep the batch queued
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ShelfSyncError(Exception):
    """Base exception for all ShelfSync SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        retryable: Whether resending the same request may succeed
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SHELFSYNC_ERROR"
        self.details = details or {}


class ConnectionError(ShelfSyncError):
    """Failed to reach the ShelfSync server.

    Raised when:
    - Server is unreachable
    - Connection or read times out
    """

    retryable = True

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class BatchRejectedError(ShelfSyncError):
    """The server rejected the request body as malformed.

    Nothing from the batch was applied. Resending the same batch will be
    rejected again; the client has to fix or drop it.
    """

    def __init__(
        self,
        message: str,
        server_error: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="BATCH_REJECTED",
            details={"server_error": server_error},
        )
        self.server_error = server_error


class ServerError(ShelfSyncError):
    """The server could not process the request.

    For a push this means the whole batch was rolled back, so the same
    batch can be sent again unchanged.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int,
        server_error: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SERVER_ERROR",
            details={"status_code": status_code, "server_error": server_error},
        )
        self.status_code = status_code
        self.server_error = server_error
