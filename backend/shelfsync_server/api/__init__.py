"""
API module for the ShelfSync server.

This module provides the external interface: a JSON/HTTP server exposing
sync push, sync pull and health.

Invariants:
    - Writes go through SyncService.push, never straight to the store
    - Reads come from the event log

How to change safely:
    - Add new routes, don't change the shape of existing ones
    - Keep /v1 and unversioned sync routes in step
"""

from .http_server import create_http_app, start_http_server

__all__ = [
    "create_http_app",
    "start_http_server",
]
