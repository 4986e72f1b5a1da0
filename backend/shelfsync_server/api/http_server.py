"""
HTTP server implementation for ShelfSync.

This module exposes the sync engine over JSON/HTTP:
- POST /v1/sync/push  - apply a batch of client operations
- POST /v1/sync/pull  - read the event log from a cursor
- GET  /v1/health     - database round-trip check

The sync routes are also served without the /v1 prefix for older clients.

Invariants:
    - A malformed push batch is rejected with 400 before any transaction opens
    - A rolled-back push answers 500 with a fixed message and no detail
    - Every 200 push response has one result per submitted operation

How to change safely:
    - Request and response bodies are a client contract; add fields only
    - Keep error bodies stable, clients match on status codes
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig, SyncConfig
from ..sync.service import SyncPushError, SyncService
from ..sync.types import MalformedBatchError, parse_operations, utc_timestamp

logger = logging.getLogger(__name__)

SERVICE_NAME = "shelfsync-server"
PUSH_INVALID_ERROR = "Invalid sync push payload."
PUSH_FAILED_ERROR = "Unable to process sync push."
PULL_INVALID_ERROR = "Invalid sync pull payload."

SYNC_SERVICE_KEY = web.AppKey("sync_service", SyncService)
SYNC_CONFIG_KEY = web.AppKey("sync_config", SyncConfig)


def create_http_app(
    service: SyncService,
    config: HttpConfig | None = None,
    sync_config: SyncConfig | None = None,
) -> web.Application:
    """Create the HTTP application.

    Args:
        service: Sync service handling push/pull
        config: HTTP server configuration
        sync_config: Sync protocol limits

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()
    app[SYNC_SERVICE_KEY] = service
    app[SYNC_CONFIG_KEY] = sync_config or SyncConfig()

    for prefix in ("/v1", ""):
        app.router.add_post(f"{prefix}/sync/push", handle_push)
        app.router.add_post(f"{prefix}/sync/pull", handle_pull)
    app.router.add_get("/v1/health", handle_health)

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"

        return response

    app.middlewares.append(cors_middleware)

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPNotFound:
            return web.json_response({"error": "Not found", "path": request.path}, status=404)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response({"error": "Internal server error"}, status=500)

    app.middlewares.append(error_middleware)

    return app


async def _read_json(request: web.Request) -> Any:
    """Decode the request body; an empty body reads as None.

    Raises:
        ValueError: If the body is not valid JSON
    """
    text = await request.text()
    if not text.strip():
        return None
    return json.loads(text)


def _bad_request(message: str) -> web.Response:
    return web.json_response({"error": message}, status=400)


async def handle_push(request: web.Request) -> web.Response:
    """Handle POST /v1/sync/push - apply a batch of operations."""
    service = request.app[SYNC_SERVICE_KEY]
    sync_config = request.app[SYNC_CONFIG_KEY]

    try:
        body = await _read_json(request)
    except ValueError:
        return _bad_request(PUSH_INVALID_ERROR)

    if not isinstance(body, dict):
        return _bad_request(PUSH_INVALID_ERROR)

    try:
        operations = parse_operations(
            body.get("operations"), max_operations=sync_config.max_batch_operations
        )
    except MalformedBatchError as e:
        logger.info(f"Rejected sync push: {e}")
        return _bad_request(PUSH_INVALID_ERROR)

    try:
        response = await service.push(operations)
    except SyncPushError:
        return web.json_response({"error": PUSH_FAILED_ERROR}, status=500)

    return web.json_response(response.to_dict())


async def handle_pull(request: web.Request) -> web.Response:
    """Handle POST /v1/sync/pull - read changes after a cursor."""
    service = request.app[SYNC_SERVICE_KEY]

    try:
        body = await _read_json(request)
    except ValueError:
        return _bad_request(PULL_INVALID_ERROR)

    cursor = body.get("cursor") if isinstance(body, dict) else None
    response = await service.pull(cursor)
    return web.json_response(response.to_dict())


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health - database round-trip check."""
    service = request.app[SYNC_SERVICE_KEY]

    if not await service.health():
        return web.json_response({"ok": False, "error": "Database unavailable"}, status=503)

    return web.json_response({"ok": True, "service": SERVICE_NAME, "timestamp": utc_timestamp()})


async def start_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving ``app``; the caller owns the returned runner.

    Args:
        app: Application from create_http_app
        host: Host to bind to
        port: Port to listen on

    Returns:
        The running AppRunner (call ``cleanup()`` to stop)
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")
    return runner
