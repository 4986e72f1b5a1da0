"""
ShelfSync Server - Main entry point.

This module starts the ShelfSync server:
- Initializes the SQLite database (schema, triggers)
- Wires the sync service (ledger, apply engine, event log)
- Serves the HTTP API until SIGTERM/SIGINT

Usage:
    python -m backend.shelfsync_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The schema exists before the first request is accepted
    - Graceful shutdown lets in-flight requests finish

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
from aiohttp import web

from .api import create_http_app, start_http_server
from .apply import CanonicalStore
from .config import ServerConfig
from .sync.service import SyncService

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """ShelfSync server orchestrator.

    Attributes:
        config: Server configuration
        store: Canonical SQLite store
        service: Sync service shared by all requests

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running until request_shutdown()
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: CanonicalStore | None = None
        self.service: SyncService | None = None
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting ShelfSync server")
        self.config.log_config()

        try:
            self.store = CanonicalStore(
                db_path=self.config.storage.db_path,
                wal_mode=self.config.storage.wal_mode,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
                cache_size_pages=self.config.storage.cache_size_pages,
            )
            await asyncio.get_running_loop().run_in_executor(None, self.store.initialize)

            self.service = SyncService(
                self.store,
                pull_page_size=self.config.sync.pull_page_size,
            )

            app = create_http_app(self.service, self.config.http, self.config.sync)
            self._runner = await start_http_server(
                app, self.config.http.host, self.config.http.port
            )

            self._running = True
            logger.info("ShelfSync server started successfully")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if self._runner is None:
            return

        logger.info("Stopping ShelfSync server")

        await self._runner.cleanup()
        self._runner = None

        self._running = False
        logger.info("ShelfSync server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
