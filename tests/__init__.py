"""
ShelfSync Test Suite.

This package contains:
- unit/: Unit tests (pure functions, single components, mocked transports)
- integration/: Integration tests (real SQLite, aiohttp test server)
"""
