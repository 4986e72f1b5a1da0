"""
CLI tools for ShelfSync administration.

Invariants:
    - Tools work offline (no running server required)
"""

from .sync_cli import SyncCLI

__all__ = ["SyncCLI"]
