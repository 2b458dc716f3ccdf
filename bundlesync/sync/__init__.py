"""Synchronization between the remote catalog and the local index.

This package provides:
- Differ: classify local bundles as up to date, stale, remote-only or orphaned
- SyncEngine: fetch the catalog, download bundles atomically, persist the index
"""

from bundlesync.sync.differ import compare
from bundlesync.sync.engine import SyncEngine

__all__ = ["SyncEngine", "compare"]
