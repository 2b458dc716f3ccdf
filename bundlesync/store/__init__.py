"""Durable storage: the JSON index and payload files."""

from bundlesync.store.index_store import IndexStore
from bundlesync.store.payload_store import PayloadStore

__all__ = ["IndexStore", "PayloadStore"]
