"""Data models shared by the sync engine, resolver and registry."""

from bundlesync.models.bundle import (
    BundleDescriptor,
    ComparisonReport,
    IndexMetadata,
    LocalIndex,
    LocalIndexEntry,
    SyncOutcome,
    SyncState,
    SyncStatus,
    SyncSummary,
)

__all__ = [
    "BundleDescriptor",
    "ComparisonReport",
    "IndexMetadata",
    "LocalIndex",
    "LocalIndexEntry",
    "SyncOutcome",
    "SyncState",
    "SyncStatus",
    "SyncSummary",
]
