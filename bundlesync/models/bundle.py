"""Bundle data models: catalog descriptors, the local index, and sync reports."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dedupe(ids: list[str]) -> list[str]:
    """Keep the first occurrence of each id, preserving order."""
    seen: set[str] = set()
    result = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            result.append(i)
    return result


def _pick(data: dict, *keys: str, default=None):
    """Return the first key present in ``data`` (catalogs may use camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


# --- Remote ---


@dataclass
class BundleDescriptor:
    """A bundle as the remote catalog describes it. Authoritative."""

    id: str
    display_name: str = ""
    version: int = 0
    content_hash: str = ""  # Opaque equality token, never parsed
    dependencies: list[str] = field(default_factory=list)
    payload_locator: str = ""
    manifest_locator: str = ""
    updated_at: str = ""  # ISO 8601
    notes: str = ""
    meta: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.dependencies = _dedupe(list(self.dependencies))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "version": self.version,
            "content_hash": self.content_hash,
            "dependencies": list(self.dependencies),
            "payload_locator": self.payload_locator,
            "manifest_locator": self.manifest_locator,
            "updated_at": self.updated_at,
            "notes": self.notes,
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: dict) -> BundleDescriptor:
        return cls(
            id=str(data["id"]),
            display_name=_pick(data, "display_name", "displayName", default=""),
            version=int(_pick(data, "version", default=0)),
            content_hash=str(_pick(data, "content_hash", "contentHash", "crc", default="")),
            dependencies=[str(d) for d in _pick(data, "dependencies", default=[])],
            payload_locator=_pick(data, "payload_locator", "payloadLocator", "dataUrl", default=""),
            manifest_locator=_pick(data, "manifest_locator", "manifestLocator", "manifestUrl", default=""),
            updated_at=str(_pick(data, "updated_at", "updatedAt", "timestamp", default="")),
            notes=_pick(data, "notes", default=""),
            meta=dict(_pick(data, "meta", "metaData", default={})),
        )


# --- Local ---


@dataclass
class LocalIndexEntry:
    """A synced bundle as recorded in the local index."""

    id: str
    version: int = 0
    content_hash: str = ""
    dependencies: list[str] = field(default_factory=list)
    updated_at: str = ""
    storage_path: str = ""
    display_name: str = ""
    notes: str = ""
    meta: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_descriptor(cls, descriptor: BundleDescriptor, storage_path: str) -> LocalIndexEntry:
        return cls(
            id=descriptor.id,
            version=descriptor.version,
            content_hash=descriptor.content_hash,
            dependencies=list(descriptor.dependencies),
            updated_at=descriptor.updated_at,
            storage_path=storage_path,
            display_name=descriptor.display_name,
            notes=descriptor.notes,
            meta=dict(descriptor.meta),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "version": self.version,
            "content_hash": self.content_hash,
            "dependencies": list(self.dependencies),
            "updated_at": self.updated_at,
            "storage_path": self.storage_path,
            "display_name": self.display_name,
            "notes": self.notes,
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: dict) -> LocalIndexEntry:
        return cls(
            id=data["id"],
            version=data.get("version", 0),
            content_hash=data.get("content_hash", ""),
            dependencies=list(data.get("dependencies", [])),
            updated_at=data.get("updated_at", ""),
            storage_path=data.get("storage_path", ""),
            display_name=data.get("display_name", ""),
            notes=data.get("notes", ""),
            meta=dict(data.get("meta", {})),
        )


@dataclass
class IndexMetadata:
    """Bucket-level metadata stored alongside the entries."""

    origin: str = ""
    last_sync: str = ""  # ISO 8601, empty until the first sync
    bucket_name: str = ""


@dataclass
class LocalIndex:
    """Root persisted object: ordered ``id -> LocalIndexEntry`` plus metadata."""

    entries: dict[str, LocalIndexEntry] = field(default_factory=dict)
    metadata: IndexMetadata = field(default_factory=IndexMetadata)

    def __contains__(self, bundle_id: str) -> bool:
        return bundle_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, bundle_id: str) -> LocalIndexEntry | None:
        return self.entries.get(bundle_id)

    def upsert(self, entry: LocalIndexEntry) -> None:
        """Insert a new entry, or replace an existing one keeping its position."""
        self.entries[entry.id] = entry

    def remove(self, bundle_id: str) -> bool:
        return self.entries.pop(bundle_id, None) is not None

    def snapshot(self) -> LocalIndex:
        """Deep copy, so readers never observe a later mutation."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries.values()],
            "metadata": {
                "origin": self.metadata.origin,
                "last_sync": self.metadata.last_sync,
                "bucket_name": self.metadata.bucket_name,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> LocalIndex:
        meta = data.get("metadata", {})
        index = cls(
            metadata=IndexMetadata(
                origin=meta.get("origin", ""),
                last_sync=meta.get("last_sync", ""),
                bucket_name=meta.get("bucket_name", ""),
            )
        )
        for item in data.get("entries", []):
            index.upsert(LocalIndexEntry.from_dict(item))
        return index


# --- Reports ---


@dataclass
class ComparisonReport:
    """Classification of bundle ids produced by one fetch. Never persisted.

    ``up_to_date``, ``stale`` and ``remote_only`` are disjoint. ``orphaned``
    holds ids present locally but no longer offered remotely; they belong to
    none of the other three sets.
    """

    up_to_date: set[str] = field(default_factory=set)
    stale: set[str] = field(default_factory=set)
    remote_only: set[str] = field(default_factory=set)
    orphaned: set[str] = field(default_factory=set)

    @property
    def has_changes(self) -> bool:
        return bool(self.stale or self.remote_only)

    def ids(self) -> set[str]:
        return self.up_to_date | self.stale | self.remote_only


class SyncStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SyncOutcome:
    """Result of one bundle within a batch sync."""

    bundle_id: str
    status: SyncStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status != SyncStatus.FAILED


@dataclass
class SyncSummary:
    """Per-id outcomes of a batch sync, in processing order."""

    outcomes: dict[str, SyncOutcome] = field(default_factory=dict)
    started_at: str = ""
    finished_at: str = ""
    checkpoint_error: str = ""  # Set when the final index checkpoint could not be written

    def record(self, bundle_id: str, status: SyncStatus, reason: str = "") -> None:
        self.outcomes[bundle_id] = SyncOutcome(bundle_id, status, reason)

    def _with_status(self, status: SyncStatus) -> list[str]:
        return [i for i, o in self.outcomes.items() if o.status == status]

    @property
    def succeeded(self) -> list[str]:
        return self._with_status(SyncStatus.SUCCESS)

    @property
    def failed(self) -> list[str]:
        return self._with_status(SyncStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._with_status(SyncStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def order(self) -> list[str]:
        return list(self.outcomes)


class SyncState(Enum):
    """Where a bundle id sits in the per-bundle sync lifecycle."""

    UNKNOWN = "unknown"
    REMOTE_ONLY = "remote_only"
    DOWNLOADING = "downloading"  # Transient, never persisted
    UP_TO_DATE = "up_to_date"
    STALE = "stale"
