"""Sync engine: fetch the remote catalog and materialize bundles locally.

The engine is the only writer of the local index. Every mutation is a
read-modify-persist sequence under one lock: a copy of the index is
changed, saved atomically, and only then swapped in, so the in-memory
index never claims anything the disk does not hold.

Per bundle, the lifecycle is::

    unknown -> remote_only -> downloading -> up_to_date -> stale -> downloading -> ...

``downloading`` is transient and never persisted; a failure (or crash)
during it leaves the previous payload and index entry untouched. New bytes
go to a fresh version directory, and older versions are pruned only after
the index records the new one.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable

from bundlesync.catalog.client import CatalogClient, HttpCatalogClient
from bundlesync.config import Settings
from bundlesync.errors import (
    BundleSyncError,
    CatalogTransportError,
    CatalogUnavailableError,
    ConfigurationError,
    IndexPersistError,
    PayloadDownloadFailedError,
)
from bundlesync.graph.resolver import DependencyGraph, build_graph, transitive_closure
from bundlesync.log import get_logger
from bundlesync.models.bundle import (
    BundleDescriptor,
    ComparisonReport,
    LocalIndex,
    LocalIndexEntry,
    SyncState,
    SyncStatus,
    SyncSummary,
    utc_now,
)
from bundlesync.store.index_store import IndexStore
from bundlesync.store.payload_store import PayloadStore
from bundlesync.sync.differ import compare

logger = get_logger(__name__)


class SyncEngine:
    """Orchestrates catalog fetches, payload downloads and index persistence.

    Parameters
    ----------
    client : CatalogClient | None
        Source of the catalog and payload bytes. Without one, only local
        operations (eviction, clearing, queries) are available.
    index_store : IndexStore
        Durable home of the local index; loaded once at construction.
    payload_store : PayloadStore
        Where payload and manifest bytes are written.
    settings : Settings | None
        Used for the bucket identity recorded in the index metadata.
    """

    def __init__(
        self,
        client: CatalogClient | None,
        index_store: IndexStore,
        payload_store: PayloadStore,
        settings: Settings | None = None,
    ) -> None:
        self.client = client
        self.index_store = index_store
        self.payload_store = payload_store
        self.settings = settings or Settings()

        self._index_lock = threading.RLock()
        self._index: LocalIndex = index_store.load()

        self._catalog_lock = threading.Lock()
        self._catalog: dict[str, BundleDescriptor] = {}
        self._last_report: ComparisonReport | None = None

        self._bundle_locks: dict[str, threading.Lock] = {}
        self._bundle_locks_guard = threading.Lock()
        self._downloading: set[str] = set()

        # Storage writers in flight; clear() waits for them and holds off new ones.
        self._writes_settled = threading.Condition()
        self._active_writes = 0
        self._clearing = False

        logger.debug(f"Loaded local index with {len(self._index)} bundle(s)")

    @classmethod
    def from_settings(
        cls, settings: Settings, client: CatalogClient | None = None
    ) -> SyncEngine:
        """Wire an engine with the default stores under ``settings.storage_dir``."""
        return cls(
            client=client or HttpCatalogClient.from_settings(settings),
            index_store=IndexStore(settings.index_path),
            payload_store=PayloadStore(settings.payload_dir),
            settings=settings,
        )

    # -- read access ----------------------------------------------------------

    def snapshot(self) -> LocalIndex:
        """A private copy of the local index."""
        with self._index_lock:
            return self._index.snapshot()

    def local_entries(self) -> list[LocalIndexEntry]:
        return list(self.snapshot().entries.values())

    @property
    def catalog(self) -> list[BundleDescriptor]:
        """Descriptors from the last successful fetch."""
        with self._catalog_lock:
            return list(self._catalog.values())

    @property
    def last_report(self) -> ComparisonReport | None:
        with self._catalog_lock:
            return self._last_report

    def dependency_graph(self) -> DependencyGraph:
        """Graph built from the local index, for offline resolution."""
        return build_graph(self.local_entries())

    def state(self, bundle_id: str) -> SyncState:
        with self._bundle_locks_guard:
            if bundle_id in self._downloading:
                return SyncState.DOWNLOADING
        with self._index_lock:
            entry = self._index.get(bundle_id)
        with self._catalog_lock:
            remote = self._catalog.get(bundle_id)

        if entry is None:
            return SyncState.REMOTE_ONLY if remote else SyncState.UNKNOWN
        if remote is None or remote.content_hash == entry.content_hash:
            return SyncState.UP_TO_DATE
        return SyncState.STALE

    # -- fetch ----------------------------------------------------------------

    def fetch(self) -> ComparisonReport:
        """Fetch the remote catalog and compare it with the local index.

        Touches neither storage nor the index. On failure, the previous
        catalog and report stay as they were.
        """
        client = self._require_client()
        logger.info("Fetching remote catalog")
        try:
            descriptors = client.fetch_catalog()
        except CatalogTransportError as e:
            logger.error(f"Catalog unavailable: {e.message}")
            raise CatalogUnavailableError(f"Catalog unavailable: {e.message}", e.context) from e

        graph = build_graph(descriptors)
        for anomaly in graph.diagnostics:
            logger.warning(f"Dangling dependency in catalog: {anomaly}")

        report = compare(self.local_entries(), descriptors)
        for bundle_id in sorted(report.orphaned):
            logger.warning(f"Local bundle '{bundle_id}' is no longer offered remotely")

        with self._catalog_lock:
            self._catalog = {d.id: d for d in descriptors}
            self._last_report = report

        logger.info(
            f"Fetch completed: {len(report.up_to_date)} up to date, "
            f"{len(report.stale)} stale, {len(report.remote_only)} new, "
            f"{len(report.orphaned)} orphaned"
        )
        return report

    # -- sync -----------------------------------------------------------------

    def sync_one(self, descriptor: BundleDescriptor) -> LocalIndexEntry:
        """Download one bundle, dependencies first, and record it durably.

        Dependencies that are already current are not downloaded again.
        A dependency the catalog does not offer is logged and skipped; the
        bundle itself is still synced. Returns the new index entry.
        """
        with self._catalog_lock:
            catalog = dict(self._catalog)
        catalog[descriptor.id] = descriptor

        graph = build_graph(catalog.values())
        for anomaly in graph.dangling_in_closure(descriptor.id):
            logger.warning(f"Missing remote dependency, syncing anyway: {anomaly}")

        order = transitive_closure(graph, descriptor.id)
        for dep_id in order[:-1]:
            try:
                self._sync_single(catalog[dep_id], only_if_changed=True)
            except PayloadDownloadFailedError as e:
                error = PayloadDownloadFailedError(
                    descriptor.id, f"dependency '{dep_id}' failed: {e.cause}"
                )
                error.context["dependency_id"] = dep_id
                error.context["dependency_error"] = e.message
                raise error from e

        return self._sync_single(descriptor)

    def sync_all(self, report: ComparisonReport) -> SyncSummary:
        """Sync every stale bundle, then every remote-only bundle.

        One bundle's failure never stops the others; the summary carries
        each id's outcome in processing order. A bundle that failed once in
        the batch is not downloaded again, and bundles depending on it fail
        without a download.
        """
        summary = SyncSummary(started_at=utc_now())
        with self._catalog_lock:
            catalog = dict(self._catalog)
        graph = build_graph(catalog.values())
        failed: dict[str, str] = {}

        for bundle_id in sorted(report.stale) + sorted(report.remote_only):
            descriptor = catalog.get(bundle_id)
            if descriptor is None:
                summary.record(bundle_id, SyncStatus.SKIPPED, "not in the fetched catalog")
                continue
            if self._is_current(descriptor):
                summary.record(bundle_id, SyncStatus.SKIPPED, "already up to date")
                continue

            reason = failed.get(bundle_id)
            if reason is None:
                broken = [d for d in transitive_closure(graph, bundle_id)[:-1] if d in failed]
                if broken:
                    reason = f"dependency '{broken[0]}' failed: {failed[broken[0]]}"
            if reason is not None:
                failed[bundle_id] = reason
                summary.record(bundle_id, SyncStatus.FAILED, reason)
                continue

            try:
                self.sync_one(descriptor)
            except BundleSyncError as e:
                logger.error(f"Sync of '{bundle_id}' failed: {e.message}")
                dep_id = e.context.get("dependency_id")
                if dep_id:
                    failed.setdefault(dep_id, e.context["dependency_error"])
                failed[bundle_id] = e.message
                summary.record(bundle_id, SyncStatus.FAILED, e.message)
                continue
            summary.record(bundle_id, SyncStatus.SUCCESS)

        try:
            self._commit(self._stamp_metadata)
        except IndexPersistError as e:
            logger.error(f"Index checkpoint failed: {e.message}")
            summary.checkpoint_error = e.message

        summary.finished_at = utc_now()
        logger.info(
            f"Sync completed: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed, {len(summary.skipped)} skipped"
        )
        return summary

    def fetch_and_sync(self) -> SyncSummary:
        return self.sync_all(self.fetch())

    # -- eviction -------------------------------------------------------------

    def evict(self, bundle_id: str) -> bool:
        """Remove a bundle from the index, then delete its stored files.

        Returns False if the bundle was not in the local index.
        """
        with self._bundle_lock(bundle_id), self._storage_write():
            with self._index_lock:
                if bundle_id not in self._index:
                    return False
                self._commit(lambda index: index.remove(bundle_id))
            self.payload_store.delete(bundle_id)
        logger.info(f"Evicted bundle '{bundle_id}'")
        return True

    def evict_orphans(self, report: ComparisonReport) -> list[str]:
        """Evict every bundle the catalog no longer offers. Returns the evicted ids."""
        return [i for i in sorted(report.orphaned) if self.evict(i)]

    def clear(self) -> None:
        """Delete every stored payload and empty the index.

        Waits for in-flight downloads and evictions to finish; new ones
        wait until the clear is done.
        """
        with self._writes_settled:
            while self._clearing:
                self._writes_settled.wait()
            self._clearing = True
            while self._active_writes:
                self._writes_settled.wait()
        try:
            with self._index_lock:
                self._commit(lambda index: index.entries.clear())
                self.payload_store.clear()
        finally:
            with self._writes_settled:
                self._clearing = False
                self._writes_settled.notify_all()
        logger.info("Cleared all local bundles")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ======================================================================
    # Internal helpers
    # ======================================================================

    def _bundle_lock(self, bundle_id: str) -> threading.Lock:
        with self._bundle_locks_guard:
            lock = self._bundle_locks.get(bundle_id)
            if lock is None:
                lock = self._bundle_locks[bundle_id] = threading.Lock()
            return lock

    @contextmanager
    def _storage_write(self):
        """Register a storage writer, waiting out any clear in progress."""
        with self._writes_settled:
            while self._clearing:
                self._writes_settled.wait()
            self._active_writes += 1
        try:
            yield
        finally:
            with self._writes_settled:
                self._active_writes -= 1
                self._writes_settled.notify_all()

    def _require_client(self) -> CatalogClient:
        if self.client is None:
            raise ConfigurationError("No catalog client configured")
        return self.client

    def _is_current(self, descriptor: BundleDescriptor) -> bool:
        with self._index_lock:
            entry = self._index.get(descriptor.id)
        return entry is not None and entry.content_hash == descriptor.content_hash

    def _sync_single(
        self, descriptor: BundleDescriptor, only_if_changed: bool = False
    ) -> LocalIndexEntry:
        """Download, store and record one bundle (no dependency handling)."""
        bundle_id = descriptor.id
        with self._bundle_lock(bundle_id):
            if only_if_changed and self._is_current(descriptor):
                return self.snapshot().entries[bundle_id]

            with self._storage_write():
                with self._bundle_locks_guard:
                    self._downloading.add(bundle_id)
                try:
                    payload, manifest = self._download(descriptor)
                    storage_path = self.payload_store.write(
                        bundle_id, payload, manifest, descriptor.content_hash
                    )
                    entry = LocalIndexEntry.from_descriptor(descriptor, storage_path)
                    try:
                        self._commit(lambda index: index.upsert(entry))
                    except BaseException:
                        self.payload_store.discard(storage_path)
                        raise
                    self.payload_store.prune(bundle_id, keep=storage_path)
                finally:
                    with self._bundle_locks_guard:
                        self._downloading.discard(bundle_id)

        logger.info(f"Synced bundle '{bundle_id}' v{descriptor.version}")
        return entry

    def _download(self, descriptor: BundleDescriptor) -> tuple[bytes, bytes | None]:
        if not descriptor.payload_locator:
            raise PayloadDownloadFailedError(descriptor.id, "descriptor has no payload locator")

        client = self._require_client()
        logger.info(f"Downloading bundle '{descriptor.id}' from {descriptor.payload_locator}")
        try:
            payload = client.fetch_payload(descriptor.payload_locator)
            manifest = None
            if descriptor.manifest_locator:
                manifest = client.fetch_payload(descriptor.manifest_locator)
        except CatalogTransportError as e:
            logger.error(f"Download of '{descriptor.id}' failed: {e.message}")
            raise PayloadDownloadFailedError(descriptor.id, e.message) from e
        return payload, manifest

    def _commit(self, mutate: Callable[[LocalIndex], object]) -> None:
        """Apply ``mutate`` to a copy of the index, persist it, then swap it in."""
        with self._index_lock:
            updated = self._index.snapshot()
            mutate(updated)
            self.index_store.save(updated)
            self._index = updated

    def _stamp_metadata(self, index: LocalIndex) -> None:
        index.metadata.last_sync = utc_now()
        if self.settings.origin:
            index.metadata.origin = self.settings.origin
        if self.settings.bucket_name:
            index.metadata.bucket_name = self.settings.bucket_name
