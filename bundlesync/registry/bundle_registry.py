"""Reference-counted registry of loaded bundles.

Loading a bundle makes its whole dependency closure live, dependencies
first. Each live handle holds one reference on each of its direct
dependencies, so a shared dependency stays loaded until its last dependent
(and its last explicit loader) lets go.

Concurrent first loads of the same id are coalesced: one caller performs
the storage read, the others wait for its result, and every caller's
reference is counted.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable

from bundlesync.errors import MissingDependencyError, NotLoadedError, NotLocalError
from bundlesync.graph.resolver import DependencyGraph, build_graph
from bundlesync.log import get_logger
from bundlesync.models.bundle import LocalIndex, LocalIndexEntry
from bundlesync.store.payload_store import PayloadStore

logger = get_logger(__name__)


class BundleLoader(ABC):
    """Turns a stored bundle into a runtime resource, and releases it again."""

    @abstractmethod
    def load(self, entry: LocalIndexEntry) -> Any:
        """Return the runtime resource for one stored bundle."""

    def unload(self, resource: Any) -> None:
        pass


class PayloadLoader(BundleLoader):
    """Default loader: the resource is the stored payload bytes."""

    def __init__(self, payload_store: PayloadStore):
        self.payload_store = payload_store

    def load(self, entry: LocalIndexEntry) -> bytes:
        return self.payload_store.read(entry.storage_path)


@dataclass
class LoadedBundleHandle:
    """A live bundle. Runtime only, never persisted."""

    id: str
    resource: Any
    ref_count: int = 0
    dependents: set[str] = field(default_factory=set)
    dependencies: tuple[str, ...] = ()


@dataclass
class _PendingLoad:
    """An in-flight first load that late callers wait on."""

    future: Future = field(default_factory=Future)
    waiters: int = 0
    dependents: set[str] = field(default_factory=set)


class BundleRegistry:
    """Thread-safe table of loaded bundles.

    Parameters
    ----------
    index_source : Callable[[], LocalIndex]
        Returns a snapshot of the local index, e.g. ``SyncEngine.snapshot``.
    loader : BundleLoader
        Performs the underlying load and unload of a single bundle.
    """

    def __init__(self, index_source: Callable[[], LocalIndex], loader: BundleLoader):
        self.index_source = index_source
        self.loader = loader
        self._lock = threading.Lock()
        self._loads_settled = threading.Condition(self._lock)
        self._handles: dict[str, LoadedBundleHandle] = {}
        self._pending: dict[str, _PendingLoad] = {}

    # -- queries ---------------------------------------------------------------

    def get(self, bundle_id: str) -> LoadedBundleHandle | None:
        with self._lock:
            return self._handles.get(bundle_id)

    def loaded_ids(self) -> list[str]:
        with self._lock:
            return list(self._handles)

    def is_loaded(self, bundle_id: str) -> bool:
        with self._lock:
            return bundle_id in self._handles

    # -- load ------------------------------------------------------------------

    def load(self, bundle_id: str) -> LoadedBundleHandle:
        """Load ``bundle_id`` with its dependency closure and take one reference.

        A bundle that is already live only has its reference count
        incremented; storage is not read again.

        Raises NotLocalError if the bundle is not in the local index and
        MissingDependencyError if anything in its closure depends on a
        bundle that is not local. Nothing is loaded in either case.
        """
        with self._lock:
            handle = self._handles.get(bundle_id)
            if handle is not None:
                handle.ref_count += 1
                return handle

        index = self.index_source()
        if bundle_id not in index:
            raise NotLocalError(bundle_id)

        graph = build_graph(index.entries.values())
        missing = graph.dangling_in_closure(bundle_id)
        if missing:
            raise MissingDependencyError(missing[0].from_id, missing[0].missing_id)

        return self._acquire(bundle_id, index, graph, dependent=None)

    def _acquire(
        self,
        bundle_id: str,
        index: LocalIndex,
        graph: DependencyGraph,
        dependent: str | None,
    ) -> LoadedBundleHandle:
        """Take one reference on ``bundle_id``, loading it if nobody has yet.

        ``dependent`` is the bundle on whose behalf the reference is taken,
        or None for an explicit load.
        """
        with self._lock:
            handle = self._handles.get(bundle_id)
            if handle is not None:
                handle.ref_count += 1
                if dependent:
                    handle.dependents.add(dependent)
                return handle

            pending = self._pending.get(bundle_id)
            leader = pending is None
            if leader:
                pending = self._pending[bundle_id] = _PendingLoad()
            else:
                pending.waiters += 1
            if dependent:
                pending.dependents.add(dependent)

        if not leader:
            return pending.future.result()

        dependencies = graph.dependencies(bundle_id)
        acquired: list[str] = []
        try:
            for dep_id in dependencies:
                self._acquire(dep_id, index, graph, dependent=bundle_id)
                acquired.append(dep_id)
            logger.debug(f"Loading bundle '{bundle_id}'")
            resource = self.loader.load(index.entries[bundle_id])
        except BaseException as e:
            released = []
            with self._lock:
                del self._pending[bundle_id]
                self._loads_settled.notify_all()
                for dep_id in reversed(acquired):
                    self._release_locked(dep_id, bundle_id, released)
            self._unload_resources(released)
            pending.future.set_exception(e)
            raise

        with self._lock:
            handle = LoadedBundleHandle(
                id=bundle_id,
                resource=resource,
                ref_count=1 + pending.waiters,
                dependents=set(pending.dependents),
                dependencies=tuple(dependencies),
            )
            self._handles[bundle_id] = handle
            del self._pending[bundle_id]
            self._loads_settled.notify_all()
        pending.future.set_result(handle)
        logger.info(f"Loaded bundle '{bundle_id}'")
        return handle

    # -- unload ----------------------------------------------------------------

    def unload(self, bundle_id: str) -> None:
        """Drop one reference on ``bundle_id``.

        When the count reaches zero the bundle is unloaded and releases its
        reference on each direct dependency, in reverse order, which may
        unload those in turn. The local index is never touched.

        Raises NotLoadedError if the bundle has no live handle, or if every
        remaining reference belongs to a loaded dependent.
        """
        released: list[LoadedBundleHandle] = []
        with self._lock:
            handle = self._handles.get(bundle_id)
            if handle is None or handle.ref_count <= len(handle.dependents):
                raise NotLoadedError(bundle_id)
            self._release_locked(bundle_id, None, released)
        self._unload_resources(released)

    def unload_all(self) -> None:
        """Unload every live bundle regardless of reference counts.

        Loads already in flight are allowed to finish first, so their
        handles are unloaded too.
        """
        with self._loads_settled:
            while self._pending:
                self._loads_settled.wait()
            handles = list(reversed(self._handles.values()))
            self._handles.clear()
        self._unload_resources(handles)

    def _release_locked(
        self,
        bundle_id: str,
        dependent: str | None,
        released: list[LoadedBundleHandle],
    ) -> None:
        """Decrement ``bundle_id`` and cascade. Caller holds ``self._lock``."""
        handle = self._handles[bundle_id]
        handle.ref_count -= 1
        if dependent:
            handle.dependents.discard(dependent)
        if handle.ref_count > 0:
            return

        del self._handles[bundle_id]
        released.append(handle)
        for dep_id in reversed(handle.dependencies):
            self._release_locked(dep_id, bundle_id, released)

    def _unload_resources(self, handles: list[LoadedBundleHandle]) -> None:
        for handle in handles:
            logger.info(f"Unloading bundle '{handle.id}'")
            self.loader.unload(handle.resource)
