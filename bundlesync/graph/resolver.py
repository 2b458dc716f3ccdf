"""Dependency resolution for bundles.

Builds a directed acyclic graph from one immutable snapshot of descriptors
(or local index entries) and derives the dependency-first load order for a
bundle. Everything here is synchronous and side-effect free.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Protocol

from bundlesync.errors import CycleDetectedError, DanglingDependency, UnknownBundleError


class _HasDependencies(Protocol):
    id: str
    dependencies: list[str]


@dataclass
class DependencyGraph:
    """``id -> direct dependency ids``, in declaration order.

    Dependency lists are kept as declared, so an id that is missing from the
    snapshot still appears as an edge target. Those edges are listed in
    ``diagnostics`` and are skipped by closure computations.
    """

    edges: dict[str, list[str]] = field(default_factory=dict)
    diagnostics: list[DanglingDependency] = field(default_factory=list)

    def __contains__(self, bundle_id: str) -> bool:
        return bundle_id in self.edges

    @property
    def nodes(self) -> list[str]:
        return list(self.edges)

    def dependencies(self, bundle_id: str) -> list[str]:
        """Direct dependencies of ``bundle_id`` that resolve to nodes of the graph."""
        if bundle_id not in self.edges:
            raise UnknownBundleError(bundle_id)
        return [d for d in self.edges[bundle_id] if d in self.edges]

    def dependents(self, bundle_id: str) -> list[str]:
        """Ids that list ``bundle_id`` as a direct dependency."""
        return [i for i, deps in self.edges.items() if bundle_id in deps]

    def dangling_in_closure(self, root_id: str) -> list[DanglingDependency]:
        """Dangling edges reachable from ``root_id``, in load order."""
        closure = transitive_closure(self, root_id)
        return [
            DanglingDependency(i, d)
            for i in closure
            for d in self.edges[i]
            if d not in self.edges
        ]


def build_graph(items: Iterable[_HasDependencies]) -> DependencyGraph:
    """Build and validate a dependency graph.

    Raises CycleDetectedError with the full cycle path if any bundle
    (transitively) depends on itself; no graph is returned in that case.
    Dependencies on unknown ids are soft errors collected in
    ``graph.diagnostics``.
    """
    edges: dict[str, list[str]] = {}
    for item in items:
        edges[item.id] = list(item.dependencies)

    diagnostics = [
        DanglingDependency(bundle_id, dep)
        for bundle_id, deps in edges.items()
        for dep in deps
        if dep not in edges
    ]

    done: set[str] = set()
    for bundle_id in edges:
        if bundle_id not in done:
            for _ in _post_order(edges, bundle_id, done):
                pass

    return DependencyGraph(edges=edges, diagnostics=diagnostics)


def transitive_closure(graph: DependencyGraph, root_id: str) -> list[str]:
    """Return ``root_id`` and everything it depends on, dependencies first.

    Every dependency precedes each id that depends on it and ``root_id`` is
    last. Independent subtrees follow declaration order, so the same graph
    always yields the same list. This is the load order.
    """
    if root_id not in graph.edges:
        raise UnknownBundleError(root_id)
    return list(_post_order(graph.edges, root_id, set()))


def unload_order(graph: DependencyGraph, root_id: str) -> list[str]:
    """Exact reverse of the load order."""
    return list(reversed(transitive_closure(graph, root_id)))


def _post_order(
    edges: dict[str, list[str]], start: str, done: set[str]
) -> Iterator[str]:
    """Iterative depth-first post-order walk from ``start``.

    Ids in ``done`` are treated as already emitted; the set is updated in
    place. Revisiting an id still on the current path raises
    CycleDetectedError.
    """
    path = [start]
    on_path = {start}
    stack = [iter(edges[start])]

    while stack:
        dep = next(stack[-1], None)
        if dep is None:
            stack.pop()
            finished = path.pop()
            on_path.discard(finished)
            done.add(finished)
            yield finished
            continue
        if dep not in edges or dep in done:
            continue
        if dep in on_path:
            raise CycleDetectedError(path[path.index(dep):] + [dep])
        path.append(dep)
        on_path.add(dep)
        stack.append(iter(edges[dep]))
