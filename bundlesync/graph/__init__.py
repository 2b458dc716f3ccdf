"""Dependency graph construction and load-order resolution."""

from bundlesync.graph.resolver import (
    DependencyGraph,
    build_graph,
    transitive_closure,
    unload_order,
)

__all__ = ["DependencyGraph", "build_graph", "transitive_closure", "unload_order"]
