"""Runtime registry of loaded bundles.

The registry provides:
- Loading: a bundle and its dependency closure, dependencies first
- Reference counting: shared dependencies stay live while anything needs them
- Coalescing: concurrent first loads of one bundle share a single storage read
"""

from bundlesync.registry.bundle_registry import (
    BundleLoader,
    BundleRegistry,
    LoadedBundleHandle,
    PayloadLoader,
)

__all__ = ["BundleLoader", "BundleRegistry", "LoadedBundleHandle", "PayloadLoader"]
