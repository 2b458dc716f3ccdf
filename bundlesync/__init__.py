"""Synchronize and load versioned, content-addressed bundles.

A remote origin publishes a catalog of bundles; each consumer keeps a local
index of what it has downloaded, syncs stale or new bundles atomically, and
loads bundles together with their dependency closure at runtime.
"""

__version__ = "0.3.0"
