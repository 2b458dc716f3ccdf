"""
Exception hierarchy for bundlesync.

Every error raised by the engine derives from BundleSyncError so callers can
catch the whole family at once. Each error keeps a ``context`` dict with the
ids involved, which the CLI and batch summaries use for reporting.
"""

from __future__ import annotations

from dataclasses import dataclass


class BundleSyncError(Exception):
    """
    Base exception for all bundlesync errors.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize the error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigurationError(BundleSyncError):
    """
    Configuration errors.
    Raised when settings are invalid or a required value is missing.
    """

    pass


# ---------------------------------------------------------------------------
# Catalog / transport
# ---------------------------------------------------------------------------


class CatalogTransportError(BundleSyncError):
    """
    Transport failure inside a CatalogClient (timeout, refused connection,
    non-2xx response). The engine translates it into the public errors below.
    """

    pass


class CatalogFormatError(BundleSyncError):
    """
    The remote catalog could be reached but its content is malformed.
    """

    pass


class CatalogUnavailableError(BundleSyncError):
    """
    The remote catalog could not be fetched. Recoverable: retry the whole fetch.
    """

    pass


class PayloadDownloadFailedError(BundleSyncError):
    """
    Downloading one bundle's payload failed. Recoverable: retry that bundle.
    """

    def __init__(self, bundle_id: str, cause: BaseException | str):
        super().__init__(
            f"Download of bundle '{bundle_id}' failed: {cause}",
            {"bundle_id": bundle_id, "cause": str(cause)},
        )
        self.bundle_id = bundle_id
        self.cause = cause


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(BundleSyncError):
    """
    Payload storage read/write failure.
    """

    pass


class IndexPersistError(StorageError):
    """
    The local index could not be written. Prior durable state is left intact.
    """

    pass


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------


class CycleDetectedError(BundleSyncError):
    """
    The dependency graph contains a cycle. Fatal for the catalog snapshot.
    """

    def __init__(self, ids: list[str]):
        super().__init__(
            "Dependency cycle detected: " + " -> ".join(ids),
            {"ids": list(ids)},
        )
        self.ids = list(ids)


@dataclass(frozen=True)
class DanglingDependency:
    """Soft diagnostic: ``from_id`` depends on an id absent from the snapshot."""

    from_id: str
    missing_id: str

    def __str__(self) -> str:
        return f"{self.from_id} depends on unknown bundle {self.missing_id}"


# ---------------------------------------------------------------------------
# Registry (caller-usage errors)
# ---------------------------------------------------------------------------


class NotLocalError(BundleSyncError):
    """
    The bundle has no local index entry. Sync it first.
    """

    def __init__(self, bundle_id: str):
        super().__init__(
            f"Bundle '{bundle_id}' is not available locally",
            {"bundle_id": bundle_id},
        )
        self.bundle_id = bundle_id


class MissingDependencyError(BundleSyncError):
    """
    A bundle in the load closure depends on a bundle that is not local.
    """

    def __init__(self, bundle_id: str, dependency_id: str):
        super().__init__(
            f"Bundle '{bundle_id}' requires '{dependency_id}', which is not available locally",
            {"bundle_id": bundle_id, "dependency_id": dependency_id},
        )
        self.bundle_id = bundle_id
        self.dependency_id = dependency_id


class NotLoadedError(BundleSyncError):
    """
    Unload was requested for a bundle the caller holds no reference on.
    """

    def __init__(self, bundle_id: str):
        super().__init__(
            f"Bundle '{bundle_id}' is not loaded",
            {"bundle_id": bundle_id},
        )
        self.bundle_id = bundle_id


class UnknownBundleError(BundleSyncError):
    """
    A graph operation named a bundle id that is not a node of the graph.
    """

    def __init__(self, bundle_id: str):
        super().__init__(
            f"Bundle '{bundle_id}' is not part of the dependency graph",
            {"bundle_id": bundle_id},
        )
        self.bundle_id = bundle_id
