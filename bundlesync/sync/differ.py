"""Classify local bundles against a remote catalog snapshot.

Pure function: no I/O, no mutation of its inputs.
"""

from __future__ import annotations

from typing import Iterable

from bundlesync.models.bundle import BundleDescriptor, ComparisonReport, LocalIndexEntry


def compare(
    local: Iterable[LocalIndexEntry],
    remote: Iterable[BundleDescriptor],
) -> ComparisonReport:
    """Compare local index entries with remote descriptors.

    A bundle is up to date when its content hash equals the remote one
    exactly (case-sensitive string equality). Local ids the catalog no
    longer offers go to ``orphaned``; deciding whether to evict them is left
    to the caller.
    """
    remote_by_id = {d.id: d for d in remote}
    report = ComparisonReport()
    local_ids = set()

    for entry in local:
        local_ids.add(entry.id)
        descriptor = remote_by_id.get(entry.id)
        if descriptor is None:
            report.orphaned.add(entry.id)
        elif descriptor.content_hash == entry.content_hash:
            report.up_to_date.add(entry.id)
        else:
            report.stale.add(entry.id)

    report.remote_only = set(remote_by_id) - local_ids
    return report
