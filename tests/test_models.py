"""Tests for bundlesync data models."""

from bundlesync.models import (
    BundleDescriptor,
    ComparisonReport,
    LocalIndex,
    LocalIndexEntry,
    SyncStatus,
    SyncSummary,
)


def test_descriptor_defaults():
    d = BundleDescriptor(id="terrain")
    assert d.version == 0
    assert d.content_hash == ""
    assert d.dependencies == []
    assert d.meta == {}


def test_descriptor_dependencies_are_an_ordered_set():
    d = BundleDescriptor(id="a", dependencies=["c", "b", "c", "b", "d"])
    assert d.dependencies == ["c", "b", "d"]


def test_descriptor_from_camel_case():
    d = BundleDescriptor.from_dict(
        {
            "id": "forest",
            "displayName": "Forest Pack",
            "version": "7",
            "contentHash": "ABC123",
            "dependencies": ["shaders"],
            "payloadLocator": "https://cdn.example/forest",
            "manifestLocator": "https://cdn.example/forest.manifest",
            "updatedAt": "2024-05-01T10:00:00+00:00",
        }
    )
    assert d.display_name == "Forest Pack"
    assert d.version == 7
    assert d.content_hash == "ABC123"
    assert d.dependencies == ["shaders"]
    assert d.manifest_locator.endswith(".manifest")


def test_descriptor_dict_roundtrip():
    d = BundleDescriptor(
        id="forest",
        version=3,
        content_hash="h",
        dependencies=["a"],
        notes="new trees",
        meta={"type": "environment"},
    )
    assert BundleDescriptor.from_dict(d.to_dict()) == d


def test_entry_from_descriptor_copies_fields():
    d = BundleDescriptor(id="forest", version=3, content_hash="h", dependencies=["a"])
    entry = LocalIndexEntry.from_descriptor(d, "/data/forest/forest")
    assert entry.id == "forest"
    assert entry.version == 3
    assert entry.dependencies == ["a"]
    assert entry.storage_path == "/data/forest/forest"

    # Independent list, not shared with the descriptor
    d.dependencies.append("b")
    assert entry.dependencies == ["a"]


def test_local_index_preserves_insertion_order():
    index = LocalIndex()
    for name in ("zeta", "alpha", "mid"):
        index.upsert(LocalIndexEntry(id=name, content_hash="h1"))
    index.upsert(LocalIndexEntry(id="alpha", content_hash="h2"))

    assert list(index.entries) == ["zeta", "alpha", "mid"]
    assert index.get("alpha").content_hash == "h2"

    restored = LocalIndex.from_dict(index.to_dict())
    assert list(restored.entries) == ["zeta", "alpha", "mid"]


def test_local_index_snapshot_is_independent():
    index = LocalIndex()
    index.upsert(LocalIndexEntry(id="a", dependencies=["b"]))
    snap = index.snapshot()

    index.get("a").dependencies.append("c")
    index.remove("a")

    assert "a" in snap
    assert snap.get("a").dependencies == ["b"]


def test_comparison_report_ids_excludes_orphans():
    report = ComparisonReport(
        up_to_date={"a"}, stale={"b"}, remote_only={"c"}, orphaned={"d"}
    )
    assert report.ids() == {"a", "b", "c"}
    assert report.has_changes
    assert not ComparisonReport(up_to_date={"a"}).has_changes


def test_sync_summary_views():
    summary = SyncSummary()
    summary.record("a", SyncStatus.SUCCESS)
    summary.record("b", SyncStatus.FAILED, "timeout")
    summary.record("c", SyncStatus.SKIPPED, "already up to date")

    assert summary.order == ["a", "b", "c"]
    assert summary.succeeded == ["a"]
    assert summary.failed == ["b"]
    assert summary.skipped == ["c"]
    assert summary.outcomes["b"].reason == "timeout"
    assert not summary.ok
