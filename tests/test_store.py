"""Tests for the index store and payload store."""

import json
import os
import tempfile
from pathlib import Path

import pytest

import bundlesync.store.payload_store as payload_store
from bundlesync.errors import IndexPersistError, StorageError
from bundlesync.models import LocalIndex, LocalIndexEntry
from bundlesync.store import IndexStore, PayloadStore


# --- IndexStore ---


def test_load_missing_index_is_empty():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "nested" / "index.json")
        index = store.load()
        assert len(index) == 0
        assert index.metadata.last_sync == ""


def test_save_and_load_roundtrip():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.json")
        index = LocalIndex()
        index.upsert(
            LocalIndexEntry(
                id="forest",
                version=2,
                content_hash="h2",
                dependencies=["shaders"],
                updated_at="2024-05-01T10:00:00+00:00",
                storage_path="/tmp/forest",
            )
        )
        index.metadata.origin = "https://cdn.example/buckets/b1"
        store.save(index)

        loaded = store.load()
        assert loaded.get("forest") == index.get("forest")
        assert loaded.metadata.origin == "https://cdn.example/buckets/b1"


def test_persisted_layout():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.json"
        index = LocalIndex()
        index.upsert(LocalIndexEntry(id="a", content_hash="h"))
        IndexStore(path).save(index)

        data = json.loads(path.read_text())
        assert set(data) == {"entries", "metadata"}
        assert data["entries"][0]["id"] == "a"
        assert data["entries"][0]["content_hash"] == "h"


def test_save_leaves_no_temp_files():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = IndexStore(Path(tmpdir) / "index.json")
        store.save(LocalIndex())
        store.save(LocalIndex())
        assert os.listdir(tmpdir) == ["index.json"]


def test_failed_save_keeps_previous_index(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.json"
        store = IndexStore(path)
        first = LocalIndex()
        first.upsert(LocalIndexEntry(id="a", content_hash="h1"))
        store.save(first)
        before = path.read_bytes()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        second = LocalIndex()
        second.upsert(LocalIndexEntry(id="a", content_hash="h2"))
        with pytest.raises(IndexPersistError):
            store.save(second)

        assert path.read_bytes() == before
        assert os.listdir(tmpdir) == ["index.json"]


def test_corrupt_index_raises_storage_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.json"
        path.write_text("{not json")
        with pytest.raises(StorageError):
            IndexStore(path).load()


# --- PayloadStore ---


def test_write_and_read_payload():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = PayloadStore(tmpdir)
        path = store.write("forest", b"payload-v1", manifest=b"manifest-v1")

        assert store.read(path) == b"payload-v1"
        assert store.read_manifest(path) == b"manifest-v1"


def test_write_keeps_previous_version_until_pruned():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = PayloadStore(tmpdir)
        first = store.write("forest", b"v1", content_hash="h1")
        second = store.write("forest", b"v2", content_hash="h2")

        assert first != second
        assert store.read(first) == b"v1"
        assert store.read(second) == b"v2"
        assert store.read_manifest(second) is None
        assert len(store.versions("forest")) == 2

        store.prune("forest", keep=second)
        assert store.versions("forest") == [Path(second).parent]
        assert not Path(first).exists()


def test_rewriting_same_hash_gets_its_own_directory():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = PayloadStore(tmpdir)
        first = store.write("forest", b"v1", content_hash="h1")
        second = store.write("forest", b"v1", content_hash="h1")

        assert Path(first).parent != Path(second).parent
        store.discard(second)
        assert store.versions("forest") == [Path(first).parent]


def test_failed_write_leaves_previous_version_intact(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = PayloadStore(tmpdir)
        first = store.write("forest", b"payload-v1", manifest=b"manifest-v1", content_hash="h1")

        real_write = payload_store.atomic_write_bytes

        def payload_write_fails(path, data):
            if not str(path).endswith(payload_store.MANIFEST_SUFFIX):
                raise OSError("disk full")
            real_write(path, data)

        monkeypatch.setattr(payload_store, "atomic_write_bytes", payload_write_fails)
        with pytest.raises(StorageError):
            store.write("forest", b"payload-v2", manifest=b"manifest-v2", content_hash="h2")

        assert store.read(first) == b"payload-v1"
        assert store.read_manifest(first) == b"manifest-v1"
        assert store.versions("forest") == [Path(first).parent]


def test_ids_are_safe_path_components():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = PayloadStore(tmpdir)
        path = Path(store.write("env/forest", b"x", content_hash="sha/1"))

        assert path.parent.parent == store.bundle_dir("env/forest")
        assert path.parent.parent.parent == Path(tmpdir)
        assert path.parent.name.startswith("sha%2F1.")
        assert store.read(path) == b"x"


def test_delete_and_clear():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = PayloadStore(Path(tmpdir) / "bundles")
        store.write("a", b"1")
        store.write("b", b"2")

        assert store.delete("a")
        assert not store.delete("a")
        assert not store.bundle_dir("a").exists()

        store.clear()
        assert store.root.exists()
        assert list(store.root.iterdir()) == []


def test_read_missing_payload_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(StorageError):
            PayloadStore(tmpdir).read(Path(tmpdir) / "nope")
