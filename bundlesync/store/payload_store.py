"""File-system storage for bundle payload bytes.

Layout::

    <root>/<bundle-id>/<hash>.<suffix>/<bundle-id>            payload
    <root>/<bundle-id>/<hash>.<suffix>/<bundle-id>.manifest   manifest (when the bundle has one)

Every write lands in a fresh version directory, so the files the index
points at are never overwritten. Once the index references the new
version, ``prune`` removes the older ones; if recording it fails,
``discard`` removes the new one. Bundle ids and hashes are
percent-encoded for use as path components.
"""

from __future__ import annotations

import shutil
import tempfile
import urllib.parse
from pathlib import Path

from bundlesync.errors import StorageError
from bundlesync.store.index_store import atomic_write_bytes

MANIFEST_SUFFIX = ".manifest"


def _component(value: str) -> str:
    return urllib.parse.quote(value, safe="")


class PayloadStore:
    """Versioned storage for payload and manifest bytes, one directory per bundle."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def bundle_dir(self, bundle_id: str) -> Path:
        return self.root / _component(bundle_id)

    def write(
        self,
        bundle_id: str,
        data: bytes,
        manifest: bytes | None = None,
        content_hash: str = "",
    ) -> str:
        """Store one version of the bundle's bytes beside any previous version.

        Payload and manifest go into a new directory together; a failure
        removes that directory and leaves earlier versions untouched.
        Returns the payload's storage path.
        """
        try:
            bundle_dir = self.bundle_dir(bundle_id)
            bundle_dir.mkdir(parents=True, exist_ok=True)
            version_dir = Path(
                tempfile.mkdtemp(prefix=f"{_component(content_hash or 'unhashed')}.", dir=bundle_dir)
            )
        except OSError as e:
            raise StorageError(
                f"Could not store payload for '{bundle_id}': {e}",
                {"bundle_id": bundle_id},
            ) from e

        path = version_dir / _component(bundle_id)
        try:
            if manifest is not None:
                atomic_write_bytes(path.with_name(path.name + MANIFEST_SUFFIX), manifest)
            atomic_write_bytes(path, data)
        except OSError as e:
            shutil.rmtree(version_dir, ignore_errors=True)
            raise StorageError(
                f"Could not store payload for '{bundle_id}': {e}",
                {"bundle_id": bundle_id},
            ) from e
        return str(path)

    def read(self, storage_path: str | Path) -> bytes:
        try:
            return Path(storage_path).read_bytes()
        except OSError as e:
            raise StorageError(
                f"Could not read payload at {storage_path}: {e}",
                {"path": str(storage_path)},
            ) from e

    def read_manifest(self, storage_path: str | Path) -> bytes | None:
        path = Path(storage_path)
        manifest = path.with_name(path.name + MANIFEST_SUFFIX)
        if not manifest.exists():
            return None
        return self.read(manifest)

    def versions(self, bundle_id: str) -> list[Path]:
        """Version directories currently stored for ``bundle_id``."""
        directory = self.bundle_dir(bundle_id)
        if not directory.exists():
            return []
        return sorted(p for p in directory.iterdir() if p.is_dir())

    def discard(self, storage_path: str | Path) -> None:
        """Remove the version written at ``storage_path``."""
        shutil.rmtree(Path(storage_path).parent, ignore_errors=True)

    def prune(self, bundle_id: str, keep: str | Path) -> None:
        """Remove every stored version of ``bundle_id`` except the one at ``keep``."""
        current = Path(keep).parent
        directory = self.bundle_dir(bundle_id)
        if not directory.exists():
            return
        for child in directory.iterdir():
            if child == current:
                continue
            if child.is_dir():
                shutil.rmtree(child, ignore_errors=True)
            else:
                child.unlink(missing_ok=True)

    def delete(self, bundle_id: str) -> bool:
        """Remove every stored file for ``bundle_id``. Returns False if nothing was stored."""
        directory = self.bundle_dir(bundle_id)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        return True

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True, exist_ok=True)
