"""Durable storage for the local index.

The index lives in a single JSON file. Saves write a temporary file in the
same directory and ``os.replace`` it over the old one, so a reader (or a
crash) never sees a half-written index.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from bundlesync.errors import IndexPersistError, StorageError
from bundlesync.models.bundle import LocalIndex


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp-file-then-rename in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class IndexStore:
    """Loads and saves the LocalIndex as JSON."""

    def __init__(self, index_path: str | Path):
        self.index_path = Path(index_path)

    def load(self) -> LocalIndex:
        """Return the persisted index, or an empty one if nothing is stored yet."""
        if not self.index_path.exists():
            return LocalIndex()
        try:
            with open(self.index_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(
                f"Could not read index at {self.index_path}: {e}",
                {"path": str(self.index_path)},
            ) from e
        return LocalIndex.from_dict(data)

    def save(self, index: LocalIndex) -> None:
        payload = json.dumps(index.to_dict(), indent=2).encode("utf-8")
        try:
            atomic_write_bytes(self.index_path, payload)
        except OSError as e:
            raise IndexPersistError(
                f"Could not persist index to {self.index_path}: {e}",
                {"path": str(self.index_path)},
            ) from e
