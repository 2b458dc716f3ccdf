"""Settings for a bundlesync consumer.

Values come from, in increasing priority:
1. Defaults on the ``Settings`` dataclass
2. An optional YAML file
3. ``BUNDLESYNC_*`` environment variables

Settings are passed explicitly into the engine and clients; there is no
module-level settings singleton.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from bundlesync.errors import ConfigurationError

ENV_PREFIX = "BUNDLESYNC_"
INDEX_FILE = "index.json"
PAYLOAD_DIR = "bundles"


@dataclass
class Settings:
    """Connection and storage settings for one bucket of bundles."""

    endpoint: str = ""
    bucket_id: str = ""
    bucket_name: str = ""
    storage_dir: str = "~/.bundlesync"
    request_timeout: float = 30.0
    log_level: str = "INFO"
    log_file: str = ""

    @property
    def storage_root(self) -> Path:
        return Path(self.storage_dir).expanduser()

    @property
    def index_path(self) -> Path:
        return self.storage_root / INDEX_FILE

    @property
    def payload_dir(self) -> Path:
        return self.storage_root / PAYLOAD_DIR

    @property
    def origin(self) -> str:
        """Identity of the remote bucket, recorded in the index metadata."""
        if not self.endpoint:
            return ""
        return f"{self.endpoint.rstrip('/')}/buckets/{self.bucket_id}"

    def validate(self) -> None:
        if self.request_timeout <= 0:
            raise ConfigurationError(
                f"request_timeout must be positive, got {self.request_timeout}",
                {"request_timeout": self.request_timeout},
            )
        if self.endpoint and not self.bucket_id:
            raise ConfigurationError("bucket_id is required when an endpoint is set")


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""
    values: dict[str, Any] = {}

    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        values.update(data.get("bundlesync", data))

    known = {f.name: f for f in fields(Settings)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ConfigurationError(
            f"Unknown settings: {', '.join(unknown)}", {"unknown": unknown}
        )

    for name, f in known.items():
        raw = os.environ.get(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        values[name] = raw

    settings = Settings(**{k: _coerce(k, v) for k, v in values.items()})
    settings.validate()
    return settings


def _coerce(name: str, value: Any) -> Any:
    default = getattr(Settings, name)
    try:
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
