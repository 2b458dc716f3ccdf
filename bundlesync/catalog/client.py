"""Catalog clients: the I/O boundary to the remote origin.

``CatalogClient`` is the narrow interface the sync engine consumes. Two
realisations ship with the package: JSON over HTTP (``httpx``) and a
local catalog file for offline mirrors. Transport problems are raised as
``CatalogTransportError``; the engine decides how to report them.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
import yaml

from bundlesync.config import Settings
from bundlesync.errors import CatalogFormatError, CatalogTransportError
from bundlesync.log import get_logger
from bundlesync.models.bundle import BundleDescriptor

logger = get_logger(__name__)


class CatalogClient(ABC):
    """Source of the remote catalog and of bundle payload bytes."""

    @abstractmethod
    def fetch_catalog(self) -> list[BundleDescriptor]:
        """Return the current catalog. One round trip."""

    @abstractmethod
    def fetch_payload(self, locator: str) -> bytes:
        """Return the bytes behind a payload or manifest locator."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def parse_catalog(data) -> list[BundleDescriptor]:
    """Turn a decoded catalog document into descriptors.

    Accepts either a bare list of bundle objects or a mapping with a
    ``bundles`` (or ``assets``) list.
    """
    if isinstance(data, dict):
        data = data.get("bundles", data.get("assets"))
    if not isinstance(data, list):
        raise CatalogFormatError("Catalog must be a list of bundle descriptors")

    descriptors = []
    for item in data:
        if not isinstance(item, dict) or "id" not in item:
            raise CatalogFormatError(f"Malformed bundle descriptor: {item!r}")
        try:
            descriptors.append(BundleDescriptor.from_dict(item))
        except (TypeError, ValueError) as e:
            raise CatalogFormatError(f"Malformed bundle descriptor {item.get('id')!r}: {e}") from e
    return descriptors


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class HttpCatalogClient(CatalogClient):
    """Catalog served as JSON over HTTP.

    Parameters
    ----------
    endpoint : str
        Base URL of the catalog service.
    bucket_id : str
        Bucket whose bundles are listed at ``{endpoint}/buckets/{bucket_id}/bundles``.
    timeout : float
        Per-request timeout in seconds. Timeouts surface as transport errors.
    transport : httpx.BaseTransport | None
        Optional transport override (used by tests).
    """

    def __init__(
        self,
        endpoint: str,
        bucket_id: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.bucket_id = bucket_id
        self._client = httpx.Client(timeout=timeout, transport=transport, follow_redirects=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpCatalogClient:
        return cls(settings.endpoint, settings.bucket_id, timeout=settings.request_timeout)

    @property
    def catalog_url(self) -> str:
        return f"{self.endpoint}/buckets/{self.bucket_id}/bundles"

    def fetch_catalog(self) -> list[BundleDescriptor]:
        response = self._get(self.catalog_url)
        try:
            data = response.json()
        except ValueError as e:
            raise CatalogFormatError(f"Catalog at {self.catalog_url} is not valid JSON") from e
        return parse_catalog(data)

    def fetch_payload(self, locator: str) -> bytes:
        return self._get(locator).content

    def close(self) -> None:
        self._client.close()

    def _get(self, url: str) -> httpx.Response:
        logger.debug(f"GET {url}")
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CatalogTransportError(
                f"{url} returned HTTP {e.response.status_code}",
                {"url": url, "status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise CatalogTransportError(f"Request to {url} failed: {e}", {"url": url}) from e
        return response


# ---------------------------------------------------------------------------
# Local file
# ---------------------------------------------------------------------------


class FileCatalogClient(CatalogClient):
    """Catalog read from a local JSON or YAML file.

    Relative payload and manifest locators are resolved against the
    directory that holds the catalog file.
    """

    def __init__(self, catalog_path: str | Path):
        self.catalog_path = Path(catalog_path)

    def fetch_catalog(self) -> list[BundleDescriptor]:
        try:
            text = self.catalog_path.read_text(encoding="utf-8")
        except OSError as e:
            raise CatalogTransportError(
                f"Could not read catalog {self.catalog_path}: {e}",
                {"path": str(self.catalog_path)},
            ) from e

        try:
            if self.catalog_path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(text)
            else:
                data = json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise CatalogFormatError(f"Could not parse catalog {self.catalog_path}: {e}") from e
        return parse_catalog(data)

    def fetch_payload(self, locator: str) -> bytes:
        path = Path(locator.removeprefix("file://"))
        if not path.is_absolute():
            path = self.catalog_path.parent / path
        try:
            return path.read_bytes()
        except OSError as e:
            raise CatalogTransportError(f"Could not read payload {path}: {e}", {"path": str(path)}) from e
