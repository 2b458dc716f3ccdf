"""Tests for the HTTP and file catalog clients."""

import json
import tempfile
from pathlib import Path

import httpx
import pytest
import yaml

from bundlesync.catalog import FileCatalogClient, HttpCatalogClient, parse_catalog
from bundlesync.errors import CatalogFormatError, CatalogTransportError

CATALOG = [
    {
        "id": "shaders",
        "displayName": "Shaders",
        "version": 4,
        "contentHash": "aa11",
        "dependencies": [],
        "payloadLocator": "https://cdn.example/blobs/shaders",
        "updatedAt": "2024-05-01T10:00:00+00:00",
    },
    {
        "id": "forest",
        "displayName": "Forest",
        "version": 2,
        "contentHash": "bb22",
        "dependencies": ["shaders"],
        "payloadLocator": "https://cdn.example/blobs/forest",
        "manifestLocator": "https://cdn.example/blobs/forest.manifest",
        "updatedAt": "2024-05-02T10:00:00+00:00",
    },
]


def _http_client(handler) -> HttpCatalogClient:
    return HttpCatalogClient(
        "https://api.example/", "bucket-1", transport=httpx.MockTransport(handler)
    )


# --- HTTP ---


def test_http_fetch_catalog():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/buckets/bucket-1/bundles"
        return httpx.Response(200, json=CATALOG)

    with _http_client(handler) as client:
        descriptors = client.fetch_catalog()

    assert [d.id for d in descriptors] == ["shaders", "forest"]
    assert descriptors[1].dependencies == ["shaders"]
    assert descriptors[1].content_hash == "bb22"


def test_http_fetch_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x00\x01binary")

    with _http_client(handler) as client:
        assert client.fetch_payload("https://cdn.example/blobs/forest") == b"\x00\x01binary"


def test_http_error_status_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with _http_client(handler) as client:
        with pytest.raises(CatalogTransportError) as exc_info:
            client.fetch_catalog()
    assert exc_info.value.context["status"] == 503


def test_http_connection_failure_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _http_client(handler) as client:
        with pytest.raises(CatalogTransportError):
            client.fetch_payload("https://cdn.example/blobs/forest")


def test_http_invalid_json_is_format_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    with _http_client(handler) as client:
        with pytest.raises(CatalogFormatError):
            client.fetch_catalog()


# --- Parsing ---


def test_parse_catalog_accepts_wrapped_list():
    descriptors = parse_catalog({"bundles": CATALOG})
    assert len(descriptors) == 2


def test_parse_catalog_rejects_malformed():
    with pytest.raises(CatalogFormatError):
        parse_catalog({"unexpected": True})
    with pytest.raises(CatalogFormatError):
        parse_catalog([{"displayName": "no id"}])
    with pytest.raises(CatalogFormatError):
        parse_catalog([{"id": "x", "version": "not-a-number"}])


# --- File ---


def test_file_catalog_json_with_relative_locators():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "blobs").mkdir()
        (root / "blobs" / "shaders").write_bytes(b"shader-bytes")
        catalog = [{"id": "shaders", "content_hash": "aa", "payload_locator": "blobs/shaders"}]
        (root / "catalog.json").write_text(json.dumps(catalog))

        client = FileCatalogClient(root / "catalog.json")
        descriptors = client.fetch_catalog()
        assert descriptors[0].id == "shaders"
        assert client.fetch_payload(descriptors[0].payload_locator) == b"shader-bytes"


def test_file_catalog_yaml():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "catalog.yaml"
        with open(path, "w") as f:
            yaml.dump({"bundles": CATALOG}, f)

        descriptors = FileCatalogClient(path).fetch_catalog()
        assert [d.id for d in descriptors] == ["shaders", "forest"]


def test_file_catalog_missing_file_is_transport_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        client = FileCatalogClient(Path(tmpdir) / "absent.json")
        with pytest.raises(CatalogTransportError):
            client.fetch_catalog()
        with pytest.raises(CatalogTransportError):
            client.fetch_payload("blobs/none")
