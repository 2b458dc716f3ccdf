"""Catalog clients: where descriptors and payload bytes come from."""

from bundlesync.catalog.client import (
    CatalogClient,
    FileCatalogClient,
    HttpCatalogClient,
    parse_catalog,
)

__all__ = ["CatalogClient", "FileCatalogClient", "HttpCatalogClient", "parse_catalog"]
