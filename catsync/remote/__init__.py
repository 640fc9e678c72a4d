"""Remote catalog adapters."""

from catsync.remote.client import CatalogHttpClient, ReadinessReport, RemoteCatalog

__all__ = ["CatalogHttpClient", "ReadinessReport", "RemoteCatalog"]
