"""Museum catalog search and object lookup."""

from artimport.catalog.met_client import (
    CatalogError,
    MetCatalogClient,
    SearchCriteria,
)

__all__ = ["CatalogError", "MetCatalogClient", "SearchCriteria"]
