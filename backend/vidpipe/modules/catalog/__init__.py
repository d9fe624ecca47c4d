"""Catalog record store for video processing outcomes."""

from vidpipe.modules.catalog.service import SQLAlchemyCatalogStore

__all__ = ["SQLAlchemyCatalogStore"]
