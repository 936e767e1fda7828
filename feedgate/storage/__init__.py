"""
Catalog persistence: contract, in-memory and PostgreSQL implementations.
"""

from .base import CatalogStore, QuarantineFilter, StagedUpsert
from .memory_store import InMemoryCatalogStore

__all__ = ["CatalogStore", "InMemoryCatalogStore", "QuarantineFilter", "StagedUpsert"]
