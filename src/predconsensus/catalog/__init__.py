"""Reference data and latest per-listing state."""

from predconsensus.catalog.registry import Catalog

__all__ = ["Catalog"]
