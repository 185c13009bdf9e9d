"""Mapping persistence."""

from sitecost.mapping.store import MappingStore

__all__ = ["MappingStore"]
