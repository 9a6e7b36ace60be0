"""Inputs, assembly and verification of the sales index."""

from .index_builder import BuildStats, IndexBuilder, SalesIndex, sort_records
from .sources import entities_from_map, load_floor_price, load_launcher_map
from .validator import IndexValidator, ValidationReport

__all__ = [
    "BuildStats",
    "IndexBuilder",
    "SalesIndex",
    "sort_records",
    "entities_from_map",
    "load_floor_price",
    "load_launcher_map",
    "IndexValidator",
    "ValidationReport",
]
