"""
Utility functions for the price crawler.
"""

from .fuel_types import FuelType, is_trackable, normalize_fuel_type

__all__ = [
    "FuelType",
    "is_trackable",
    "normalize_fuel_type",
]
