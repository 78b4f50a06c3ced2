"""
Fuel type normalization.

Maps the free-text product descriptors published upstream (for example
"Regular 87", "Premium 92 octanos", "Diésel") to the canonical fuel types.

Rules are evaluated top-to-bottom and the first match wins. The ordering
matters: the specific octane patterns come before the bare keywords, and
the regular family is tested before premium so that descriptors such as
"Regular menos de 92 octanos" do not fall through to a premium rule.
"""

import logging
import re
from typing import List, Optional, Pattern, Tuple

from django.db import models

logger = logging.getLogger(__name__)


class FuelType(models.TextChoices):
    """Canonical fuel types."""

    REGULAR = "regular", "Regular"
    PREMIUM = "premium", "Premium"
    DIESEL = "diesel", "Diesel"
    UNRECOGNIZED = "unrecognized", "Unrecognized"


FUEL_TYPE_RULES: List[Tuple[Pattern, FuelType]] = [
    (re.compile(r"regular.*87", re.IGNORECASE), FuelType.REGULAR),
    (re.compile(r"regular.*menos.*92", re.IGNORECASE), FuelType.REGULAR),
    (re.compile(r"regular", re.IGNORECASE), FuelType.REGULAR),
    (re.compile(r"premium.*91", re.IGNORECASE), FuelType.PREMIUM),
    (re.compile(r"premium.*92", re.IGNORECASE), FuelType.PREMIUM),
    (re.compile(r"premium", re.IGNORECASE), FuelType.PREMIUM),
    (re.compile(r"di[eé]sel", re.IGNORECASE), FuelType.DIESEL),
]


def normalize_fuel_type(descriptor: Optional[str]) -> FuelType:
    """
    Map a raw product descriptor to a canonical fuel type.

    Unknown or empty descriptors are not errors, they map to
    FuelType.UNRECOGNIZED so the caller can count and skip them.

    Example:
        >>> normalize_fuel_type("  Regular menos de 92 octanos ")
        <FuelType.REGULAR: 'regular'>
    """
    if not descriptor:
        return FuelType.UNRECOGNIZED

    normalized = descriptor.strip()
    if not normalized:
        return FuelType.UNRECOGNIZED

    for pattern, fuel_type in FUEL_TYPE_RULES:
        if pattern.search(normalized):
            return fuel_type

    logger.debug(f"Unknown fuel type for descriptor: {descriptor!r}")
    return FuelType.UNRECOGNIZED


def is_trackable(fuel_type: str) -> bool:
    """Whether a fuel type takes part in change detection."""
    return fuel_type in (FuelType.REGULAR, FuelType.PREMIUM, FuelType.DIESEL)
