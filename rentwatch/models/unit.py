# rentwatch/models/unit.py

"""Durable unit identity and its daily price series."""

from dataclasses import dataclass
from datetime import date


@dataclass
class Unit:
    """A floor plan within one source, keyed by (source, name)."""

    id: int
    source_id: int
    name: str
    bedrooms: int
    bathrooms: float
    has_den: bool
    square_footage: int | None = None
    position: str | None = None
    image_url: str | None = None


@dataclass
class PricePoint:
    """Lowest price observed for a unit on one calendar date."""

    unit_id: int
    price: int
    is_available: bool
    collection_date: date
    id: int = 0
