# rentwatch/models/scraped_unit.py

"""Ephemeral floor-plan record produced by the extractor."""

from dataclasses import dataclass


@dataclass
class ScrapedUnit:
    """A single floor plan as read off a source page.

    Lives only for one pipeline run: produced by the extractor and
    handed straight to the ingestor.  ``bedrooms == 0`` means studio.
    """

    name: str
    bedrooms: int = 0
    bathrooms: float = 1.0
    has_den: bool = False
    square_footage: int = 0
    position: str = ""
    price: int = 0
    is_available: bool = False
    image_url: str = ""
