# rentwatch/filters/unit_validator.py

"""Per-source normalisation of extracted units before ingestion."""

import logging
import math
from dataclasses import replace

from rentwatch.filters.deduplicator import strip_source_suffix
from rentwatch.models.scraped_unit import ScrapedUnit

logger = logging.getLogger("rentwatch.filters")


class UnitValidator:
    """Clamp numeric fields, tidy names and drop nameless units."""

    @staticmethod
    def _finite(value: float, default: float) -> float:
        return value if math.isfinite(value) else default

    @staticmethod
    def normalise(
        units: list[ScrapedUnit],
        source_label: str = "",
    ) -> tuple[list[ScrapedUnit], int]:
        """Return normalised units and the count of dropped ones.

        Availability is forced off for units without a price.
        """
        valid: list[ScrapedUnit] = []
        dropped = 0

        for unit in units:
            name = strip_source_suffix(unit.name, source_label)
            if not name:
                logger.debug(
                    "Dropped unit with empty name (source=%s)",
                    source_label,
                )
                dropped += 1
                continue
            price = max(0, int(unit.price))
            valid.append(
                replace(
                    unit,
                    name=name,
                    bedrooms=max(0, round(
                        UnitValidator._finite(unit.bedrooms, 0)
                    )),
                    bathrooms=max(
                        0.0, UnitValidator._finite(unit.bathrooms, 1.0)
                    ),
                    square_footage=max(0, round(
                        UnitValidator._finite(unit.square_footage, 0)
                    )),
                    position=unit.position.strip(),
                    price=price,
                    is_available=unit.is_available and price > 0,
                )
            )

        if dropped:
            logger.info(
                "Validation dropped %d invalid units", dropped,
            )
        return valid, dropped
