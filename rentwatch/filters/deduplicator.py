# rentwatch/filters/deduplicator.py

"""Collapse repeated floor plans on a page to one row per plan name."""

import logging
import re

from rentwatch.models.scraped_unit import ScrapedUnit

logger = logging.getLogger("rentwatch.filters")


class UnitDeduplicator:
    """Remove duplicate units by name, keeping the lowest observed price."""

    @staticmethod
    def normalise_name(name: str) -> str:
        """Uppercase and collapse whitespace to a comparable key."""
        return " ".join(name.upper().split())

    @staticmethod
    def deduplicate(
        units: list[ScrapedUnit],
    ) -> tuple[list[ScrapedUnit], int]:
        """Remove duplicate units, keeping the cheapest per name.

        A later duplicate replaces the kept entry only when it has a
        positive price and the kept entry has none or a higher one.
        First-seen order is preserved.

        Returns the deduplicated list and the count of removed dupes.
        """
        if not units:
            return [], 0

        seen: dict[str, int] = {}
        kept: list[ScrapedUnit] = []
        removed = 0

        for unit in units:
            key = UnitDeduplicator.normalise_name(unit.name)
            if key in seen:
                existing = kept[seen[key]]
                if unit.price > 0 and (
                    existing.price <= 0 or unit.price < existing.price
                ):
                    kept[seen[key]] = unit
                removed += 1
                continue
            seen[key] = len(kept)
            kept.append(unit)

        if removed:
            logger.info(
                "Deduplication removed %d duplicate units",
                removed,
            )

        return kept, removed


_SUFFIX_SEPARATOR_RE = r"\s*[-–—]\s*"


def strip_source_suffix(name: str, label: str) -> str:
    """Drop a trailing ' - <label>' that some sources append to plan names."""
    if not label:
        return name.strip()
    pattern = re.compile(
        _SUFFIX_SEPARATOR_RE + re.escape(label) + r"\s*$", re.I
    )
    return pattern.sub("", name).strip()
