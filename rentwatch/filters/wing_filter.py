# rentwatch/filters/wing_filter.py

"""Keep only units whose name carries one of the configured wing codes."""

import logging
import re
from collections.abc import Callable, Iterable
from typing import TypeVar

logger = logging.getLogger("rentwatch.filters")

T = TypeVar("T")

# "D123", "E-45", "D 210"
WING_TOKEN_RE = re.compile(r"\b([A-Z])[ -]?\d+\b")


def wing_of(name: str) -> str | None:
    """Return the single-letter wing code embedded in *name*, if any."""
    m = WING_TOKEN_RE.search(name.upper())
    return m.group(1) if m else None


def normalise_wings(wings: Iterable[str] | None) -> frozenset[str]:
    """Uppercase, trim and drop empty wing codes."""
    return frozenset(
        w.strip().upper() for w in (wings or []) if w.strip()
    )


def filter_by_wings(
    items: list[T],
    wings: Iterable[str] | None,
    key: Callable[[T], str],
) -> list[T]:
    """Filter *items* to those whose ``key(item)`` names a wanted wing.

    An empty wing list keeps everything.
    """
    wanted = normalise_wings(wings)
    if not wanted:
        return list(items)
    kept: list[T] = []
    for item in items:
        wing = wing_of(key(item))
        if wing is not None and wing in wanted:
            kept.append(item)
    dropped = len(items) - len(kept)
    if dropped:
        logger.info(
            "Wing filter %s dropped %d of %d items",
            sorted(wanted),
            dropped,
            len(items),
        )
    return kept
