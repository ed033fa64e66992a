# rentwatch/scrapers/availability_scraper.py

"""Scrape the secondary leasing page and classify move-in availability."""

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from rentwatch.config.settings import Settings
from rentwatch.extractors.availability_parser import (
    UNIT_SELECTORS,
    AvailabilityClassifier,
)
from rentwatch.models.availability import AvailabilityResult
from rentwatch.scrapers.page_acquirer import PageAcquirer

logger = logging.getLogger("rentwatch.availability")


async def scrape_availability(
    acquirer: PageAcquirer,
    url: str | None = None,
    wings: Iterable[str] | None = None,
    classifier: AvailabilityClassifier | None = None,
) -> AvailabilityResult:
    """Acquire *url*, parse it and keep only the requested wings.

    A page that cannot be loaded yields an empty result carrying the
    error message instead of raising.
    """
    target = url or Settings.AVAILABILITY_URL
    parser = classifier or AvailabilityClassifier()
    wanted = list(wings) if wings is not None else Settings.DEFAULT_WINGS

    try:
        document = await acquirer.fetch(
            target, wait_for=("table", *UNIT_SELECTORS[:3]),
        )
    except Exception as exc:
        logger.error(
            "[availability] Failed to load %s: %s", target, exc,
            exc_info=True,
        )
        return AvailabilityResult(
            source=target,
            scraped_at=datetime.now().isoformat(timespec="seconds"),
            errors=[str(exc)],
        )

    return await asyncio.to_thread(
        parser.parse, document.html, target, None, wanted,
    )
