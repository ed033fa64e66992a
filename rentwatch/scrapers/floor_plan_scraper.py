# rentwatch/scrapers/floor_plan_scraper.py

"""Per-source floor-plan scrape with retries and exponential backoff."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from rentwatch.config.settings import Settings
from rentwatch.extractors.floor_plan_extractor import FloorPlanExtractor
from rentwatch.filters.deduplicator import UnitDeduplicator
from rentwatch.filters.unit_validator import UnitValidator
from rentwatch.models.scraped_unit import ScrapedUnit
from rentwatch.models.source import Source
from rentwatch.scrapers.page_acquirer import PageAcquirer

logger = logging.getLogger("rentwatch.scraper")


@dataclass
class ScrapeResult:
    """Outcome of scraping one source."""

    source: str
    units: list[ScrapedUnit] = field(
        default_factory=lambda: list[ScrapedUnit]()
    )
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )
    success: bool = False
    attempts: int = 0
    candidates: int = 0
    skipped: int = 0
    invalid: int = 0
    duplicates: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


class FloorPlanScraper:
    """Acquire → extract → validate for one source at a time.

    Attempts for a source are strictly sequential.  A failed attempt
    (navigation error, timeout, unusable document) is recorded in
    ``ScrapeResult.errors`` and retried after ``BACKOFF_BASE * 2**n``
    seconds, up to ``MAX_RETRIES`` attempts.
    """

    def __init__(
        self,
        acquirer: PageAcquirer,
        max_retries: int | None = None,
        attempt_timeout: float | None = None,
    ) -> None:
        self.acquirer = acquirer
        self.max_retries = max_retries or Settings.MAX_RETRIES
        self.attempt_timeout = attempt_timeout or Settings.SOURCE_TIMEOUT

    async def scrape_source(self, source: Source) -> ScrapeResult:
        """Scrape *source*; failures are reported, never raised."""
        result = ScrapeResult(source=source.id)

        for attempt in range(1, self.max_retries + 1):
            result.attempts = attempt
            logger.info(
                "[%s] Scraping %s (attempt %d/%d)",
                source.id,
                source.url,
                attempt,
                self.max_retries,
            )
            try:
                await asyncio.wait_for(
                    self._attempt(source, result),
                    timeout=self.attempt_timeout,
                )
                result.success = True
                break
            except asyncio.TimeoutError:
                message = (
                    f"Attempt {attempt} failed for {source.label}: "
                    f"timed out after {self.attempt_timeout:.0f}s"
                )
                logger.error("[%s] %s", source.id, message)
                result.errors.append(message)
            except Exception as exc:
                message = (
                    f"Attempt {attempt} failed for {source.label}: {exc}"
                )
                logger.error("[%s] %s", source.id, message, exc_info=True)
                result.errors.append(message)

            if attempt < self.max_retries:
                backoff = Settings.BACKOFF_BASE * (2 ** (attempt - 1))
                logger.info(
                    "[%s] Retrying in %.1fs", source.id, backoff,
                )
                await asyncio.sleep(backoff)

        if result.success:
            logger.info(
                "[%s] Scraped %d floor plans", source.id, len(result.units),
            )
        else:
            logger.error(
                "[%s] Giving up after %d attempts", source.id, result.attempts,
            )

        # Politeness delay between sources
        await asyncio.sleep(Settings.CRAWL_DELAY)
        return result

    async def _attempt(self, source: Source, result: ScrapeResult) -> None:
        document = await self.acquirer.fetch(
            source.url, wait_for=source.selectors.item,
        )
        await asyncio.sleep(Settings.CRAWL_DELAY)

        extractor = FloorPlanExtractor(source.selectors)
        report = await asyncio.to_thread(
            extractor.extract_report, document.html, document.url,
        )
        units, invalid = UnitValidator.normalise(report.units, source.label)
        # Suffix stripping can make two plan names equal again
        units, merged = UnitDeduplicator.deduplicate(units)

        result.units = units
        result.duplicates = report.deduplicated + merged
        result.candidates = report.candidates
        result.skipped = report.skipped
        result.invalid = invalid
