# rentwatch/services/pipeline_orchestrator.py

"""Runs the scrape → filter → ingest pipeline across all sources."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from rentwatch.config.settings import Settings
from rentwatch.filters.wing_filter import filter_by_wings
from rentwatch.models.availability import AvailabilityResult
from rentwatch.models.source import Source
from rentwatch.scrapers.availability_scraper import scrape_availability
from rentwatch.scrapers.floor_plan_scraper import FloorPlanScraper
from rentwatch.scrapers.page_acquirer import BrowserSession, PageAcquirer
from rentwatch.services.alert_evaluator import AlertEvaluator
from rentwatch.services.price_ingestor import PriceIngestor
from rentwatch.storage.price_history_db import (
    LAST_RUN_KEY,
    NEXT_RUN_KEY,
    PriceHistoryDB,
)

logger = logging.getLogger("rentwatch.orchestrator")


@dataclass
class SourceRunReport:
    """Per-source counts for one full run."""

    source: str
    success: bool = False
    scraped: int = 0
    filtered: int = 0
    upserted: int = 0
    priced: int = 0
    alerts: int = 0
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )


@dataclass
class RunSummary:
    """Container for a completed (or refused) full run."""

    started_at: str = ""
    finished_at: str = ""
    busy: bool = False
    sources: list[SourceRunReport] = field(
        default_factory=lambda: list[SourceRunReport]()
    )
    availability_refreshed: bool = False
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )

    @property
    def total_scraped(self) -> int:
        return sum(r.scraped for r in self.sources)

    @property
    def total_upserted(self) -> int:
        return sum(r.upserted for r in self.sources)

    @property
    def total_priced(self) -> int:
        return sum(r.priced for r in self.sources)

    @property
    def total_alerts(self) -> int:
        return sum(r.alerts for r in self.sources)

    @property
    def success(self) -> bool:
        return not self.busy and any(r.success for r in self.sources)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.update(
            total_scraped=self.total_scraped,
            total_upserted=self.total_upserted,
            total_priced=self.total_priced,
            total_alerts=self.total_alerts,
            success=self.success,
        )
        return data


def next_run_after(
    now: datetime,
    times: Iterable[tuple[int, int]] | None = None,
) -> datetime:
    """Earliest scheduled time strictly after *now*."""
    schedule = sorted(times or Settings.SCHEDULE_TIMES)
    if not schedule:
        raise ValueError("Empty schedule")
    for hour, minute in schedule:
        candidate = now.replace(
            hour=hour, minute=minute, second=0, microsecond=0,
        )
        if candidate > now:
            return candidate
    hour, minute = schedule[0]
    return (now + timedelta(days=1)).replace(
        hour=hour, minute=minute, second=0, microsecond=0,
    )


def select_sources(
    source_ids: Iterable[str] | None = None,
) -> list[Source]:
    """Registered sources, optionally limited to *source_ids*."""
    wanted = {s.strip().lower() for s in (source_ids or []) if s.strip()}
    entries = Settings.enabled_sources()
    if wanted:
        entries = [e for e in entries if e["id"] in wanted]
    return [Source.from_registry(e) for e in entries]


class PipelineOrchestrator:
    """Coordinates scraping, wing filtering, ingestion and alerting.

    Only one full run may be in flight per orchestrator; a second call
    to :meth:`run_all` returns a ``busy`` summary instead of queuing.
    """

    def __init__(
        self,
        store: PriceHistoryDB | None = None,
        session_factory: Callable[[], BrowserSession] = BrowserSession,
    ) -> None:
        self.store = store or PriceHistoryDB()
        self.evaluator = AlertEvaluator(self.store)
        self.ingestor = PriceIngestor(
            self.store, hooks=[self.evaluator.handle_price_write],
        )
        self._session_factory = session_factory
        self._running = False
        self._last_summary: RunSummary | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Full run ─────────────────────────────────────────

    async def run_all(
        self,
        source_ids: Iterable[str] | None = None,
        wings: Iterable[str] | None = None,
        refresh_availability: bool = True,
    ) -> RunSummary:
        """Scrape every selected source and ingest the results."""
        if self._running:
            logger.warning("Run requested while another is in progress")
            return RunSummary(
                started_at=datetime.now().isoformat(timespec="seconds"),
                busy=True,
            )
        self._running = True
        try:
            summary = await self._run(
                select_sources(source_ids),
                list(wings) if wings is not None else Settings.DEFAULT_WINGS,
                refresh_availability,
            )
        finally:
            self._running = False
        self._last_summary = summary
        return summary

    async def _run(
        self,
        sources: list[Source],
        wings: list[str],
        refresh_availability: bool,
    ) -> RunSummary:
        started = datetime.now()
        summary = RunSummary(started_at=started.isoformat(timespec="seconds"))
        logger.info(
            "Run started for %d sources (wings=%s)",
            len(sources),
            wings or "all",
        )

        try:
            async with self._session_factory() as session:
                acquirer = PageAcquirer(session)
                scraper = FloorPlanScraper(acquirer)
                gate = asyncio.Semaphore(Settings.CONCURRENCY)

                async def run_one(source: Source) -> SourceRunReport:
                    async with gate:
                        return await self._run_source(
                            scraper, source, wings, started,
                        )

                outcomes = await asyncio.gather(
                    *(run_one(s) for s in sources),
                    return_exceptions=True,
                )
                for source, outcome in zip(sources, outcomes):
                    if isinstance(outcome, SourceRunReport):
                        summary.sources.append(outcome)
                    else:
                        logger.error(
                            "[%s] Source pipeline crashed: %s",
                            source.id,
                            outcome,
                            exc_info=outcome,
                        )
                        summary.sources.append(
                            SourceRunReport(
                                source=source.id, errors=[str(outcome)],
                            )
                        )

                if refresh_availability:
                    availability = await scrape_availability(
                        acquirer, wings=wings,
                    )
                    summary.availability_refreshed = self._cache_availability(
                        availability,
                    )
        except Exception as exc:
            logger.error("Run aborted: %s", exc, exc_info=True)
            summary.errors.append(str(exc))

        finished = datetime.now()
        summary.finished_at = finished.isoformat(timespec="seconds")
        self.store.set_setting(LAST_RUN_KEY, summary.finished_at)
        self.store.set_setting(
            NEXT_RUN_KEY,
            next_run_after(finished).isoformat(timespec="seconds"),
        )
        logger.info(
            "Run finished: %d scraped, %d upserted, %d priced, %d alerts",
            summary.total_scraped,
            summary.total_upserted,
            summary.total_priced,
            summary.total_alerts,
        )
        return summary

    async def _run_source(
        self,
        scraper: FloorPlanScraper,
        source: Source,
        wings: list[str],
        collected_at: datetime,
    ) -> SourceRunReport:
        report = SourceRunReport(source=source.id)
        scraped = await scraper.scrape_source(source)
        report.success = scraped.success
        report.errors.extend(scraped.errors)
        report.scraped = len(scraped.units)

        units = filter_by_wings(scraped.units, wings, key=lambda u: u.name)
        report.filtered = report.scraped - len(units)
        if not units:
            return report

        ingested = await asyncio.to_thread(
            self.ingestor.ingest_batch, source, units, collected_at,
        )
        report.upserted = ingested.upserted
        report.priced = ingested.priced
        report.alerts = ingested.alerts
        report.errors.extend(ingested.errors)
        return report

    # ── Availability ─────────────────────────────────────

    def _cache_availability(self, result: AvailabilityResult) -> bool:
        if result.errors:
            logger.warning(
                "Availability scrape failed; keeping previous cache",
            )
            return False
        self.store.set_availability_cache(result.to_dict())
        return True

    async def refresh_availability(
        self, wings: Iterable[str] | None = None,
    ) -> AvailabilityResult:
        """Scrape the leasing page on its own and update the cache."""
        async with self._session_factory() as session:
            result = await scrape_availability(
                PageAcquirer(session), wings=wings,
            )
        self._cache_availability(result)
        return result

    # ── Status ───────────────────────────────────────────

    def get_status(self) -> dict[str, Any]:
        """Running flag, last summary and schedule information."""
        return {
            "running": self._running,
            "last_run_time": self.store.get_setting(LAST_RUN_KEY, ""),
            "next_run_time": self.store.get_setting(NEXT_RUN_KEY, "")
            or next_run_after(datetime.now()).isoformat(timespec="seconds"),
            "schedule": [
                f"{h:02d}:{m:02d}" for h, m in Settings.SCHEDULE_TIMES
            ],
            "last_summary": (
                self._last_summary.to_dict() if self._last_summary else None
            ),
            "statistics": self.store.get_statistics(),
        }
