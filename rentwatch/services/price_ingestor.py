# rentwatch/services/price_ingestor.py

"""Applies a scraped batch to the daily price series."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime

from rentwatch.models.scraped_unit import ScrapedUnit
from rentwatch.models.source import Source
from rentwatch.storage.price_history_db import PriceHistoryDB

logger = logging.getLogger("rentwatch.ingestor")


@dataclass
class PriceWrite:
    """A committed price insert or price-lowering update."""

    unit_id: int
    price: int
    collection_date: date
    inserted: bool


PriceWriteHook = Callable[[PriceWrite], object]


@dataclass
class IngestResult:
    """Counts for one ingested batch."""

    upserted: int = 0
    priced: int = 0
    alerts: int = 0
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )


class PriceIngestor:
    """Upserts units and keeps the lowest price per unit per day.

    Each unit is applied in its own immediate transaction.  Hooks
    registered with :meth:`on_price_write` run after that transaction
    commits, and only when a price row was inserted or lowered.
    """

    def __init__(
        self,
        store: PriceHistoryDB,
        hooks: list[PriceWriteHook] | None = None,
    ) -> None:
        self.store = store
        self._hooks: list[PriceWriteHook] = list(hooks or [])

    def on_price_write(self, hook: PriceWriteHook) -> None:
        """Register a post-commit hook for real price writes."""
        self._hooks.append(hook)

    def ingest_batch(
        self,
        source: Source,
        units: list[ScrapedUnit],
        collected_at: datetime | date | None = None,
    ) -> IngestResult:
        """Upsert every unit and its price for the collection date.

        A failure on one unit is logged and recorded; the rest of the
        batch is still applied.
        """
        when = collected_at or datetime.now()
        collection_date = when.date() if isinstance(when, datetime) else when
        result = IngestResult()

        source_id = self.store.upsert_source(source.label, source.url)

        for unit in units:
            try:
                write = self.store.atomic(
                    self._apply_unit, source_id, unit, collection_date,
                )
            except Exception as exc:
                logger.error(
                    "[%s] Failed to ingest unit %r: %s",
                    source.id,
                    unit.name,
                    exc,
                    exc_info=True,
                )
                result.errors.append(f"{unit.name}: {exc}")
                continue

            result.upserted += 1
            if unit.price > 0:
                result.priced += 1
            if write is not None:
                result.alerts += self._emit(write)

        logger.info(
            "[%s] Ingested %d units, %d priced, %d alerts, %d errors",
            source.id,
            result.upserted,
            result.priced,
            result.alerts,
            len(result.errors),
        )
        return result

    def _apply_unit(
        self,
        source_id: int,
        unit: ScrapedUnit,
        collection_date: date,
    ) -> PriceWrite | None:
        """Unit upsert plus daily-minimum price upsert (in-transaction)."""
        unit_id, created = self.store.upsert_unit(source_id, unit)
        if created:
            logger.debug("New unit %r (id=%d)", unit.name, unit_id)
        if unit.price <= 0:
            return None

        existing = self.store.get_price_point(unit_id, collection_date)
        if existing is None:
            self.store.insert_price_point(
                unit_id, unit.price, unit.is_available, collection_date,
            )
            return PriceWrite(unit_id, unit.price, collection_date, True)

        available = existing.is_available or unit.is_available
        if unit.price < existing.price:
            self.store.update_price_point(existing.id, unit.price, available)
            logger.debug(
                "Unit %d: lowered %s price %d -> %d",
                unit_id,
                collection_date,
                existing.price,
                unit.price,
            )
            return PriceWrite(unit_id, unit.price, collection_date, False)

        if available != existing.is_available:
            self.store.update_price_point(
                existing.id, existing.price, available,
            )
        return None

    def _emit(self, write: PriceWrite) -> int:
        """Run post-commit hooks; return how many alerts they produced."""
        produced = 0
        for hook in self._hooks:
            try:
                outcome = hook(write)
            except Exception:
                logger.exception(
                    "Price-write hook failed for unit %d", write.unit_id,
                )
                continue
            if isinstance(outcome, list):
                produced += len(outcome)
        return produced
