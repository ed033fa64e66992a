# tests/test_price_history_db.py

"""Tests for the SQLite price history store."""

import sqlite3
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

from rentwatch.errors import IngestionConflict
from rentwatch.models.alert import Alert, AlertKind
from rentwatch.models.scraped_unit import ScrapedUnit
from rentwatch.storage.price_history_db import (
    THRESHOLD_TYPE_KEY,
    THRESHOLD_VALUE_KEY,
    PriceHistoryDB,
)

D1 = date(2026, 10, 1)
D2 = date(2026, 10, 2)
D3 = date(2026, 10, 3)


class TestPriceHistoryDB(unittest.TestCase):
    """Tests for the PriceHistoryDB class."""

    def setUp(self) -> None:
        """Create a fresh temp DB for each test."""
        self.tmp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.tmp_dir) / "test.db"
        self.db = PriceHistoryDB(db_path=self.db_path)
        self.source_id = self.db.upsert_source("Fairview", "https://x.test")

    def tearDown(self) -> None:
        """Close the database."""
        self.db.close()

    def _unit(self, **kwargs: Any) -> int:
        fields: dict[str, Any] = {"name": "Plan A1", "bedrooms": 1}
        fields.update(kwargs)
        unit_id, _ = self.db.upsert_unit(self.source_id, ScrapedUnit(**fields))
        return unit_id

    # ── Schema and settings ──────────────────────────────

    def test_threshold_defaults_seeded(self) -> None:
        """A fresh store carries the default alert threshold."""
        self.assertEqual(self.db.get_setting(THRESHOLD_TYPE_KEY), "percentage")
        self.assertEqual(float(self.db.get_setting(THRESHOLD_VALUE_KEY) or 0), 5.0)

    def test_reopen_keeps_settings(self) -> None:
        """Seeding never overwrites stored settings."""
        self.db.set_setting(THRESHOLD_TYPE_KEY, "dollar")
        self.db.close()
        self.db = PriceHistoryDB(db_path=self.db_path)
        self.assertEqual(self.db.get_setting(THRESHOLD_TYPE_KEY), "dollar")

    def test_settings_roundtrip(self) -> None:
        """set/get/get_all cover arbitrary keys."""
        self.db.set_setting("last_run_time", "2026-10-01T07:00:00")
        self.assertEqual(
            self.db.get_all_settings()["last_run_time"], "2026-10-01T07:00:00",
        )
        self.assertEqual(self.db.get_setting("missing", "x"), "x")

    def test_upsert_source_is_idempotent(self) -> None:
        """The same source name maps to one id."""
        self.assertEqual(self.db.upsert_source("Fairview"), self.source_id)
        self.assertNotEqual(self.db.upsert_source("Boren"), self.source_id)

    # ── Units ────────────────────────────────────────────

    def test_upsert_unit_protects_static_fields(self) -> None:
        """Bedrooms, bathrooms and den survive a re-scrape."""
        unit_id, created = self.db.upsert_unit(
            self.source_id,
            ScrapedUnit(name="Plan A1", bedrooms=2, bathrooms=2.0, has_den=True,
                        square_footage=900),
        )
        self.assertTrue(created)
        again, created = self.db.upsert_unit(
            self.source_id,
            ScrapedUnit(name="Plan A1", bedrooms=1, bathrooms=1.0, has_den=False,
                        square_footage=950, position="corner",
                        image_url="https://x.test/a1.png"),
        )
        self.assertFalse(created)
        self.assertEqual(again, unit_id)
        unit = self.db.get_units("Fairview")[0]
        self.assertEqual(unit.bedrooms, 2)
        self.assertEqual(unit.bathrooms, 2.0)
        self.assertTrue(unit.has_den)
        self.assertEqual(unit.square_footage, 950)
        self.assertEqual(unit.position, "corner")
        self.assertEqual(unit.image_url, "https://x.test/a1.png")

    def test_empty_dynamic_fields_do_not_erase(self) -> None:
        """A re-scrape missing footage or image keeps the stored values."""
        self._unit(square_footage=900, image_url="https://x.test/a.png")
        self._unit()
        unit = self.db.get_units()[0]
        self.assertEqual(unit.square_footage, 900)
        self.assertEqual(unit.image_url, "https://x.test/a.png")

    # ── Price points ─────────────────────────────────────

    def test_price_point_queries(self) -> None:
        """Latest-before and min-before are strictly before the date."""
        unit_id = self._unit()
        self.db.insert_price_point(unit_id, 2500, True, D1)
        self.db.insert_price_point(unit_id, 2400, False, D2)
        self.db.insert_price_point(unit_id, 2600, False, D3)

        latest = self.db.get_latest_price_before(unit_id, D3)
        assert latest is not None
        self.assertEqual(latest.price, 2400)
        self.assertEqual(latest.collection_date, D2)
        self.assertEqual(self.db.get_min_price_before(unit_id, D3), 2400)
        self.assertEqual(self.db.get_min_price_before(unit_id, D2), 2500)
        self.assertIsNone(self.db.get_latest_price_before(unit_id, D1))
        self.assertIsNone(self.db.get_min_price_before(unit_id, D1))

    def test_one_point_per_unit_per_day(self) -> None:
        """A second insert for the same day violates the unique key."""
        unit_id = self._unit()
        self.db.insert_price_point(unit_id, 2500, True, D1)
        with self.assertRaises(sqlite3.IntegrityError):
            self.db.insert_price_point(unit_id, 2400, True, D1)

    def test_price_history_filters(self) -> None:
        """History is newest first and honours range and limit."""
        unit_id = self._unit()
        for d, price in ((D1, 2500), (D2, 2400), (D3, 2300)):
            self.db.insert_price_point(unit_id, price, True, d)
        history = self.db.get_price_history(unit_id)
        self.assertEqual([p.price for p in history], [2300, 2400, 2500])
        ranged = self.db.get_price_history(unit_id, start=D2, end=D2)
        self.assertEqual([p.price for p in ranged], [2400])
        self.assertEqual(len(self.db.get_price_history(unit_id, limit=1)), 1)

    def test_latest_prices(self) -> None:
        """Latest prices join unit and source data."""
        unit_id = self._unit()
        self.db.insert_price_point(unit_id, 2500, True, D1)
        self.db.insert_price_point(unit_id, 2450, False, D2)
        rows = self.db.get_latest_prices()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["price"], 2450)
        self.assertEqual(rows[0]["source"], "Fairview")

    # ── Alerts ───────────────────────────────────────────

    def test_alert_dismissal_is_soft(self) -> None:
        """Dismissed alerts remain stored but leave the active list."""
        unit_id = self._unit()
        alert_id = self.db.insert_alert(
            Alert(unit_id=unit_id, kind=AlertKind.NEW_LOW, old_price=2500,
                  new_price=2400, percentage_change=4.0),
        )
        self.assertEqual(len(self.db.get_active_alerts()), 1)
        self.assertTrue(self.db.dismiss_alert(alert_id))
        self.assertFalse(self.db.dismiss_alert(alert_id))
        self.assertEqual(self.db.get_active_alerts(), [])
        everything = self.db.get_alerts(include_dismissed=True)
        self.assertEqual(len(everything), 1)
        self.assertTrue(everything[0].is_dismissed)

    def test_alert_kind_is_constrained(self) -> None:
        """Only known alert kinds are accepted by the schema."""
        unit_id = self._unit()
        with self.assertRaises(sqlite3.IntegrityError):
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO alerts (unit_id, alert_kind, new_price, "
                    "created_at) VALUES (?, 'bogus', 1, 'now')",
                    (unit_id,),
                )

    # ── Transactions ─────────────────────────────────────

    def test_transaction_rolls_back_on_error(self) -> None:
        """An exception inside the block discards its writes."""
        unit_id = self._unit()
        with self.assertRaises(ValueError):
            with self.db.transaction():
                self.db.insert_price_point(unit_id, 2500, True, D1)
                raise ValueError("boom")
        self.assertIsNone(self.db.get_price_point(unit_id, D1))

    def test_transaction_commits(self) -> None:
        """A clean block is committed and visible to a new connection."""
        unit_id = self._unit()
        with self.db.transaction():
            self.db.insert_price_point(unit_id, 2500, True, D1)
        other = sqlite3.connect(str(self.db_path))
        try:
            count = other.execute("SELECT COUNT(*) FROM price_points").fetchone()[0]
        finally:
            other.close()
        self.assertEqual(count, 1)

    def _flaky_begin(self, failures: int) -> MagicMock:
        real = self.db._conn
        state = {"left": failures}

        def execute(sql: str, *args: Any) -> Any:
            if sql == "BEGIN IMMEDIATE" and state["left"] > 0:
                state["left"] -= 1
                raise sqlite3.OperationalError("database is locked")
            return real.execute(sql, *args)

        proxy = MagicMock(wraps=real)
        proxy.execute.side_effect = execute
        self.db._conn = proxy
        self.addCleanup(setattr, self.db, "_conn", real)
        return proxy

    def test_lock_contention_is_retried(self) -> None:
        """A briefly locked database still commits."""
        unit_id = self._unit()
        self._flaky_begin(failures=2)
        with self.db.transaction():
            self.db.insert_price_point(unit_id, 2500, True, D1)
        self.assertIsNotNone(self.db.get_price_point(unit_id, D1))

    def test_persistent_lock_raises_conflict(self) -> None:
        """Exhausted lock retries surface as IngestionConflict."""
        self._flaky_begin(failures=1000)
        with self.assertRaises(IngestionConflict):
            self.db.atomic(lambda: None)

    def test_atomic_replays_conflicting_body(self) -> None:
        """atomic() replays the whole body after a conflict."""
        attempts: list[int] = []

        def body() -> str:
            attempts.append(1)
            if len(attempts) == 1:
                raise IngestionConflict("lost the race")
            return "done"

        self.assertEqual(self.db.atomic(body), "done")
        self.assertEqual(len(attempts), 2)

    # ── Availability cache and statistics ────────────────

    def test_availability_cache_roundtrip(self) -> None:
        """The availability payload round-trips with its timestamp."""
        self.assertIsNone(self.db.get_availability_cache())
        self.db.set_availability_cache(
            {"available_now": [{"unit": "D101"}]},
            when=datetime(2026, 10, 1, 7, 0),
        )
        cached = self.db.get_availability_cache()
        assert cached is not None
        self.assertEqual(cached["available_now"], [{"unit": "D101"}])
        self.assertEqual(cached["cached_at"], "2026-10-01T07:00:00")

    def test_statistics(self) -> None:
        """Statistics count rows and report the last collection date."""
        unit_id = self._unit()
        self.db.insert_price_point(unit_id, 2500, True, D2)
        stats = self.db.get_statistics()
        self.assertEqual(stats["sources"], 1)
        self.assertEqual(stats["units"], 1)
        self.assertEqual(stats["price_points"], 1)
        self.assertEqual(stats["active_alerts"], 0)
        self.assertEqual(stats["last_collection"], "2026-10-02")
