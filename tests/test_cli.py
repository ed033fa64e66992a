# tests/test_cli.py

"""Tests for the headless CLI commands and argument parsing."""

import io
import json
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date
from pathlib import Path
from unittest.mock import patch

from main import _build_parser
from rentwatch.cli import runner
from rentwatch.models.scraped_unit import ScrapedUnit
from rentwatch.storage.price_history_db import (
    THRESHOLD_TYPE_KEY,
    THRESHOLD_VALUE_KEY,
    PriceHistoryDB,
)


class TestArgParsing(unittest.TestCase):
    """Tests for the subcommand parser."""

    def test_run_options(self) -> None:
        """run accepts sources, wings and --json."""
        args = _build_parser().parse_args(
            ["run", "-s", "boren", "--wings", "D,E", "--json"],
        )
        self.assertEqual(args.command, "run")
        self.assertEqual(args.sources, "boren")
        self.assertEqual(args.wings, "D,E")
        self.assertTrue(args.as_json)

    def test_threshold_optional_args(self) -> None:
        """threshold with no arguments shows the current value."""
        args = _build_parser().parse_args(["threshold"])
        self.assertIsNone(args.kind)
        self.assertIsNone(args.value)

    def test_history_limit(self) -> None:
        """history takes a unit id and an optional limit."""
        args = _build_parser().parse_args(["history", "4", "-n", "10"])
        self.assertEqual((args.unit_id, args.limit), (4, 10))

    def test_prices_json_flag(self) -> None:
        """prices accepts --json."""
        args = _build_parser().parse_args(["prices", "--json"])
        self.assertEqual(args.command, "prices")
        self.assertTrue(args.as_json)


class TestSourceSelection(unittest.TestCase):
    """Tests for CSV parsing and source validation."""

    def test_split_csv(self) -> None:
        """Blank items are dropped; None passes through."""
        self.assertEqual(runner.split_csv(" d, ,e "), ["d", "e"])
        self.assertIsNone(runner.split_csv(None))

    def test_known_sources_lowercased(self) -> None:
        """Valid IDs are normalised to lowercase."""
        self.assertEqual(runner.resolve_source_ids("Boren"), ["boren"])
        self.assertIsNone(runner.resolve_source_ids(None))

    def test_unknown_source_exits(self) -> None:
        """An unknown ID exits with status 1."""
        with self.assertRaises(SystemExit) as ctx:
            runner.resolve_source_ids("boren,nowhere")
        self.assertEqual(ctx.exception.code, 1)


class TestStoreCommands(unittest.TestCase):
    """Tests for commands that only touch the price store."""

    def setUp(self) -> None:
        """Point every command at a temp database."""
        self.db_path = Path(tempfile.mkdtemp()) / "test.db"
        patcher = patch.object(
            runner,
            "PriceHistoryDB",
            side_effect=lambda: PriceHistoryDB(db_path=self.db_path),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _open(self) -> PriceHistoryDB:
        store = PriceHistoryDB(db_path=self.db_path)
        self.addCleanup(store.close)
        return store

    def test_threshold_show(self) -> None:
        """Showing the threshold succeeds."""
        self.assertEqual(runner.run_threshold(None, None), 0)

    def test_threshold_set(self) -> None:
        """A valid threshold is stored."""
        self.assertEqual(runner.run_threshold("dollar", "75"), 0)
        store = self._open()
        self.assertEqual(store.get_setting(THRESHOLD_TYPE_KEY), "dollar")
        self.assertEqual(store.get_setting(THRESHOLD_VALUE_KEY), "75.0")

    def test_threshold_rejects_invalid(self) -> None:
        """Invalid input exits non-zero and changes nothing."""
        self.assertEqual(runner.run_threshold("percentage", "250"), 1)
        self.assertEqual(runner.run_threshold("dollar", None), 1)
        self.assertEqual(
            self._open().get_setting(THRESHOLD_TYPE_KEY), "percentage",
        )

    def test_alerts_empty(self) -> None:
        """No alerts is not an error."""
        self.assertEqual(runner.run_alerts(), 0)

    def test_dismiss_unknown_alert(self) -> None:
        """Dismissing a missing alert exits non-zero."""
        self.assertEqual(runner.run_dismiss(999), 1)

    def test_history(self) -> None:
        """History prints for a priced unit and fails for an unknown one."""
        store = self._open()
        source_id = store.upsert_source("Fairview")
        unit_id, _ = store.upsert_unit(source_id, ScrapedUnit(name="Plan A1"))
        store.insert_price_point(unit_id, 2500, True, date(2026, 10, 1))

        self.assertEqual(runner.run_history(unit_id, None), 0)
        self.assertEqual(runner.run_history(unit_id + 100, None), 1)

    def test_status(self) -> None:
        """Status renders on an empty store."""
        self.assertEqual(runner.run_status(), 0)

    def test_prices_empty(self) -> None:
        """An empty store prints nothing and succeeds."""
        self.assertEqual(runner.run_prices(), 0)

    def test_prices_json_lists_latest_point_per_unit(self) -> None:
        """Only each unit's most recent price is listed."""
        store = self._open()
        source_id = store.upsert_source("Fairview")
        unit_id, _ = store.upsert_unit(source_id, ScrapedUnit(name="Plan A1"))
        store.insert_price_point(unit_id, 2500, False, date(2026, 10, 1))
        store.insert_price_point(unit_id, 2450, True, date(2026, 10, 2))

        out = io.StringIO()
        with redirect_stdout(out):
            self.assertEqual(runner.run_prices(as_json=True), 0)
        rows = json.loads(out.getvalue())
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["name"], "Plan A1")
        self.assertEqual(rows[0]["price"], 2450)
        self.assertTrue(rows[0]["is_available"])

    def test_status_lists_stored_settings(self) -> None:
        """Status shows the stored settings, threshold included."""
        out = io.StringIO()
        with redirect_stdout(out):
            self.assertEqual(runner.run_status(), 0)
        self.assertIn("Stored Settings", out.getvalue())
        self.assertIn(THRESHOLD_TYPE_KEY, out.getvalue())


if __name__ == "__main__":
    unittest.main()
