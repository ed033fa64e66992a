# rentwatch/storage/price_history_db.py

"""SQLite-backed store for units, their daily prices and alerts."""

import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, TypeVar

from rentwatch.config.settings import Settings
from rentwatch.errors import IngestionConflict
from rentwatch.models.alert import Alert, AlertKind
from rentwatch.models.scraped_unit import ScrapedUnit
from rentwatch.models.unit import PricePoint, Unit

logger = logging.getLogger("rentwatch.storage")

T = TypeVar("T")

THRESHOLD_TYPE_KEY = "alert_threshold_type"
THRESHOLD_VALUE_KEY = "alert_threshold_value"
LAST_RUN_KEY = "last_run_time"
NEXT_RUN_KEY = "next_run_time"
AVAILABILITY_CACHE_KEY = "availability_cache"
AVAILABILITY_CACHE_TIME_KEY = "availability_cache_time"

_LOCK_RETRIES = 3
_LOCK_BACKOFF = 0.1                     # Seconds, doubled per retry

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS sources (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    name       TEXT    NOT NULL UNIQUE,
    url        TEXT    NOT NULL DEFAULT '',
    created_at TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS units (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id      INTEGER NOT NULL
                   REFERENCES sources(id) ON DELETE CASCADE,
    name           TEXT    NOT NULL,
    bedrooms       INTEGER NOT NULL DEFAULT 0,
    bathrooms      REAL    NOT NULL DEFAULT 1,
    has_den        INTEGER NOT NULL DEFAULT 0,
    square_footage INTEGER,
    position       TEXT,
    image_url      TEXT,
    created_at     TEXT    NOT NULL,
    UNIQUE (source_id, name)
);

CREATE TABLE IF NOT EXISTS price_points (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    unit_id         INTEGER NOT NULL
                    REFERENCES units(id) ON DELETE CASCADE,
    price           INTEGER NOT NULL,
    is_available    INTEGER NOT NULL DEFAULT 0,
    collection_date TEXT    NOT NULL,
    created_at      TEXT    NOT NULL,
    UNIQUE (unit_id, collection_date)
);

CREATE INDEX IF NOT EXISTS idx_price_points_unit_date
    ON price_points(unit_id, collection_date);

CREATE TABLE IF NOT EXISTS alerts (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    unit_id           INTEGER NOT NULL
                      REFERENCES units(id) ON DELETE CASCADE,
    alert_kind        TEXT    NOT NULL
                      CHECK (alert_kind IN ('price_drop', 'new_low')),
    old_price         INTEGER,
    new_price         INTEGER NOT NULL,
    percentage_change REAL,
    is_dismissed      INTEGER NOT NULL DEFAULT 0,
    created_at        TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _row_to_point(row: sqlite3.Row) -> PricePoint:
    return PricePoint(
        id=row["id"],
        unit_id=row["unit_id"],
        price=row["price"],
        is_available=bool(row["is_available"]),
        collection_date=date.fromisoformat(row["collection_date"]),
    )


def _row_to_unit(row: sqlite3.Row) -> Unit:
    return Unit(
        id=row["id"],
        source_id=row["source_id"],
        name=row["name"],
        bedrooms=row["bedrooms"],
        bathrooms=row["bathrooms"],
        has_den=bool(row["has_den"]),
        square_footage=row["square_footage"],
        position=row["position"],
        image_url=row["image_url"],
    )


class PriceHistoryDB:
    """SQLite-backed store for the daily price series.

    One connection is shared across threads; every access is serialised
    through a re-entrant lock so the ingestion path has a single writer.
    Multi-statement writes go through :meth:`transaction`, which opens
    the transaction with ``BEGIN IMMEDIATE`` so the write lock is taken
    before any read-modify-write check.
    """

    def __init__(
        self, db_path: Path | None = None,
    ) -> None:
        path = db_path or Settings.PRICE_DB_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(
            str(path),
            check_same_thread=False,
            isolation_level=None,
            timeout=5.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._seed_settings()
        logger.debug("PriceHistoryDB opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def _seed_settings(self) -> None:
        now = datetime.now().isoformat()
        for key, value in (
            (THRESHOLD_TYPE_KEY, Settings.DEFAULT_THRESHOLD_KIND),
            (THRESHOLD_VALUE_KEY, str(Settings.DEFAULT_THRESHOLD_VALUE)),
        ):
            self._conn.execute(
                "INSERT OR IGNORE INTO settings (key, value, updated_at) "
                "VALUES (?, ?, ?)",
                (key, value, now),
            )

    # ── Transactions ─────────────────────────────────────

    def _begin(self) -> None:
        for attempt in range(_LOCK_RETRIES + 1):
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                return
            except sqlite3.OperationalError as exc:
                if not _is_lock_error(exc):
                    raise
                if attempt == _LOCK_RETRIES:
                    raise IngestionConflict(
                        f"Could not acquire write lock: {exc}"
                    ) from exc
                wait = _LOCK_BACKOFF * (2 ** attempt)
                logger.debug(
                    "Write lock busy, retrying in %.2fs (%d/%d)",
                    wait,
                    attempt + 1,
                    _LOCK_RETRIES,
                )
                time.sleep(wait)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one immediate transaction.

        Commits on success and rolls back on any exception.  Lock
        contention surfaces as :class:`IngestionConflict`.
        """
        with self._lock:
            self._begin()
            try:
                yield self._conn
            except sqlite3.OperationalError as exc:
                self._conn.execute("ROLLBACK")
                if _is_lock_error(exc):
                    raise IngestionConflict(str(exc)) from exc
                raise
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.OperationalError as exc:
                    self._conn.execute("ROLLBACK")
                    if _is_lock_error(exc):
                        raise IngestionConflict(str(exc)) from exc
                    raise

    def atomic(self, fn: Callable[..., T], *args: Any) -> T:
        """Call ``fn(*args)`` inside :meth:`transaction`, retrying conflicts.

        The whole read-modify-write is replayed on
        :class:`IngestionConflict`; the conflict is only re-raised once
        the retries are used up.
        """
        attempt = 0
        while True:
            try:
                with self.transaction():
                    return fn(*args)
            except IngestionConflict:
                if attempt >= _LOCK_RETRIES:
                    raise
                wait = _LOCK_BACKOFF * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "Write conflict, replaying transaction in %.2fs", wait,
                )
                time.sleep(wait)

    # ── Sources and units ────────────────────────────────

    def upsert_source(self, name: str, url: str = "") -> int:
        """Return the id of source *name*, creating it if needed."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO sources (name, url, created_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET url = excluded.url "
                "WHERE excluded.url != ''",
                (name, url, datetime.now().isoformat()),
            )
            row = self._conn.execute(
                "SELECT id FROM sources WHERE name = ?", (name,),
            ).fetchone()
            return int(row["id"])

    def upsert_unit(
        self, source_id: int, unit: ScrapedUnit,
    ) -> tuple[int, bool]:
        """Create or refresh a unit; return ``(unit_id, created)``.

        Bedrooms, bathrooms and the den flag are written only on the
        first sighting.  Square footage, position and image are
        refreshed when the new scrape carries a value for them.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT id FROM units WHERE source_id = ? AND name = ?",
                (source_id, unit.name),
            ).fetchone()
            if row is None:
                cur = self._conn.execute(
                    "INSERT INTO units (source_id, name, bedrooms, "
                    "bathrooms, has_den, square_footage, position, "
                    "image_url, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        source_id,
                        unit.name,
                        unit.bedrooms,
                        unit.bathrooms,
                        int(unit.has_den),
                        unit.square_footage or None,
                        unit.position or None,
                        unit.image_url or None,
                        datetime.now().isoformat(),
                    ),
                )
                return int(cur.lastrowid or 0), True

            unit_id = int(row["id"])
            self._conn.execute(
                "UPDATE units SET "
                "square_footage = COALESCE(?, square_footage), "
                "position = COALESCE(?, position), "
                "image_url = COALESCE(?, image_url) "
                "WHERE id = ?",
                (
                    unit.square_footage or None,
                    unit.position or None,
                    unit.image_url or None,
                    unit_id,
                ),
            )
            return unit_id, False

    def get_units(self, source: str | None = None) -> list[Unit]:
        """Return all units, optionally only those of source *source*."""
        sql = (
            "SELECT u.* FROM units u "
            "JOIN sources s ON s.id = u.source_id "
        )
        params: tuple[Any, ...] = ()
        if source:
            sql += "WHERE s.name = ? "
            params = (source,)
        sql += "ORDER BY s.name, u.name"
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_unit(r) for r in rows]

    # ── Price points ─────────────────────────────────────

    def get_price_point(
        self, unit_id: int, collection_date: date,
    ) -> PricePoint | None:
        """Return the price point for (unit, date), if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM price_points "
                "WHERE unit_id = ? AND collection_date = ?",
                (unit_id, collection_date.isoformat()),
            ).fetchone()
        return _row_to_point(row) if row else None

    def insert_price_point(
        self,
        unit_id: int,
        price: int,
        is_available: bool,
        collection_date: date,
    ) -> int:
        """Insert the first price point of the day for a unit."""
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO price_points (unit_id, price, is_available, "
                "collection_date, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    unit_id,
                    price,
                    int(is_available),
                    collection_date.isoformat(),
                    datetime.now().isoformat(),
                ),
            )
            return int(cur.lastrowid or 0)

    def update_price_point(
        self, point_id: int, price: int, is_available: bool,
    ) -> None:
        """Overwrite price and availability of an existing point."""
        with self._lock:
            self._conn.execute(
                "UPDATE price_points SET price = ?, is_available = ? "
                "WHERE id = ?",
                (price, int(is_available), point_id),
            )

    def get_latest_price_before(
        self, unit_id: int, before: date,
    ) -> PricePoint | None:
        """Most recent price point strictly before *before*."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM price_points "
                "WHERE unit_id = ? AND collection_date < ? "
                "ORDER BY collection_date DESC LIMIT 1",
                (unit_id, before.isoformat()),
            ).fetchone()
        return _row_to_point(row) if row else None

    def get_min_price_before(
        self, unit_id: int, before: date,
    ) -> int | None:
        """Lowest recorded price strictly before *before*, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT MIN(price) AS low FROM price_points "
                "WHERE unit_id = ? AND collection_date < ?",
                (unit_id, before.isoformat()),
            ).fetchone()
        if row is None or row["low"] is None:
            return None
        return int(row["low"])

    def get_price_history(
        self,
        unit_id: int,
        start: date | None = None,
        end: date | None = None,
        limit: int | None = None,
    ) -> list[PricePoint]:
        """Return price points for a unit, newest first."""
        sql = "SELECT * FROM price_points WHERE unit_id = ?"
        params: list[Any] = [unit_id]
        if start:
            sql += " AND collection_date >= ?"
            params.append(start.isoformat())
        if end:
            sql += " AND collection_date <= ?"
            params.append(end.isoformat())
        sql += " ORDER BY collection_date DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_point(r) for r in rows]

    def get_latest_prices(self) -> list[dict[str, object]]:
        """Latest price point per unit, joined with unit and source."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT u.id AS unit_id, u.name, s.name AS source, "
                "       u.bedrooms, u.bathrooms, u.has_den, "
                "       u.square_footage, p.price, p.is_available, "
                "       p.collection_date "
                "FROM units u "
                "JOIN sources s ON s.id = u.source_id "
                "JOIN price_points p ON p.unit_id = u.id "
                "WHERE p.collection_date = ("
                "    SELECT MAX(collection_date) FROM price_points "
                "    WHERE unit_id = u.id) "
                "ORDER BY s.name, p.price",
            ).fetchall()
        return [
            {
                "unit_id": r["unit_id"],
                "name": r["name"],
                "source": r["source"],
                "bedrooms": r["bedrooms"],
                "bathrooms": r["bathrooms"],
                "has_den": bool(r["has_den"]),
                "square_footage": r["square_footage"],
                "price": r["price"],
                "is_available": bool(r["is_available"]),
                "collection_date": r["collection_date"],
            }
            for r in rows
        ]

    # ── Alerts ───────────────────────────────────────────

    def insert_alert(self, alert: Alert) -> int:
        """Append an alert row and return its id."""
        created = alert.created_at or datetime.now()
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO alerts (unit_id, alert_kind, old_price, "
                "new_price, percentage_change, is_dismissed, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    alert.unit_id,
                    AlertKind(alert.kind).value,
                    alert.old_price,
                    alert.new_price,
                    alert.percentage_change,
                    int(alert.is_dismissed),
                    created.isoformat(),
                ),
            )
            return int(cur.lastrowid or 0)

    def get_alerts(
        self, include_dismissed: bool = False,
    ) -> list[Alert]:
        """Return alerts, newest first."""
        sql = "SELECT * FROM alerts"
        if not include_dismissed:
            sql += " WHERE is_dismissed = 0"
        sql += " ORDER BY created_at DESC, id DESC"
        with self._lock:
            rows = self._conn.execute(sql).fetchall()
        return [
            Alert(
                id=r["id"],
                unit_id=r["unit_id"],
                kind=AlertKind(r["alert_kind"]),
                old_price=r["old_price"],
                new_price=r["new_price"],
                percentage_change=r["percentage_change"],
                is_dismissed=bool(r["is_dismissed"]),
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    def get_active_alerts(self) -> list[dict[str, object]]:
        """Undismissed alerts joined with unit and source names."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT a.id, a.unit_id, a.alert_kind, a.old_price, "
                "       a.new_price, a.percentage_change, a.created_at, "
                "       u.name AS unit_name, s.name AS source "
                "FROM alerts a "
                "JOIN units u ON u.id = a.unit_id "
                "JOIN sources s ON s.id = u.source_id "
                "WHERE a.is_dismissed = 0 "
                "ORDER BY a.created_at DESC, a.id DESC",
            ).fetchall()
        return [dict(r) for r in rows]

    def dismiss_alert(self, alert_id: int) -> bool:
        """Soft-dismiss an alert. Returns whether a row changed."""
        with self._lock:
            cur = self._conn.execute(
                "UPDATE alerts SET is_dismissed = 1 "
                "WHERE id = ? AND is_dismissed = 0",
                (alert_id,),
            )
        return cur.rowcount > 0

    # ── Settings ─────────────────────────────────────────

    def get_setting(
        self, key: str, default: str | None = None,
    ) -> str | None:
        """Return a setting value, or *default* when unset."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,),
            ).fetchone()
        return str(row["value"]) if row else default

    def set_setting(self, key: str, value: str) -> None:
        """Insert or replace a setting."""
        with self._lock:
            self._conn.execute(
                "INSERT INTO settings (key, value, updated_at) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET "
                "value = excluded.value, updated_at = excluded.updated_at",
                (key, value, datetime.now().isoformat()),
            )

    def get_all_settings(self) -> dict[str, str]:
        """Return every setting as a plain mapping."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT key, value FROM settings ORDER BY key",
            ).fetchall()
        return {r["key"]: r["value"] for r in rows}

    def set_availability_cache(
        self,
        payload: dict[str, object],
        when: datetime | None = None,
    ) -> None:
        """Cache the latest availability scrape as a JSON blob."""
        stamp = (when or datetime.now()).isoformat(timespec="seconds")
        with self.transaction():
            self.set_setting(AVAILABILITY_CACHE_KEY, json.dumps(payload))
            self.set_setting(AVAILABILITY_CACHE_TIME_KEY, stamp)

    def get_availability_cache(self) -> dict[str, object] | None:
        """Return the cached availability payload, if readable."""
        raw = self.get_setting(AVAILABILITY_CACHE_KEY)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable availability cache")
            return None
        if not isinstance(payload, dict):
            return None
        payload["cached_at"] = self.get_setting(
            AVAILABILITY_CACHE_TIME_KEY, "",
        )
        return payload

    # ── Statistics ───────────────────────────────────────

    def get_statistics(self) -> dict[str, object]:
        """Row counts and the most recent collection date."""
        with self._lock:
            row = self._conn.execute(
                "SELECT "
                "  (SELECT COUNT(*) FROM sources) AS sources, "
                "  (SELECT COUNT(*) FROM units) AS units, "
                "  (SELECT COUNT(*) FROM price_points) AS price_points, "
                "  (SELECT COUNT(*) FROM alerts WHERE is_dismissed = 0) "
                "      AS active_alerts, "
                "  (SELECT MAX(collection_date) FROM price_points) "
                "      AS last_collection",
            ).fetchone()
        return {
            "sources": row["sources"],
            "units": row["units"],
            "price_points": row["price_points"],
            "active_alerts": row["active_alerts"],
            "last_collection": row["last_collection"] or "",
        }
