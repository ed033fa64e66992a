# rentwatch/extractors/availability_parser.py

"""Move-in availability parsing for the secondary leasing source.

The leasing page lists individual apartments (``D123``) with a rent and
a move-in token, either scattered through generic unit cards or in
per-plan HTML tables under a "Floor Plan : <Building> <Plan>" heading.
Both shapes are scanned, merged, and classified into "available now"
and "available within the next N days".
"""

import logging
import re
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from bs4 import BeautifulSoup, Tag

from rentwatch.config.settings import Settings
from rentwatch.extractors.floor_plan_extractor import parse_price
from rentwatch.extractors.strategies import node_text, safe_select
from rentwatch.filters.wing_filter import filter_by_wings
from rentwatch.models.availability import (
    AvailabilityRecord,
    AvailabilityResult,
)

logger = logging.getLogger("rentwatch.availability")

UNIT_SELECTORS: tuple[str, ...] = (
    '[class*="unit"]',
    '[class*="Unit"]',
    '[data-testid*="unit"]',
    ".apartment",
    ".availability",
    ".unitcard",
    ".floorplan",
    "li",
    ".row",
)

UNIT_TOKEN_RE = re.compile(r"\b([A-Z])[-\s]?(\d{2,4})\b")
NOW_RE = re.compile(
    r"available\s*now|move[-\s]?in\s*now|immediate(?:ly)?", re.I
)
MONTH_DAY_RE = re.compile(
    r"\b(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?"
    r"\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(\d{4}))?\b",
    re.I,
)
SLASH_DATE_RE = re.compile(
    r"(?<![\d/])(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?(?![\d/])"
)
_MONTHS: dict[str, int] = {
    name: idx
    for idx, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}

FLOOR_PLAN_HEADING_RE = re.compile(
    r"floor\s*plan\s*:?\s*([A-Za-z]+)\s+([A-Za-z0-9*\-]+)", re.I
)
HEADING_TAGS: list[str] = ["h1", "h2", "h3", "h4", "h5", "h6"]

_UNIT_HEADERS: tuple[str, ...] = ("unit", "apartment", "apt")
_RENT_HEADERS: tuple[str, ...] = ("rent", "price")
_DATE_HEADERS: tuple[str, ...] = ("date", "available", "move")


# ── Token helpers ───────────────────────────────────


def find_unit_token(text: str) -> tuple[str, str] | None:
    """Return ``(token, apartment_number)`` for the first unit code."""
    m = UNIT_TOKEN_RE.search(text)
    if not m:
        return None
    return f"{m.group(1)}{m.group(2)}", m.group(2)


def find_move_in_text(text: str) -> str:
    """Return the move-in token: ``"now"``, a date phrase, or ``""``."""
    stripped = text.strip()
    if stripped.lower() == "now" or NOW_RE.search(stripped):
        return "now"
    for pattern in (MONTH_DAY_RE, SLASH_DATE_RE):
        m = pattern.search(stripped)
        if m:
            return m.group(0)
    return ""


def _roll_year(month: int, day: int, now: datetime) -> date | None:
    """Current year unless that lands more than the grace period ago."""
    try:
        candidate = datetime(now.year, month, day)
    except ValueError:
        return None
    grace = timedelta(hours=Settings.PAST_DATE_GRACE_HOURS)
    if candidate < now - grace:
        try:
            candidate = datetime(now.year + 1, month, day)
        except ValueError:
            return None
    return candidate.date()


def resolve_move_in(date_text: str, now: datetime) -> date | None:
    """Resolve a move-in token to a calendar date.

    ``"now"`` resolves to today.  Dates without a year are placed in the
    current year, rolling to next year when they would otherwise fall
    more than 24 hours in the past.
    """
    text = (date_text or "").strip()
    if not text:
        return None
    if text.lower() == "now":
        return now.date()

    m = MONTH_DAY_RE.search(text)
    if m:
        month = _MONTHS[m.group(1).lower()[:3]]
        day = int(m.group(2))
        if m.group(3):
            try:
                return date(int(m.group(3)), month, day)
            except ValueError:
                return None
        return _roll_year(month, day, now)

    m = SLASH_DATE_RE.search(text)
    if m:
        month, day = int(m.group(1)), int(m.group(2))
        if m.group(3):
            year = int(m.group(3))
            if year < 100:
                year += 2000
            try:
                return date(year, month, day)
            except ValueError:
                return None
        return _roll_year(month, day, now)
    return None


# ── Scans ───────────────────────────────────────────


def scan_nodes(soup: BeautifulSoup) -> list[AvailabilityRecord]:
    """Generic scan over unit-like nodes.

    Nodes mentioning more than one distinct unit are containers and are
    skipped; their children are visited on their own.
    """
    records: list[AvailabilityRecord] = []
    seen: set[str] = set()
    for node in safe_select(soup, ", ".join(UNIT_SELECTORS)):
        text = node_text(node)
        if not text:
            continue
        tokens = {
            f"{m.group(1)}{m.group(2)}"
            for m in UNIT_TOKEN_RE.finditer(text)
        }
        if len(tokens) != 1:
            continue
        found = find_unit_token(text)
        if found is None:
            continue
        token, apartment = found
        if token in seen:
            continue
        seen.add(token)
        records.append(
            AvailabilityRecord(
                unit=token,
                apartment=apartment,
                rent=parse_price(text, strict=True),
                date_text=find_move_in_text(text),
            )
        )
    logger.debug("Node scan found %d unit records", len(records))
    return records


def _header_index(
    headers: list[str], keywords: tuple[str, ...],
) -> int | None:
    for idx, header in enumerate(headers):
        if any(k in header for k in keywords):
            return idx
    return None


def _heading_context(
    table: Tag, buildings: Iterable[str],
) -> tuple[str, str]:
    """Nearest preceding heading naming a building and plan code."""
    known = [b for b in buildings if b]
    for heading in table.find_all_previous(HEADING_TAGS):
        text = node_text(heading)
        m = FLOOR_PLAN_HEADING_RE.search(text)
        if m:
            return m.group(1), m.group(2)
        for building in known:
            bm = re.search(
                rf"\b{re.escape(building)}\s+(?:plan\s+)?([A-Za-z0-9*\-]+)",
                text,
                re.I,
            )
            if bm:
                return building, bm.group(1)
    return "", ""


def scan_tables(
    soup: BeautifulSoup,
    buildings: Iterable[str] = (),
) -> tuple[list[AvailabilityRecord], list[dict[str, str]]]:
    """Parse unit/rent/date tables into records and display rows."""
    building_names = list(buildings)
    records: list[AvailabilityRecord] = []
    rows_out: list[dict[str, str]] = []

    for table in soup.find_all("table"):
        rows = table.find_all("tr")
        if not rows:
            continue
        header_cells = rows[0].find_all(["th", "td"])
        headers = [node_text(c).lower() for c in header_cells]
        unit_idx = _header_index(headers, _UNIT_HEADERS)
        rent_idx = _header_index(headers, _RENT_HEADERS)
        date_idx = _header_index(headers, _DATE_HEADERS)
        if unit_idx is None or rent_idx is None or date_idx is None:
            continue
        if len({unit_idx, rent_idx, date_idx}) < 3:
            continue

        building, plan = _heading_context(table, building_names)
        width = max(unit_idx, rent_idx, date_idx)
        for row in rows[1:]:
            cells = [node_text(c) for c in row.find_all(["td", "th"])]
            if len(cells) <= width:
                continue
            unit_cell = cells[unit_idx]
            found = find_unit_token(unit_cell)
            token, apartment = found if found else (unit_cell, "")
            if not token:
                continue
            date_cell = cells[date_idx]
            records.append(
                AvailabilityRecord(
                    unit=token,
                    apartment=apartment,
                    rent=parse_price(cells[rent_idx]),
                    date_text=find_move_in_text(date_cell) or date_cell,
                    plan=plan,
                )
            )
            rows_out.append(
                {
                    "building": building,
                    "plan": plan,
                    "unit": token,
                    "rent": cells[rent_idx],
                    "date": date_cell,
                }
            )

    logger.debug(
        "Table scan found %d unit rows", len(records),
    )
    return records, rows_out


def merge_records(
    *batches: list[AvailabilityRecord],
) -> list[AvailabilityRecord]:
    """Merge scans, deduplicating on (apartment, unit, date text).

    When the same key appears twice the record that knows its plan wins.
    """
    merged: dict[tuple[str, str, str], AvailabilityRecord] = {}
    for batch in batches:
        for record in batch:
            key = (
                record.apartment,
                record.unit.upper(),
                record.date_text.strip().lower(),
            )
            existing = merged.get(key)
            if existing is None or (record.plan and not existing.plan):
                merged[key] = record
    return list(merged.values())


class AvailabilityClassifier:
    """Splits parsed records into "now" and "within the window" groups."""

    def __init__(
        self,
        window_days: int | None = None,
        buildings: Iterable[str] | None = None,
    ) -> None:
        self.window_days = (
            Settings.AVAILABILITY_WINDOW_DAYS
            if window_days is None
            else window_days
        )
        self.buildings = list(
            buildings
            if buildings is not None
            else (s["label"] for s in Settings.AVAILABLE_SOURCES)
        )

    def parse(
        self,
        html: str,
        source: str = "",
        now: datetime | None = None,
        wings: Iterable[str] | None = None,
    ) -> AvailabilityResult:
        """Parse *html* and classify every unit it mentions."""
        current = now or datetime.now()
        soup = BeautifulSoup(html or "", "lxml")

        node_records = scan_nodes(soup)
        table_records, table_rows = scan_tables(soup, self.buildings)
        records = merge_records(table_records, node_records)
        for record in records:
            record.move_in = resolve_move_in(record.date_text, current)

        wanted = filter_by_wings(records, wings, key=lambda r: r.unit)
        rows = filter_by_wings(table_rows, wings, key=lambda r: r["unit"])
        result = AvailabilityResult(
            source=source,
            scraped_at=current.isoformat(timespec="seconds"),
            table=rows,
        )
        self.classify(wanted, current, result)
        logger.info(
            "Availability: %d now, %d within %d days (%d units parsed)",
            len(result.available_now),
            len(result.available_soon),
            self.window_days,
            len(records),
        )
        return result

    def classify(
        self,
        records: list[AvailabilityRecord],
        now: datetime,
        result: AvailabilityResult,
    ) -> None:
        """Populate *result* from records with resolved move-in dates."""
        today = now.date()
        horizon = today + timedelta(days=self.window_days)
        for record in records:
            if record.is_now:
                result.available_now.append(record)
            elif record.move_in and today <= record.move_in <= horizon:
                result.available_soon.append(record)
        result.available_soon.sort(
            key=lambda r: (r.move_in or horizon, r.unit)
        )
