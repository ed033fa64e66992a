# rentwatch/extractors/floor_plan_extractor.py

"""Heuristic floor-plan extraction from rendered listing pages.

Source markup is not contractually stable, so every field is read via
an ordered cascade: configured selectors first, then generic markup
conventions, then regexes over the node's full text.  Nodes are
handled independently; a node that yields neither a usable price nor
a square footage is skipped and counted, never raised.
"""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from rentwatch.config.settings import Settings
from rentwatch.errors import ExtractionLowSignal
from rentwatch.extractors.strategies import (
    StrategyChain,
    clean_text,
    node_text,
    regex_text,
    safe_select,
    safe_select_one,
    selector_attr,
    selector_regex,
    selector_text,
)
from rentwatch.filters.deduplicator import UnitDeduplicator
from rentwatch.models.scraped_unit import ScrapedUnit
from rentwatch.models.source import SelectorConfig

logger = logging.getLogger("rentwatch.extractors")

_HEADING_SELECTOR = (
    'h1,h2,h3,h4,[data-testid*="name"],[class*="name"]'
)

PLAN_RE = re.compile(
    r"(?:floor\s*plan|plan)\s*[:#-]?\s*([A-Z]?\d+[A-Z]?)\b", re.I
)
ALPHA_NAME_RE = re.compile(r"([A-Za-z][A-Za-z0-9\-\s]{2,})")
BED_RE = re.compile(r"\b(studio)\b|(\d+)\s*-?\s*bed", re.I)
BATH_RE = re.compile(r"(\d+(?:\.\d+)?)\s*-?\s*bath", re.I)
DEN_RE = re.compile(r"\bden\b", re.I)
SQFT_RE = re.compile(
    r"(?<![\d,])(\d,\d{3}|\d{3,4})\s*"
    r"(?:sq\.?\s*ft\.?|sf\b|square\s*feet)",
    re.I,
)
POSITION_RE = re.compile(
    r"\b(?:north|south|east|west)\b.*?(?:view|facing)"
    r"|\bcorner\b|\blake\b|\bcity\b",
    re.I,
)

_LEAD_IN = r"(?:(?:from|starting\s+at|start\s+at|as\s+low\s+as)\s*)?"
_AMOUNT = r"([\d,]*\d)(?:\.\d{2})?"
DOLLAR_PRICE_RE = re.compile(
    _LEAD_IN + r"\$\s*" + _AMOUNT
    + r"(?:\s*[-–—]\s*\$?\s*" + _AMOUNT + r")?",
    re.I,
)
BARE_PRICE_RE = re.compile(
    _LEAD_IN + r"\$?\s*" + _AMOUNT
    + r"(?:\s*[-–—]\s*\$?\s*" + _AMOUNT + r")?"
    + r"(?!\s*(?:sq|sf\b|square|bed|bath))",
    re.I,
)

NEGATIVE_RE = re.compile(
    r"fully\s*leased|wait\s*-?list|unavailable|sold\s*out", re.I
)
GENERIC_POSITIVE_RE = re.compile(r"available|apply|select", re.I)

FLOOR_PLAN_LABEL_RE = re.compile(r"floor\s*-?\s*plan", re.I)
IMAGE_EXTENSIONS: tuple[str, ...] = (
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".avif",
)


@dataclass
class ExtractionReport:
    """Outcome of one extraction call."""

    units: list[ScrapedUnit] = field(
        default_factory=lambda: list[ScrapedUnit]()
    )
    candidates: int = 0
    skipped: int = 0
    deduplicated: int = 0


def parse_price(
    text: str,
    strict: bool = False,
    min_price: int | None = None,
) -> int:
    """Return the lower bound of the first plausible price in *text*.

    Explicit dollar amounts are preferred over bare numbers so that
    digits inside a plan code ("A1") are not mistaken for rent; with
    *strict* only dollar amounts count.  Anything below the
    plausibility floor normalises to 0.
    """
    floor = Settings.MIN_PLAUSIBLE_PRICE if min_price is None else min_price
    if not text:
        return 0
    patterns = (
        (DOLLAR_PRICE_RE,) if strict else (DOLLAR_PRICE_RE, BARE_PRICE_RE)
    )
    for pattern in patterns:
        for m in pattern.finditer(text):
            bounds = [
                int(g.replace(",", ""))
                for g in m.groups()
                if g and g.replace(",", "").isdigit()
            ]
            if not bounds:
                continue
            candidate = min(bounds)
            if candidate >= floor:
                return candidate
            if pattern is DOLLAR_PRICE_RE:
                logger.debug(
                    "Discarding implausible price %d in %r",
                    candidate,
                    text[:80],
                )
    return 0


def parse_bedrooms(text: str) -> int:
    """Studio means 0; otherwise the number before 'bed'."""
    m = BED_RE.search(text)
    if not m:
        return 0
    if m.group(1):
        return 0
    return int(m.group(2))


def parse_bathrooms(text: str) -> float:
    """Number before 'bath', defaulting to one bathroom."""
    m = BATH_RE.search(text)
    return float(m.group(1)) if m else 1.0


def infer_availability(
    text: str,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
) -> bool:
    """Read availability keywords from node text.

    A negative phrase always wins.  Configured include/exclude lists
    decide next; without them only the generic positive words count.
    """
    if NEGATIVE_RE.search(text):
        return False
    lowered = text.lower()
    if include or exclude:
        has_include = any(k.lower() in lowered for k in include)
        has_exclude = any(k.lower() in lowered for k in exclude)
        return has_include and not has_exclude
    return bool(GENERIC_POSITIVE_RE.search(text))


class FloorPlanExtractor:
    """Turns a rendered document into deduplicated :class:`ScrapedUnit` rows."""

    def __init__(self, selectors: SelectorConfig) -> None:
        self.selectors = selectors
        self._name_chain = StrategyChain(
            "name",
            (
                *(selector_text(s) for s in selectors.name),
                selector_text(_HEADING_SELECTOR),
                selector_attr("[aria-label]", "aria-label"),
                selector_attr("img", "alt"),
                regex_text(PLAN_RE, "Plan {1}"),
                regex_text(ALPHA_NAME_RE, "{1}"),
            ),
        )
        self._sqft_chain = StrategyChain(
            "sqft",
            (
                selector_regex(selectors.sqft, SQFT_RE),
                regex_text(SQFT_RE, "{1}"),
            ),
        )
        self._price_text_chain = StrategyChain(
            "price",
            tuple(selector_text(s) for s in selectors.price),
        )

    # ── Document level ───────────────────────────────

    @staticmethod
    def _document_base(soup: BeautifulSoup, page_url: str) -> str:
        """Resolve the effective base URL (honours ``<base href>``)."""
        base_tag = soup.find("base", href=True)
        if isinstance(base_tag, Tag):
            return urljoin(page_url, str(base_tag["href"]))
        return page_url

    def _candidate_nodes(self, soup: BeautifulSoup) -> list[Tag]:
        """Union of all item selectors, in document order."""
        combined = ", ".join(self.selectors.item)
        if not combined:
            return []
        nodes = safe_select(soup, combined)
        if nodes:
            return nodes
        # A single bad selector poisons the combined query
        seen: dict[int, Tag] = {}
        for sel in self.selectors.item:
            for node in safe_select(soup, sel):
                seen.setdefault(id(node), node)
        order = {
            id(el): idx
            for idx, el in enumerate(soup.find_all(True))
        }
        return sorted(seen.values(), key=lambda n: order.get(id(n), 0))

    def extract(
        self, html: str, base_url: str = "",
    ) -> list[ScrapedUnit]:
        """Extract and deduplicate floor plans from *html*."""
        return self.extract_report(html, base_url).units

    def extract_report(
        self, html: str, base_url: str = "",
    ) -> ExtractionReport:
        """Extract floor plans and report candidate / skip counts."""
        soup = BeautifulSoup(html or "", "lxml")
        base = self._document_base(soup, base_url)
        report = ExtractionReport()

        raw: list[ScrapedUnit] = []
        for node in self._candidate_nodes(soup):
            report.candidates += 1
            try:
                raw.append(self.parse_node(node, base))
            except ExtractionLowSignal:
                report.skipped += 1
            except Exception:
                # One malformed node must not sink the page
                report.skipped += 1
                logger.debug(
                    "Skipping unparsable node <%s>",
                    node.name,
                    exc_info=True,
                )

        report.units, report.deduplicated = (
            UnitDeduplicator.deduplicate(raw)
        )
        logger.info(
            "Extracted %d units from %d candidates "
            "(%d low-signal, %d duplicates)",
            len(report.units),
            report.candidates,
            report.skipped,
            report.deduplicated,
        )
        return report

    # ── Node level ───────────────────────────────────

    def parse_node(self, node: Tag, base_url: str = "") -> ScrapedUnit:
        """Derive a :class:`ScrapedUnit` from one candidate node.

        Raises ``ExtractionLowSignal`` when the node has neither a
        usable price nor a square footage.
        """
        text = node_text(node)
        if not text:
            raise ExtractionLowSignal("empty node")

        square_footage = int(
            (self._sqft_chain.resolve(node, text) or "0").replace(",", "")
        )
        price = self._derive_price(node, text)
        if not price and not square_footage:
            raise ExtractionLowSignal(text[:60])

        bedrooms = parse_bedrooms(text)
        bathrooms = parse_bathrooms(text)
        name = self._name_chain.resolve(node, text)
        if not name:
            bed_label = (
                "Studio"
                if bedrooms == 0
                else f"{bedrooms}x{bathrooms:g}"
            )
            sqft_label = f" {square_footage} sf" if square_footage else ""
            name = f"{bed_label}{sqft_label}"

        position_match = POSITION_RE.search(text)
        is_available = price > 0 and infer_availability(
            text,
            self.selectors.availability_include,
            self.selectors.availability_exclude,
        )

        return ScrapedUnit(
            name=clean_text(name),
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            has_den=bool(DEN_RE.search(text)),
            square_footage=square_footage,
            position=position_match.group(0) if position_match else "",
            price=price,
            is_available=is_available,
            image_url=self._derive_image(node, base_url),
        )

    def _derive_price(self, node: Tag, text: str) -> int:
        """Price from configured subnodes first, then the whole node."""
        targeted = self._price_text_chain.resolve(node, text)
        if targeted:
            price = parse_price(targeted)
            if price:
                return price
        return parse_price(text, strict=True)

    def _derive_image(self, node: Tag, base_url: str) -> str:
        """Absolute image URL, preferring a 'floor plan' image link."""
        for anchor in safe_select(node, "a[href]"):
            label = " ".join(
                filter(
                    None,
                    (
                        node_text(anchor),
                        str(anchor.get("aria-label") or ""),
                        str(anchor.get("title") or ""),
                    ),
                )
            )
            if not FLOOR_PLAN_LABEL_RE.search(label):
                continue
            href = urljoin(base_url, str(anchor["href"]))
            if urlparse(href).path.lower().endswith(IMAGE_EXTENSIONS):
                return href

        for sel in (*self.selectors.image, "img"):
            img = safe_select_one(node, sel)
            if img is None:
                continue
            src = img.get("src") or img.get("data-src")
            if src:
                return urljoin(base_url, str(src))
        return ""
