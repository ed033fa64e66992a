# tests/test_floor_plan_extractor.py

"""Tests for the heuristic floor-plan extractor."""

import unittest

from bs4 import BeautifulSoup

from rentwatch.errors import ExtractionLowSignal
from rentwatch.extractors.floor_plan_extractor import (
    FloorPlanExtractor,
    infer_availability,
    parse_bathrooms,
    parse_bedrooms,
    parse_price,
)
from rentwatch.models.source import SelectorConfig

BARE = SelectorConfig(item=(".floorplan",))


def _node(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


class TestParsePrice(unittest.TestCase):
    """Tests for price parsing and the plausibility floor."""

    def test_single_dollar_amount(self) -> None:
        """A plain dollar amount parses to whole units."""
        self.assertEqual(parse_price("$2,495"), 2495)

    def test_range_takes_lower_bound(self) -> None:
        """A price range yields its lower bound."""
        self.assertEqual(parse_price("$2,400 - $2,750"), 2400)

    def test_lead_in_phrase(self) -> None:
        """'Starting at' style lead-ins are accepted."""
        self.assertEqual(parse_price("Starting at $3,100/mo"), 3100)

    def test_below_floor_is_zero(self) -> None:
        """Amounts under the plausibility floor are noise."""
        self.assertEqual(parse_price("$99 deposit"), 0)

    def test_strict_ignores_bare_numbers(self) -> None:
        """Strict mode only counts explicit dollar amounts."""
        self.assertEqual(parse_price("Unit 2400", strict=True), 0)
        self.assertEqual(parse_price("2400"), 2400)

    def test_bare_number_before_sqft_is_ignored(self) -> None:
        """A square-footage figure is never read as rent."""
        self.assertEqual(parse_price("1,050 sq ft"), 0)

    def test_empty_text(self) -> None:
        """Empty input yields zero."""
        self.assertEqual(parse_price(""), 0)


class TestFieldParsers(unittest.TestCase):
    """Tests for bedroom, bathroom and availability helpers."""

    def test_studio_is_zero_bedrooms(self) -> None:
        """'Studio' means zero bedrooms."""
        self.assertEqual(parse_bedrooms("Studio, 1 Bath"), 0)

    def test_bedroom_count(self) -> None:
        """'<n> bed' yields n."""
        self.assertEqual(parse_bedrooms("2 Bed / 2 Bath"), 2)

    def test_fractional_bathrooms(self) -> None:
        """Bathrooms may be fractional."""
        self.assertEqual(parse_bathrooms("1.5 Bath"), 1.5)

    def test_bathrooms_default_to_one(self) -> None:
        """Missing bathroom text defaults to one."""
        self.assertEqual(parse_bathrooms("2 Bed"), 1.0)

    def test_negative_phrase_overrides(self) -> None:
        """A waitlist phrase wins over an include keyword."""
        self.assertFalse(
            infer_availability(
                "Available soon - join waitlist", ("available",), (),
            )
        )

    def test_include_and_exclude_keywords(self) -> None:
        """Configured keywords decide when present."""
        self.assertTrue(infer_availability("Apply now", ("apply",), ()))
        self.assertFalse(
            infer_availability("Apply - reserved", ("apply",), ("reserved",))
        )

    def test_no_keyword_evidence(self) -> None:
        """Text without any keyword is not available."""
        self.assertFalse(infer_availability("2 Bed", ("apply",), ()))
        self.assertFalse(infer_availability("2 Bed", (), ()))

    def test_exclude_only_list_needs_an_include(self) -> None:
        """With only exclude words configured nothing is available."""
        self.assertFalse(infer_availability("Apply now", (), ("waitlist",)))

    def test_generic_positive_keyword(self) -> None:
        """Without configured keywords, generic positives count."""
        self.assertTrue(infer_availability("Select this plan", (), ()))


class TestFloorPlanExtractor(unittest.TestCase):
    """Tests for the full node-to-unit cascade."""

    def test_fallback_chain_recovers_all_fields(self) -> None:
        """Free text alone yields name, rooms, sqft and price."""
        html = (
            '<div class="floorplan">'
            "PLAN A1, 2 Bed 2 Bath 950 sq ft, $2,495"
            "</div>"
        )
        units = FloorPlanExtractor(BARE).extract(html)
        self.assertEqual(len(units), 1)
        unit = units[0]
        self.assertEqual(unit.name, "Plan A1")
        self.assertEqual(unit.bedrooms, 2)
        self.assertEqual(unit.bathrooms, 2.0)
        self.assertEqual(unit.square_footage, 950)
        self.assertEqual(unit.price, 2495)
        self.assertFalse(unit.is_available)

    def test_dedup_keeps_lowest_price(self) -> None:
        """Two nodes with the same name collapse to the cheaper one."""
        html = (
            '<div class="floorplan"><h3>Plan B2</h3>'
            "1 Bed 700 sq ft $1,995</div>"
            '<div class="floorplan"><h3>Plan B2</h3>'
            "1 Bed 700 sq ft $1,895</div>"
        )
        units = FloorPlanExtractor(BARE).extract(html)
        self.assertEqual(len(units), 1)
        self.assertEqual(units[0].price, 1895)

    def test_configured_selectors_take_precedence(self) -> None:
        """Configured name and price subnodes beat free-text regexes."""
        selectors = SelectorConfig(
            item=(".card",),
            name=(".title",),
            price=(".price",),
            sqft=(".sqft",),
        )
        html = (
            '<div class="card"><span class="title">The Aster</span>'
            '<span class="sqft">812 SF</span>'
            '<span class="price">From $2,310</span>'
            "<p>Plan C4 was $2,900</p></div>"
        )
        unit = FloorPlanExtractor(selectors).extract(html)[0]
        self.assertEqual(unit.name, "The Aster")
        self.assertEqual(unit.price, 2310)
        self.assertEqual(unit.square_footage, 812)

    def test_comma_square_footage(self) -> None:
        """Four-digit footage with a thousands separator parses."""
        html = '<div class="floorplan"><h2>Penthouse</h2>1,240 sq ft</div>'
        unit = FloorPlanExtractor(BARE).extract(html)[0]
        self.assertEqual(unit.square_footage, 1240)
        self.assertEqual(unit.price, 0)
        self.assertFalse(unit.is_available)

    def test_plan_code_digits_not_taken_as_price(self) -> None:
        """Digits of a plan code never become the price."""
        html = '<div class="floorplan">Plan 1205 2 Bed 1,010 sq ft</div>'
        unit = FloorPlanExtractor(BARE).extract(html)[0]
        self.assertEqual(unit.price, 0)

    def test_negative_keyword_marks_unavailable(self) -> None:
        """A priced but fully leased plan is unavailable."""
        html = (
            '<div class="floorplan"><h3>Plan D1</h3>'
            "800 sq ft $2,100 Fully Leased</div>"
        )
        unit = FloorPlanExtractor(BARE).extract(html)[0]
        self.assertEqual(unit.price, 2100)
        self.assertFalse(unit.is_available)

    def test_priced_node_without_keyword_is_unavailable(self) -> None:
        """A price alone never marks a plan available."""
        html = (
            '<div class="floorplan"><h3>Plan K1</h3>'
            "1 Bed 700 sq ft $2,000</div>"
        )
        for selectors in (SelectorConfig.for_source("fairview"), BARE):
            unit = FloorPlanExtractor(selectors).extract(html)[0]
            self.assertEqual(unit.price, 2000)
            self.assertFalse(unit.is_available)

    def test_include_keyword_with_price_is_available(self) -> None:
        """A configured include word plus a price means available."""
        html = (
            '<div class="floorplan"><h3>Plan K2</h3>'
            "1 Bed 720 sq ft $2,050 Apply now</div>"
        )
        unit = FloorPlanExtractor(
            SelectorConfig.for_source("fairview"),
        ).extract(html)[0]
        self.assertTrue(unit.is_available)

    def test_low_signal_nodes_are_skipped_and_counted(self) -> None:
        """Nodes with neither price nor footage are skipped, not raised."""
        html = (
            '<div class="floorplan">Amenities: rooftop deck</div>'
            '<div class="floorplan"><h3>Plan E1</h3>$2,050</div>'
        )
        report = FloorPlanExtractor(BARE).extract_report(html)
        self.assertEqual(report.candidates, 2)
        self.assertEqual(report.skipped, 1)
        self.assertEqual([u.name for u in report.units], ["Plan E1"])

    def test_parse_node_raises_low_signal(self) -> None:
        """parse_node signals insufficient data with ExtractionLowSignal."""
        soup = _node('<div class="floorplan">Pet friendly</div>')
        node = soup.select_one(".floorplan")
        assert node is not None
        with self.assertRaises(ExtractionLowSignal):
            FloorPlanExtractor(BARE).parse_node(node)

    def test_last_resort_name(self) -> None:
        """Without any textual name, beds/baths/sqft form the name."""
        html = '<div class="floorplan">$1,850 · 640 sf</div>'
        unit = FloorPlanExtractor(BARE).extract(html)[0]
        self.assertEqual(unit.name, "Studio 640 sf")
        self.assertEqual(unit.price, 1850)

    def test_den_and_position(self) -> None:
        """Den flag and orientation text are picked up."""
        html = (
            '<div class="floorplan"><h3>Plan F2</h3>'
            "1 Bed + Den, corner home, 760 sq ft, $2,600</div>"
        )
        unit = FloorPlanExtractor(BARE).extract(html)[0]
        self.assertTrue(unit.has_den)
        self.assertEqual(unit.position.lower(), "corner")

    def test_image_resolved_against_base(self) -> None:
        """Image src is made absolute using the page URL."""
        html = (
            '<div class="floorplan"><h3>Plan G1</h3>$2,200'
            '<img src="/img/g1.png" alt="G1"></div>'
        )
        unit = FloorPlanExtractor(BARE).extract(
            html, base_url="https://example.com/floorplans/",
        )[0]
        self.assertEqual(unit.image_url, "https://example.com/img/g1.png")

    def test_floor_plan_anchor_preferred(self) -> None:
        """An anchor labelled 'floor plan' to an image wins over img tags."""
        html = (
            '<html><head><base href="https://cdn.example.com/"></head><body>'
            '<div class="floorplan"><h3>Plan H1</h3>$2,300'
            '<img data-src="thumb/h1.jpg">'
            '<a href="plans/h1.pdf">Floor Plan PDF</a>'
            '<a href="plans/h1.webp">View Floor Plan</a>'
            "</div></body></html>"
        )
        unit = FloorPlanExtractor(BARE).extract(
            html, base_url="https://example.com/",
        )[0]
        self.assertEqual(unit.image_url, "https://cdn.example.com/plans/h1.webp")

    def test_invalid_item_selector_does_not_sink_page(self) -> None:
        """One broken item selector falls back to the valid ones."""
        selectors = SelectorConfig(item=("div[", ".floorplan"))
        html = '<div class="floorplan"><h3>Plan J1</h3>$2,150</div>'
        units = FloorPlanExtractor(selectors).extract(html)
        self.assertEqual([u.name for u in units], ["Plan J1"])

    def test_empty_document(self) -> None:
        """An empty document yields no units."""
        self.assertEqual(FloorPlanExtractor(BARE).extract(""), [])
