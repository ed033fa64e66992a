# rentwatch/models/availability.py

"""Availability records parsed from the secondary leasing source."""

from dataclasses import dataclass, field
from datetime import date


@dataclass
class AvailabilityRecord:
    """One unit row: who, how much, and when it can be moved into."""

    unit: str
    rent: int = 0
    date_text: str = ""
    move_in: date | None = None
    plan: str = ""
    apartment: str = ""

    @property
    def is_now(self) -> bool:
        """True when the move-in token was the literal word 'now'."""
        return self.date_text.strip().lower() == "now"


@dataclass
class AvailabilityResult:
    """Classified availability for one scrape of the secondary source."""

    source: str
    scraped_at: str
    available_now: list[AvailabilityRecord] = field(
        default_factory=lambda: list[AvailabilityRecord]()
    )
    available_soon: list[AvailabilityRecord] = field(
        default_factory=lambda: list[AvailabilityRecord]()
    )
    table: list[dict[str, str]] = field(
        default_factory=lambda: list[dict[str, str]]()
    )
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )

    def to_dict(self) -> dict[str, object]:
        """Serialise for the settings-table cache."""

        def row(r: AvailabilityRecord) -> dict[str, object]:
            return {
                "unit": r.unit,
                "plan": r.plan,
                "apartment": r.apartment,
                "rent": r.rent,
                "date_text": r.date_text,
                "move_in": r.move_in.isoformat() if r.move_in else None,
            }

        return {
            "source": self.source,
            "scraped_at": self.scraped_at,
            "available_now": [row(r) for r in self.available_now],
            "available_soon": [row(r) for r in self.available_soon],
            "table": list(self.table),
            "errors": list(self.errors),
        }
