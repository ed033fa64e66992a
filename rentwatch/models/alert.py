# rentwatch/models/alert.py

"""Alert records and the global alert threshold."""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from rentwatch.errors import ConfigurationError


class AlertKind(str, Enum):
    """Kinds of alert the evaluator can raise."""

    PRICE_DROP = "price_drop"
    NEW_LOW = "new_low"


class ThresholdKind(str, Enum):
    """How a price-drop threshold is measured."""

    DOLLAR = "dollar"
    PERCENTAGE = "percentage"


@dataclass
class Alert:
    """A derived price fact. Append-only; dismissal is a soft flag."""

    unit_id: int
    kind: AlertKind
    old_price: int | None
    new_price: int
    percentage_change: float | None = None
    is_dismissed: bool = False
    created_at: datetime | None = None
    id: int = 0


@dataclass(frozen=True)
class AlertThreshold:
    """Minimum drop required before a price-drop alert is raised."""

    kind: ThresholdKind = ThresholdKind.PERCENTAGE
    value: float = 5.0

    @classmethod
    def parse(cls, kind: str, value: object) -> "AlertThreshold":
        """Validate raw settings values into a threshold.

        Raises ``ConfigurationError`` instead of coercing bad input.
        """
        try:
            parsed_kind = ThresholdKind(str(kind).strip().lower())
        except ValueError as exc:
            msg = (
                f"Unknown threshold kind {kind!r}; "
                "expected 'dollar' or 'percentage'"
            )
            raise ConfigurationError(msg) from exc

        try:
            parsed_value = float(str(value))
        except (TypeError, ValueError) as exc:
            msg = f"Threshold value {value!r} is not a number"
            raise ConfigurationError(msg) from exc

        if not math.isfinite(parsed_value) or parsed_value <= 0:
            msg = f"Threshold value must be positive, got {parsed_value}"
            raise ConfigurationError(msg)
        if (
            parsed_kind is ThresholdKind.PERCENTAGE
            and parsed_value > 100
        ):
            msg = (
                "Percentage threshold cannot exceed 100, "
                f"got {parsed_value}"
            )
            raise ConfigurationError(msg)
        return cls(kind=parsed_kind, value=parsed_value)

    def is_met(self, old_price: float, new_price: float) -> bool:
        """Return True when the drop from old to new reaches the threshold."""
        drop = old_price - new_price
        if drop <= 0:
            return False
        if self.kind is ThresholdKind.DOLLAR:
            return drop >= self.value
        pct = drop * 100 / old_price if old_price > 0 else 0.0
        return pct >= self.value
