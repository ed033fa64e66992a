# rentwatch/services/alert_evaluator.py

"""Threshold-based price-drop and new-low alert derivation."""

import logging
from datetime import date

from rentwatch.config.settings import Settings
from rentwatch.errors import ConfigurationError
from rentwatch.models.alert import Alert, AlertKind, AlertThreshold
from rentwatch.services.price_ingestor import PriceWrite
from rentwatch.storage.price_history_db import (
    THRESHOLD_TYPE_KEY,
    THRESHOLD_VALUE_KEY,
    PriceHistoryDB,
)

logger = logging.getLogger("rentwatch.alerts")


def default_threshold() -> AlertThreshold:
    """Threshold used when nothing valid is stored."""
    return AlertThreshold.parse(
        Settings.DEFAULT_THRESHOLD_KIND,
        Settings.DEFAULT_THRESHOLD_VALUE,
    )


def percentage_drop(old_price: int, new_price: int) -> float:
    """Percentage drop from *old_price*, rounded to two decimals."""
    if old_price <= 0:
        return 0.0
    return round((old_price - new_price) / old_price * 100, 2)


class AlertEvaluator:
    """Compares a fresh price with the unit's history and records alerts.

    The two checks are independent: a single ingestion can raise both a
    price-drop alert (against the previous day on record) and a new-low
    alert (against every earlier price).
    """

    def __init__(self, store: PriceHistoryDB) -> None:
        self.store = store

    def load_threshold(self) -> AlertThreshold:
        """Read the stored threshold, falling back to the default."""
        kind = self.store.get_setting(
            THRESHOLD_TYPE_KEY, Settings.DEFAULT_THRESHOLD_KIND,
        )
        value = self.store.get_setting(
            THRESHOLD_VALUE_KEY, str(Settings.DEFAULT_THRESHOLD_VALUE),
        )
        try:
            return AlertThreshold.parse(kind or "", value)
        except ConfigurationError as exc:
            logger.error(
                "Stored alert threshold is invalid (%s); using default",
                exc,
            )
            return default_threshold()

    def update_threshold(self, kind: str, value: object) -> AlertThreshold:
        """Validate and persist a new threshold.

        Raises ``ConfigurationError`` without touching the store when
        the input is invalid.
        """
        threshold = AlertThreshold.parse(kind, value)
        with self.store.transaction():
            self.store.set_setting(THRESHOLD_TYPE_KEY, threshold.kind.value)
            self.store.set_setting(THRESHOLD_VALUE_KEY, str(threshold.value))
        logger.info(
            "Alert threshold set to %s %g",
            threshold.kind.value,
            threshold.value,
        )
        return threshold

    def evaluate(
        self,
        unit_id: int,
        new_price: int,
        collection_date: date,
        threshold: AlertThreshold | None = None,
    ) -> list[Alert]:
        """Evaluate both alert conditions and persist any that fire."""
        active = threshold or self.load_threshold()
        alerts: list[Alert] = []

        previous = self.store.get_latest_price_before(
            unit_id, collection_date,
        )
        if previous is not None and new_price < previous.price:
            if active.is_met(previous.price, new_price):
                alerts.append(
                    Alert(
                        unit_id=unit_id,
                        kind=AlertKind.PRICE_DROP,
                        old_price=previous.price,
                        new_price=new_price,
                        percentage_change=percentage_drop(
                            previous.price, new_price,
                        ),
                    )
                )
            else:
                logger.debug(
                    "Unit %d: drop %d -> %d below threshold %s %g",
                    unit_id,
                    previous.price,
                    new_price,
                    active.kind.value,
                    active.value,
                )

        prior_low = self.store.get_min_price_before(
            unit_id, collection_date,
        )
        if prior_low is not None and new_price < prior_low:
            alerts.append(
                Alert(
                    unit_id=unit_id,
                    kind=AlertKind.NEW_LOW,
                    old_price=prior_low,
                    new_price=new_price,
                    percentage_change=percentage_drop(prior_low, new_price),
                )
            )

        for alert in alerts:
            alert.id = self.store.insert_alert(alert)
            logger.info(
                "Alert %s for unit %d: %s -> %d (%.2f%%)",
                alert.kind.value,
                unit_id,
                alert.old_price,
                alert.new_price,
                alert.percentage_change or 0.0,
            )
        return alerts

    def handle_price_write(self, write: PriceWrite) -> list[Alert]:
        """Post-commit hook for :class:`PriceIngestor`."""
        return self.evaluate(
            write.unit_id, write.price, write.collection_date,
        )
