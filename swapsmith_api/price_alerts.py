"""
Price alerts: notify an owner once when a coin crosses their target price.

Alerts use the same strict gt/lt evaluation and freshness window as limit
orders. A fired alert is deactivated before the notification goes out, so
each alert notifies at most once.
"""
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Optional

from . import price_service
from .conditions import PriceSnapshot, evaluate_condition, is_fresh
from .config import config
from .database import DatabaseService
from .notifier import Notifier

logger = logging.getLogger(__name__)

PriceSource = Callable[[Iterable[str]], Awaitable[Dict[str, PriceSnapshot]]]


def alert_condition(alert: dict) -> dict:
    """The condition fields evaluate_condition reads, taken from an alert."""
    return {
        "condition_operator": alert["condition"],
        "condition_value": alert["target_price"],
    }


class PriceAlertMonitor:
    def __init__(
        self,
        db_service: DatabaseService,
        notifier: Notifier,
        price_source: PriceSource = price_service.get_price_snapshots,
        max_price_age_seconds: Optional[float] = None,
    ):
        self.db = db_service
        self.notifier = notifier
        self.price_source = price_source
        self.max_price_age_seconds = max_price_age_seconds or config.PRICE_MAX_AGE_SECONDS

    async def check_price_alerts(self, now: Optional[datetime] = None) -> dict:
        """Evaluate every active alert once and fire the ones whose condition holds."""
        summary = {"checked": 0, "triggered": 0, "skipped": 0, "errors": 0}

        alerts = await self.db.list_active_price_alerts()
        if not alerts:
            return summary

        snapshots = await self.price_source({alert["coin"] for alert in alerts})
        now = now or datetime.utcnow()

        for alert in alerts:
            summary["checked"] += 1
            try:
                snapshot = snapshots.get(alert["coin"])
                if not is_fresh(snapshot, now, self.max_price_age_seconds):
                    summary["skipped"] += 1
                    continue

                if not evaluate_condition(
                    alert_condition(alert), snapshot, now=now, max_age_seconds=self.max_price_age_seconds
                ):
                    continue

                if not await self.db.mark_price_alert_triggered(alert["_id"], snapshot.price, now):
                    logger.info(f"Price alert {alert['_id']} already fired, skipping")
                    continue

                summary["triggered"] += 1
                logger.info(
                    f"Price alert {alert['_id']} fired: {alert['coin']} {snapshot.price} "
                    f"{alert['condition']} {alert['target_price']}"
                )
                await self.notifier.notify(alert["owner"], "price_alert", {
                    "alert_id": alert["_id"],
                    "name": alert.get("name"),
                    "coin": alert["coin"],
                    "condition": alert["condition"],
                    "target_price": alert["target_price"],
                    "price": snapshot.price,
                })
            except Exception as e:
                logger.error(f"Error checking price alert {alert.get('_id')}: {e}", exc_info=True)
                summary["errors"] += 1

        return summary
