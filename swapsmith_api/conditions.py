"""
Price condition evaluation for limit orders.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import config


@dataclass(frozen=True)
class PriceSnapshot:
    symbol: str
    price: float
    fetched_at: datetime


def is_fresh(snapshot: Optional[PriceSnapshot], now: datetime, max_age_seconds: float) -> bool:
    if snapshot is None or snapshot.price is None or snapshot.price <= 0:
        return False
    return (now - snapshot.fetched_at).total_seconds() <= max_age_seconds


def evaluate_condition(
    order: dict,
    snapshot: Optional[PriceSnapshot],
    now: Optional[datetime] = None,
    max_age_seconds: Optional[float] = None,
) -> bool:
    """
    Decide whether a limit order's price condition holds.

    Only strict inequalities trigger: a price equal to the target never does.
    A missing, stale or non-positive price never triggers.

    Args:
        order: Limit order document (condition_operator is "gt" or "lt")
        snapshot: Latest price for the order's condition asset
        now: Evaluation time (naive UTC), defaults to utcnow
        max_age_seconds: Freshness window, defaults to PRICE_MAX_AGE_SECONDS

    Returns:
        True if the order should be executed
    """
    now = now or datetime.utcnow()
    if max_age_seconds is None:
        max_age_seconds = config.PRICE_MAX_AGE_SECONDS

    if not is_fresh(snapshot, now, max_age_seconds):
        return False

    target = float(order["condition_value"])
    operator = order.get("condition_operator")

    if operator == "gt":
        return snapshot.price > target
    if operator == "lt":
        return snapshot.price < target
    return False
