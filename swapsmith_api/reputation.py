"""
Reputation metrics derived from swap history rows.
"""
from datetime import datetime, timedelta
from typing import Iterable, Optional

SUCCESS_STATUSES = frozenset({"completed", "settled"})
FAILURE_STATUSES = frozenset({"failed", "cancelled", "expired"})
PENDING_STATUSES = frozenset({"pending", "processing"})

RECENT_WINDOW = timedelta(days=30)
ACTIVE_RECENT_SWAPS = 5

# Trust score weights, summing to 100
SUCCESS_WEIGHT = 60
VOLUME_WEIGHT = 20
EXPERIENCE_WEIGHT = 20
VOLUME_FOR_FULL_SCORE = 10_000.0  # USD
SWAPS_FOR_FULL_SCORE = 20


def trust_label(score: int) -> str:
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    if score >= 40:
        return "Fair"
    if score > 0:
        return "Building"
    return "New User"


def activity_label(recent_swaps: int) -> str:
    if recent_swaps >= ACTIVE_RECENT_SWAPS:
        return "active"
    if recent_swaps > 0:
        return "moderate"
    return "inactive"


def calculate_reputation_metrics(entries: Iterable[dict], now: Optional[datetime] = None) -> dict:
    """
    Compute reputation for one user or wallet.

    Success rate only counts finished swaps, so in-flight swaps neither help
    nor hurt. Volume sums volume_usd of successful swaps.

    Args:
        entries: Swap history documents
        now: Reference time for the 30-day activity window

    Returns:
        Dict of camelCase metrics ready for the HTTP API
    """
    now = now or datetime.utcnow()
    entries = list(entries)

    successful = [e for e in entries if e.get("status") in SUCCESS_STATUSES]
    failed = [e for e in entries if e.get("status") in FAILURE_STATUSES]
    pending = [e for e in entries if e.get("status") in PENDING_STATUSES]

    finished = len(successful) + len(failed)
    success_rate = (len(successful) / finished * 100) if finished else 0.0

    total_volume = sum(float(e.get("volume_usd") or 0.0) for e in successful)
    avg_value = total_volume / len(successful) if successful else 0.0

    recent_swaps = sum(
        1 for e in entries
        if e.get("created_at") and now - e["created_at"] <= RECENT_WINDOW
    )
    dates = [e["created_at"] for e in entries if e.get("created_at")]

    if finished:
        score = (
            success_rate / 100 * SUCCESS_WEIGHT
            + min(total_volume / VOLUME_FOR_FULL_SCORE, 1.0) * VOLUME_WEIGHT
            + min(finished / SWAPS_FOR_FULL_SCORE, 1.0) * EXPERIENCE_WEIGHT
        )
        trust_score = int(round(score))
    else:
        trust_score = 0

    return {
        "trustScore": trust_score,
        "trustLabel": trust_label(trust_score),
        "successRate": round(success_rate, 1),
        "totalSwaps": len(entries),
        "successfulSwaps": len(successful),
        "failedSwaps": len(failed),
        "pendingSwaps": len(pending),
        "totalVolumeSwapped": round(total_volume, 2),
        "avgSwapValue": round(avg_value, 2),
        "recentSwaps": recent_swaps,
        "recentActivity": activity_label(recent_swaps),
        "lastSwapDate": max(dates) if dates else None,
    }
