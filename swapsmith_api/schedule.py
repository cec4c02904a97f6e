"""
DCA slot arithmetic.

Slots are anchored to the previous slot, never to the time a tick happened
to run, so a schedule that fires late does not drift.
"""
import calendar
from datetime import datetime, timedelta
from typing import Optional

PERIODS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=31),  # Upper bound, only used to cap retry backoff
}

# Smart DCA thresholds on the 24h change of the target asset (percent)
SMART_DIP_THRESHOLD = -5.0
SMART_PUMP_THRESHOLD = 5.0
SMART_DIP_MULTIPLIER = 1.5
SMART_PUMP_MULTIPLIER = 0.5


def _add_month(moment: datetime, day_of_month: int) -> datetime:
    year = moment.year + (1 if moment.month == 12 else 0)
    month = 1 if moment.month == 12 else moment.month + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(day_of_month, last_day))


def compute_next_execution(
    frequency: str,
    previous: datetime,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> datetime:
    """
    Return the slot that follows `previous`.

    daily: exactly 24h later.
    weekly: the next `day_of_week` (0 = Monday) strictly after `previous`.
    monthly: `day_of_month` of the following month, clamped to its last day.
    Time of day is carried over from `previous` in every case.
    """
    if frequency == "daily":
        return previous + timedelta(days=1)

    if frequency == "weekly":
        if day_of_week is None:
            day_of_week = previous.weekday()
        days_ahead = (day_of_week - previous.weekday()) % 7 or 7
        return previous + timedelta(days=days_ahead)

    if frequency == "monthly":
        return _add_month(previous, day_of_month or previous.day)

    raise ValueError(f"Unknown DCA frequency: {frequency}")


def advance_past(
    frequency: str,
    previous: datetime,
    now: datetime,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> datetime:
    """First slot after `previous` that is strictly later than `now`. Missed slots are skipped."""
    slot = compute_next_execution(frequency, previous, day_of_week, day_of_month)
    while slot <= now:
        slot = compute_next_execution(frequency, slot, day_of_week, day_of_month)
    return slot


def initial_next_execution(
    frequency: str,
    now: datetime,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> datetime:
    """First slot for a new schedule, at the creation time of day."""
    start = now.replace(second=0, microsecond=0)

    if frequency == "daily":
        return start + timedelta(days=1)

    if frequency == "weekly":
        days_ahead = (day_of_week - start.weekday()) % 7
        candidate = start + timedelta(days=days_ahead)
        return candidate if candidate > now else candidate + timedelta(days=7)

    if frequency == "monthly":
        last_day = calendar.monthrange(start.year, start.month)[1]
        candidate = start.replace(day=min(day_of_month, last_day))
        return candidate if candidate > now else _add_month(candidate, day_of_month)

    raise ValueError(f"Unknown DCA frequency: {frequency}")


def slot_key(schedule_id: str, slot: datetime) -> str:
    """Dedup key for one scheduled occurrence."""
    return f"dca-{schedule_id}-{slot.strftime('%Y%m%d%H%M')}"


def retry_delay(consecutive_failures: int, base_seconds: int, frequency: str) -> timedelta:
    """Exponential backoff capped at one schedule period."""
    exponent = min(max(consecutive_failures - 1, 0), 20)
    delay = timedelta(seconds=base_seconds * (2 ** exponent))
    return min(delay, PERIODS.get(frequency, PERIODS["daily"]))


def smart_multiplier(change_24h: Optional[float]) -> float:
    """Buy more on dips, less on pumps."""
    if change_24h is None:
        return 1.0
    if change_24h < SMART_DIP_THRESHOLD:
        return SMART_DIP_MULTIPLIER
    if change_24h > SMART_PUMP_THRESHOLD:
        return SMART_PUMP_MULTIPLIER
    return 1.0
