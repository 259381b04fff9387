"""
Aggregation Engine: dashboard statistics over a loaded event set.

All functions are pure: they read the events they are given and hold no state,
so they are safe to call concurrently with an ingest run.

Conventions:
- Calendar days are UTC days; naive timestamps are read as UTC.
- Percentages round half up to the nearest integer; division by zero gives 0.
- Rankings group keys in first-seen order and sort by count with a stable
  sort, so ties keep first-encountered order.
- Malformed input degrades to zero-valued statistics instead of raising.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.schemas.event import ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_TOP_EVENT_TYPES = 6
DEFAULT_TOP_COUNTRIES = 5


# ============================================================================
# RESULT TYPES
# ============================================================================


@dataclass(frozen=True)
class DailyBucket:
    """Event volume for one calendar day."""

    day: date
    label: str
    events: int = 0
    enriched: int = 0
    rate: int = 0


@dataclass(frozen=True)
class RankedEntry:
    """One row of a top-K ranking."""

    key: str
    count: int
    percentage: int


@dataclass(frozen=True)
class DashboardStats:
    """Everything the dashboard renders from one event window."""

    total_events: int = 0
    enriched_events: int = 0
    unique_users: int = 0
    enrichment_rate: int = 0
    daily_series: Tuple[DailyBucket, ...] = field(default_factory=tuple)
    top_event_types: Tuple[RankedEntry, ...] = field(default_factory=tuple)
    top_countries: Tuple[RankedEntry, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for bucket in data["daily_series"]:
            bucket["day"] = bucket["day"].isoformat()
        return data


# ============================================================================
# ARITHMETIC
# ============================================================================


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> int:
    """round_half_up(part / whole * 100), 0 when whole is 0."""
    if not whole:
        return 0
    return round_half_up(part * 100 / whole)


def enrichment_rate(total: int, enriched: int) -> int:
    """Share of enriched events as an integer percentage."""
    return percentage(enriched, total)


# ============================================================================
# FIELD ACCESS
# ============================================================================


def _get(item: Any, name: str) -> Any:
    """Read a field from a model instance or a plain mapping."""
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _event_day(item: Any) -> Optional[date]:
    value = _get(item, "timestamp")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    try:
        return ensure_utc(value).date()
    except ValueError:
        return None


def _as_list(events: Any) -> List[Any]:
    if events is None or isinstance(events, (str, bytes, dict)):
        return []
    try:
        return list(events)
    except TypeError:
        logger.warning(f"Cannot aggregate non-iterable input of type {type(events).__name__}")
        return []


def _key(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text or None


# ============================================================================
# AGGREGATIONS
# ============================================================================


def rank_counts(
    keys: Iterable[Optional[str]], top_k: int, total: Optional[int] = None
) -> List[RankedEntry]:
    """
    Count keys, rank by count descending, keep the top K.

    None keys are skipped. Percentages are relative to `total` (defaults to
    the number of counted keys) and may not sum to 100.
    """
    counts: Dict[str, int] = {}
    for key in keys:
        if key is None:
            continue
        counts[key] = counts.get(key, 0) + 1

    denominator = sum(counts.values()) if total is None else total
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [
        RankedEntry(key=key, count=count, percentage=percentage(count, denominator))
        for key, count in ranked[: max(top_k, 0)]
    ]


def daily_series(
    events: Any,
    today: Optional[date] = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> List[DailyBucket]:
    """
    Per-day event and enrichment counts over the trailing window ending `today`.

    Always returns exactly `window_days` buckets, oldest first; empty days
    are zero-valued.
    """
    today = today or datetime.now(timezone.utc).date()
    window_days = max(window_days, 0)
    days = [today - timedelta(days=offset) for offset in range(window_days - 1, -1, -1)]

    totals: Dict[date, List[int]] = {d: [0, 0] for d in days}
    for item in _as_list(events):
        day = _event_day(item)
        if day in totals:
            totals[day][0] += 1
            if _get(item, "is_enriched") is True:
                totals[day][1] += 1

    return [
        DailyBucket(
            day=d,
            label=d.strftime("%b %d"),
            events=totals[d][0],
            enriched=totals[d][1],
            rate=percentage(totals[d][1], totals[d][0]),
        )
        for d in days
    ]


def top_event_types(events: Any, top_k: int = DEFAULT_TOP_EVENT_TYPES) -> List[RankedEntry]:
    items = _as_list(events)
    return rank_counts((_key(_get(e, "event_type")) for e in items), top_k, total=len(items))


def top_countries(events: Any, top_k: int = DEFAULT_TOP_COUNTRIES) -> List[RankedEntry]:
    """Events without a country are left out of the ranking but count toward the total."""
    items = _as_list(events)
    return rank_counts((_key(_get(e, "country")) for e in items), top_k, total=len(items))


def unique_users(events: Any) -> int:
    return len({u for u in (_key(_get(e, "user_id")) for e in _as_list(events)) if u})


def compute_dashboard_stats(
    events: Any,
    today: Optional[date] = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
    top_event_types_k: int = DEFAULT_TOP_EVENT_TYPES,
    top_countries_k: int = DEFAULT_TOP_COUNTRIES,
) -> DashboardStats:
    """
    Compute all dashboard statistics for an event window.

    Args:
        events: Loaded events (AnalyticsEvent instances or plain mappings),
                typically the most recent N by timestamp
        today: Last day of the daily series (defaults to the current UTC day)
        window_days: Length of the daily series
        top_event_types_k: Number of event types to rank
        top_countries_k: Number of countries to rank
    """
    items = _as_list(events)
    total = len(items)
    enriched = sum(1 for e in items if _get(e, "is_enriched") is True)

    return DashboardStats(
        total_events=total,
        enriched_events=enriched,
        unique_users=unique_users(items),
        enrichment_rate=enrichment_rate(total, enriched),
        daily_series=tuple(daily_series(items, today=today, window_days=window_days)),
        top_event_types=tuple(top_event_types(items, top_event_types_k)),
        top_countries=tuple(top_countries(items, top_countries_k)),
    )
