"""
StatsAggregator - windowed import totals for the owner dashboard.

Everything here is a pure function of its arguments: the same events, clock
value and mode always yield the same buckets.
"""
from datetime import date, datetime, timedelta, tzinfo, timezone
from typing import Iterable, List, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from poi_share.core.timeutils import ensure_utc
from poi_share.schemas.stats import Bucket, SharingSummary, StatsMode

DEFAULT_DAILY_BUCKETS = 14
DEFAULT_WEEKLY_BUCKETS = 8


class ImportEventLike(Protocol):
    id: str
    imported_count: int
    created_at: datetime


class LinkLike(Protocol):
    import_count: int


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def dedupe_events(events: Iterable[ImportEventLike]) -> List[ImportEventLike]:
    """Drop repeated event ids (realtime delivery is at-least-once), keeping the first."""
    seen = set()
    unique = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


def _local_date(value: datetime, tz: tzinfo) -> date:
    return ensure_utc(value).astimezone(tz).date()


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def _fill(starts: Sequence[date], span_days: int, events: Iterable[ImportEventLike],
          tz: tzinfo, label) -> List[Bucket]:
    totals = [0] * len(starts)
    first = starts[0]
    for event in dedupe_events(events):
        offset = (_local_date(event.created_at, tz) - first).days
        if offset < 0:
            continue
        index = offset // span_days
        if index < len(starts):
            totals[index] += event.imported_count
    return [Bucket(label=label(start), start=start, total=total) for start, total in zip(starts, totals)]


def daily_buckets(
    events: Iterable[ImportEventLike],
    now: datetime,
    days: int = DEFAULT_DAILY_BUCKETS,
    tz: tzinfo = timezone.utc,
) -> List[Bucket]:
    """``days`` contiguous day buckets, oldest first, the last one being today."""
    today = _local_date(now, tz)
    starts = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    return _fill(starts, 1, events, tz, lambda d: d.isoformat())


def weekly_buckets(
    events: Iterable[ImportEventLike],
    now: datetime,
    weeks: int = DEFAULT_WEEKLY_BUCKETS,
    tz: tzinfo = timezone.utc,
) -> List[Bucket]:
    """``weeks`` contiguous ISO-week buckets (Monday start), the last one being this week."""
    current = week_start(_local_date(now, tz))
    starts = [current - timedelta(weeks=offset) for offset in range(weeks - 1, -1, -1)]

    def _label(start: date) -> str:
        year, week, _ = start.isocalendar()
        return f"{year}-W{week:02d}"

    return _fill(starts, 7, events, tz, _label)


def aggregate(
    events: Iterable[ImportEventLike],
    now: datetime,
    mode: StatsMode,
    daily_count: int = DEFAULT_DAILY_BUCKETS,
    weekly_count: int = DEFAULT_WEEKLY_BUCKETS,
    tz: tzinfo = timezone.utc,
) -> List[Bucket]:
    if mode == StatsMode.WEEKLY:
        return weekly_buckets(events, now, weekly_count, tz)
    return daily_buckets(events, now, daily_count, tz)


def summarize(links: Sequence[LinkLike]) -> SharingSummary:
    total_imports = sum(link.import_count for link in links)
    avg = round(total_imports / len(links), 1) if links else 0.0
    return SharingSummary(total_links=len(links), total_imports=total_imports, avg_imports=avg)
