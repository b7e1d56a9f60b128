"""
Unit tests for daily and weekly import buckets
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import pytest

from poi_share.schemas.stats import StatsMode
from poi_share.services import stats_aggregator
from poi_share.services.stats_aggregator import aggregate, daily_buckets, summarize, weekly_buckets

# Monday 19 October 2026, ISO week 43
NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)


@dataclass
class Event:
    id: str
    imported_count: int
    created_at: datetime


@dataclass
class Link:
    import_count: int


def at(days_ago=0, hours=0, count=1, id=None):
    created = NOW - timedelta(days=days_ago, hours=hours)
    return Event(id=id or f"evt-{days_ago}-{hours}-{count}", imported_count=count, created_at=created)


def test_daily_always_has_fourteen_buckets():
    buckets = daily_buckets([], NOW)

    assert len(buckets) == 14
    assert buckets[-1].start == date(2026, 10, 19)
    assert buckets[0].start == date(2026, 10, 6)
    assert [b.label for b in buckets[-2:]] == ["2026-10-18", "2026-10-19"]
    assert all(b.total == 0 for b in buckets)


def test_daily_totals_sum_events_in_each_day():
    events = [at(0, count=2), at(0, hours=10, count=3), at(1, count=4), at(13, count=5)]

    buckets = daily_buckets(events, NOW)

    assert buckets[-1].total == 5
    assert buckets[-2].total == 4
    assert buckets[0].total == 5
    assert sum(b.total for b in buckets) == 14


def test_events_outside_window_are_ignored():
    events = [at(14, count=7), at(-1, count=9), at(3, count=1)]

    buckets = daily_buckets(events, NOW)

    assert sum(b.total for b in buckets) == 1


def test_duplicate_event_ids_are_counted_once():
    events = [at(0, count=3, id="same"), at(0, count=3, id="same")]

    assert daily_buckets(events, NOW)[-1].total == 3


def test_weekly_has_eight_monday_aligned_buckets():
    buckets = weekly_buckets([], NOW)

    assert len(buckets) == 8
    assert all(b.start.weekday() == 0 for b in buckets)
    assert buckets[-1].start == date(2026, 10, 19)
    assert buckets[-1].label == "2026-W43"
    assert buckets[0].start == date(2026, 8, 31)


def test_weekly_totals_group_by_iso_week():
    # Sunday 18 Oct belongs to the previous week.
    events = [at(0, count=1), at(1, count=2), at(7, count=4), at(56, count=8)]

    buckets = weekly_buckets(events, NOW)

    assert buckets[-1].total == 1
    assert buckets[-2].total == 6
    assert sum(b.total for b in buckets) == 7


def test_timezone_moves_events_across_day_boundary():
    eastern = timezone(timedelta(hours=-5))
    early_utc = Event(id="e1", imported_count=1, created_at=datetime(2026, 10, 19, 2, 0, tzinfo=timezone.utc))

    utc_buckets = daily_buckets([early_utc], NOW)
    eastern_buckets = daily_buckets([early_utc], NOW, tz=eastern)

    assert utc_buckets[-1].total == 1
    assert eastern_buckets[-2].total == 1
    assert eastern_buckets[-1].start == date(2026, 10, 19)


def test_naive_timestamps_are_treated_as_utc():
    naive = Event(id="e1", imported_count=2, created_at=datetime(2026, 10, 19, 1, 0))

    assert daily_buckets([naive], NOW)[-1].total == 2


@pytest.mark.parametrize("mode,expected", [(StatsMode.DAILY, 14), (StatsMode.WEEKLY, 8)])
def test_aggregate_dispatches_on_mode(mode, expected):
    buckets = aggregate([at(0, count=3)], NOW, mode)

    assert len(buckets) == expected
    assert buckets[-1].total == 3


def test_aggregate_is_deterministic():
    events = [at(i, count=i + 1) for i in range(20)]

    assert aggregate(events, NOW, StatsMode.DAILY) == aggregate(list(reversed(events)), NOW, StatsMode.DAILY)


def test_resolve_timezone_defaults_to_utc():
    assert stats_aggregator.resolve_timezone(None) is timezone.utc
    assert stats_aggregator.resolve_timezone("utc") is timezone.utc


def test_summary_averages_imports_per_link():
    summary = summarize([Link(3), Link(0), Link(2)])

    assert summary.total_links == 3
    assert summary.total_imports == 5
    assert summary.avg_imports == 1.7
    assert summarize([]).avg_imports == 0.0
