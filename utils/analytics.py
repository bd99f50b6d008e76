"""
Owner dashboard aggregations.

The database groups bookings by calendar day (and, for the heatmap, start
hour); each group arrives here as an `Aggregate` and is folded into the
requested buckets: daily (`YYYY-MM-DD`), weekly (`YYYY-Wnn`, Sunday-start
week numbers as `%U`) or monthly (`YYYY-MM`). Weekdays in the heatmap are
1=Sunday .. 7=Saturday.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

PERIODS = ("daily", "weekly", "monthly")
EARNING_STATUSES = ("confirmed", "completed")

_BUCKET_FORMATS = {"daily": "%Y-%m-%d", "weekly": "%Y-W%U", "monthly": "%Y-%m"}
_PERIOD_DAYS = {"daily": 1, "weekly": 7, "monthly": 30}


@dataclass(frozen=True)
class Aggregate:
    """One SQL group of bookings sharing a day, status, venue and start hour."""

    day: date
    count: int
    revenue: float
    status: str = ""
    venue_id: Optional[int] = None
    hour: int = 0
    max_value: float = 0
    min_value: float = 0

    @classmethod
    def from_row(cls, row: dict) -> "Aggregate":
        return cls(
            day=_as_date(row["day"]),
            count=int(row["count"] or 0),
            revenue=float(row["revenue"] or 0),
            status=row.get("status") or "",
            venue_id=row.get("venue_id"),
            hour=start_hour(str(row.get("hour") or "0")),
            max_value=float(row.get("max_value") or 0),
            min_value=float(row.get("min_value") or 0),
        )


def _as_date(value) -> date:
    # SQLite's date() hands back text.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def start_date_for(period: str, range_: int, now: datetime) -> datetime:
    """Window start: `range_` days, weeks or 30-day months back from `now`."""
    if period not in _PERIOD_DAYS:
        period, range_ = "daily", 30
    return now - timedelta(days=_PERIOD_DAYS[period] * range_)


def bucket_key(moment, period: str) -> str:
    return moment.strftime(_BUCKET_FORMATS.get(period, _BUCKET_FORMATS["daily"]))


def weekday_number(day) -> int:
    """1=Sunday .. 7=Saturday."""
    return day.isoweekday() % 7 + 1


def start_hour(start_time: str) -> int:
    return int((start_time or "0")[:2])


def _avg(total: float, count: int) -> float:
    return round(total / count, 2) if count else 0


def _count(items: Iterable[Aggregate]) -> int:
    return sum(a.count for a in items)


def _revenue(items: Iterable[Aggregate]) -> float:
    return sum(a.revenue for a in items)


def booking_trends(aggregates: Iterable[Aggregate], period: str) -> tuple[list[dict], dict]:
    rows = list(aggregates)
    groups: dict[str, list] = defaultdict(list)
    for a in rows:
        groups[bucket_key(a.day, period)].append(a)

    trends = []
    for key in sorted(groups):
        items = groups[key]
        count, revenue = _count(items), _revenue(items)
        trends.append(
            {
                "period": key,
                "total_bookings": count,
                "total_revenue": revenue,
                "confirmed_bookings": _count(a for a in items if a.status == "confirmed"),
                "cancelled_bookings": _count(a for a in items if a.status == "cancelled"),
                "avg_booking_value": _avg(revenue, count),
            }
        )

    total = _count(rows)
    if not total:
        return trends, {}
    summary = {
        "total_bookings": total,
        "total_revenue": _revenue(rows),
        "max_booking_value": max(a.max_value for a in rows),
        "confirmed_rate": round(_count(a for a in rows if a.status == "confirmed") / total, 4),
    }
    return trends, summary


def earnings_breakdown(
    aggregates: Iterable[Aggregate], period: str, venue_names: dict
) -> tuple[list[dict], list[dict], dict]:
    """Earnings over time, per venue and overall, counting confirmed/completed bookings only."""
    rows = [a for a in aggregates if a.status in EARNING_STATUSES and a.count]

    by_period: dict[str, list] = defaultdict(list)
    by_venue: dict[int, list] = defaultdict(list)
    for a in rows:
        by_period[bucket_key(a.day, period)].append(a)
        by_venue[a.venue_id].append(a)

    earnings = []
    for key in sorted(by_period):
        total, count = _revenue(by_period[key]), _count(by_period[key])
        earnings.append(
            {"period": key, "total_earnings": total, "booking_count": count, "avg_booking_value": _avg(total, count)}
        )

    venues = []
    for venue_id, items in by_venue.items():
        total, count = _revenue(items), _count(items)
        venues.append(
            {
                "venue_id": venue_id,
                "venue_name": venue_names.get(venue_id, ""),
                "total_earnings": total,
                "booking_count": count,
                "avg_booking_value": _avg(total, count),
            }
        )
    venues.sort(key=lambda v: v["total_earnings"], reverse=True)

    if not rows:
        return earnings, venues, {}
    total, count = _revenue(rows), _count(rows)
    summary = {
        "total_earnings": total,
        "total_bookings": count,
        "avg_booking_value": _avg(total, count),
        "max_booking_value": max(a.max_value for a in rows),
        "min_booking_value": min(a.min_value for a in rows),
    }
    return earnings, venues, summary


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0


def peak_hours(aggregates: Iterable[Aggregate], top: int = 5) -> tuple[list[dict], list[dict], dict]:
    """Weekday/hour heatmap, busiest start hours and time-of-day split.

    Here `Aggregate.day` is the booked date, not the creation date.
    """
    rows = [a for a in aggregates if a.status in EARNING_STATUSES and a.count]

    cells: dict[tuple[int, int], list] = defaultdict(list)
    hours: dict[int, list] = defaultdict(list)
    for a in rows:
        cells[(weekday_number(a.day), a.hour)].append(a)
        hours[a.hour].append(a)

    heatmap = []
    for (day, hour) in sorted(cells):
        items = cells[(day, hour)]
        total, count = _revenue(items), _count(items)
        heatmap.append(
            {
                "day_of_week": day,
                "hour": hour,
                "booking_count": count,
                "total_revenue": total,
                "avg_revenue": _avg(total, count),
            }
        )

    ranked = sorted(hours.items(), key=lambda kv: (-_count(kv[1]), kv[0]))[:top]
    peak_times = [
        {"hour": hour, "booking_count": _count(items), "total_revenue": _revenue(items)} for hour, items in ranked
    ]

    total = _count(rows)
    if not total:
        return heatmap, peak_times, {}
    insights = {
        "total_bookings": total,
        "weekend_percentage": _pct(_count(a for a in rows if weekday_number(a.day) in (1, 7)), total),
        "morning_percentage": _pct(_count(a for a in rows if 6 <= a.hour < 12), total),
        "afternoon_percentage": _pct(_count(a for a in rows if 12 <= a.hour < 18), total),
        "evening_percentage": _pct(_count(a for a in rows if 18 <= a.hour < 24), total),
    }
    return heatmap, peak_times, insights


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        return start, start.replace(year=start.year + 1, month=1)
    return start, start.replace(month=start.month + 1)
