"""
Dashboard and calendar aggregations.

Pure functions over already-fetched rows (ORM objects or anything with the same
attributes). No queries and no side effects here.
"""
import calendar
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..models.models import TASK_STATUSES, TERMINAL_STATUSES


PERIODS = ("week", "month", "all")
GRID_DAYS = 6  # Monday to Saturday


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_overdue(task: Any, now: Optional[datetime] = None) -> bool:
    deadline = getattr(task, "deadline", None)
    if deadline is None or task.status in TERMINAL_STATUSES:
        return False
    now = _as_utc(now) if now else datetime.now(timezone.utc)
    return _as_utc(deadline) < now


def overdue_count(tasks: Iterable[Any], now: Optional[datetime] = None) -> int:
    return sum(1 for t in tasks if is_overdue(t, now))


def status_counts(tasks: Iterable[Any]) -> Dict[str, int]:
    counts = {status: 0 for status in TASK_STATUSES}
    total = 0
    for t in tasks:
        total += 1
        if t.status in counts:
            counts[t.status] += 1
    counts["total"] = total
    return counts


def dashboard_stats(tasks: Iterable[Any], now: Optional[datetime] = None) -> Dict[str, int]:
    rows = list(tasks)
    stats = status_counts(rows)
    stats["atrasadas"] = overdue_count(rows, now)
    return stats


def period_range(period: str, reference: Optional[date] = None) -> Tuple[Optional[date], Optional[date]]:
    """Inclusive date range for a period filter; (None, None) means no bound."""
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    ref = reference or date.today()
    if period == "week":
        start = week_start_for(ref)
        return start, start + timedelta(days=6)
    if period == "month":
        last_day = calendar.monthrange(ref.year, ref.month)[1]
        return ref.replace(day=1), ref.replace(day=last_day)
    return None, None


def completion_rates(
    assignees: Iterable[Any],
    names: Mapping[uuid.UUID, str],
) -> List[Dict[str, Any]]:
    """
    Per-employee completion: completed assignee rows divided by total assignee rows.

    Every profile in `names` is reported, including those with no assignments (rate 0).
    """
    totals: Dict[uuid.UUID, int] = defaultdict(int)
    done: Dict[uuid.UUID, int] = defaultdict(int)
    for a in assignees:
        totals[a.user_id] += 1
        if a.completed:
            done[a.user_id] += 1

    rows = []
    for user_id in set(names) | set(totals):
        total = totals.get(user_id, 0)
        completed = done.get(user_id, 0)
        rows.append({
            "user_id": str(user_id),
            "name": names.get(user_id) or "",
            "total": total,
            "completed": completed,
            "rate": round(completed / total, 4) if total else 0.0,
        })
    rows.sort(key=lambda r: (-r["rate"], r["name"].lower()))
    return rows


def week_start_for(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _time_sort_key(task: Any) -> Tuple[int, str]:
    value = getattr(task, "scheduled_time", None)
    return (1, "") if not value else (0, value)


def week_grid(tasks: Iterable[Any], week_start: date) -> List[Dict[str, Any]]:
    """Bucket tasks into Monday..Saturday columns by scheduled_date, ordered by time (unscheduled times last)."""
    start = week_start_for(week_start)
    days = [start + timedelta(days=i) for i in range(GRID_DAYS)]
    buckets: Dict[date, List[Any]] = {d: [] for d in days}
    for t in tasks:
        day = getattr(t, "scheduled_date", None)
        if day in buckets:
            buckets[day].append(t)
    return [
        {"date": d, "tasks": sorted(buckets[d], key=_time_sort_key)}
        for d in days
    ]
