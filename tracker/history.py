"""Completion history and heatmap calendars built from daily status records."""
from __future__ import annotations

import calendar
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .catalog import TEMPLATE_CACHE, TaskTemplateCache
from .config import ASSIGNED_TASKS, HISTORY_MONTHS, daily_tasks_path
from .models import CalendarData, DailyTaskStatus, GroupedTaskHistory, HistoryDay, TaskHistoryItem

LOGGER = logging.getLogger(__name__)

MAX_LEVEL = 4


def parse_day(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def subtract_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def month_label(day: date) -> str:
    return day.strftime("%B %Y")


def display_date(day: date) -> str:
    return f"{day:%A}, {day:%B} {day.day}, {day.year}"


def completed_statuses(store, user_id: str, start: date, end: date) -> List[DailyTaskStatus]:
    snaps = store.query(daily_tasks_path(user_id), [
        ("isCompleted", "==", True),
        ("date", ">=", start.isoformat()),
        ("date", "<=", end.isoformat()),
    ])
    return [DailyTaskStatus.from_snapshot(snap) for snap in snaps]


# ------------------------------- Calendar -------------------------------
def intensity_level(count: int, month_max: int) -> int:
    """Map a day's completion count to 0-4 relative to the month's busiest day."""
    if count <= 0:
        return 0
    if month_max <= MAX_LEVEL:
        return count
    return min(MAX_LEVEL, max(1, math.ceil(count / month_max * MAX_LEVEL)))


def daily_counts(statuses: Iterable[DailyTaskStatus]) -> Dict[str, int]:
    counts: Dict[str, int] = defaultdict(int)
    for status in statuses:
        if status.date:
            counts[status.date] += 1
    return dict(counts)


def month_calendar(year: int, month: int, counts: Dict[str, int]) -> List[CalendarData]:
    days = [date(year, month, d) for d in range(1, calendar.monthrange(year, month)[1] + 1)]
    month_counts = [counts.get(d.isoformat(), 0) for d in days]
    month_max = max((c for c in month_counts if c > 0), default=0)
    return [
        CalendarData(date=d.isoformat(), count=c, level=intensity_level(c, month_max))
        for d, c in zip(days, month_counts)
    ]


def build_calendars(counts: Dict[str, int], today: date) -> Dict[str, List[CalendarData]]:
    """One calendar per month that has completions, oldest first.

    With no completions at all the current month is returned empty.
    """
    months = set()
    for raw in counts:
        parsed = parse_day(raw)
        if parsed is None:
            LOGGER.warning("Ignoring completion with invalid date %r", raw)
            continue
        months.add((parsed.year, parsed.month))
    if not months:
        months.add((today.year, today.month))
    return {
        f"{year:04d}-{month:02d}": month_calendar(year, month, counts)
        for year, month in sorted(months)
    }


# ------------------------------- History -------------------------------
def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def completion_time(status: DailyTaskStatus) -> datetime:
    if status.completed_at:
        return _as_aware(status.completed_at)
    day = parse_day(status.date) or date.min
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def resolve_history_items(store, statuses: List[DailyTaskStatus],
                          cache: Optional[TaskTemplateCache] = None) -> List[TaskHistoryItem]:
    """Join each status to its assignment and template.

    Records whose chain is broken are dropped with a warning.
    """
    if cache is None:
        cache = TEMPLATE_CACHE
    task_ids: Dict[str, Optional[str]] = {}
    for status in statuses:
        assigned_id = status.assigned_task_id
        if not assigned_id or assigned_id in task_ids:
            continue
        snap = store.get(ASSIGNED_TASKS, assigned_id)
        task_ids[assigned_id] = snap.get("taskId") if snap is not None else None

    tasks = cache.get_many(store, [tid for tid in task_ids.values() if tid])

    items: List[TaskHistoryItem] = []
    for status in statuses:
        if not status.assigned_task_id:
            LOGGER.warning("Missing assignedTaskId for task record %s", status.id)
            continue
        if status.assigned_task_id not in task_ids:
            continue
        task_id = task_ids[status.assigned_task_id]
        if not task_id:
            LOGGER.warning("Assigned task %s not found or has no taskId", status.assigned_task_id)
            continue
        task = tasks.get(task_id)
        if task is None:
            LOGGER.warning("Task %s not found", task_id)
            continue
        if not task.title:
            LOGGER.warning("Task %s is missing required title field", task_id)
            continue
        items.append(TaskHistoryItem(
            id=status.id,
            task=task,
            date=status.date,
            completed_at=completion_time(status),
            assigned_task_id=status.assigned_task_id,
            photo_url=status.photo_url,
        ))
    return items


def group_history(items: Iterable[TaskHistoryItem]) -> List[GroupedTaskHistory]:
    """Group items by month then day, newest first at every level."""
    ordered = sorted(items, key=lambda item: (item.completed_at, item.id), reverse=True)
    by_month: Dict[Tuple[int, int], Dict[str, List[TaskHistoryItem]]] = defaultdict(lambda: defaultdict(list))
    for item in ordered:
        day = parse_day(item.date)
        if day is None:
            LOGGER.warning("Invalid date: %r", item.date)
            continue
        by_month[(day.year, day.month)][item.date].append(item)

    grouped: List[GroupedTaskHistory] = []
    for (year, month) in sorted(by_month, reverse=True):
        days = by_month[(year, month)]
        grouped.append(GroupedTaskHistory(
            month=month_label(date(year, month, 1)),
            days=[
                HistoryDay(date=raw, display_date=display_date(date.fromisoformat(raw)), tasks=days[raw])
                for raw in sorted(days, reverse=True)
            ],
        ))
    return grouped


def items_for_date(history: Iterable[GroupedTaskHistory], day: str) -> List[TaskHistoryItem]:
    for month in history:
        for entry in month.days:
            if entry.date == day:
                return list(entry.tasks)
    return []


@dataclass(slots=True)
class HistoryReport:
    user_id: str
    start: date
    end: date
    calendars: Dict[str, List[CalendarData]] = field(default_factory=dict)
    history: List[GroupedTaskHistory] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "calendars": {key: [d.to_dict() for d in days] for key, days in self.calendars.items()},
            "history": [month.to_dict() for month in self.history],
        }


def build_history_report(store, user_id: str, months: int = HISTORY_MONTHS, today: Optional[date] = None,
                         cache: Optional[TaskTemplateCache] = None) -> HistoryReport:
    today = today or date.today()
    start = subtract_months(today, months)
    statuses = completed_statuses(store, user_id, start, today)
    items = resolve_history_items(store, statuses, cache)
    return HistoryReport(
        user_id=user_id,
        start=start,
        end=today,
        calendars=build_calendars(daily_counts(statuses), today),
        history=group_history(items),
    )
