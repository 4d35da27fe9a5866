"""Stats and aggregation — pure business logic.

Dashboard counters and the achievements page figures: completion rate,
focus totals, daily activity heat levels, monthly progress and streaks.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from focus_buddy.data.models import Occurrence, Priority, Todo, to_local

logger = logging.getLogger(__name__)

# activity level thresholds in seconds of focus per day (levels 1..3)
_ACTIVITY_THRESHOLDS = (30 * 60, 60 * 60, 2 * 60 * 60)


@dataclass
class TodoSummary:
    total: int
    completed: int
    pending: int
    high_priority: int     # pending only
    overdue: int           # pending with a due date in the past

    @property
    def completion_rate(self) -> int:
        return completion_rate(self.completed, self.total)


@dataclass
class FocusTotals:
    total_seconds: int
    sessions: int
    average_seconds: int   # per session; 0 with no sessions


@dataclass
class MonthProgress:
    month: date            # first day of the month
    completed: int

    @property
    def label(self) -> str:
        return self.month.strftime("%b")


@dataclass
class Streaks:
    current: int
    longest: int


@dataclass
class ScheduleSummary:
    total: int
    today: int
    upcoming: int


def completion_rate(completed: int, total: int) -> int:
    """Completed share as a rounded percentage; 0 when there is nothing."""
    if total <= 0:
        return 0
    return round(completed * 100 / total)


def summarize_todos(todos: list[Todo], now: datetime, tz: tzinfo | None = None) -> TodoSummary:
    now = to_local(now, tz)
    completed = sum(1 for t in todos if t.completed)
    pending = [t for t in todos if not t.completed]
    return TodoSummary(
        total=len(todos),
        completed=completed,
        pending=len(pending),
        high_priority=sum(1 for t in pending if t.priority is Priority.HIGH),
        overdue=sum(
            1 for t in pending
            if t.due_date is not None and to_local(t.due_date, tz) < now
        ),
    )


def focus_totals(todos: list[Todo]) -> FocusTotals:
    total = sum(t.total_time_spent for t in todos)
    sessions = sum(t.session_count for t in todos)
    return FocusTotals(
        total_seconds=total,
        sessions=sessions,
        average_seconds=total // sessions if sessions else 0,
    )


def daily_activity(
    todos: list[Todo],
    start: date,
    end: date,
    tz: tzinfo | None = None,
) -> dict[date, int]:
    """Focus seconds per day for start..end (inclusive).

    Each todo's accumulated time is credited to the day it was last
    worked on. Every day in the range has an entry.
    """
    activity = {start + timedelta(days=i): 0 for i in range((end - start).days + 1)}
    for todo in todos:
        if todo.last_worked_at is None:
            continue
        day = to_local(todo.last_worked_at, tz).date()
        if day in activity:
            activity[day] += todo.total_time_spent
    return activity


def activity_level(seconds: int) -> int:
    """Heat-map bucket 0..4 for a day's focus seconds."""
    if seconds <= 0:
        return 0
    for level, threshold in enumerate(_ACTIVITY_THRESHOLDS, start=1):
        if seconds < threshold:
            return level
    return 4


def monthly_progress(
    todos: list[Todo],
    reference: date,
    months: int = 6,
    tz: tzinfo | None = None,
) -> list[MonthProgress]:
    """Completed todos per month for the last `months` months, oldest first.

    A todo counts in the month it was last updated while completed.
    """
    current = reference.replace(day=1)
    buckets = {current - relativedelta(months=i): 0 for i in range(months - 1, -1, -1)}
    for todo in todos:
        if not todo.completed or todo.updated_at is None:
            continue
        month = to_local(todo.updated_at, tz).date().replace(day=1)
        if month in buckets:
            buckets[month] += 1
    return [MonthProgress(month=m, completed=n) for m, n in buckets.items()]


def top_tasks_by_priority(todos: list[Todo], limit: int = 5) -> dict[Priority, list[Todo]]:
    """Todos with the most focus time, per priority."""
    result: dict[Priority, list[Todo]] = {p: [] for p in Priority}
    for todo in sorted(todos, key=lambda t: t.total_time_spent, reverse=True):
        bucket = result[todo.priority]
        if len(bucket) < limit:
            bucket.append(todo)
    return result


def streaks(todos: list[Todo], today: date, tz: tzinfo | None = None) -> Streaks:
    """Runs of consecutive days on which at least one todo was completed.

    The current streak may end yesterday: a day without a completion yet
    does not break it until it is over.
    """
    days = {
        to_local(t.updated_at, tz).date()
        for t in todos
        if t.completed and t.updated_at is not None
    }
    if not days:
        return Streaks(current=0, longest=0)

    longest = run = 0
    previous: date | None = None
    for day in sorted(days):
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day

    cursor = today if today in days else today - timedelta(days=1)
    current = 0
    while cursor in days:
        current += 1
        cursor -= timedelta(days=1)
    return Streaks(current=current, longest=longest)


def summarize_schedules(
    occurrences: list[Occurrence],
    now: datetime,
    tz: tzinfo | None = None,
) -> ScheduleSummary:
    now = to_local(now, tz)
    return ScheduleSummary(
        total=len(occurrences),
        today=sum(1 for o in occurrences if to_local(o.start_time, tz).date() == now.date()),
        upcoming=sum(1 for o in occurrences if to_local(o.start_time, tz) > now),
    )
