"""Window query planner.

Works out the time range a view covers (a day, a week or a month) and
gathers everything that belongs in it: one-off schedules by start time,
recurring series through the recurrence engine.

This is the single entry point for both the "today" widget and the week
grid; they differ only in the window they pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from focus_buddy.config import settings
from focus_buddy.core.recurrence import expand, single_occurrence
from focus_buddy.data.models import Occurrence, Schedule, Todo, to_local

logger = logging.getLogger(__name__)


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class Window:
    """A half-open time range [start, end) aligned to local midnights."""

    start: datetime
    end: datetime
    view_mode: ViewMode = ViewMode.WEEK

    @property
    def first_day(self) -> date:
        return self.start.date()

    @property
    def days(self) -> list[date]:
        first = self.start.date()
        last = (self.end - timedelta(microseconds=1)).date()
        return [first + timedelta(days=i) for i in range((last - first).days + 1)]

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


def _midnight(day: date, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def week_start(day: date, week_starts_on: int | None = None) -> date:
    """First day of the week containing `day` (Python weekday numbering)."""
    if week_starts_on is None:
        week_starts_on = settings.WEEK_STARTS_ON
    return day - timedelta(days=(day.weekday() - week_starts_on) % 7)


def plan_window(
    reference: datetime | date,
    view_mode: ViewMode | str = ViewMode.WEEK,
    week_starts_on: int | None = None,
    tz: tzinfo | None = None,
) -> Window:
    """Compute the window a view shows around `reference`.

    Day windows cover the reference's local calendar day; week windows
    start on week_starts_on and span exactly 7 days; month windows run
    from the 1st to the 1st of the next month.
    """
    mode = ViewMode(view_mode)
    if isinstance(reference, datetime):
        day = to_local(reference, tz).date()
    else:
        day = reference

    if mode is ViewMode.DAY:
        first, last = day, day + timedelta(days=1)
    elif mode is ViewMode.WEEK:
        first = week_start(day, week_starts_on)
        last = first + timedelta(days=7)
    else:
        first = day.replace(day=1)
        last = (first + timedelta(days=32)).replace(day=1)

    return Window(start=_midnight(first, tz), end=_midnight(last, tz), view_mode=mode)


def collect_occurrences(
    schedules: list[Schedule],
    window: Window,
    tz: tzinfo | None = None,
) -> list[Occurrence]:
    """All occurrences to show in `window`, sorted by start time.

    One-off schedules are included when they start inside the window;
    series are expanded by the recurrence engine. The sort is stable, so
    ties keep the order of `schedules`.
    """
    result: list[Occurrence] = []
    for schedule in schedules:
        if schedule.is_recurring:
            result.extend(expand(schedule, window.start, window.end, tz))
        elif window.contains(to_local(schedule.start_time, tz)):
            result.append(single_occurrence(schedule, tz))
    result.sort(key=lambda occ: occ.start_time)
    logger.debug(
        "Window %s..%s: %d occurrences from %d schedules",
        window.start, window.end, len(result), len(schedules),
    )
    return result


def today_occurrences(
    schedules: list[Schedule],
    now: datetime,
    tz: tzinfo | None = None,
) -> list[Occurrence]:
    """Occurrences on the local calendar day of `now`."""
    return collect_occurrences(schedules, plan_window(now, ViewMode.DAY, tz=tz), tz)


def todos_due_in(
    todos: list[Todo],
    window: Window,
    tz: tzinfo | None = None,
    include_completed: bool = False,
) -> list[Todo]:
    """Todos whose due date falls inside `window`, earliest first."""
    due = [
        t for t in todos
        if t.due_date is not None
        and (include_completed or not t.completed)
        and window.contains(to_local(t.due_date, tz))
    ]
    due.sort(key=lambda t: to_local(t.due_date, tz))
    return due
