"""Recurrence engine — pure schedule expansion.

Turns a schedule (one-off or a recurring series) into the concrete
occurrences that fall inside a time window.

Two strategies are supported and always agree:
- step iteration (iter_series_dates) walks the series period by period,
  used for multi-day windows;
- predicate iteration (occurs_on / expand_day) tests a single date, used
  when only one day is on screen.

Monthly and yearly series skip months that do not contain the anchor day
(the 31st, Feb 29); they never roll over to a neighbouring date.

No I/O: this module only transforms data. It is total over persisted
values: unknown recurrence values expand to nothing, and iteration is
capped at settings.MAX_RECURRENCE_STEPS.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import date, datetime, time, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from focus_buddy.config import settings
from focus_buddy.data.models import Occurrence, Recurrence, Schedule, to_local

logger = logging.getLogger(__name__)

_STEP_DAYS = {
    Recurrence.DAILY.value: 1,
    Recurrence.WEEKDAYS.value: 1,
    Recurrence.WEEKENDS.value: 1,
    Recurrence.WEEKLY.value: 7,
}
_STEP_MONTHS = {
    Recurrence.MONTHLY.value: 1,
    Recurrence.YEARLY.value: 12,
}


def pattern_matches(recurrence: str, anchor: date, day: date) -> bool:
    """Does the recurrence pattern, anchored on `anchor`, fall on `day`?

    Only the pattern is checked here; series bounds and exclusions are
    applied by occurs_on().
    """
    if recurrence == Recurrence.NONE.value:
        return day == anchor
    if recurrence == Recurrence.DAILY.value:
        return True
    if recurrence == Recurrence.WEEKDAYS.value:
        return day.weekday() < 5
    if recurrence == Recurrence.WEEKENDS.value:
        return day.weekday() >= 5
    if recurrence == Recurrence.WEEKLY.value:
        return day.weekday() == anchor.weekday()
    if recurrence == Recurrence.MONTHLY.value:
        return day.day == anchor.day
    if recurrence == Recurrence.YEARLY.value:
        return (day.month, day.day) == (anchor.month, anchor.day)
    return False


def _within_series(schedule: Schedule, anchor: date, day: date) -> bool:
    if day < anchor:
        return False
    if schedule.recurrence_end is not None and day > schedule.recurrence_end:
        return False
    return day.isoformat() not in schedule.excluded_dates


def occurs_on(schedule: Schedule, day: date, tz: tzinfo | None = None) -> bool:
    """Predicate iteration: is there an occurrence of `schedule` on `day`?"""
    anchor = to_local(schedule.start_time, tz).date()
    if not schedule.is_recurring:
        return day == anchor
    return pattern_matches(schedule.recurrence, anchor, day) and _within_series(
        schedule, anchor, day,
    )


def iter_series_dates(
    recurrence: str,
    anchor: date,
    from_day: date,
    to_day: date,
    max_steps: int | None = None,
) -> Iterator[date]:
    """Step iteration: yield pattern dates in [from_day, to_day].

    Stepping starts at the series anchor; whole periods before from_day
    are skipped arithmetically, so max_steps bounds the work done inside
    the requested range rather than the age of the series.
    """
    if max_steps is None:
        max_steps = settings.MAX_RECURRENCE_STEPS
    start = max(anchor, from_day)
    if start > to_day:
        return

    if recurrence in _STEP_DAYS:
        period = _STEP_DAYS[recurrence]
        n = -(-(start - anchor).days // period)  # ceil
        for _ in range(max_steps):
            day = anchor + timedelta(days=n * period)
            if day > to_day:
                return
            if pattern_matches(recurrence, anchor, day):
                yield day
            n += 1
    elif recurrence in _STEP_MONTHS:
        period = _STEP_MONTHS[recurrence]
        months = (start.year - anchor.year) * 12 + start.month - anchor.month
        n = max(0, months // period)
        for _ in range(max_steps):
            day = anchor + relativedelta(months=n * period)
            if day > to_day:
                return
            # relativedelta clamps Jan 31 + 1 month to Feb 28/29: skip those
            if day.day == anchor.day and day >= start:
                yield day
            n += 1
    else:
        return

    logger.warning(
        "Recurrence '%s' from %s hit the %d-step cap before %s",
        recurrence, anchor, max_steps, to_day,
    )


def instance_id(schedule_id: str, start: datetime) -> str:
    """Stable synthetic id for a recurring instance."""
    return f"{schedule_id}_{start:%Y%m%dT%H%M}"


def single_occurrence(schedule: Schedule, tz: tzinfo | None = None) -> Occurrence:
    """The occurrence a one-off schedule stands for."""
    start = to_local(schedule.start_time, tz)
    end = to_local(schedule.end_time, tz)
    return Occurrence(
        id=schedule.id,
        original_id=schedule.id,
        title=schedule.title,
        description=schedule.description,
        color=schedule.color,
        start_time=start,
        end_time=end,
        instance_date=start.date(),
        is_recurring_instance=False,
        recurrence=schedule.recurrence,
    )


def _instance(schedule: Schedule, day: date, tz: tzinfo | None) -> Occurrence:
    first_start = to_local(schedule.start_time, tz)
    duration = to_local(schedule.end_time, tz) - first_start
    start = datetime.combine(day, first_start.time(), tzinfo=first_start.tzinfo)
    return Occurrence(
        id=instance_id(schedule.id, start),
        original_id=schedule.id,
        title=schedule.title,
        description=schedule.description,
        color=schedule.color,
        start_time=start,
        end_time=start + duration,
        instance_date=day,
        is_recurring_instance=True,
        recurrence=schedule.recurrence,
    )


def expand_day(schedule: Schedule, day: date, tz: tzinfo | None = None) -> list[Occurrence]:
    """Occurrences of `schedule` on a single calendar day (predicate path)."""
    if not schedule.is_recurring:
        start = to_local(schedule.start_time, tz)
        end = to_local(schedule.end_time, tz)
        day_start = datetime.combine(day, time.min, tzinfo=start.tzinfo)
        day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=start.tzinfo)
        if _intersects(start, end, day_start, day_end):
            return [single_occurrence(schedule, tz)]
        return []
    if occurs_on(schedule, day, tz):
        return [_instance(schedule, day, tz)]
    return []


def _intersects(start: datetime, end: datetime, window_start: datetime, window_end: datetime) -> bool:
    if start >= window_end:
        return False
    # zero-length entries count when their instant is inside the window
    return end > window_start or start >= window_start


def expand(
    schedule: Schedule,
    window_start: datetime,
    window_end: datetime,
    tz: tzinfo | None = None,
    max_steps: int | None = None,
) -> Iterator[Occurrence]:
    """Yield occurrences of `schedule` within [window_start, window_end).

    One-off schedules yield themselves when they intersect the window.
    Series yield one occurrence per matching date in the window, keeping
    the first occurrence's time-of-day and duration. Calling again with
    the same arguments yields occurrences with the same ids.
    """
    if window_end <= window_start:
        return
    ws = to_local(window_start, tz)
    we = to_local(window_end, tz)

    if not schedule.is_recurring:
        start = to_local(schedule.start_time, tz)
        end = to_local(schedule.end_time, tz)
        if _intersects(start, end, ws, we):
            yield single_occurrence(schedule, tz)
        return

    if schedule.recurrence not in _STEP_DAYS and schedule.recurrence not in _STEP_MONTHS:
        logger.debug(
            "Schedule %s has unknown recurrence %r, nothing to expand",
            schedule.id, schedule.recurrence,
        )
        return

    first_day = ws.date()
    last_day = (we - timedelta(microseconds=1)).date()
    if first_day == last_day:
        for occ in expand_day(schedule, first_day, tz):
            if _intersects(occ.start_time, occ.end_time, ws, we):
                yield occ
        return

    anchor = to_local(schedule.start_time, tz).date()
    last = last_day
    if schedule.recurrence_end is not None:
        last = min(last, schedule.recurrence_end)
    for day in iter_series_dates(schedule.recurrence, anchor, first_day, last, max_steps):
        if not _within_series(schedule, anchor, day):
            continue
        occ = _instance(schedule, day, tz)
        # windows need not start or end at midnight
        if _intersects(occ.start_time, occ.end_time, ws, we):
            yield occ
