"""Upcoming reminders — pure business logic.

Builds the notification list: incomplete todos due soon and schedule
occurrences starting soon, merged and sorted by time.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo

from focus_buddy.core.recurrence import expand
from focus_buddy.data.models import Schedule, Todo, to_local

logger = logging.getLogger(__name__)

_DEFAULT_HORIZON = timedelta(hours=24)
_IMMINENT = timedelta(hours=1)


@dataclass
class Notification:
    kind: str              # "todo" | "schedule"
    source_id: str         # todo id, or the occurrence id
    title: str
    at: datetime           # due date or occurrence start, local
    is_imminent: bool      # within the next hour


def upcoming_notifications(
    todos: list[Todo],
    schedules: list[Schedule],
    now: datetime,
    horizon: timedelta = _DEFAULT_HORIZON,
    tz: tzinfo | None = None,
) -> list[Notification]:
    """Everything due or starting in [now, now + horizon], earliest first."""
    now = to_local(now, tz)
    until = now + horizon
    items: list[Notification] = []

    for todo in todos:
        if todo.completed or todo.due_date is None:
            continue
        due = to_local(todo.due_date, tz)
        if now <= due <= until:
            items.append(Notification("todo", todo.id, todo.title, due, due - now <= _IMMINENT))

    for schedule in schedules:
        for occ in expand(schedule, now, until, tz):
            start = to_local(occ.start_time, tz)
            # expand() returns anything overlapping; only upcoming starts count
            if now <= start <= until:
                items.append(Notification("schedule", occ.id, occ.title, start, start - now <= _IMMINENT))

    items.sort(key=lambda n: n.at)
    logger.debug("%d notifications in the next %s", len(items), horizon)
    return items
