"""
Focus Buddy — Entry Point.

`python main.py` prints today's agenda and this week's schedule for the
configured owner, plus todo stats and upcoming reminders.
"""

import asyncio
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from focus_buddy.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from focus_buddy.adapters.log_notifier import LogNotifier
from focus_buddy.adapters.store_factory import create_store
from focus_buddy.core.reminders import upcoming_notifications
from focus_buddy.core.sync import ScheduleCollection, TodoCollection
from focus_buddy.core.window import ViewMode, plan_window, todos_due_in

logger = logging.getLogger(__name__)


def _format_occurrence(occ) -> str:
    repeat = f" ({occ.recurrence})" if occ.is_recurring_instance else ""
    return f"  {occ.start_time:%a %d %b %H:%M}-{occ.end_time:%H:%M}  {occ.title}{repeat}"


async def show_agenda() -> None:
    tz = ZoneInfo(settings.TIMEZONE)
    now = datetime.now(tz)
    store = create_store()
    notifier = LogNotifier()
    todos = TodoCollection(store, owner_id=settings.OWNER_ID, notifier=notifier, tz=tz)
    schedules = ScheduleCollection(store, owner_id=settings.OWNER_ID, notifier=notifier, tz=tz)

    loaded = [await todos.start(), await schedules.start()]
    try:
        if not all(result.success for result in loaded):
            logger.error("Could not load data, see errors above")
            return

        today = plan_window(now, ViewMode.DAY, tz=tz)
        print(f"Today, {now:%A %d %B}:")
        for occ in schedules.occurrences(today):
            print(_format_occurrence(occ))
        for todo in todos_due_in(todos.list(), today, tz):
            print(f"  due {todo.due_date:%H:%M}  {todo.title} [{todo.priority.value}]")

        week = plan_window(now, ViewMode.WEEK, tz=tz)
        print(f"\nWeek of {week.first_day:%d %b}:")
        for occ in schedules.occurrences(week):
            print(_format_occurrence(occ))

        summary = todos.stats(now)
        print(
            f"\nTodos: {summary.pending} pending, {summary.completed} done "
            f"({summary.completion_rate}%), {summary.high_priority} high priority, "
            f"{summary.overdue} overdue"
        )

        reminders = upcoming_notifications(todos.list(), schedules.list(), now, tz=tz)
        if reminders:
            print("\nComing up:")
            for item in reminders:
                marker = "!" if item.is_imminent else " "
                print(f" {marker} {item.at:%a %H:%M}  {item.title}")
    finally:
        await todos.stop()
        await schedules.stop()


if __name__ == "__main__":
    asyncio.run(show_agenda())
