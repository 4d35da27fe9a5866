"""
Focus Buddy — Data Models.

Todos and schedules are stored by an external store as plain dict records.
These dataclasses are the typed view the core works with; conversion
happens at the boundary via from_record() / to_record().

Occurrences are derived from schedules and never persisted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from enum import Enum

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Recurrence(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    MONTHLY = "monthly"
    YEARLY = "yearly"


SCHEDULE_COLORS = [
    "#3B82F6",  # blue
    "#10B981",  # green
    "#F59E0B",  # yellow
    "#EF4444",  # red
    "#8B5CF6",  # purple
    "#EC4899",  # pink
    "#14B8A6",  # teal
    "#F97316",  # orange
]

_PRIORITY_RANK = {Priority.LOW: 0, Priority.MEDIUM: 1, Priority.HIGH: 2}


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_timestamp(value: str | datetime | date | None) -> datetime | None:
    """Parse an ISO timestamp (or date) string into a datetime.

    Date-only values become midnight. Returns None for empty or
    unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    except (ValueError, TypeError, AttributeError):
        logger.warning("Unparseable timestamp: %r", value)
        return None


def parse_date(value: str | datetime | date | None) -> date | None:
    """Parse an ISO date (or the date part of a timestamp)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        logger.warning("Unparseable date: %r", value)
        return None


def parse_excluded_dates(value: object) -> set[str]:
    """Read excluded_dates as a set of YYYY-MM-DD strings.

    Accepts a list or a JSON-encoded list. Anything malformed reads as
    empty: a corrupt row must never break expansion.
    """
    if not value:
        return set()
    raw = value
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Malformed excluded_dates, ignoring: %r", value)
            return set()
    if not isinstance(raw, (list, tuple, set)):
        logger.warning("excluded_dates is not a list, ignoring: %r", value)
        return set()
    dates: set[str] = set()
    for item in raw:
        parsed = parse_date(item) if isinstance(item, (str, date)) else None
        if parsed is not None:
            dates.add(parsed.isoformat())
    return dates


def to_local(dt: datetime, tz: tzinfo | None) -> datetime:
    """Express dt in tz. Naive datetimes are taken to already be local."""
    if tz is None:
        return dt
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _non_negative(value: object) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Todo:
    """A task tracked by the user, with accumulated focus time."""

    id: str
    user_id: str
    title: str
    description: str | None = None
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None     # date-only values read as midnight
    total_time_spent: int = 0            # seconds
    session_count: int = 0
    last_worked_at: datetime | None = None
    created_at: datetime | None = None   # server-assigned
    updated_at: datetime | None = None   # server-assigned; CAS token

    @property
    def priority_rank(self) -> int:
        return _PRIORITY_RANK[self.priority]

    @classmethod
    def from_record(cls, record: dict) -> Todo:
        try:
            priority = Priority(record.get("priority") or "medium")
        except ValueError:
            logger.warning(
                "Todo %s has unknown priority %r, reading as medium",
                record.get("id"), record.get("priority"),
            )
            priority = Priority.MEDIUM
        return cls(
            id=str(record["id"]),
            user_id=str(record.get("user_id") or ""),
            title=record.get("title") or "",
            description=record.get("description"),
            completed=bool(record.get("completed")),
            priority=priority,
            due_date=parse_timestamp(record.get("due_date")),
            total_time_spent=_non_negative(record.get("total_time_spent")),
            session_count=_non_negative(record.get("session_count")),
            last_worked_at=parse_timestamp(record.get("last_worked_at")),
            created_at=parse_timestamp(record.get("created_at")),
            updated_at=parse_timestamp(record.get("updated_at")),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "priority": self.priority.value,
            "due_date": _iso(self.due_date),
            "total_time_spent": self.total_time_spent,
            "session_count": self.session_count,
            "last_worked_at": _iso(self.last_worked_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Schedule:
    """A calendar entry; with recurrence != none, the definition of a series.

    For a series, start_time/end_time describe the first occurrence only:
    its date anchors the pattern, its time-of-day and duration are reused
    for every instance.
    """

    id: str
    user_id: str
    title: str
    start_time: datetime
    end_time: datetime
    description: str | None = None
    color: str = SCHEDULE_COLORS[0]
    recurrence: str = Recurrence.NONE.value   # unknown values kept as-is
    recurrence_end: date | None = None
    excluded_dates: set[str] = field(default_factory=set)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence != Recurrence.NONE.value

    @property
    def duration(self):
        return self.end_time - self.start_time

    @classmethod
    def from_record(cls, record: dict) -> Schedule:
        start = parse_timestamp(record.get("start_time"))
        end = parse_timestamp(record.get("end_time"))
        if start is None:
            raise ValueError(f"Schedule {record.get('id')} has no start_time")
        if end is None:
            end = start
        return cls(
            id=str(record["id"]),
            user_id=str(record.get("user_id") or ""),
            title=record.get("title") or "",
            description=record.get("description"),
            start_time=start,
            end_time=end,
            color=record.get("color") or SCHEDULE_COLORS[0],
            recurrence=str(record.get("recurrence") or Recurrence.NONE.value).strip().lower(),
            recurrence_end=parse_date(record.get("recurrence_end")),
            excluded_dates=parse_excluded_dates(record.get("excluded_dates")),
            created_at=parse_timestamp(record.get("created_at")),
            updated_at=parse_timestamp(record.get("updated_at")),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "color": self.color,
            "recurrence": self.recurrence,
            "recurrence_end": _iso(self.recurrence_end),
            "excluded_dates": sorted(self.excluded_dates),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Occurrence:
    """A concrete instance of a schedule on a specific date.

    Recurring instances get a synthetic id derived from the series id and
    the instance start, so re-expansion yields the same ids.
    """

    id: str
    original_id: str
    title: str
    start_time: datetime
    end_time: datetime
    instance_date: date
    is_recurring_instance: bool
    recurrence: str = Recurrence.NONE.value
    color: str = SCHEDULE_COLORS[0]
    description: str | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)
