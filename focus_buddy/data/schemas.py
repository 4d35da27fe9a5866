"""
Focus Buddy — Input schemas.

Form input is validated here, before anything reaches the store or the
recurrence engine. Validation failures raise pydantic.ValidationError.
"""

from __future__ import annotations

from datetime import date, datetime, time

from pydantic import BaseModel, field_validator, model_validator

from focus_buddy.config import settings
from focus_buddy.data.models import SCHEDULE_COLORS, Priority, Recurrence, parse_timestamp


def _latest_end() -> time:
    hour, minute = settings.LATEST_END_TIME.split(":")
    return time(int(hour), int(minute))


class TodoInput(BaseModel):
    """A new or edited todo.

    JSON example:
    {
        "title": "Write report",
        "description": "Q3 numbers",
        "priority": "high",
        "due_date": "2024-01-12"
    }
    """
    title: str
    description: str | None = None
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None
    completed: bool = False

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def date_only_is_midnight(cls, v: object) -> object:
        if v == "":
            return None
        if isinstance(v, (str, date)):
            return parse_timestamp(v) or v
        return v

    @field_validator("description")
    @classmethod
    def blank_description_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    def to_record(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed": self.completed,
        }


class ScheduleInput(BaseModel):
    """A new or edited schedule (or series definition).

    JSON example:
    {
        "title": "Standup",
        "start_time": "2024-01-01T09:00:00",
        "end_time": "2024-01-01T09:15:00",
        "color": "#3B82F6",
        "recurrence": "weekdays",
        "recurrence_end": "2024-03-31",
        "excluded_dates": ["2024-01-15"]
    }
    """
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    color: str = SCHEDULE_COLORS[0]
    recurrence: Recurrence = Recurrence.NONE
    recurrence_end: date | None = None
    excluded_dates: list[date] = []

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("color")
    @classmethod
    def color_in_palette(cls, v: str) -> str:
        if v.upper() not in SCHEDULE_COLORS:
            raise ValueError(f"color must be one of {', '.join(SCHEDULE_COLORS)}")
        return v.upper()

    @model_validator(mode="after")
    def check_time_range(self) -> ScheduleInput:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.end_time.date() != self.start_time.date():
            raise ValueError("end_time must be on the same day as start_time")
        latest = _latest_end()
        if self.end_time.time() > latest:
            raise ValueError(f"end_time must not be later than {latest:%H:%M}")
        if self.recurrence_end and self.recurrence_end < self.start_time.date():
            raise ValueError("recurrence_end must not be before the start date")
        return self

    def to_record(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "color": self.color,
            "recurrence": self.recurrence.value,
            "recurrence_end": self.recurrence_end.isoformat() if self.recurrence_end else None,
            "excluded_dates": sorted({d.isoformat() for d in self.excluded_dates}),
        }
