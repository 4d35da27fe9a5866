"""
Focus Buddy — Calendar Layout Engine.

Places occurrences on the day × time grid and turns pointer drags on the
grid into proposed schedule ranges.

Geometry is expressed in minutes-since-midnight; the renderer scales it
(60px per hour by default). Overlapping occurrences are not spread
horizontally: they share their day column and may stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum

from focus_buddy.config import settings
from focus_buddy.core.window import ViewMode, Window
from focus_buddy.data.models import Occurrence

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
_COLUMNS = {ViewMode.DAY: 1, ViewMode.WEEK: 7}


def _minutes(hhmm: str) -> int:
    hour, minute = hhmm.split(":")
    return int(hour) * 60 + int(minute)


def _hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# ---------------------------------------------------------------------------
# Occurrence layout
# ---------------------------------------------------------------------------


@dataclass
class PositionedOccurrence:
    """An occurrence with its place on the grid."""

    occurrence: Occurrence
    column: int             # day index within the window
    top_minutes: int        # minutes since midnight
    height_minutes: int     # visual height, never below MIN_EVENT_MINUTES
    duration_minutes: int   # actual duration
    columns: int = 7

    @property
    def left_percent(self) -> float:
        return self.column * 100 / self.columns

    @property
    def width_percent(self) -> float:
        return 100 / self.columns

    def to_style(self, hour_height: int = 60) -> dict:
        """Absolute-position style for a grid with `hour_height` px per hour."""
        return {
            "left": f"{self.left_percent:g}%",
            "top": f"{self.top_minutes * hour_height / 60:g}px",
            "height": f"{self.height_minutes * hour_height / 60:g}px",
            "width": f"{self.width_percent:g}%",
        }


def layout(
    occurrences: list[Occurrence],
    window: Window,
    view_mode: ViewMode | str | None = None,
    min_minutes: int | None = None,
) -> list[PositionedOccurrence]:
    """Assign grid geometry to each occurrence that starts inside `window`."""
    mode = ViewMode(view_mode) if view_mode is not None else window.view_mode
    if mode not in _COLUMNS:
        raise ValueError(f"No grid layout for view mode {mode.value!r}")
    if min_minutes is None:
        min_minutes = settings.MIN_EVENT_MINUTES

    columns = _COLUMNS[mode]
    first_day = window.first_day
    positioned: list[PositionedOccurrence] = []
    for occ in occurrences:
        column = (occ.start_time.date() - first_day).days
        if not 0 <= column < columns:
            logger.debug("Occurrence %s outside the grid, skipped", occ.id)
            continue
        top = occ.start_time.hour * 60 + occ.start_time.minute
        duration = max(0, occ.duration_minutes)
        visible = min(duration, MINUTES_PER_DAY - top)
        positioned.append(PositionedOccurrence(
            occurrence=occ,
            column=column,
            top_minutes=top,
            height_minutes=max(visible, min_minutes),
            duration_minutes=duration,
            columns=columns,
        ))
    return positioned


# ---------------------------------------------------------------------------
# Drag-to-create
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GridCell:
    """A quantized grid position."""

    day: int
    hour: int
    minute: int

    @property
    def minutes(self) -> int:
        return self.hour * 60 + self.minute


@dataclass
class CreateScheduleRequest:
    """A proposed schedule range, used to pre-fill the create form."""

    date: date
    start_time: datetime
    end_time: datetime

    def form_defaults(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "start": self.start_time.strftime("%H:%M"),
            "end": self.end_time.strftime("%H:%M"),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


class DragState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


def quantize(
    day: int,
    hour: int,
    minute: int,
    snap_minutes: int | None = None,
    days: int = 7,
) -> GridCell:
    """Clamp a raw grid position and round its minute down to the snap size."""
    if snap_minutes is None:
        snap_minutes = settings.SNAP_MINUTES
    day = min(max(day, 0), days - 1)
    hour = min(max(hour, 0), 23)
    minute = min(max(minute, 0), 59)
    return GridCell(day=day, hour=hour, minute=minute - minute % snap_minutes)


def cell_at(
    x: float,
    y: float,
    grid_width: float,
    hour_height: float = 60,
    days: int = 7,
    snap_minutes: int | None = None,
) -> GridCell:
    """The grid cell under a pointer at (x, y) px relative to the grid origin."""
    column_width = grid_width / days
    day = int(x // column_width) if column_width > 0 else 0
    total = int(y * 60 // hour_height) if hour_height > 0 else 0
    total = min(max(total, 0), MINUTES_PER_DAY - 1)
    return quantize(day, total // 60, total % 60, snap_minutes, days)


class DragSelection:
    """Pointer-drag state machine for creating schedules on the grid.

    Idle --pointer_down--> Dragging --pointer_up--> Idle (emits a request)
                                    --pointer_leave--> Idle (discarded)

    Every transition completes synchronously inside one event handler.
    """

    def __init__(
        self,
        first_day: date,
        days: int = 7,
        snap_minutes: int | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._first_day = first_day
        self._days = days
        self._snap = snap_minutes or settings.SNAP_MINUTES
        self._tz = tz
        self.state = DragState.IDLE
        self.anchor: GridCell | None = None
        self.end: GridCell | None = None

    @classmethod
    def for_window(cls, window: Window, tz: tzinfo | None = None) -> DragSelection:
        return cls(first_day=window.first_day, days=len(window.days), tz=tz)

    def _cell(self, day: int, hour: int, minute: int) -> GridCell:
        return quantize(day, hour, minute, self._snap, self._days)

    def pointer_down(self, day: int, hour: int, minute: int, on_occurrence: bool = False) -> bool:
        """Start a selection. Presses on an existing occurrence are ignored."""
        if on_occurrence:
            return False
        cell = self._cell(day, hour, minute)
        self.anchor = self.end = cell
        self.state = DragState.DRAGGING
        return True

    def pointer_move(self, day: int, hour: int, minute: int) -> None:
        if self.state is not DragState.DRAGGING:
            return
        self.end = self._cell(day, hour, minute)

    def pointer_leave(self) -> None:
        """Pointer left the grid mid-drag: drop the selection."""
        if self.state is DragState.DRAGGING:
            logger.debug("Drag selection cancelled")
        self._reset()

    def pointer_up(self) -> CreateScheduleRequest | None:
        """Finish the drag and propose the selected range.

        A click without movement proposes one hour from the anchor. A
        range that would end after LATEST_END_TIME keeps its length and
        is moved earlier to end there, so a click at 23:00 proposes
        22:30-23:30 rather than starting at the anchor.
        """
        if self.state is not DragState.DRAGGING or self.anchor is None or self.end is None:
            self._reset()
            return None

        lo, hi = sorted((self.anchor.minutes, self.end.minutes))
        if lo == hi:
            hi = lo + 60
        latest = _minutes(settings.LATEST_END_TIME)
        if hi > latest:
            # keep the length, end at the latest allowed time
            lo = max(0, lo - (hi - latest))
            hi = latest

        day = self._first_day + timedelta(days=self.anchor.day)
        request = CreateScheduleRequest(
            date=day,
            start_time=datetime.combine(day, time(lo // 60, lo % 60), tzinfo=self._tz),
            end_time=datetime.combine(day, time(hi // 60, hi % 60), tzinfo=self._tz),
        )
        logger.debug("Drag selection on %s: %s–%s", day, _hhmm(lo), _hhmm(hi))
        self._reset()
        return request

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self.anchor = None
        self.end = None
