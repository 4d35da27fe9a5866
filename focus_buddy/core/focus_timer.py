"""
Focus Buddy — Focus Timer.

A focus/break countdown attached (optionally) to a todo. FocusSession is
the plain state: it measures time from the wall clock, so a session
saved with to_dict() and restored later shows the right remaining time.
FocusTimer drives a session on the event loop, ticking once per second,
and reports focus time to the todo collection when a focus phase is
paused or completes.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable

from focus_buddy.data.models import parse_timestamp

if TYPE_CHECKING:
    from focus_buddy.core.sync import TodoCollection

logger = logging.getLogger(__name__)


class FocusMode(str, Enum):
    POMODORO = "pomodoro"
    DEEP = "deep"
    CUSTOM = "custom"


class Phase(str, Enum):
    FOCUS = "focus"
    BREAK = "break"


# mode -> (focus minutes, break minutes)
PRESETS: dict[FocusMode, tuple[int, int]] = {
    FocusMode.POMODORO: (25, 5),
    FocusMode.DEEP: (50, 10),
    FocusMode.CUSTOM: (30, 5),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FocusSession:
    """State of one focus timer."""

    mode: FocusMode = FocusMode.POMODORO
    focus_minutes: int = 25
    break_minutes: int = 5
    phase: Phase = Phase.FOCUS
    todo_id: str | None = None
    started_at: datetime | None = None   # set while running
    accumulated_seconds: int = 0         # earlier runs of this phase
    reported_seconds: int = 0            # focus seconds already saved

    @classmethod
    def for_mode(
        cls,
        mode: FocusMode | str = FocusMode.POMODORO,
        todo_id: str | None = None,
        focus_minutes: int | None = None,
        break_minutes: int | None = None,
    ) -> FocusSession:
        """New session with the preset durations of `mode`.

        Explicit minutes are only honoured for the custom mode.
        """
        mode = FocusMode(mode)
        focus, rest = PRESETS[mode]
        if mode is FocusMode.CUSTOM:
            focus = focus_minutes or focus
            rest = break_minutes or rest
        if focus <= 0 or rest <= 0:
            raise ValueError("focus and break durations must be positive")
        return cls(mode=mode, focus_minutes=focus, break_minutes=rest, todo_id=todo_id)

    @property
    def running(self) -> bool:
        return self.started_at is not None

    @property
    def phase_seconds(self) -> int:
        minutes = self.focus_minutes if self.phase is Phase.FOCUS else self.break_minutes
        return minutes * 60

    def elapsed(self, now: datetime) -> int:
        seconds = self.accumulated_seconds
        if self.started_at is not None:
            seconds += max(0, int((now - self.started_at).total_seconds()))
        return min(seconds, self.phase_seconds)

    def remaining(self, now: datetime) -> int:
        return self.phase_seconds - self.elapsed(now)

    def is_finished(self, now: datetime) -> bool:
        return self.remaining(now) <= 0

    def start(self, now: datetime) -> None:
        if self.started_at is None and not self.is_finished(now):
            self.started_at = now

    def pause(self, now: datetime) -> None:
        if self.started_at is not None:
            self.accumulated_seconds = self.elapsed(now)
            self.started_at = None

    def reset(self) -> None:
        """Restart the current phase from zero."""
        self.started_at = None
        self.accumulated_seconds = 0
        self.reported_seconds = 0

    def advance(self) -> Phase:
        """Move to the next phase (focus -> break -> focus), stopped."""
        self.phase = Phase.BREAK if self.phase is Phase.FOCUS else Phase.FOCUS
        self.reset()
        return self.phase

    def take_unreported(self, now: datetime) -> int:
        """Focus seconds not yet saved to the todo; marks them saved."""
        if self.phase is not Phase.FOCUS:
            return 0
        seconds = self.elapsed(now) - self.reported_seconds
        self.reported_seconds += max(0, seconds)
        return max(0, seconds)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "focus_minutes": self.focus_minutes,
            "break_minutes": self.break_minutes,
            "phase": self.phase.value,
            "todo_id": self.todo_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "accumulated_seconds": self.accumulated_seconds,
            "reported_seconds": self.reported_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> FocusSession:
        mode = FocusMode(data.get("mode") or FocusMode.POMODORO.value)
        focus, rest = PRESETS[mode]
        return cls(
            mode=mode,
            focus_minutes=int(data.get("focus_minutes") or focus),
            break_minutes=int(data.get("break_minutes") or rest),
            phase=Phase(data.get("phase") or Phase.FOCUS.value),
            todo_id=data.get("todo_id"),
            started_at=parse_timestamp(data.get("started_at")),
            accumulated_seconds=int(data.get("accumulated_seconds") or 0),
            reported_seconds=int(data.get("reported_seconds") or 0),
        )


class FocusTimer:
    """Runs a FocusSession on the event loop.

    on_tick(remaining_seconds) is called every tick; on_complete(session)
    when the phase reaches zero, after which the session moves on to the
    next phase (stopped). Either callback may be a coroutine function.
    """

    def __init__(
        self,
        session: FocusSession,
        todos: TodoCollection | None = None,
        on_tick: Callable | None = None,
        on_complete: Callable | None = None,
        clock: Callable[[], datetime] = _utcnow,
        tick_seconds: float = 1.0,
    ) -> None:
        self.session = session
        self._todos = todos
        self._on_tick = on_tick
        self._on_complete = on_complete
        self._clock = clock
        self._tick_seconds = tick_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self.session.start(self._clock())
        if not self.session.running:
            logger.debug("Focus session already finished, not starting")
            return
        logger.info(
            "Focus timer started: %s %s (%ds left)",
            self.session.mode.value, self.session.phase.value,
            self.session.remaining(self._clock()),
        )
        self._task = asyncio.create_task(self._run())

    async def pause(self) -> None:
        await self._cancel()
        self.session.pause(self._clock())
        await self._report()

    async def reset(self) -> None:
        await self._cancel()
        self.session.reset()

    async def close(self) -> None:
        """Stop ticking; time already focused is still saved."""
        if self.session.running:
            await self.pause()
        else:
            await self._cancel()

    async def _cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            remaining = self.session.remaining(self._clock())
            await self._call(self._on_tick, remaining)
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._tick_seconds, remaining))
        await self._complete()

    async def _complete(self) -> None:
        now = self._clock()
        self.session.pause(now)
        logger.info("Focus %s phase complete", self.session.phase.value)
        await self._report()
        await self._call(self._on_complete, self.session)
        self.session.advance()

    async def _report(self) -> None:
        if self._todos is None or not self.session.todo_id:
            return
        seconds = self.session.take_unreported(self._clock())
        if seconds <= 0:
            return
        result = await self._todos.record_focus_time(self.session.todo_id, seconds)
        if not result.success:
            # give the seconds back so the next report retries them
            self.session.reported_seconds -= seconds
            logger.warning("Focus time for todo #%s not saved", self.session.todo_id)

    @staticmethod
    async def _call(callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error("Focus timer callback failed: %s", exc)
