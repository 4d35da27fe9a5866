"""Tests for focus_buddy.core.focus_timer — focus sessions and the ticker."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from focus_buddy.core.focus_timer import FocusMode, FocusSession, FocusTimer, Phase

T0 = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock; `step` seconds are added on every read."""

    def __init__(self, now=T0, step=0):
        self.now = now
        self.step = step

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=self.step)
        return current

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _todos(*outcomes):
    todos = MagicMock()
    results = [MagicMock(success=ok) for ok in outcomes] or None
    todos.record_focus_time = AsyncMock(
        side_effect=results, return_value=MagicMock(success=True),
    )
    return todos


class TestFocusSession:
    def test_presets(self):
        assert FocusSession.for_mode("pomodoro").phase_seconds == 25 * 60
        deep = FocusSession.for_mode(FocusMode.DEEP)
        assert (deep.focus_minutes, deep.break_minutes) == (50, 10)
        custom = FocusSession.for_mode("custom")
        assert (custom.focus_minutes, custom.break_minutes) == (30, 5)

    def test_custom_durations(self):
        session = FocusSession.for_mode("custom", focus_minutes=45, break_minutes=15)
        assert session.phase_seconds == 45 * 60

    def test_presets_ignore_custom_durations(self):
        assert FocusSession.for_mode("pomodoro", focus_minutes=90).focus_minutes == 25

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            FocusSession.for_mode("marathon")

    def test_elapsed_across_pause(self):
        session = FocusSession.for_mode()
        session.start(T0)
        session.pause(T0 + timedelta(seconds=120))
        assert session.elapsed(T0 + timedelta(hours=1)) == 120
        session.start(T0 + timedelta(hours=1))
        assert session.remaining(T0 + timedelta(hours=1, seconds=60)) == 1500 - 180

    def test_elapsed_never_exceeds_phase(self):
        session = FocusSession.for_mode()
        session.start(T0)
        assert session.remaining(T0 + timedelta(hours=2)) == 0
        assert session.is_finished(T0 + timedelta(hours=2))

    def test_reload_recomputes_remaining(self):
        session = FocusSession.for_mode("pomodoro", todo_id="t1")
        session.start(T0)
        saved = session.to_dict()

        restored = FocusSession.from_dict(saved)
        assert restored.todo_id == "t1"
        assert restored.remaining(T0 + timedelta(minutes=10)) == 15 * 60

    def test_advance_cycles_phases(self):
        session = FocusSession.for_mode()
        session.start(T0)
        assert session.advance() is Phase.BREAK
        assert session.phase_seconds == 5 * 60
        assert not session.running
        assert session.advance() is Phase.FOCUS

    def test_take_unreported(self):
        session = FocusSession.for_mode()
        session.start(T0)
        assert session.take_unreported(T0 + timedelta(seconds=100)) == 100
        assert session.take_unreported(T0 + timedelta(seconds=130)) == 30
        session.advance()
        assert session.take_unreported(T0 + timedelta(seconds=200)) == 0


class TestFocusTimer:
    @pytest.mark.asyncio
    async def test_runs_to_completion(self):
        session = FocusSession.for_mode(todo_id="t1")
        session.accumulated_seconds = session.phase_seconds - 3
        ticks = []
        completed = []
        todos = _todos()
        timer = FocusTimer(
            session,
            todos=todos,
            on_tick=ticks.append,
            on_complete=lambda s: completed.append(s.phase),
            clock=FakeClock(step=1),
            tick_seconds=0,
        )

        await timer.start()
        await asyncio.wait_for(timer._task, timeout=1)

        assert ticks[-1] == 0
        assert ticks == sorted(ticks, reverse=True)
        assert completed == [Phase.FOCUS]
        assert session.phase is Phase.BREAK
        assert not session.running
        todos.record_focus_time.assert_awaited_once_with("t1", 25 * 60)

    @pytest.mark.asyncio
    async def test_pause_reports_partial_time(self):
        clock = FakeClock()
        todos = _todos()
        timer = FocusTimer(FocusSession.for_mode(todo_id="t1"), todos=todos, clock=clock)

        await timer.start()
        clock.advance(300)
        await timer.pause()
        assert not timer.running
        todos.record_focus_time.assert_awaited_once_with("t1", 300)

        await timer.start()
        clock.advance(100)
        await timer.pause()
        assert todos.record_focus_time.await_args.args == ("t1", 100)

    @pytest.mark.asyncio
    async def test_failed_report_is_retried_on_next_pause(self):
        clock = FakeClock()
        todos = _todos(False, True)
        timer = FocusTimer(FocusSession.for_mode(todo_id="t1"), todos=todos, clock=clock)

        await timer.start()
        clock.advance(60)
        await timer.pause()
        await timer.start()
        clock.advance(40)
        await timer.pause()

        assert todos.record_focus_time.await_args.args == ("t1", 100)

    @pytest.mark.asyncio
    async def test_reset_discards_time(self):
        clock = FakeClock()
        todos = _todos()
        session = FocusSession.for_mode(todo_id="t1")
        timer = FocusTimer(session, todos=todos, clock=clock)

        await timer.start()
        clock.advance(300)
        await timer.reset()

        assert not timer.running
        assert session.remaining(clock.now) == 25 * 60
        todos.record_focus_time.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_break_time_is_not_reported(self):
        clock = FakeClock()
        todos = _todos()
        session = FocusSession.for_mode(todo_id="t1")
        session.advance()
        timer = FocusTimer(session, todos=todos, clock=clock)

        await timer.start()
        clock.advance(60)
        await timer.pause()
        todos.record_focus_time.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_saves_running_session(self):
        clock = FakeClock()
        todos = _todos()
        timer = FocusTimer(FocusSession.for_mode(todo_id="t1"), todos=todos, clock=clock)

        await timer.start()
        clock.advance(90)
        await timer.close()

        assert not timer.running
        todos.record_focus_time.assert_awaited_once_with("t1", 90)

    @pytest.mark.asyncio
    async def test_without_todo_nothing_is_reported(self):
        clock = FakeClock()
        todos = _todos()
        timer = FocusTimer(FocusSession.for_mode(), todos=todos, clock=clock)
        await timer.start()
        clock.advance(60)
        await timer.pause()
        todos.record_focus_time.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_timer(self):
        session = FocusSession.for_mode()
        session.accumulated_seconds = session.phase_seconds - 2

        def broken(remaining):
            raise RuntimeError("render failed")

        timer = FocusTimer(session, on_tick=broken, clock=FakeClock(step=1), tick_seconds=0)
        await timer.start()
        await asyncio.wait_for(timer._task, timeout=1)
        assert session.phase is Phase.BREAK
