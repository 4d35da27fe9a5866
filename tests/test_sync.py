"""Tests for focus_buddy.core.sync — collections kept in step with the store."""

import asyncio
import calendar
from datetime import date
from zoneinfo import ZoneInfo

import pytest
from unittest.mock import AsyncMock, MagicMock

from focus_buddy.core.sync import ScheduleCollection, TodoCollection
from focus_buddy.core.window import ViewMode, plan_window
from focus_buddy.ports.store_port import (
    TODOS,
    AuthRequiredError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    StoreError,
)

SEOUL = ZoneInfo("Asia/Seoul")

TODO = {
    "id": "t1",
    "user_id": "user-1",
    "title": "Read",
    "priority": "medium",
    "completed": False,
    "total_time_spent": 0,
    "session_count": 0,
    "created_at": "2024-01-01T00:00:00+00:00",
    "updated_at": "2024-01-01T00:00:00+00:00",
}


def _mock_store(rows=None) -> MagicMock:
    store = MagicMock()
    store.query = AsyncMock(return_value=rows if rows is not None else [dict(TODO)])
    store.insert = AsyncMock()
    store.update = AsyncMock()
    store.delete = AsyncMock()
    store.subscribe_changes = MagicMock(return_value=MagicMock())
    return store


async def _settle(collection) -> None:
    """Wait for refreshes scheduled by change notifications."""
    while collection._tasks:
        await asyncio.gather(*list(collection._tasks))


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def todos(sqlite_store, notifier):
    return TodoCollection(sqlite_store, owner_id="user-1", notifier=notifier, tz=SEOUL)


@pytest.fixture
def schedules(sqlite_store, notifier):
    return ScheduleCollection(sqlite_store, owner_id="user-1", notifier=notifier, tz=SEOUL)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_adds_record(self, todos, sqlite_store):
        result = await todos.create({"title": "Write report", "priority": "high"})

        assert result.success
        assert result.record.title == "Write report"
        assert [t.id for t in todos.list()] == [result.record.id]
        rows = await sqlite_store.query(TODOS)
        assert rows[0]["user_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_create_without_owner_requires_auth(self, sqlite_store, notifier):
        todos = TodoCollection(sqlite_store, owner_id=None, notifier=notifier, tz=SEOUL)
        result = await todos.create({"title": "Write report"})

        assert not result.success
        assert isinstance(result.error, AuthRequiredError)
        notifier.send_message.assert_awaited_once_with(
            "Your session has expired. Please sign in again.", "error",
        )
        assert await sqlite_store.query(TODOS) == []

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_store(self, notifier):
        store = _mock_store()
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        result = await todos.create({"title": "   "})

        assert not result.success
        assert isinstance(result.error, InvalidInputError)
        assert "title must not be empty" in str(result.error)
        store.insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_error_leaves_state_unchanged(self, notifier):
        store = _mock_store()
        store.insert = AsyncMock(side_effect=StoreError("dup", "23505"))
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()

        result = await todos.create({"title": "Again"})
        assert not result.success
        assert [t.id for t in todos.list()] == ["t1"]
        notifier.send_message.assert_awaited_once_with("This item already exists.", "error")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_items(self, notifier):
        store = _mock_store()
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        assert (await todos.refresh()).success

        store.query = AsyncMock(side_effect=StoreError("offline", "network"))
        result = await todos.refresh()

        assert not result.success
        assert result.error.code == "network"
        assert [t.id for t in todos.list()] == ["t1"]
        notifier.send_message.assert_awaited_once_with(
            "Network error. Please check your internet connection.", "error",
        )

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, notifier):
        store = _mock_store([dict(TODO), {"title": "no id"}])
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        assert (await todos.refresh()).success
        assert [t.id for t in todos.list()] == ["t1"]

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, notifier):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        store = _mock_store()
        store.query = hang
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, timeout=0.01, tz=SEOUL)
        result = await todos.refresh()

        assert not result.success
        assert result.error.code == "timeout"

    @pytest.mark.asyncio
    async def test_pending_first_then_priority(self, notifier):
        rows = [
            {**TODO, "id": "done", "completed": True, "priority": "high"},
            {**TODO, "id": "low", "priority": "low"},
            {**TODO, "id": "high", "priority": "high"},
        ]
        todos = TodoCollection(_mock_store(rows), owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()
        assert [t.id for t in todos.list()] == ["high", "low", "done"]


class TestOptimisticToggle:
    @pytest.mark.asyncio
    async def test_toggle_success(self, todos):
        created = (await todos.create({"title": "Read"})).record
        seen = []
        todos.on_change(lambda items: seen.append(items[0].completed))

        result = await todos.toggle(created.id)

        assert result.success
        assert todos.get(created.id).completed is True
        assert seen[0] is True

    @pytest.mark.asyncio
    async def test_failed_toggle_rolls_back(self, notifier):
        store = _mock_store()
        store.update = AsyncMock(side_effect=StoreError("denied", "42501"))
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()
        seen = []
        todos.on_change(lambda items: seen.append(items[0].completed))

        result = await todos.toggle("t1")

        assert not result.success
        assert todos.get("t1").completed is False
        assert seen == [True, False]
        notifier.send_message.assert_awaited_once_with(
            "You don't have permission to do that.", "error",
        )

    @pytest.mark.asyncio
    async def test_refresh_during_toggle_keeps_local_change(self, notifier):
        gate = asyncio.Event()

        async def slow_update(collection, record_id, patch, expected=None):
            await gate.wait()
            return {**TODO, **patch, "updated_at": "2024-01-01T00:01:00+00:00"}

        store = _mock_store()
        store.update = slow_update
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()

        task = asyncio.create_task(todos.toggle("t1"))
        await asyncio.sleep(0)
        assert todos.get("t1").completed is True

        # a snapshot fetched while the write is in flight is stale for t1
        await todos.refresh()
        assert todos.get("t1").completed is True

        gate.set()
        result = await task
        assert result.success
        assert todos.get("t1").completed is True

    @pytest.mark.asyncio
    async def test_write_settling_during_refresh_survives_stale_snapshot(self, notifier):
        update_gate = asyncio.Event()
        query_gate = asyncio.Event()
        stale = [dict(TODO)]

        async def slow_update(collection, record_id, patch, expected=None):
            await update_gate.wait()
            return {**TODO, **patch, "updated_at": "2024-01-01T00:01:00+00:00"}

        async def slow_query(collection, filters=None, ordering=None, limit=None):
            await query_gate.wait()
            return [dict(row) for row in stale]

        store = _mock_store()
        store.update = slow_update
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()
        store.query = slow_query

        toggle = asyncio.create_task(todos.toggle("t1"))
        await asyncio.sleep(0)
        refresh = asyncio.create_task(todos.refresh())
        await asyncio.sleep(0)

        update_gate.set()
        assert (await toggle).success
        assert todos.get("t1").completed is True

        query_gate.set()
        assert (await refresh).success
        assert todos.get("t1").completed is True

    @pytest.mark.asyncio
    async def test_settled_writes_are_forgotten_after_refresh(self, todos):
        created = (await todos.create({"title": "Read"})).record
        await todos.toggle(created.id)
        assert created.id in todos._touched

        await todos.refresh()

        assert todos._touched == {}
        assert todos.get(created.id).completed is True

    @pytest.mark.asyncio
    async def test_toggle_unknown_record(self, todos):
        result = await todos.toggle("missing")
        assert not result.success
        assert isinstance(result.error, NotFoundError)


class TestRecordFocusTime:
    @pytest.mark.asyncio
    async def test_adds_time_and_one_session(self, todos, sqlite_store):
        created = (await todos.create({"title": "Read"})).record

        first = await todos.record_focus_time(created.id, 1500)
        second = await todos.record_focus_time(created.id, 300)

        assert first.success and second.success
        todo = todos.get(created.id)
        assert todo.total_time_spent == 1800
        assert todo.session_count == 2
        assert todo.last_worked_at is not None
        [row] = await sqlite_store.query(TODOS)
        assert row["total_time_spent"] == 1800

    @pytest.mark.asyncio
    async def test_retries_after_concurrent_write(self, notifier):
        store = _mock_store()
        store.query = AsyncMock(side_effect=[
            [dict(TODO)],
            [{**TODO, "total_time_spent": 100, "session_count": 1,
              "updated_at": "2024-01-01T00:04:00+00:00"}],
        ])
        store.update = AsyncMock(side_effect=[
            ConflictError("changed"),
            {**TODO, "total_time_spent": 160, "session_count": 2,
             "updated_at": "2024-01-01T00:05:00+00:00"},
        ])
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()

        result = await todos.record_focus_time("t1", 60)

        assert result.success
        assert todos.get("t1").total_time_spent == 160
        retry = store.update.call_args_list[1]
        assert retry.args[2]["total_time_spent"] == 160
        assert retry.args[2]["session_count"] == 2
        assert retry.kwargs["expected"] == {"updated_at": "2024-01-01T00:04:00+00:00"}
        notifier.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_and_rolls_back(self, notifier):
        store = _mock_store()
        store.update = AsyncMock(side_effect=ConflictError("changed"))
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()

        result = await todos.record_focus_time("t1", 60)

        assert not result.success
        assert store.update.await_count == 3
        assert todos.get("t1").total_time_spent == 0
        assert todos.get("t1").session_count == 0
        notifier.send_message.assert_awaited_once_with(
            "This item was changed elsewhere. Please try again.", "error",
        )

    @pytest.mark.asyncio
    async def test_zero_seconds_is_a_no_op(self, notifier):
        store = _mock_store()
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()
        result = await todos.record_focus_time("t1", 0)
        assert result.success
        store.update.assert_not_awaited()


class TestRealtime:
    @pytest.mark.asyncio
    async def test_change_elsewhere_triggers_refresh(self, todos, sqlite_store):
        await todos.start()
        await sqlite_store.insert(TODOS, {"user_id": "user-1", "title": "From another tab"})
        await _settle(todos)

        assert [t.title for t in todos.list()] == ["From another tab"]
        await todos.stop()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, todos, sqlite_store):
        await todos.start()
        await todos.stop()
        await sqlite_store.insert(TODOS, {"user_id": "user-1", "title": "Unseen"})

        assert not todos._tasks
        assert todos.list() == []

    @pytest.mark.asyncio
    async def test_only_owner_records_loaded(self, todos, sqlite_store):
        await sqlite_store.insert(TODOS, {"user_id": "someone-else", "title": "Not mine"})
        await todos.refresh()
        assert todos.list() == []


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_record(self, todos):
        created = (await todos.create({"title": "Read"})).record
        result = await todos.delete(created.id)
        assert result.success
        assert todos.list() == []

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_record(self, notifier):
        store = _mock_store()
        store.delete = AsyncMock(side_effect=StoreError("fk", "23503"))
        todos = TodoCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await todos.refresh()

        result = await todos.delete("t1")
        assert not result.success
        assert todos.get("t1") is not None


class TestSchedules:
    @pytest.mark.asyncio
    async def test_create_and_expand(self, schedules):
        result = await schedules.create({
            "title": "Standup",
            "start_time": "2024-01-01T09:00:00",
            "end_time": "2024-01-01T09:15:00",
            "recurrence": "weekly",
        })
        assert result.success

        week = plan_window(date(2024, 1, 10), ViewMode.WEEK, calendar.SUNDAY, tz=SEOUL)
        [occ] = schedules.occurrences(week)
        assert occ.instance_date == date(2024, 1, 8)
        assert occ.start_time.hour == 9

    @pytest.mark.asyncio
    async def test_exclude_single_occurrence(self, schedules):
        created = (await schedules.create({
            "title": "Standup",
            "start_time": "2024-01-01T09:00:00",
            "end_time": "2024-01-01T09:15:00",
            "recurrence": "weekly",
        })).record
        week = plan_window(date(2024, 1, 10), ViewMode.WEEK, calendar.SUNDAY, tz=SEOUL)

        result = await schedules.exclude_occurrence(created.id, date(2024, 1, 8))

        assert result.success
        assert result.record.excluded_dates == {"2024-01-08"}
        assert schedules.occurrences(week) == []

    @pytest.mark.asyncio
    async def test_update_validates_utc_rows_in_local_time(self, notifier):
        # Seoul 08:00-10:00 every week, stored as 23:00Z-01:00Z
        row = {
            "id": "s1",
            "user_id": "user-1",
            "title": "Run",
            "start_time": "2024-01-07T23:00:00+00:00",
            "end_time": "2024-01-08T01:00:00+00:00",
            "recurrence": "weekly",
        }
        store = _mock_store([row])
        store.update = AsyncMock(side_effect=lambda collection, record_id, patch, expected=None: {**row, **patch})
        schedules = ScheduleCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await schedules.refresh()

        result = await schedules.exclude_occurrence("s1", date(2024, 1, 15))

        assert result.success, result.error
        store.update.assert_awaited_once_with("schedules", "s1", {"excluded_dates": ["2024-01-15"]})
        assert result.record.excluded_dates == {"2024-01-15"}

    @pytest.mark.asyncio
    async def test_update_with_utc_times_checked_locally(self, notifier):
        row = {
            "id": "s1",
            "user_id": "user-1",
            "title": "Run",
            "start_time": "2024-01-07T23:00:00+00:00",
            "end_time": "2024-01-08T01:00:00+00:00",
        }
        store = _mock_store([row])
        schedules = ScheduleCollection(store, owner_id="user-1", notifier=notifier, tz=SEOUL)
        await schedules.refresh()

        # 14:45Z is 23:45 in Seoul, past the latest end time
        result = await schedules.update("s1", {"end_time": "2024-01-08T14:45:00Z"})

        assert not result.success
        assert isinstance(result.error, InvalidInputError)
        store.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_update_is_rejected(self, schedules, sqlite_store):
        created = (await schedules.create({
            "title": "Standup",
            "start_time": "2024-01-01T09:00:00",
            "end_time": "2024-01-01T09:15:00",
        })).record

        result = await schedules.update(created.id, {"end_time": "2024-01-01T08:00:00"})

        assert not result.success
        assert isinstance(result.error, InvalidInputError)
        assert schedules.get(created.id).end_time.hour == 9
