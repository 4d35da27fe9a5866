"""
Focus Buddy — Data Sync Layer.

Owns the in-memory todo and schedule collections and keeps them
consistent with the store:

- every mutation returns a SyncResult (never raises, never drops errors);
  failures are logged, reported through the NotificationPort, and leave
  the in-memory collection as it was;
- every store change notification (from any client) triggers a full
  refresh, which is authoritative except for records this client has
  mutated since the refresh began;
- completion toggles and focus-time writes are applied locally first
  (optimistic) and rolled back if the store rejects them.

The store is injected; there is no module-level client.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone, tzinfo
from typing import Awaitable, Callable, Generic, TypeVar
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from focus_buddy.config import settings
from focus_buddy.core.errors import user_message
from focus_buddy.core.stats import TodoSummary, summarize_todos
from focus_buddy.core.window import Window, collect_occurrences
from focus_buddy.data.models import Occurrence, Schedule, Todo, parse_timestamp, to_local
from focus_buddy.data.schemas import ScheduleInput, TodoInput
from focus_buddy.ports.notification_port import NotificationPort
from focus_buddy.ports.store_port import (
    SCHEDULES,
    TODOS,
    AuthRequiredError,
    ChangeEvent,
    ConflictError,
    DataStorePort,
    InvalidInputError,
    NotFoundError,
    StoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", Todo, Schedule)

_CAS_ATTEMPTS = 3


@dataclass
class SyncResult(Generic[T]):
    """Outcome of a collection operation."""

    success: bool
    record: T | None = None
    error: StoreError | None = None


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    msg = str(first.get("msg", "Invalid input"))
    return msg.removeprefix("Value error, ")


class RecordCollection(Generic[T]):
    """In-memory mirror of one store collection."""

    collection: str = ""
    ordering: list[tuple[str, bool]] = []

    def __init__(
        self,
        store: DataStorePort,
        owner_id: str | None = None,
        notifier: NotificationPort | None = None,
        timeout: float | None = None,
        limit: int | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._store = store
        self._tz = tz if tz is not None else ZoneInfo(settings.TIMEZONE)
        self._owner_id = owner_id
        self._notifier = notifier
        self._timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self._limit = limit
        self._items: list[T] = []
        self._listeners: list[Callable[[list[T]], None]] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task] = set()
        # local mutation bookkeeping: record id -> sequence number
        self._seq = 0
        self._touched: dict[str, int] = {}
        self._pending: dict[str, int] = {}
        self._refreshing: list[int] = []

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def _from_record(self, record: dict) -> T:
        raise NotImplementedError

    def _sort_key(self, item: T):
        return 0

    def _validate(self, current: T | None, changes: dict) -> dict:
        return dict(changes)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def list(self) -> list[T]:
        return list(self._items)

    def get(self, record_id: str) -> T | None:
        for item in self._items:
            if item.id == record_id:
                return item
        return None

    def on_change(self, callback: Callable[[list[T]], None]) -> Callable[[], None]:
        """Call `callback` with the new item list after every change."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self) -> None:
        items = self.list()
        for callback in list(self._listeners):
            try:
                callback(items)
            except Exception as exc:
                logger.error("%s listener failed: %s", self.collection, exc)

    # ------------------------------------------------------------------
    # Store plumbing
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError(
                f"{self.collection} request timed out after {self._timeout}s", "timeout",
            ) from exc

    async def _fail(self, error: StoreError, fallback: str) -> SyncResult:
        logger.error("%s: %s (%s)", fallback, error, error.code)
        if self._notifier is not None:
            try:
                await self._notifier.send_message(user_message(error, fallback), "error")
            except Exception as exc:
                logger.warning("Failed to deliver error notification: %s", exc)
        return SyncResult(success=False, error=error)

    def _begin(self, record_id: str) -> int:
        self._seq += 1
        self._touched[record_id] = self._seq
        self._pending[record_id] = self._seq
        return self._seq

    def _settle(self, record_id: str, seq: int) -> None:
        if self._pending.get(record_id) == seq:
            del self._pending[record_id]

    def _prune(self, started: int) -> None:
        """Forget settled mutations no in-flight refresh can overwrite."""
        horizon = min([started, *self._refreshing])
        self._touched = {
            rid: seq for rid, seq in self._touched.items()
            if seq > horizon or rid in self._pending
        }

    def _replace_local(self, item: T) -> None:
        self._items = [item if it.id == item.id else it for it in self._items]
        self._items.sort(key=self._sort_key)
        self._emit()

    def _filters(self) -> dict:
        return {"user_id": self._owner_id} if self._owner_id else {}

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def refresh(self) -> SyncResult:
        """Re-fetch the whole collection and replace local state."""
        started = self._seq
        # a write in flight now may settle before the snapshot arrives
        pending_at_start = set(self._pending)
        self._refreshing.append(started)
        try:
            records = await self._call(self._store.query(
                self.collection, self._filters(), self.ordering, self._limit,
            ))
        except StoreError as exc:
            return await self._fail(exc, f"Failed to load {self.collection}")
        finally:
            self._refreshing.remove(started)

        fetched: list[T] = []
        for record in records:
            try:
                fetched.append(self._from_record(record))
            except (KeyError, ValueError, TypeError, AttributeError) as exc:
                logger.warning("Skipping malformed %s row %s: %s", self.collection, record.get("id"), exc)

        local = {item.id: item for item in self._items}
        newer = {rid for rid, seq in self._touched.items() if seq > started}
        newer |= pending_at_start | set(self._pending)
        merged: list[T] = []
        for item in fetched:
            if item.id in newer:
                # the local copy is newer than this snapshot (or was deleted)
                if item.id in local:
                    merged.append(local[item.id])
                continue
            merged.append(item)
        fetched_ids = {item.id for item in fetched}
        merged.extend(local[rid] for rid in newer if rid in local and rid not in fetched_ids)
        merged.sort(key=self._sort_key)

        self._items = merged
        self._prune(started)
        logger.debug("Refreshed %s: %d records", self.collection, len(merged))
        self._emit()
        return SyncResult(success=True)

    async def create(self, data: dict) -> SyncResult:
        if not self._owner_id:
            return await self._fail(AuthRequiredError(), "Please sign in first")
        try:
            payload = self._validate(None, data)
        except ValidationError as exc:
            return await self._fail(InvalidInputError(_validation_message(exc)), "Invalid input")
        payload["user_id"] = self._owner_id

        try:
            created = self._from_record(await self._call(self._store.insert(self.collection, payload)))
        except StoreError as exc:
            return await self._fail(exc, f"Failed to add to {self.collection}")

        self._seq += 1
        self._touched[created.id] = self._seq
        if self.get(created.id) is None:
            self._items.append(created)
        self._replace_local(created)
        return SyncResult(success=True, record=created)

    async def update(self, record_id: str, patch: dict, optimistic: bool = False) -> SyncResult:
        current = self.get(record_id)
        if current is None:
            return await self._fail(
                NotFoundError(f"{self.collection} #{record_id} not loaded"),
                f"Failed to update {self.collection}",
            )
        try:
            payload = self._validate(current, patch)
        except ValidationError as exc:
            return await self._fail(InvalidInputError(_validation_message(exc)), "Invalid input")

        seq = self._begin(record_id)
        if optimistic:
            self._replace_local(self._from_record({**current.to_record(), **payload}))

        try:
            updated = self._from_record(await self._call(
                self._store.update(self.collection, record_id, payload),
            ))
        except StoreError as exc:
            self._rollback(record_id, seq, current)
            return await self._fail(exc, f"Failed to update {self.collection}")

        self._settle(record_id, seq)
        if self._touched.get(record_id) == seq:
            self._replace_local(updated)
        return SyncResult(success=True, record=updated)

    def _rollback(self, record_id: str, seq: int, previous: T | None) -> None:
        self._settle(record_id, seq)
        if previous is not None and self._touched.get(record_id) == seq:
            logger.info("Rolling back optimistic change to %s #%s", self.collection, record_id)
            self._replace_local(previous)

    async def delete(self, record_id: str) -> SyncResult:
        seq = self._begin(record_id)
        try:
            await self._call(self._store.delete(self.collection, record_id))
        except StoreError as exc:
            self._settle(record_id, seq)
            return await self._fail(exc, f"Failed to delete from {self.collection}")
        self._settle(record_id, seq)
        self._items = [item for item in self._items if item.id != record_id]
        self._emit()
        return SyncResult(success=True)

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def start(self) -> SyncResult:
        """Subscribe to store changes and load the collection."""
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe_changes(self.collection, self._handle_change)
        return await self.refresh()

    async def stop(self) -> None:
        """Unsubscribe and cancel refreshes still in flight."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _handle_change(self, event: ChangeEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Change to %s outside the event loop, not refreshing", event.collection)
            return
        logger.debug("Change in %s (%s #%s), refreshing", event.collection, event.kind, event.record_id)
        task = loop.create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


class TodoCollection(RecordCollection[Todo]):
    """Todos, ordered pending-first, then by priority, newest first."""

    collection = TODOS
    ordering = [("completed", True), ("priority", False), ("created_at", False)]

    def _from_record(self, record: dict) -> Todo:
        return Todo.from_record(record)

    def _sort_key(self, todo: Todo):
        created = todo.created_at.timestamp() if todo.created_at else 0
        return (todo.completed, -todo.priority_rank, -created)

    def _validate(self, current: Todo | None, changes: dict) -> dict:
        fields = TodoInput.model_fields
        if current is None:
            return TodoInput(**changes).to_record() | {
                k: v for k, v in changes.items() if k not in fields
            }
        if not fields.keys() & changes.keys():
            return dict(changes)
        base = current.to_record()
        merged = TodoInput(**{k: changes.get(k, base.get(k)) for k in fields}).to_record()
        return {k: merged[k] if k in merged else v for k, v in changes.items()}

    async def toggle(self, todo_id: str) -> SyncResult:
        """Flip a todo's completion flag (optimistic)."""
        todo = self.get(todo_id)
        if todo is None:
            return await self._fail(NotFoundError(f"todos #{todo_id} not loaded"), "Failed to update todo")
        return await self.update(todo_id, {"completed": not todo.completed}, optimistic=True)

    async def record_focus_time(
        self,
        todo_id: str,
        seconds: int,
        worked_at: datetime | None = None,
    ) -> SyncResult:
        """Add one focus session of `seconds` to a todo.

        Applied locally first; the store write is a compare-and-swap on
        updated_at, retried against a fresh read when another writer got
        there first, so concurrent sessions never lose time.
        """
        todo = self.get(todo_id)
        if todo is None:
            return await self._fail(NotFoundError(f"todos #{todo_id} not loaded"), "Failed to save focus time")
        seconds = int(seconds)
        if seconds <= 0:
            return SyncResult(success=True, record=todo)
        worked_at = worked_at or datetime.now(timezone.utc)

        seq = self._begin(todo_id)
        self._replace_local(replace(
            todo,
            total_time_spent=todo.total_time_spent + seconds,
            session_count=todo.session_count + 1,
            last_worked_at=worked_at,
        ))

        base = todo
        try:
            for attempt in range(1, _CAS_ATTEMPTS + 1):
                patch = {
                    "total_time_spent": base.total_time_spent + seconds,
                    "session_count": base.session_count + 1,
                    "last_worked_at": worked_at.isoformat(),
                }
                expected = {
                    "updated_at": base.updated_at.isoformat() if base.updated_at else None,
                }
                try:
                    updated = self._from_record(await self._call(
                        self._store.update(TODOS, todo_id, patch, expected=expected),
                    ))
                    break
                except ConflictError:
                    if attempt == _CAS_ATTEMPTS:
                        raise
                    logger.info("Focus time CAS conflict on todo #%s, retrying", todo_id)
                    rows = await self._call(self._store.query(TODOS, {"id": todo_id}, limit=1))
                    if not rows:
                        raise NotFoundError(f"todos #{todo_id} not found")
                    base = self._from_record(rows[0])
        except StoreError as exc:
            self._rollback(todo_id, seq, todo)
            return await self._fail(exc, "Failed to save focus time")

        self._settle(todo_id, seq)
        if self._touched.get(todo_id) == seq:
            self._replace_local(updated)
        logger.info("Recorded %ds of focus on todo #%s", seconds, todo_id)
        return SyncResult(success=True, record=updated)

    def stats(self, now: datetime | None = None) -> TodoSummary:
        return summarize_todos(self._items, now or datetime.now(self._tz), self._tz)


class ScheduleCollection(RecordCollection[Schedule]):
    """Schedules (one-off entries and series definitions)."""

    collection = SCHEDULES
    ordering = [("start_time", True)]

    def _from_record(self, record: dict) -> Schedule:
        return Schedule.from_record(record)

    def _sort_key(self, schedule: Schedule):
        return to_local(schedule.start_time, self._tz)

    def _validate(self, current: Schedule | None, changes: dict) -> dict:
        fields = ScheduleInput.model_fields
        if current is None:
            return ScheduleInput(**self._localized(changes)).to_record()
        base = current.to_record()
        merged_input = {k: changes.get(k, base.get(k)) for k in fields}
        merged = ScheduleInput(**self._localized(merged_input)).to_record()
        return {k: merged[k] if k in merged else v for k, v in changes.items()}

    def _localized(self, data: dict) -> dict:
        """Express aware start/end times in the local zone.

        Stored rows may carry any offset (a hosted backend answers in
        UTC); the same-day and latest-end rules apply to local time.
        """
        out = dict(data)
        for key in ("start_time", "end_time"):
            value = parse_timestamp(out.get(key))
            if value is not None and value.tzinfo is not None:
                out[key] = value.astimezone(self._tz)
        return out

    def occurrences(self, window: Window) -> list[Occurrence]:
        """Occurrences of all loaded schedules inside `window`."""
        return collect_occurrences(self._items, window, self._tz)

    async def exclude_occurrence(self, schedule_id: str, day: date) -> SyncResult:
        """Remove a single instance of a series by excluding its date."""
        schedule = self.get(schedule_id)
        if schedule is None:
            return await self._fail(
                NotFoundError(f"schedules #{schedule_id} not loaded"), "Failed to update schedule",
            )
        excluded = sorted(schedule.excluded_dates | {day.isoformat()})
        return await self.update(schedule_id, {"excluded_dates": excluded})
