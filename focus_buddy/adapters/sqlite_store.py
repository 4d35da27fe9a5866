"""
Focus Buddy — SQLite store.

Local implementation of DataStorePort: todos and schedules persist in a
single SQLite file. Used for development, offline use and tests; the
hosted backend is served by PostgrestStore.

sqlite3 is synchronous, so every call runs in a worker thread via
asyncio.to_thread. Change notifications fire after each successful
mutation made through this store.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from focus_buddy.ports.store_port import (
    SCHEDULES,
    TODOS,
    ChangeEvent,
    ChangeHandler,
    ConflictError,
    NotFoundError,
    StoreError,
)

logger = logging.getLogger(__name__)

# column name -> SQL definition; order is the CREATE TABLE order
_TABLES: dict[str, dict[str, str]] = {
    TODOS: {
        "id": "TEXT PRIMARY KEY",
        "user_id": "TEXT NOT NULL",
        "title": "TEXT NOT NULL",
        "description": "TEXT",
        "completed": "INTEGER NOT NULL DEFAULT 0",
        "priority": "TEXT NOT NULL DEFAULT 'medium'",
        "due_date": "TEXT",
        "total_time_spent": "INTEGER NOT NULL DEFAULT 0",
        "session_count": "INTEGER NOT NULL DEFAULT 0",
        "last_worked_at": "TEXT",
        "created_at": "TEXT NOT NULL",
        "updated_at": "TEXT NOT NULL",
    },
    SCHEDULES: {
        "id": "TEXT PRIMARY KEY",
        "user_id": "TEXT NOT NULL",
        "title": "TEXT NOT NULL",
        "description": "TEXT",
        "start_time": "TEXT NOT NULL",
        "end_time": "TEXT NOT NULL",
        "color": "TEXT NOT NULL DEFAULT '#3B82F6'",
        "recurrence": "TEXT NOT NULL DEFAULT 'none'",
        "recurrence_end": "TEXT",
        "excluded_dates": "TEXT NOT NULL DEFAULT '[]'",
        "created_at": "TEXT NOT NULL",
        "updated_at": "TEXT NOT NULL",
    },
}

# Columns added after the first release; older files are migrated in place
_MIGRATED_COLUMNS: dict[str, list[str]] = {
    TODOS: ["total_time_spent", "session_count", "last_worked_at"],
    SCHEDULES: ["recurrence", "recurrence_end", "excluded_dates"],
}

_BOOL_COLUMNS = {"completed"}
_JSON_COLUMNS = {"excluded_dates"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _map_sqlite_error(exc: sqlite3.Error) -> StoreError:
    """Translate sqlite errors into the Postgres codes the UI knows."""
    text = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        if "UNIQUE" in text:
            return StoreError(text, "23505")
        if "NOT NULL" in text:
            return StoreError(text, "23502")
    return StoreError(text, "sqlite")


class SQLiteStore:
    """SQLite-backed storage for todos and schedules."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from focus_buddy.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._handlers: dict[str, list[ChangeHandler]] = {TODOS: [], SCHEDULES: []}
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            for table, columns in _TABLES.items():
                body = ",\n".join(f"{name} {ddl}" for name, ddl in columns.items())
                conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n{body}\n)")
                existing_cols = {
                    row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
                }
                for name in _MIGRATED_COLUMNS[table]:
                    if name not in existing_cols:
                        conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {columns[name]}")
                        logger.info("Migrated %s: added column %s", table, name)
        logger.debug("Tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _columns(collection: str) -> dict[str, str]:
        if collection not in _TABLES:
            raise StoreError(f"Unknown collection: {collection!r}", "invalid_input")
        return _TABLES[collection]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict:
        record = dict(row)
        for name in _BOOL_COLUMNS & record.keys():
            record[name] = bool(record[name])
        # JSON columns are passed through as stored; the models decode them
        return record

    def _encode(self, collection: str, values: dict) -> dict:
        columns = self._columns(collection)
        encoded = {}
        for name, value in values.items():
            if name not in columns:
                logger.warning("Ignoring unknown %s column %r", collection, name)
                continue
            if name in _BOOL_COLUMNS and value is not None:
                value = int(bool(value))
            elif name in _JSON_COLUMNS and not isinstance(value, str):
                value = json.dumps(sorted(value or []))
            encoded[name] = value
        return encoded

    # ------------------------------------------------------------------
    # Sync implementations (run in a worker thread)
    # ------------------------------------------------------------------

    def _query(self, collection, filters, ordering, limit) -> list[dict]:
        columns = self._columns(collection)
        query = f"SELECT * FROM {collection}"
        params: list = []
        conditions: list[str] = []
        for name, value in self._encode(collection, filters or {}).items():
            if value is None:
                conditions.append(f"{name} IS NULL")
            else:
                conditions.append(f"{name} = ?")
                params.append(value)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        order_terms = [
            f"{name} {'ASC' if ascending else 'DESC'}"
            for name, ascending in (ordering or []) if name in columns
        ]
        # rowid keeps ties in insertion order
        query += " ORDER BY " + ", ".join(order_terms + ["rowid ASC"])
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_record(r) for r in rows]

    def _insert(self, collection: str, record: dict) -> dict:
        values = self._encode(collection, record)
        values["id"] = str(values.get("id") or uuid.uuid4())
        now = _now()
        values["created_at"] = now
        values["updated_at"] = now
        names = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO {collection} ({names}) VALUES ({marks})",
                list(values.values()),
            )
            row = conn.execute(
                f"SELECT * FROM {collection} WHERE id = ?", (values["id"],),
            ).fetchone()
        logger.info("Inserted %s #%s", collection, values["id"])
        return self._row_to_record(row)

    def _update(self, collection, record_id, patch, expected) -> dict:
        values = self._encode(collection, patch)
        values.pop("id", None)
        values.pop("created_at", None)
        values["updated_at"] = _now()
        assignments = ", ".join(f"{name} = ?" for name in values)
        params = list(values.values()) + [record_id]
        where = "id = ?"
        for name, value in self._encode(collection, expected or {}).items():
            where += f" AND {name} = ?"
            params.append(value)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE {collection} SET {assignments} WHERE {where}", params,
            )
            if cursor.rowcount == 0:
                exists = conn.execute(
                    f"SELECT 1 FROM {collection} WHERE id = ?", (record_id,),
                ).fetchone()
                if exists is None:
                    raise NotFoundError(f"{collection} #{record_id} not found")
                raise ConflictError(f"{collection} #{record_id} changed concurrently")
            row = conn.execute(
                f"SELECT * FROM {collection} WHERE id = ?", (record_id,),
            ).fetchone()
        logger.info("Updated %s #%s: %s", collection, record_id, sorted(patch))
        return self._row_to_record(row)

    def _delete(self, collection: str, record_id: str) -> None:
        self._columns(collection)
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {collection} WHERE id = ?", (record_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"{collection} #{record_id} not found")
        logger.info("Deleted %s #%s", collection, record_id)

    # ------------------------------------------------------------------
    # DataStorePort
    # ------------------------------------------------------------------

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.error("SQLite error: %s", exc)
            raise _map_sqlite_error(exc) from exc

    async def query(
        self,
        collection: str,
        filters: dict | None = None,
        ordering: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        return await self._run(self._query, collection, filters, ordering, limit)

    async def insert(self, collection: str, record: dict) -> dict:
        created = await self._run(self._insert, collection, record)
        self._notify(ChangeEvent(collection, "INSERT", created["id"]))
        return created

    async def update(
        self,
        collection: str,
        record_id: str,
        patch: dict,
        expected: dict | None = None,
    ) -> dict:
        updated = await self._run(self._update, collection, record_id, patch, expected)
        self._notify(ChangeEvent(collection, "UPDATE", record_id))
        return updated

    async def delete(self, collection: str, record_id: str) -> None:
        await self._run(self._delete, collection, record_id)
        self._notify(ChangeEvent(collection, "DELETE", record_id))

    def subscribe_changes(
        self, collection: str, handler: ChangeHandler,
    ) -> Callable[[], None]:
        self._columns(collection)
        self._handlers[collection].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[collection]:
                self._handlers[collection].remove(handler)

        return unsubscribe

    def _notify(self, event: ChangeEvent) -> None:
        for handler in list(self._handlers[event.collection]):
            try:
                handler(event)
            except Exception as exc:
                logger.error("Change handler failed for %s: %s", event, exc)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    async def _demo() -> None:
        store = SQLiteStore(db_path="data/test_focus_buddy.db")
        todo = await store.insert(TODOS, {"user_id": "me", "title": "Write report"})
        print(f"Added: {todo}")
        done = await store.update(TODOS, todo["id"], {"completed": True})
        print(f"Completed: {done}")
        print(f"All todos: {await store.query(TODOS)}")
        await store.delete(TODOS, todo["id"])

    asyncio.run(_demo())
