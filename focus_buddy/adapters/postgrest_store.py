"""PostgREST store — implements DataStorePort for the hosted backend.

Talks to the Supabase REST endpoint (/rest/v1) with httpx. Backend error
payloads ({"code": ..., "message": ...}) become StoreError with the same
code; 401 and PGRST301 become AuthRequiredError.

Change notifications: mutations made through this store notify local
subscribers immediately. Changes made by other clients are picked up by
poll_changes(), which compares a per-collection fingerprint
(row count, latest updated_at) and notifies when it moves. While a
collection has subscribers, a background task polls it every
poll_interval seconds.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from focus_buddy.ports.store_port import (
    SCHEDULES,
    TODOS,
    AuthRequiredError,
    ChangeEvent,
    ChangeHandler,
    ConflictError,
    NotFoundError,
    StoreError,
)

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10


def _eq(value: object) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _error_from_response(resp: httpx.Response) -> StoreError:
    try:
        payload = resp.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    code = str(payload.get("code") or resp.status_code)
    message = payload.get("message") or resp.text or f"HTTP {resp.status_code}"
    if resp.status_code == 401 or code == "PGRST301":
        return AuthRequiredError(message, code if code == "PGRST301" else "PGRST301")
    return StoreError(message, code)


class PostgrestStore:
    """PostgREST implementation of DataStorePort."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float = _TIMEOUT_SECONDS,
        poll_interval: float = 0,
    ) -> None:
        if url is None or api_key is None:
            from focus_buddy.config import settings
            url = url or settings.SUPABASE_URL
            api_key = api_key or settings.SUPABASE_KEY
            access_token = access_token or settings.SUPABASE_ACCESS_TOKEN
        if not url or not api_key:
            raise StoreError("SUPABASE_URL and SUPABASE_KEY must be set", "invalid_input")

        self._base_url = url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self._handlers: dict[str, list[ChangeHandler]] = {TODOS: [], SCHEDULES: []}
        self._fingerprints: dict[str, tuple[int, str]] = {}
        self._poll_interval = poll_interval
        self._pollers: dict[str, asyncio.Task] = {}

    async def _request(
        self,
        method: str,
        collection: str,
        params: dict | None = None,
        json: dict | None = None,
        prefer: str | None = None,
    ) -> list[dict]:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(
                    method,
                    f"{self._base_url}/{collection}",
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.TimeoutException as exc:
            logger.error("PostgREST %s %s timed out: %s", method, collection, exc)
            raise StoreError(f"Request timed out: {exc}", "timeout") from exc
        except httpx.HTTPError as exc:
            logger.error("PostgREST %s %s failed: %s", method, collection, exc)
            raise StoreError(f"Network error: {exc}", "network") from exc

        if resp.status_code >= 400:
            error = _error_from_response(resp)
            logger.error(
                "PostgREST %s %s error %s: %s", method, collection, error.code, error,
            )
            raise error
        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    # ------------------------------------------------------------------
    # DataStorePort
    # ------------------------------------------------------------------

    async def query(
        self,
        collection: str,
        filters: dict | None = None,
        ordering: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        params: dict = {"select": "*"}
        for name, value in (filters or {}).items():
            params[name] = _eq(value)
        if ordering:
            params["order"] = ",".join(
                f"{name}.{'asc' if ascending else 'desc'}" for name, ascending in ordering
            )
        if limit is not None:
            params["limit"] = str(int(limit))
        return await self._request("GET", collection, params=params)

    async def insert(self, collection: str, record: dict) -> dict:
        rows = await self._request(
            "POST", collection, json=record, prefer="return=representation",
        )
        if not rows:
            raise StoreError(f"Insert into {collection} returned no row")
        created = rows[0]
        logger.info("Inserted %s #%s", collection, created.get("id"))
        self._notify(ChangeEvent(collection, "INSERT", str(created.get("id"))))
        return created

    async def update(
        self,
        collection: str,
        record_id: str,
        patch: dict,
        expected: dict | None = None,
    ) -> dict:
        params = {"id": _eq(record_id)}
        for name, value in (expected or {}).items():
            params[name] = _eq(value)
        rows = await self._request(
            "PATCH", collection, params=params, json=patch, prefer="return=representation",
        )
        if not rows:
            if expected:
                existing = await self.query(collection, filters={"id": record_id}, limit=1)
                if existing:
                    raise ConflictError(f"{collection} #{record_id} changed concurrently")
            raise NotFoundError(f"{collection} #{record_id} not found")
        logger.info("Updated %s #%s: %s", collection, record_id, sorted(patch))
        self._notify(ChangeEvent(collection, "UPDATE", record_id))
        return rows[0]

    async def delete(self, collection: str, record_id: str) -> None:
        rows = await self._request(
            "DELETE", collection, params={"id": _eq(record_id)}, prefer="return=representation",
        )
        if not rows:
            raise NotFoundError(f"{collection} #{record_id} not found")
        logger.info("Deleted %s #%s", collection, record_id)
        self._notify(ChangeEvent(collection, "DELETE", record_id))

    def subscribe_changes(
        self, collection: str, handler: ChangeHandler,
    ) -> Callable[[], None]:
        self._handlers.setdefault(collection, []).append(handler)
        self._start_polling(collection)

        def unsubscribe() -> None:
            if handler in self._handlers.get(collection, []):
                self._handlers[collection].remove(handler)
            if not self._handlers.get(collection):
                self._stop_polling(collection)

        return unsubscribe

    async def poll_changes(self, collection: str) -> bool:
        """Notify subscribers if `collection` changed since the last poll.

        Returns True when a change was detected. The first poll only
        records the fingerprint.
        """
        rows = await self._request(
            "GET", collection, params={"select": "id,updated_at"},
        )
        latest = max((str(r.get("updated_at") or "") for r in rows), default="")
        fingerprint = (len(rows), latest)
        previous = self._fingerprints.get(collection)
        self._fingerprints[collection] = fingerprint
        if previous is None or previous == fingerprint:
            return False
        logger.info("Remote change detected in %s", collection)
        self._notify(ChangeEvent(collection, "UPDATE", ""))
        return True

    def _start_polling(self, collection: str) -> None:
        if self._poll_interval <= 0 or collection in self._pollers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop, not polling %s for remote changes", collection)
            return
        self._pollers[collection] = loop.create_task(self._poll_loop(collection))

    def _stop_polling(self, collection: str) -> None:
        task = self._pollers.pop(collection, None)
        if task is not None:
            task.cancel()

    async def _poll_loop(self, collection: str) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.poll_changes(collection)
            except StoreError as exc:
                logger.warning("Polling %s failed: %s", collection, exc)

    def _notify(self, event: ChangeEvent) -> None:
        for handler in list(self._handlers.get(event.collection, [])):
            try:
                handler(event)
            except Exception as exc:
                logger.error("Change handler failed for %s: %s", event, exc)
