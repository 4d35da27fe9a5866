"""Store port — abstract interface for record storage.

Core modules depend on this protocol, never on a specific backend.
Records are plain dicts; two collections are used: "todos" and "schedules".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

TODOS = "todos"
SCHEDULES = "schedules"


class StoreError(Exception):
    """Raised when any store operation fails.

    `code` is machine-readable: a backend error code (e.g. "23505",
    "PGRST301") or one of "network", "timeout", "not_found", "conflict",
    "invalid_input", "unknown".
    """

    def __init__(self, message: str, code: str = "unknown") -> None:
        super().__init__(message)
        self.code = code


class AuthRequiredError(StoreError):
    """The caller must (re-)authenticate before retrying."""

    def __init__(self, message: str = "Authentication required", code: str = "PGRST301") -> None:
        super().__init__(message, code)


class NotFoundError(StoreError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "not_found")


class ConflictError(StoreError):
    """A compare-and-swap update found the row changed underneath it."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "conflict")


class InvalidInputError(StoreError):
    """Form input failed validation; nothing was sent to the store."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "invalid_input")


@dataclass
class ChangeEvent:
    """A record in `collection` was inserted, updated or deleted."""

    collection: str
    kind: str          # "INSERT" | "UPDATE" | "DELETE"
    record_id: str


ChangeHandler = Callable[[ChangeEvent], None]


class DataStorePort(Protocol):
    """Abstract data-access interface used by core modules."""

    async def query(
        self,
        collection: str,
        filters: dict | None = None,
        ordering: list[tuple[str, bool]] | None = None,
        limit: int | None = None,
    ) -> list[dict]: ...

    async def insert(self, collection: str, record: dict) -> dict: ...

    async def update(
        self,
        collection: str,
        record_id: str,
        patch: dict,
        expected: dict | None = None,
    ) -> dict: ...

    async def delete(self, collection: str, record_id: str) -> None: ...

    def subscribe_changes(
        self, collection: str, handler: ChangeHandler,
    ) -> Callable[[], None]: ...
