"""Store adapter factory — creates the right adapter based on config."""

from __future__ import annotations

from focus_buddy.config import settings
from focus_buddy.ports.store_port import DataStorePort


def create_store(access_token: str | None = None) -> DataStorePort:
    """Return the store adapter matching the STORE_PROVIDER setting.

    Args:
        access_token: Per-user session token for the hosted backend.
    """
    provider = settings.STORE_PROVIDER.lower()

    if provider == "sqlite":
        from focus_buddy.adapters.sqlite_store import SQLiteStore

        return SQLiteStore()

    if provider == "postgrest":
        from focus_buddy.adapters.postgrest_store import PostgrestStore

        return PostgrestStore(
            url=settings.SUPABASE_URL,
            api_key=settings.SUPABASE_KEY,
            access_token=access_token or settings.SUPABASE_ACCESS_TOKEN,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
        )

    raise ValueError(f"Unknown STORE_PROVIDER: {provider!r}")
