"""Notification port — abstract interface for user-visible messages.

Core modules depend on this protocol, never on a specific UI channel
(toast, system notification, log).
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, text: str, level: str = "info") -> None: ...
