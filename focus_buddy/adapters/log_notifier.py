"""Log notification adapter — implements NotificationPort.

Writes user-facing messages to the log. Used by the agenda entry point
and as the default channel when no UI is attached.
"""

from __future__ import annotations

import logging

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogNotifier:
    """Logging implementation of NotificationPort."""

    def __init__(self, name: str = "focus_buddy.user") -> None:
        self._logger = logging.getLogger(name)

    async def send_message(self, text: str, level: str = "info") -> None:
        self._logger.log(_LEVELS.get(level, logging.INFO), text)
