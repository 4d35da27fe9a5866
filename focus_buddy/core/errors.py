"""User-facing messages for store errors.

Maps machine-readable error codes to the message shown to the user.
Codes not listed fall back to the caller's message for the operation.
"""

from __future__ import annotations

from focus_buddy.ports.store_port import AuthRequiredError, StoreError

_MESSAGES: dict[str, str] = {
    # Postgres
    "23505": "This item already exists.",
    "23503": "The item this refers to no longer exists.",
    "23502": "A required field is missing.",
    "42501": "You don't have permission to do that.",
    # PostgREST
    "PGRST301": "Your session has expired. Please sign in again.",
    # Local
    "network": "Network error. Please check your internet connection.",
    "timeout": "The server took too long to respond. Please try again.",
    "not_found": "That item no longer exists.",
    "conflict": "This item was changed elsewhere. Please try again.",
}

_AUTH_MESSAGE = _MESSAGES["PGRST301"]


def user_message(error: Exception, fallback: str = "Something went wrong.") -> str:
    """Message to show the user for `error`."""
    if isinstance(error, AuthRequiredError):
        return _AUTH_MESSAGE
    if isinstance(error, StoreError):
        if error.code == "invalid_input":
            return str(error) or fallback
        return _MESSAGES.get(error.code, fallback)
    return fallback
