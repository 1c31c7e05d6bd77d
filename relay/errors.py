"""Relay exception hierarchy.

Every failure the relay knows how to report derives from RelayError, so a
command handler can catch one type, log it and tell the user.

    TransportError     - Telegram rejected or failed a call
    AdapterError       - the completion endpoint failed or the stream broke
    ConfigurationError - a required credential is missing at startup
"""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for all relay errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TransportError(RelayError):
    """A messaging transport call failed (send, edit, poll)."""

    def __init__(self, message: str, method: str | None = None) -> None:
        self.method = method
        super().__init__(message)


class AdapterError(RelayError):
    """A completion request or stream failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(RelayError):
    """Required configuration is missing or invalid."""
