"""
Error taxonomy for the micap client.

None of these are fatal to the process. The worst outcome of any of them is an
empty tracker set pending reconnection.
"""

from __future__ import annotations

from typing import Any


class MicapClientError(Exception):
    """Base class for all client-side errors."""


class ChannelNotReady(MicapClientError):
    """Raised when a send is attempted while the channel is not open."""

    def __init__(self, state: Any) -> None:
        self.state = state
        super().__init__(f"Channel is not open (state: {state})")


class ProtocolViolation(MicapClientError):
    """Raised when an inbound payload does not match its declared shape.

    Attributes:
        payload: The raw payload that failed to decode.
    """

    def __init__(self, message: str, payload: str | bytes | None = None) -> None:
        self.payload = payload
        super().__init__(message)


class ServerReportedError(MicapClientError):
    """An error message pushed by the server, kept verbatim."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ChannelClosed(MicapClientError):
    """The channel closed, either locally or by the remote end."""

    def __init__(self, reason: str = "", local: bool = False) -> None:
        self.reason = reason
        self.local = local
        super().__init__(reason or "Channel closed")


class ConfirmationDeclined(MicapClientError):
    """The user declined a confirmation prompt."""
