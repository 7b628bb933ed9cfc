"""
Bounded log of lines emitted by the serial device, plus classification of
well-known status lines into user-facing messages.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator

DEVICE_LOG_MAX_LINES = 100

# Status lines printed by the tracker firmware over serial
SERIAL_STATUS_MESSAGES: dict[str, str] = {
    "WifiConnecting": "Connecting to WiFi...",
    "WifiConnectOk": "Connected to WiFi",
    "WifiConnectTimeout": "Failed to connect to WiFi: timed out",
    "Connected": "Tracker connected to server",
    "Restarting": "Tracker is restarting",
    "FactoryReset": "Tracker configuration reset",
}


def classify_serial_line(line: str) -> str | None:
    """Return the user-facing text for a known status line, else None."""
    return SERIAL_STATUS_MESSAGES.get(line.strip())


class DeviceLog:
    """FIFO of the most recent serial lines, oldest first."""

    def __init__(self, maxlen: int = DEVICE_LOG_MAX_LINES) -> None:
        self._lines: deque[str] = deque(maxlen=maxlen)

    @property
    def maxlen(self) -> int:
        return self._lines.maxlen or 0

    def append(self, line: str) -> None:
        # deque drops the oldest entry once maxlen is reached
        self._lines.append(line)

    def lines(self) -> list[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._lines))
