"""Shared fixtures and fakes for the micap client tests."""

import json
import queue
import time
from typing import Any

import pytest

from micap_client.reconciler import EntityReconciler

_CLOSE = object()


class RecordingNotifier:
    """Notifier that records everything and answers with canned results."""

    def __init__(self, confirm_result: bool = True, prompt_result: str | None = None):
        self.confirm_result = confirm_result
        self.prompt_result = prompt_result
        self.infos: list[str] = []
        self.errors: list[str] = []
        self.confirmations: list[tuple[str, str]] = []
        self.prompts: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.infos.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def confirm(self, title: str, message: str) -> bool:
        self.confirmations.append((title, message))
        return self.confirm_result

    def prompt(self, title: str, message: str) -> str | None:
        self.prompts.append((title, message))
        return self.prompt_result


class FakeChannel:
    """Stands in for ChannelManager where only send() matters."""

    def __init__(self, is_open: bool = True):
        self.is_open = is_open
        self.sent: list[Any] = []

    def send(self, message: Any) -> bool:
        if not self.is_open:
            return False
        self.sent.append(message)
        return True


class FakeConnection:
    """Scripted websocket connection.

    Iterating yields queued frames until the connection is closed, either
    locally via close() or remotely via remote_close().
    """

    def __init__(self, frames: list[str] = (), hold_open: bool = True):
        self._inbox: queue.Queue = queue.Queue()
        for frame in frames:
            self._inbox.put(frame)
        if not hold_open:
            self._inbox.put(_CLOSE)
        self.sent: list[str] = []
        self.closed = False

    def __iter__(self):
        while True:
            try:
                frame = self._inbox.get(timeout=10)
            except queue.Empty:
                return
            if frame is _CLOSE:
                return
            yield frame

    def push(self, frame: str) -> None:
        self._inbox.put(frame)

    def remote_close(self) -> None:
        self._inbox.put(_CLOSE)

    def send(self, frame: str) -> None:
        if self.closed:
            raise OSError("connection is closed")
        self.sent.append(frame)

    def close(self) -> None:
        self.closed = True
        self._inbox.put(_CLOSE)


class FakeConnector:
    """Returns prepared connections in order; refuses once they run out."""

    def __init__(self, *connections: FakeConnection):
        self._connections = list(connections)
        self.urls: list[str] = []

    def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if not self._connections:
            raise OSError("connection refused")
        return self._connections.pop(0)

    @property
    def calls(self) -> int:
        return len(self.urls)


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def tracker_payload(
    address: str | None = "192.168.1.10",
    status: str = "Ok",
    to_be_removed: bool = False,
    battery_level: float = 0.8,
    position: tuple[float, float, float] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "info": {
            "status": status,
            "latency_ms": 12,
            "battery_level": battery_level,
            "address": address,
            "to_be_removed": to_be_removed,
        }
    }
    if position is not None:
        payload["data"] = {
            "orientation": [1.0, 0.0, 0.0, 0.0],
            "acceleration": [0.0, 0.0, 0.0],
            "position": list(position),
        }
    return payload


def config_payload(**trackers: dict[str, Any]) -> dict[str, Any]:
    return {
        "trackers": trackers,
        "vmc": {"enabled": False, "send_port": 39539, "receive_port": 39540},
        "vrchat": {"enabled": True, "send_port": 9000, "bones_to_send": ["Hip"]},
        "skeleton": {"offsets": {"NeckLength": 0.1}},
    }


def frame(msg_type: str, **fields: Any) -> str:
    return json.dumps({"type": msg_type, **fields})


def initial_state_frame(trackers: dict[str, Any] | None = None, **config_trackers) -> str:
    return frame(
        "InitialState",
        config=config_payload(**config_trackers),
        default_config=config_payload(),
        port_name=None,
        trackers=trackers or {},
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def reconciler(notifier: RecordingNotifier) -> EntityReconciler:
    return EntityReconciler(notifier)
