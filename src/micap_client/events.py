"""
Observer signals used to publish state changes to interested parties.
"""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventHandler:
    """Ordered list of callbacks invoked with the same arguments.

    A failing listener is logged and does not prevent the remaining listeners
    from running, nor does it propagate into the state machine that emitted
    the event.
    """

    def __init__(self, name: str = ""):
        self._name = name
        self._callbacks: list[Callable[..., Any]] = []

    def add_listener(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Add a callback listener. Returns unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe():
            self.remove_listener(callback)

        return unsubscribe

    def remove_listener(self, callback: Callable[..., Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """Invoke all registered callbacks."""
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception:
                logger.exception(f"Listener for {self._name or 'event'} failed")

    @property
    def listener_count(self) -> int:
        return len(self._callbacks)

    def clear(self) -> None:
        self._callbacks.clear()
