"""
Channel manager: owns the single websocket connection to the server.

States: DISCONNECTED -> CONNECTING -> OPEN -> CLOSING -> DISCONNECTED.
Frames are decoded on a dedicated receive thread and published through
``on_message``. Every transition into DISCONNECTED publishes
``on_disconnected`` so that session-scoped state can be reset.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as websocket_connect

from .errors import ChannelClosed, ChannelNotReady, ProtocolViolation
from .events import EventHandler
from .notifications import Notifier
from .protocol import decode_server_message, encode_client_message
from .types import WireModel

logger = logging.getLogger(__name__)

WEBSOCKET_PORT = 8298


class ChannelState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class ChannelManager:
    """Single persistent connection with guarded sends and optional reconnect.

    Events:
        on_connected(): the channel became OPEN
        on_message(message): a decoded server message arrived
        on_disconnected(closed): the channel returned to DISCONNECTED;
            ``closed`` is a ChannelClosed describing why
    """

    def __init__(
        self,
        url: str,
        notifier: Notifier,
        connector: Callable[[str], Any] | None = None,
        auto_reconnect: bool = False,
        reconnect_delay: float = 1.0,
    ):
        """
        Args:
            url: Websocket URL, e.g. ``ws://localhost:8298``
            notifier: Receives a user-facing error when a send is dropped
            connector: Opens a connection for a URL; defaults to the
                synchronous ``websockets`` client
            auto_reconnect: Reconnect after a remote close or failed attempt
            reconnect_delay: Seconds to wait before reconnecting
        """
        self._url = url
        self._notifier = notifier
        self._connector = connector or websocket_connect
        self._auto_reconnect = auto_reconnect
        self._reconnect_delay = reconnect_delay

        self._state = ChannelState.DISCONNECTED
        self._connection: Any | None = None
        self._receive_thread: threading.Thread | None = None
        self._reconnect_timer: threading.Timer | None = None
        self._closing_locally = False
        # Set by close(); stops pending and in-flight reconnect attempts
        self._stopped = False
        self._lock = threading.RLock()

        self.on_connected = EventHandler("channel_connected")
        self.on_message = EventHandler("channel_message")
        self.on_disconnected = EventHandler("channel_disconnected")

        self._stats = {
            "connect_attempts": 0,
            "messages_received": 0,
            "messages_sent": 0,
            "protocol_violations": 0,
            "unknown_messages": 0,
        }

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ChannelState.OPEN

    def connect(self) -> bool:
        """Open the channel. A no-op while already connecting or open.

        Returns:
            True if the channel is open (or being opened) afterwards.
        """
        with self._lock:
            self._stopped = False
        return self._open()

    def _open(self) -> bool:
        with self._lock:
            if self._state in (ChannelState.CONNECTING, ChannelState.OPEN):
                return True
            self._cancel_reconnect()
            self._state = ChannelState.CONNECTING
            self._closing_locally = False
            self._stats["connect_attempts"] += 1

        try:
            connection = self._connector(self._url)
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.warning(f"Failed to connect to {self._url}: {e}")
            with self._lock:
                self._state = ChannelState.DISCONNECTED
            self._schedule_reconnect()
            return False

        with self._lock:
            # close() ran while the handshake was in flight
            abandoned = self._stopped
            if abandoned:
                self._state = ChannelState.DISCONNECTED
            else:
                self._connection = connection
                self._state = ChannelState.OPEN
                thread = threading.Thread(
                    target=self._receive_loop,
                    args=(connection,),
                    name="micap-channel-receive",
                    daemon=True,
                )
                self._receive_thread = thread

        if abandoned:
            logger.info(f"Dropping connection to {self._url}, channel was closed")
            try:
                connection.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error while closing websocket: {e}")
            return False

        logger.info(f"Connected to {self._url}")
        # Started first so a listener may close() the channel right away
        thread.start()
        self.on_connected.invoke()
        return True

    def close(self) -> None:
        """Close the channel locally. Cancels any pending reconnect.

        While CONNECTING, the pending attempt is abandoned once the
        connector returns and the channel ends up DISCONNECTED.
        """
        with self._lock:
            self._stopped = True
            self._cancel_reconnect()
            connection = self._connection
            if connection is None or self._state is not ChannelState.OPEN:
                return
            self._closing_locally = True
            self._state = ChannelState.CLOSING
            thread = self._receive_thread

        try:
            connection.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error while closing websocket: {e}")

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

        # The receive thread normally finishes the transition; make sure it
        # happens even if the transport never reported the close.
        self._handle_closed(connection, "closed locally")

    def join(self, timeout: float | None = None) -> None:
        """Wait for the receive thread to finish."""
        thread = self._receive_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def send(self, message: WireModel) -> bool:
        """Send a client message if the channel is open.

        Never raises: when the channel is not open the message is dropped and
        the user is notified.
        """
        message_type = getattr(message, "type", type(message).__name__)
        try:
            connection = self._require_open()
        except ChannelNotReady as e:
            logger.warning(f"Dropping {message_type}: {e}")
            self._notifier.error("Websocket is not connected")
            return False

        frame = encode_client_message(message)
        try:
            connection.send(frame)
        except (OSError, WebSocketException) as e:
            logger.error(f"Failed to send {message_type}: {e}")
            return False

        self._stats["messages_sent"] += 1
        logger.debug(f"Sent {message_type}")
        return True

    def get_stats(self) -> dict[str, Any]:
        return self._stats.copy()

    def _require_open(self) -> Any:
        with self._lock:
            if self._state is not ChannelState.OPEN or self._connection is None:
                raise ChannelNotReady(self._state.value)
            return self._connection

    def _receive_loop(self, connection: Any) -> None:
        reason = ""
        try:
            for frame in connection:
                self._handle_frame(frame)
        except ConnectionClosed as e:
            reason = str(e)
        except (OSError, WebSocketException) as e:
            logger.warning(f"Websocket error: {e}")
            reason = str(e)

        self._handle_closed(connection, reason)

    def _handle_frame(self, frame: str | bytes) -> None:
        self._stats["messages_received"] += 1
        try:
            message = decode_server_message(frame)
        except ProtocolViolation as e:
            self._stats["protocol_violations"] += 1
            logger.warning(f"Discarding malformed message: {e}")
            return

        if message is None:
            self._stats["unknown_messages"] += 1
            return

        self.on_message.invoke(message)

    def _handle_closed(self, connection: Any, reason: str) -> None:
        with self._lock:
            # A stale connection (already handled) must not reset a newer one
            if self._connection is not connection:
                return
            local = self._closing_locally
            self._connection = None
            self._state = ChannelState.DISCONNECTED

        logger.info(f"Websocket connection closed ({reason or 'no reason'})")
        self.on_disconnected.invoke(ChannelClosed(reason, local=local))

        if not local:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._auto_reconnect:
            return
        with self._lock:
            if self._stopped:
                return
            if self._reconnect_timer is not None:
                return
            timer = threading.Timer(self._reconnect_delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
        logger.debug(f"Reconnecting in {self._reconnect_delay}s")
        timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if self._stopped:
                return
        self._open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
