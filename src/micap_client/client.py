"""
micap client: keeps a live view of the server's trackers, skeleton and
configuration, and sends user actions back.

The client wires the channel, the reconciler and the config patch engine
together. Server messages are applied either directly on the receive thread
(auto_dispatch=True) or queued and applied on the caller's thread via
dispatch_pending_events().
"""

import logging
import threading
from queue import Empty, Full, Queue
from typing import Any

from .channel import WEBSOCKET_PORT, ChannelManager, ChannelState
from .config import ClientConfig
from .config_patch import ConfigPatchEngine
from .errors import ChannelClosed, ConfirmationDeclined, ServerReportedError
from .notifications import LoggingNotifier, Notifier
from .protocol import (
    InitialState,
    ResetSkeleton,
    ResetTrackerOrientations,
    SerialSend,
    StartRecord,
    StopRecord,
    TrackerUpdate,
)
from .reconciler import EntityReconciler
from .skeleton import SkeletonGeometry
from .types import (
    Bone,
    BoneLocation,
    GlobalConfig,
    GlobalConfigPatch,
    Tracker,
    TrackerConfigPatch,
)

logger = logging.getLogger(__name__)

_EVENT_MESSAGE = "message"
_EVENT_CLOSED = "closed"


def _without_trackers(message: Any) -> Any | None:
    """Strip tracker state from a message that belongs to an ended session."""
    if isinstance(message, TrackerUpdate):
        return None
    if isinstance(message, InitialState):
        return message.model_copy(update={"trackers": {}})
    return message


class MicapClient:
    """
    Client for a micap server.

    Design: pull-based state access (get_trackers(), get_bones(), ...) plus
    event callbacks re-exported from the reconciler and channel.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = WEBSOCKET_PORT,
        notifier: Notifier | None = None,
        auto_reconnect: bool = True,
        reconnect_delay: float = 1.0,
        auto_dispatch: bool = True,
        queue_max: int = 10000,
        connector: Any = None,
    ):
        """
        Initialize the client.

        Args:
            host: Server host name
            port: Server websocket port
            notifier: Receives toasts, confirmations and prompts
            auto_reconnect: Reconnect automatically after the server goes away
            reconnect_delay: Seconds between reconnection attempts
            auto_dispatch: If True, server messages are applied on the receive thread
            queue_max: Max queued events when auto_dispatch is False
            connector: Override for opening the websocket (testing)
        """
        self._host = host
        self._port = port
        self._auto_dispatch = auto_dispatch
        self._notifier: Notifier = notifier or LoggingNotifier()

        # Serializes inbound handling with local edits (run-to-completion)
        self._lock = threading.RLock()
        self._event_queue: Queue = Queue(maxsize=queue_max)
        # Bumped on every close while queueing; older queued trackers are stale
        self._session = 0

        self._reconciler = EntityReconciler(self._notifier)
        self._channel = ChannelManager(
            f"ws://{host}:{port}",
            self._notifier,
            connector=connector,
            auto_reconnect=auto_reconnect,
            reconnect_delay=reconnect_delay,
        )
        self._patch_engine = ConfigPatchEngine(
            self._reconciler, self._channel, self._notifier, lock=self._lock
        )

        self._channel.on_message.add_listener(self._on_channel_message)
        self._channel.on_disconnected.add_listener(self._on_channel_disconnected)

        # Event handlers
        self.on_connected = self._channel.on_connected
        self.on_disconnected = self._channel.on_disconnected
        self.on_trackers_changed = self._reconciler.on_trackers_changed
        self.on_tracker_connected = self._reconciler.on_tracker_connected
        self.on_tracker_removed = self._reconciler.on_tracker_removed
        self.on_bones_changed = self._reconciler.on_bones_changed
        self.on_config_changed = self._reconciler.on_config_changed
        self.on_interface_config_changed = self._reconciler.on_interface_config_changed
        self.on_serial_log = self._reconciler.on_serial_log
        self.on_port_changed = self._reconciler.on_port_changed
        self.on_server_error = self._reconciler.on_server_error

        self._stats = {
            "events_queued": 0,
            "events_dropped": 0,
            "events_dispatched": 0,
        }

    @classmethod
    def from_config(
        cls, config: ClientConfig, notifier: Notifier | None = None
    ) -> "MicapClient":
        return cls(
            host=config.server_host,
            port=config.websocket_port,
            notifier=notifier,
            auto_reconnect=config.auto_reconnect,
            reconnect_delay=config.reconnect_delay,
            auto_dispatch=config.auto_dispatch,
            queue_max=config.queue_max,
        )

    # Properties
    @property
    def server_url(self) -> str:
        return self._channel.url

    @property
    def state(self) -> ChannelState:
        return self._channel.state

    @property
    def is_connected(self) -> bool:
        return self._channel.is_open

    @property
    def port_name(self) -> str | None:
        """Serial port the server is attached to, if any."""
        return self._reconciler.port_name

    @property
    def last_server_error(self) -> ServerReportedError | None:
        return self._reconciler.last_server_error

    @property
    def channel(self) -> ChannelManager:
        return self._channel

    @property
    def reconciler(self) -> EntityReconciler:
        return self._reconciler

    def start(self) -> "MicapClient":
        """Connect to the server. Returns self for chaining."""
        if not self._channel.connect():
            logger.warning(f"Server at {self.server_url} is not reachable yet")
        return self

    def stop(self) -> None:
        self._channel.close()

    def close(self) -> None:
        """Alias for stop()."""
        self.stop()

    # Inbound
    def _on_channel_message(self, message: Any) -> None:
        if self._auto_dispatch:
            self._apply(_EVENT_MESSAGE, message)
        else:
            self._enqueue((_EVENT_MESSAGE, self._session, message))

    def _on_channel_disconnected(self, closed: ChannelClosed) -> None:
        if self._auto_dispatch:
            self._apply(_EVENT_CLOSED, closed)
            return

        # Trackers go away now; listeners hear about it at dispatch time
        with self._lock:
            self._session += 1
            cleared = self._reconciler.clear_trackers(notify=False)
            self._enqueue((_EVENT_CLOSED, self._session, cleared))

    def _apply(self, kind: str, payload: Any) -> None:
        with self._lock:
            if kind == _EVENT_MESSAGE:
                self._reconciler.handle(payload)
            else:
                # No tracker survives a session boundary
                self._reconciler.clear_trackers()

    def _apply_queued(self, kind: str, session: int, payload: Any) -> None:
        with self._lock:
            if kind == _EVENT_CLOSED:
                if payload:
                    self._reconciler.on_trackers_changed.invoke({})
                return

            if session != self._session:
                payload = _without_trackers(payload)
                if payload is None:
                    return
            self._reconciler.handle(payload)

    def _enqueue(self, event: tuple[str, int, Any]) -> None:
        try:
            self._event_queue.put_nowait(event)
        except Full:
            # Drop oldest and add new
            try:
                self._event_queue.get_nowait()
                self._stats["events_dropped"] += 1
            except Empty:
                pass
            try:
                self._event_queue.put_nowait(event)
            except Full:
                self._stats["events_dropped"] += 1
                logger.warning("Event queue full, dropping server message")
                return
        self._stats["events_queued"] += 1

    def dispatch_pending_events(self, max_items: int = 100) -> int:
        """Apply queued server events on the caller's thread."""
        if self._auto_dispatch:
            return 0

        dispatched = 0
        while dispatched < max_items:
            try:
                kind, session, payload = self._event_queue.get_nowait()
            except Empty:
                break
            self._apply_queued(kind, session, payload)
            dispatched += 1

        self._stats["events_dispatched"] += dispatched
        return dispatched

    # State API (pull-based)
    def get_trackers(self) -> dict[str, Tracker]:
        with self._lock:
            return self._reconciler.trackers

    def get_tracker(self, tracker_id: str) -> Tracker | None:
        with self._lock:
            return self._reconciler.get_tracker(tracker_id)

    def get_bones(self) -> dict[BoneLocation, Bone]:
        with self._lock:
            return self._reconciler.bones

    def get_skeleton_geometry(self) -> SkeletonGeometry:
        with self._lock:
            return self._reconciler.skeleton_geometry

    def get_config(self) -> GlobalConfig:
        with self._lock:
            return self._reconciler.config

    def get_default_config(self) -> GlobalConfig:
        with self._lock:
            return self._reconciler.default_config

    def get_device_log(self) -> list[str]:
        with self._lock:
            return self._reconciler.device_log

    # Configuration API
    def update_config(
        self, patch: GlobalConfigPatch | dict[str, Any]
    ) -> GlobalConfigPatch | None:
        """Apply a partial configuration edit locally and on the server."""
        if not isinstance(patch, GlobalConfigPatch):
            patch = GlobalConfigPatch.model_validate(patch)
        return self._patch_engine.apply_local_patch(patch)

    def set_config(self, config: GlobalConfig) -> GlobalConfigPatch | None:
        """Apply a fully edited configuration; only the differences are sent."""
        return self._patch_engine.apply_local_config(config)

    def set_tracker_name(self, tracker_id: str, name: str) -> GlobalConfigPatch | None:
        return self.update_config(
            GlobalConfigPatch(trackers={tracker_id: TrackerConfigPatch(name=name)})
        )

    def set_tracker_location(
        self, tracker_id: str, location: BoneLocation | None
    ) -> GlobalConfigPatch | None:
        """Assign a tracker to a bone, or clear the assignment with None."""
        return self.update_config(
            GlobalConfigPatch(
                trackers={tracker_id: TrackerConfigPatch(location=location)}
            )
        )

    def remove_tracker(self, tracker_id: str) -> bool:
        """Remove a tracker after user confirmation."""
        return self._patch_engine.remove_tracker(tracker_id)

    # Commands
    def send_serial(self, data: str) -> bool:
        """Write raw data to the serial port attached to the server."""
        return self._channel.send(SerialSend(data=data))

    def send_wifi_credentials(self, ssid: str, password: str = "") -> bool:
        """Provision WiFi on the serial-connected tracker."""
        return self.send_serial(f"Wifi\0{ssid}\0{password}\n")

    def restart_device(self) -> bool:
        return self.send_serial("Restart\n")

    def factory_reset_device(self) -> bool:
        try:
            confirmed = self._notifier.confirm(
                "Factory reset",
                "Reset the tracker connected over serial to factory settings? "
                "Its WiFi credentials will be erased.",
            )
        except ConfirmationDeclined:
            confirmed = False
        if not confirmed:
            return False
        return self.send_serial("FactoryReset\n")

    def reset_tracker_orientations(self) -> bool:
        return self._channel.send(ResetTrackerOrientations())

    def reset_skeleton(self) -> bool:
        return self._channel.send(ResetSkeleton())

    def start_record(self) -> bool:
        return self._channel.send(StartRecord())

    def stop_record(self, save_path: str | None = None) -> bool:
        """Stop recording and save it. Prompts for a path when none is given."""
        if save_path is None:
            save_path = self._notifier.prompt(
                "Save recording", "Enter the path to save the recording to"
            )
        if not save_path:
            logger.info("Stop record cancelled, no save path")
            return False
        return self._channel.send(StopRecord(save_path=save_path))

    # Diagnostics
    def get_stats(self) -> dict[str, Any]:
        stats = self._channel.get_stats()
        stats.update(self._stats)
        stats["trackers"] = len(self._reconciler.trackers)
        stats["device_log_lines"] = len(self._reconciler.device_log)
        return stats
