"""
Entity reconciler: merges server messages into the client's local state.

The reconciler is the only owner of trackers, bones, configuration, the serial
port name and the device log. Other components read copies through its
accessors and mutate only through the explicit methods below.

Tracker updates are deltas. An id missing from a TrackerUpdate is unchanged;
a tracker disappears only when the server flags it ``to_be_removed`` or when
the session ends.
"""

from __future__ import annotations

import logging
from typing import Any

from .device_log import DeviceLog, classify_serial_line
from .errors import ServerReportedError
from .events import EventHandler
from .notifications import Notifier
from .protocol import (
    ConfigUpdate,
    InitialState,
    SerialLog,
    SerialPortChanged,
    ServerError,
    SkeletonUpdate,
    TrackerUpdate,
)
from .skeleton import SkeletonGeometry, derive_skeleton_geometry
from .types import Bone, BoneLocation, GlobalConfig, InterfaceConfig, Tracker

logger = logging.getLogger(__name__)


class EntityReconciler:
    """Owns all synchronized entities and applies inbound messages to them.

    Events:
        on_trackers_changed(trackers): after any change to the tracker mapping
        on_tracker_connected(tracker_id, tracker): a previously unknown tracker
        on_tracker_removed(tracker_id): a tracker left the mapping
        on_bones_changed(bones, geometry): a new skeleton snapshot arrived
        on_config_changed(config): configuration was replaced
        on_interface_config_changed(interface): host-shell settings changed
        on_serial_log(line): a device log line was appended
        on_port_changed(port_name): serial port connected or disconnected
        on_server_error(error): the server reported an error
    """

    def __init__(self, notifier: Notifier):
        self._notifier = notifier

        self._trackers: dict[str, Tracker] = {}
        self._bones: dict[BoneLocation, Bone] = {}
        self._geometry = SkeletonGeometry()
        self._config = GlobalConfig()
        self._default_config = GlobalConfig()
        self._port_name: str | None = None
        self._device_log = DeviceLog()
        self._last_server_error: ServerReportedError | None = None

        self.on_trackers_changed = EventHandler("trackers_changed")
        self.on_tracker_connected = EventHandler("tracker_connected")
        self.on_tracker_removed = EventHandler("tracker_removed")
        self.on_bones_changed = EventHandler("bones_changed")
        self.on_config_changed = EventHandler("config_changed")
        self.on_interface_config_changed = EventHandler("interface_config_changed")
        self.on_serial_log = EventHandler("serial_log")
        self.on_port_changed = EventHandler("port_changed")
        self.on_server_error = EventHandler("server_error")

    # Accessors (copies, so callers cannot mutate owned state)
    @property
    def trackers(self) -> dict[str, Tracker]:
        return {
            tracker_id: tracker.model_copy(deep=True)
            for tracker_id, tracker in self._trackers.items()
        }

    @property
    def bones(self) -> dict[BoneLocation, Bone]:
        return {
            location: bone.model_copy(deep=True)
            for location, bone in self._bones.items()
        }

    @property
    def skeleton_geometry(self) -> SkeletonGeometry:
        return self._geometry

    @property
    def config(self) -> GlobalConfig:
        return self._config.model_copy(deep=True)

    @property
    def default_config(self) -> GlobalConfig:
        return self._default_config.model_copy(deep=True)

    @property
    def port_name(self) -> str | None:
        return self._port_name

    @property
    def device_log(self) -> list[str]:
        return self._device_log.lines()

    @property
    def last_server_error(self) -> ServerReportedError | None:
        return self._last_server_error

    def get_tracker(self, tracker_id: str) -> Tracker | None:
        tracker = self._trackers.get(tracker_id)
        return tracker.model_copy(deep=True) if tracker else None

    # Inbound dispatch
    def handle(self, message: Any) -> None:
        """Apply one decoded server message."""
        if isinstance(message, InitialState):
            self._apply_initial_state(message)
        elif isinstance(message, TrackerUpdate):
            self._apply_tracker_update(message)
        elif isinstance(message, SkeletonUpdate):
            self._apply_skeleton_update(message)
        elif isinstance(message, ConfigUpdate):
            self._set_config(message.config)
        elif isinstance(message, SerialLog):
            self._apply_serial_log(message)
        elif isinstance(message, SerialPortChanged):
            self._apply_port_changed(message)
        elif isinstance(message, ServerError):
            self._apply_server_error(message)
        else:
            logger.warning(f"Reconciler ignoring unsupported message {message!r}")

    def _apply_initial_state(self, message: InitialState) -> None:
        self._default_config = message.default_config
        self._trackers = {
            tracker_id: tracker
            for tracker_id, tracker in message.trackers.items()
            if not tracker.info.to_be_removed
        }
        self._port_name = message.port_name
        logger.info(
            f"Received initial state with {len(self._trackers)} tracker(s), "
            f"port={self._port_name}"
        )

        self._set_config(message.config, force_interface_event=True)
        self.on_trackers_changed.invoke(self.trackers)
        self.on_port_changed.invoke(self._port_name)

    def _apply_tracker_update(self, message: TrackerUpdate) -> None:
        changed = False

        for tracker_id, incoming in message.trackers.items():
            existing = self._trackers.get(tracker_id)

            if incoming.info.to_be_removed:
                if existing is not None:
                    del self._trackers[tracker_id]
                    changed = True
                    logger.info(f"Tracker {tracker_id} removed")
                    self.on_tracker_removed.invoke(tracker_id)
                continue

            if existing is None:
                self._trackers[tracker_id] = incoming
                changed = True
                address = incoming.info.address
                logger.info(f"Tracker {tracker_id} connected from {address}")
                if address:
                    self._notifier.info(f"New tracker connected from {address}")
                else:
                    self._notifier.info("New tracker connected")
                self.on_tracker_connected.invoke(
                    tracker_id, incoming.model_copy(deep=True)
                )
                continue

            existing.info = incoming.info
            # A delta without a sample keeps the last known one
            if incoming.data is not None:
                existing.data = incoming.data
            changed = True

        if changed:
            self.on_trackers_changed.invoke(self.trackers)

    def _apply_skeleton_update(self, message: SkeletonUpdate) -> None:
        self._bones = dict(message.bones)
        self._geometry = derive_skeleton_geometry(self._bones)
        self.on_bones_changed.invoke(self.bones, self._geometry)

    def _apply_serial_log(self, message: SerialLog) -> None:
        line = message.log
        self._device_log.append(line)
        logger.debug(f"Serial: {line.rstrip()}")

        status_text = classify_serial_line(line)
        if status_text is not None:
            self._notifier.info(status_text)

        self.on_serial_log.invoke(line)

    def _apply_port_changed(self, message: SerialPortChanged) -> None:
        self._port_name = message.port_name
        if message.port_name:
            logger.info(f"Serial port {message.port_name} connected")
            self._notifier.info(f"Serial port {message.port_name} connected")
        else:
            logger.info("Serial port disconnected")
            self._notifier.info("Serial port disconnected")
        self.on_port_changed.invoke(self._port_name)

    def _apply_server_error(self, message: ServerError) -> None:
        error = ServerReportedError(message.error)
        self._last_server_error = error
        logger.error(f"Server reported error: {message.error}")
        self._notifier.error(message.error)
        self.on_server_error.invoke(error)

    # Local mutations
    def _set_config(
        self, config: GlobalConfig, force_interface_event: bool = False
    ) -> None:
        previous_interface: InterfaceConfig = self._config.interface
        self._config = config
        self.on_config_changed.invoke(self.config)

        if force_interface_event or config.interface != previous_interface:
            self.on_interface_config_changed.invoke(
                config.interface.model_copy(deep=True)
            )

    def replace_config(self, config: GlobalConfig) -> None:
        """Replace the live configuration (used by local patch application)."""
        self._set_config(config.model_copy(deep=True))

    def forget_tracker(self, tracker_id: str) -> None:
        """Drop a tracker and its configuration entry locally."""
        removed = self._trackers.pop(tracker_id, None) is not None
        if removed:
            self.on_tracker_removed.invoke(tracker_id)
            self.on_trackers_changed.invoke(self.trackers)

        if tracker_id in self._config.trackers:
            config = self.config
            del config.trackers[tracker_id]
            self._set_config(config)

    def clear_trackers(self, notify: bool = True) -> bool:
        """Forget every tracker. Called whenever the session ends.

        With ``notify=False`` the change event is left to the caller, which
        lets a queued client clear state at once but report it on its own
        thread later.

        Returns:
            True if any tracker was removed.
        """
        if not self._trackers:
            return False
        logger.info(f"Clearing {len(self._trackers)} tracker(s)")
        self._trackers.clear()
        if notify:
            self.on_trackers_changed.invoke({})
        return True
