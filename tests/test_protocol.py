"""Tests for the websocket protocol codec."""

import json

import pytest

from conftest import config_payload, frame, tracker_payload
from micap_client.errors import ProtocolViolation
from micap_client.protocol import (
    KNOWN_SERVER_MESSAGE_TYPES,
    InitialState,
    RemoveTracker,
    ResetSkeleton,
    SerialLog,
    ServerError,
    SkeletonUpdate,
    StopRecord,
    TrackerUpdate,
    UpdateConfig,
    decode_client_message,
    decode_server_message,
    encode_client_message,
    encode_server_message,
)
from micap_client.types import (
    BoneLocation,
    BoneOffsetKind,
    GlobalConfigPatch,
    SkeletonConfigPatch,
    Tracker,
    TrackerConfigPatch,
    TrackerInfo,
    TrackerStatus,
)


def _bone(parent=None, tail=(0.0, 0.0, 0.0)):
    return {
        "orientation": [1.0, 0.0, 0.0, 0.0],
        "tail_world_position": list(tail),
        "parent": parent,
    }


class TestDecodeServerMessage:
    def test_tracker_update(self):
        message = decode_server_message(
            frame("TrackerUpdate", trackers={"t1": tracker_payload(status="TimedOut")})
        )

        assert isinstance(message, TrackerUpdate)
        tracker = message.trackers["t1"]
        assert tracker.info.status is TrackerStatus.TIMED_OUT
        assert tracker.info.address == "192.168.1.10"
        assert tracker.info.to_be_removed is False
        assert tracker.data is None

    def test_tracker_update_with_data(self):
        message = decode_server_message(
            frame("TrackerUpdate", trackers={"t1": tracker_payload(position=(1, 2, 3))})
        )

        assert message.trackers["t1"].data.position == (1.0, 2.0, 3.0)

    def test_initial_state_without_port(self):
        raw = json.dumps(
            {
                "type": "InitialState",
                "config": config_payload(t1={"name": "Left foot", "location": "LeftFoot"}),
                "default_config": config_payload(),
                "trackers": {},
            }
        )

        message = decode_server_message(raw)

        assert isinstance(message, InitialState)
        assert message.port_name is None
        assert message.config.trackers["t1"].location is BoneLocation.LEFT_FOOT
        assert message.config.skeleton.offsets == {BoneOffsetKind.NECK_LENGTH: 0.1}
        # Sections missing on the wire fall back to defaults
        assert message.config.interface.hide_in_system_tray is False

    def test_skeleton_update_keys_are_locations(self):
        message = decode_server_message(
            frame(
                "SkeletonUpdate",
                bones={"Hip": _bone(), "Waist": _bone(parent="Hip", tail=(0, 1, 0))},
            )
        )

        assert isinstance(message, SkeletonUpdate)
        assert set(message.bones) == {BoneLocation.HIP, BoneLocation.WAIST}
        assert message.bones[BoneLocation.WAIST].parent is BoneLocation.HIP

    def test_serial_log_and_error(self):
        log = decode_server_message(frame("SerialLog", log="Restarting\n"))
        error = decode_server_message(frame("Error", error="Port busy"))

        assert isinstance(log, SerialLog)
        assert log.log == "Restarting\n"
        assert isinstance(error, ServerError)
        assert error.error == "Port busy"

    def test_bytes_payload(self):
        message = decode_server_message(frame("SerialPortChanged", port_name="COM3").encode())
        assert message.port_name == "COM3"

    def test_extra_fields_are_ignored(self):
        message = decode_server_message(frame("SerialLog", log="x", sequence=42))
        assert message.log == "x"

    def test_unknown_type_is_ignored(self):
        assert decode_server_message(frame("BatteryReport", level=3)) is None

    def test_known_types(self):
        assert KNOWN_SERVER_MESSAGE_TYPES == {
            "TrackerUpdate",
            "InitialState",
            "SkeletonUpdate",
            "ConfigUpdate",
            "SerialLog",
            "SerialPortChanged",
            "Error",
        }


class TestProtocolViolations:
    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[1, 2, 3]",
            '"TrackerUpdate"',
            '{"trackers": {}}',
            '{"type": 7}',
        ],
    )
    def test_structurally_invalid(self, raw):
        with pytest.raises(ProtocolViolation):
            decode_server_message(raw)

    def test_invalid_status_value(self):
        raw = frame("TrackerUpdate", trackers={"t1": tracker_payload(status="Bogus")})

        with pytest.raises(ProtocolViolation) as exc_info:
            decode_server_message(raw)

        assert exc_info.value.payload == raw

    def test_missing_required_field(self):
        with pytest.raises(ProtocolViolation):
            decode_server_message(frame("SerialLog"))

    def test_short_quaternion(self):
        bone = _bone()
        bone["orientation"] = [1.0, 0.0, 0.0]
        with pytest.raises(ProtocolViolation):
            decode_server_message(frame("SkeletonUpdate", bones={"Hip": bone}))

    def test_unknown_bone_location(self):
        with pytest.raises(ProtocolViolation):
            decode_server_message(frame("SkeletonUpdate", bones={"Tail": _bone()}))

    def test_missing_parent(self):
        with pytest.raises(ProtocolViolation, match="missing parent"):
            decode_server_message(
                frame("SkeletonUpdate", bones={"Chest": _bone(parent="Waist")})
            )

    def test_parent_cycle(self):
        bones = {
            "Hip": _bone(parent="Chest"),
            "Waist": _bone(parent="Hip"),
            "Chest": _bone(parent="Waist"),
        }
        with pytest.raises(ProtocolViolation, match="cycle"):
            decode_server_message(frame("SkeletonUpdate", bones=bones))


class TestEncodeClientMessage:
    def test_update_config_only_sends_set_fields(self):
        patch = GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(name="X")})

        payload = json.loads(encode_client_message(UpdateConfig(config=patch)))

        assert payload == {"type": "UpdateConfig", "config": {"trackers": {"t1": {"name": "X"}}}}

    def test_explicit_null_is_kept(self):
        patch = GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(location=None)})

        payload = json.loads(encode_client_message(UpdateConfig(config=patch)))

        assert payload["config"]["trackers"]["t1"] == {"location": None}

    def test_enum_keys_use_wire_names(self):
        patch = GlobalConfigPatch(
            skeleton=SkeletonConfigPatch(offsets={BoneOffsetKind.HIPS_WIDTH: 0.3})
        )

        payload = json.loads(encode_client_message(UpdateConfig(config=patch)))

        assert payload["config"] == {"skeleton": {"offsets": {"HipsWidth": 0.3}}}

    def test_unit_messages(self):
        assert json.loads(encode_client_message(ResetSkeleton())) == {"type": "ResetSkeleton"}

    def test_stop_record(self):
        payload = json.loads(encode_client_message(StopRecord(save_path="/tmp/take1.bvh")))
        assert payload == {"type": "StopRecord", "save_path": "/tmp/take1.bvh"}

    def test_server_side_decode(self):
        message = decode_client_message(encode_client_message(RemoveTracker(id="t9")))
        assert isinstance(message, RemoveTracker)
        assert message.id == "t9"


class TestEncodeServerMessage:
    def test_omits_null_fields(self):
        update = TrackerUpdate(
            trackers={"t1": Tracker(info=TrackerInfo(status=TrackerStatus.OFF))}
        )

        payload = json.loads(encode_server_message(update))

        assert payload["type"] == "TrackerUpdate"
        assert "data" not in payload["trackers"]["t1"]
        assert "address" not in payload["trackers"]["t1"]["info"]
        assert decode_server_message(encode_server_message(update)) == update
