"""Tests for config patch merging and the ConfigPatchEngine."""

import json

import pytest

from conftest import FakeChannel, RecordingNotifier, initial_state_frame, tracker_payload
from micap_client.config_patch import (
    ConfigPatchEngine,
    diff_configs,
    merge_config_patch,
    minimize_patch,
    patch_is_empty,
)
from micap_client.errors import ConfirmationDeclined
from micap_client.protocol import (
    RemoveTracker,
    UpdateConfig,
    decode_server_message,
    encode_client_message,
)
from micap_client.reconciler import EntityReconciler
from micap_client.types import (
    BoneLocation,
    BoneOffsetKind,
    GlobalConfig,
    GlobalConfigPatch,
    InterfaceConfigPatch,
    SkeletonConfigPatch,
    TrackerConfig,
    TrackerConfigPatch,
    VmcConfigPatch,
)


def _config() -> GlobalConfig:
    return GlobalConfig(
        trackers={
            "t1": TrackerConfig(name="Left foot", location=BoneLocation.LEFT_FOOT),
            "t2": TrackerConfig(name="Head", location=BoneLocation.HEAD),
        },
        skeleton={"offsets": {BoneOffsetKind.NECK_LENGTH: 0.1}},
    )


class TestMergeConfigPatch:
    def test_name_only_patch_keeps_location(self):
        merged = merge_config_patch(
            _config(),
            GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(name="X")}),
        )

        assert merged.trackers["t1"] == TrackerConfig(
            name="X", location=BoneLocation.LEFT_FOOT
        )
        assert merged.trackers["t2"] == _config().trackers["t2"]
        assert merged.vmc == _config().vmc
        assert merged.skeleton == _config().skeleton

    def test_explicit_none_clears_optional_field(self):
        merged = merge_config_patch(
            _config(),
            GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(location=None)}),
        )

        assert merged.trackers["t1"].location is None
        assert merged.trackers["t1"].name == "Left foot"
        assert merged.trackers["t2"].location is BoneLocation.HEAD

    def test_none_does_not_clear_required_field(self):
        merged = merge_config_patch(
            _config(), GlobalConfigPatch(vmc=VmcConfigPatch(enabled=None, send_port=1234))
        )

        assert merged.vmc.enabled is False
        assert merged.vmc.send_port == 1234

    def test_creates_missing_tracker_entry(self):
        merged = merge_config_patch(
            _config(), GlobalConfigPatch(trackers={"t3": TrackerConfigPatch(name="Chest")})
        )

        assert merged.trackers["t3"] == TrackerConfig(name="Chest")
        assert merged.trackers["t1"] == _config().trackers["t1"]
        assert merged.trackers["t2"] == _config().trackers["t2"]

    def test_offsets_are_merged_per_key(self):
        merged = merge_config_patch(
            _config(),
            GlobalConfigPatch(
                skeleton=SkeletonConfigPatch(offsets={BoneOffsetKind.HIPS_WIDTH: 0.3})
            ),
        )

        assert merged.skeleton.offsets == {
            BoneOffsetKind.NECK_LENGTH: 0.1,
            BoneOffsetKind.HIPS_WIDTH: 0.3,
        }

    def test_input_is_not_mutated(self):
        config = _config()
        merge_config_patch(
            config,
            GlobalConfigPatch(
                trackers={"t1": TrackerConfigPatch(name="X")},
                interface=InterfaceConfigPatch(hide_in_system_tray=True),
            ),
        )

        assert config == _config()


class TestMinimizePatch:
    def test_unchanged_fields_are_dropped(self):
        patch = GlobalConfigPatch(
            trackers={"t1": TrackerConfigPatch(name="Left foot", location=BoneLocation.HEAD)},
            vmc=VmcConfigPatch(enabled=False),
        )

        minimized = minimize_patch(_config(), patch)

        assert minimized.model_dump(mode="json", exclude_unset=True) == {
            "trackers": {"t1": {"location": "Head"}}
        }

    def test_no_op_patch_is_empty(self):
        patch = GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(name="Left foot")})
        assert patch_is_empty(minimize_patch(_config(), patch))

    def test_new_tracker_entry_is_kept(self):
        minimized = minimize_patch(
            _config(), GlobalConfigPatch(trackers={"t3": TrackerConfigPatch()})
        )

        assert set(minimized.trackers) == {"t3"}
        assert not patch_is_empty(minimized)

    def test_patch_is_empty(self):
        assert patch_is_empty(GlobalConfigPatch())
        assert patch_is_empty(GlobalConfigPatch(vmc=VmcConfigPatch()))
        assert not patch_is_empty(GlobalConfigPatch(vmc=VmcConfigPatch(enabled=True)))


class TestDiffConfigs:
    def test_identical_configs(self):
        assert patch_is_empty(diff_configs(_config(), _config()))

    def test_only_changes_are_reported(self):
        new = _config()
        new.trackers["t1"].name = "Right foot"
        new.vrchat.enabled = True
        new.skeleton.offsets[BoneOffsetKind.FOOT_LENGTH] = 0.05

        patch = diff_configs(_config(), new)

        assert patch.model_dump(mode="json", exclude_unset=True) == {
            "trackers": {"t1": {"name": "Right foot"}},
            "vrchat": {"enabled": True},
            "skeleton": {"offsets": {"FootLength": 0.05}},
        }

    def test_round_trips_through_merge(self):
        new = _config()
        new.vmc.receive_port = 40000
        new.trackers["t3"] = TrackerConfig(location=BoneLocation.CHEST)

        assert merge_config_patch(_config(), diff_configs(_config(), new)) == new


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def seeded_reconciler(reconciler):
    reconciler.handle(
        decode_server_message(
            initial_state_frame(
                trackers={"t1": tracker_payload(), "t2": tracker_payload()},
                t1={"name": "Left foot", "location": "LeftFoot"},
                t2={"name": "Head", "location": "Head"},
            )
        )
    )
    return reconciler


class TestApplyLocalPatch:
    def test_sends_minimal_patch_and_updates_locally(self, seeded_reconciler, channel, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, channel, notifier)

        sent = engine.apply_local_patch(
            GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(name="X")})
        )

        assert seeded_reconciler.config.trackers["t1"] == TrackerConfig(
            name="X", location=BoneLocation.LEFT_FOOT
        )
        assert seeded_reconciler.config.trackers["t2"] == TrackerConfig(
            name="Head", location=BoneLocation.HEAD
        )
        assert len(channel.sent) == 1
        message = channel.sent[0]
        assert isinstance(message, UpdateConfig)
        assert message.config == sent
        assert json.loads(encode_client_message(message)) == {
            "type": "UpdateConfig",
            "config": {"trackers": {"t1": {"name": "X"}}},
        }

    def test_no_op_patch_sends_nothing(self, seeded_reconciler, channel, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, channel, notifier)
        configs = []
        seeded_reconciler.on_config_changed.add_listener(configs.append)

        result = engine.apply_local_patch(
            GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(name="Left foot")})
        )

        assert result is None
        assert channel.sent == []
        assert configs == []

    def test_failed_send_keeps_local_config(self, seeded_reconciler, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, FakeChannel(is_open=False), notifier)
        before = seeded_reconciler.config
        configs = []
        seeded_reconciler.on_config_changed.add_listener(configs.append)

        result = engine.apply_local_patch(
            GlobalConfigPatch(trackers={"t1": TrackerConfigPatch(name="X")})
        )

        assert result is None
        assert seeded_reconciler.config == before
        assert seeded_reconciler.config.trackers["t1"].name == "Left foot"
        assert configs == []

    def test_apply_local_config(self, seeded_reconciler, channel, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, channel, notifier)
        edited = seeded_reconciler.config
        edited.vmc.enabled = True

        engine.apply_local_config(edited)

        assert seeded_reconciler.config.vmc.enabled is True
        assert channel.sent[0].config.model_dump(mode="json", exclude_unset=True) == {
            "vmc": {"enabled": True}
        }

    def test_interface_change_emits_event(self, seeded_reconciler, channel, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, channel, notifier)
        interfaces = []
        seeded_reconciler.on_interface_config_changed.add_listener(interfaces.append)

        engine.apply_local_patch(
            GlobalConfigPatch(interface=InterfaceConfigPatch(hide_in_system_tray=True))
        )

        assert [i.hide_in_system_tray for i in interfaces] == [True]


class TestRemoveTracker:
    def test_declined_changes_nothing(self, seeded_reconciler, channel):
        notifier = RecordingNotifier(confirm_result=False)
        engine = ConfigPatchEngine(seeded_reconciler, channel, notifier)
        before_trackers = seeded_reconciler.trackers
        before_config = seeded_reconciler.config

        assert engine.remove_tracker("t1") is False

        assert channel.sent == []
        assert seeded_reconciler.trackers == before_trackers
        assert seeded_reconciler.config == before_config
        assert len(notifier.confirmations) == 1
        assert "Left foot" in notifier.confirmations[0][1]

    def test_declined_by_exception(self, seeded_reconciler, channel):
        class RaisingNotifier(RecordingNotifier):
            def confirm(self, title, message):
                raise ConfirmationDeclined()

        engine = ConfigPatchEngine(seeded_reconciler, channel, RaisingNotifier())

        assert engine.remove_tracker("t1") is False
        assert channel.sent == []

    def test_confirmed_removes_locally_and_remotely(self, seeded_reconciler, channel, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, channel, notifier)

        assert engine.remove_tracker("t1") is True

        assert channel.sent == [RemoveTracker(id="t1")]
        assert set(seeded_reconciler.trackers) == {"t2"}
        assert "t1" not in seeded_reconciler.config.trackers
        assert seeded_reconciler.config.trackers["t2"].name == "Head"

    def test_failed_send_keeps_tracker(self, seeded_reconciler, notifier):
        engine = ConfigPatchEngine(seeded_reconciler, FakeChannel(is_open=False), notifier)

        assert engine.remove_tracker("t1") is False
        assert "t1" in seeded_reconciler.trackers

    def test_unknown_tracker_uses_id_in_prompt(self, reconciler, channel, notifier):
        engine = ConfigPatchEngine(reconciler, channel, notifier)

        engine.remove_tracker("AA:BB")

        assert "AA:BB" in notifier.confirmations[0][1]
        assert channel.sent == [RemoveTracker(id="AA:BB")]


def test_engine_works_with_fresh_reconciler(channel, notifier):
    engine = ConfigPatchEngine(EntityReconciler(notifier), channel, notifier)

    engine.apply_local_patch(
        GlobalConfigPatch(trackers={"t9": TrackerConfigPatch(location=BoneLocation.HEAD)})
    )

    assert channel.sent[0].config.trackers["t9"].location is BoneLocation.HEAD
