"""
Partial configuration updates.

A GlobalConfigPatch only carries the fields that change. Locally the patch is
merged key by key into the reconciler's configuration (editing a tracker's name
keeps its bone assignment), and the same minimal patch is sent to the server as
an UpdateConfig message.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import TYPE_CHECKING, Any

from .errors import ConfirmationDeclined
from .notifications import Notifier
from .protocol import RemoveTracker, UpdateConfig
from .types import (
    GlobalConfig,
    GlobalConfigPatch,
    InterfaceConfigPatch,
    SkeletonConfigPatch,
    TrackerConfig,
    TrackerConfigPatch,
    VmcConfigPatch,
    VrChatConfigPatch,
    WireModel,
)

if TYPE_CHECKING:
    from .channel import ChannelManager
    from .reconciler import EntityReconciler

logger = logging.getLogger(__name__)

# Sections merged field by field; trackers and skeleton need per-key handling
_FLAT_SECTIONS: dict[str, type[WireModel]] = {
    "vmc": VmcConfigPatch,
    "vrchat": VrChatConfigPatch,
    "interface": InterfaceConfigPatch,
}


def _present_fields(current: WireModel, patch: WireModel) -> dict[str, Any]:
    """Fields explicitly set on the patch that can be applied to ``current``.

    None only clears fields whose full counterpart is nullable; for required
    fields it is treated as absent.
    """
    present: dict[str, Any] = {}
    for name in patch.model_fields_set:
        if name not in type(current).model_fields:
            continue
        value = getattr(patch, name)
        if value is None and type(current).model_fields[name].default is not None:
            continue
        present[name] = value
    return present


def _changed_fields(current: WireModel, patch: WireModel) -> dict[str, Any]:
    return {
        name: value
        for name, value in _present_fields(current, patch).items()
        if getattr(current, name) != value
    }


def _merge_fields(current: WireModel, patch: WireModel) -> Any:
    updates = {
        name: copy.deepcopy(value)
        for name, value in _present_fields(current, patch).items()
    }
    return current.model_copy(update=updates, deep=True)


def _section(patch: GlobalConfigPatch, name: str) -> Any:
    if name not in patch.model_fields_set:
        return None
    return getattr(patch, name)


def merge_config_patch(
    config: GlobalConfig, patch: GlobalConfigPatch
) -> GlobalConfig:
    """Return a new configuration with ``patch`` applied on top of ``config``."""
    merged = config.model_copy(deep=True)

    tracker_patches = _section(patch, "trackers")
    if tracker_patches:
        for tracker_id, tracker_patch in tracker_patches.items():
            current = merged.trackers.get(tracker_id, TrackerConfig())
            merged.trackers[tracker_id] = _merge_fields(current, tracker_patch)

    for name in _FLAT_SECTIONS:
        section_patch = _section(patch, name)
        if section_patch is not None:
            setattr(merged, name, _merge_fields(getattr(merged, name), section_patch))

    skeleton_patch = _section(patch, "skeleton")
    if skeleton_patch is not None and skeleton_patch.offsets:
        merged.skeleton.offsets.update(skeleton_patch.offsets)

    return merged


def minimize_patch(
    config: GlobalConfig, patch: GlobalConfigPatch
) -> GlobalConfigPatch:
    """Drop every field of ``patch`` that would not change ``config``."""
    sections: dict[str, Any] = {}

    tracker_patches = _section(patch, "trackers")
    if tracker_patches:
        trackers: dict[str, TrackerConfigPatch] = {}
        for tracker_id, tracker_patch in tracker_patches.items():
            current = config.trackers.get(tracker_id)
            if current is None:
                # Creating the entry is itself a change, even if empty
                changed = _changed_fields(TrackerConfig(), tracker_patch)
                trackers[tracker_id] = TrackerConfigPatch(**changed)
                continue
            changed = _changed_fields(current, tracker_patch)
            if changed:
                trackers[tracker_id] = TrackerConfigPatch(**changed)
        if trackers:
            sections["trackers"] = trackers

    for name, patch_type in _FLAT_SECTIONS.items():
        section_patch = _section(patch, name)
        if section_patch is None:
            continue
        changed = _changed_fields(getattr(config, name), section_patch)
        if changed:
            sections[name] = patch_type(**changed)

    skeleton_patch = _section(patch, "skeleton")
    if skeleton_patch is not None and skeleton_patch.offsets:
        offsets = {
            kind: value
            for kind, value in skeleton_patch.offsets.items()
            if config.skeleton.offsets.get(kind) != value
        }
        if offsets:
            sections["skeleton"] = SkeletonConfigPatch(offsets=offsets)

    return GlobalConfigPatch(**sections)


def diff_configs(old: GlobalConfig, new: GlobalConfig) -> GlobalConfigPatch:
    """Build the minimal patch that turns ``old`` into ``new``.

    Tracker entries or skeleton offsets that exist in ``old`` but not in
    ``new`` cannot be expressed as a patch and are left out.
    """
    full_patch = GlobalConfigPatch(
        trackers={
            tracker_id: TrackerConfigPatch(**tracker.model_dump())
            for tracker_id, tracker in new.trackers.items()
        },
        vmc=VmcConfigPatch(**new.vmc.model_dump()),
        vrchat=VrChatConfigPatch(**new.vrchat.model_dump()),
        skeleton=SkeletonConfigPatch(offsets=dict(new.skeleton.offsets)),
        interface=InterfaceConfigPatch(**new.interface.model_dump()),
    )
    return minimize_patch(old, full_patch)


def patch_is_empty(patch: GlobalConfigPatch) -> bool:
    for name in patch.model_fields_set:
        value = getattr(patch, name)
        if value is None:
            continue
        if isinstance(value, dict):
            if value:
                return False
        elif value.model_dump(exclude_unset=True):
            return False
    return True


class ConfigPatchEngine:
    """Applies local configuration edits and tracker removals.

    Holds no configuration of its own; everything goes through the
    reconciler's single configuration instance.
    """

    def __init__(
        self,
        reconciler: EntityReconciler,
        channel: ChannelManager,
        notifier: Notifier,
        lock: threading.RLock | None = None,
    ):
        """
        Args:
            reconciler: Owner of the live configuration
            channel: Used to send UpdateConfig / RemoveTracker
            notifier: Asked to confirm destructive actions
            lock: Shared with inbound message handling so that local edits
                and server updates never interleave
        """
        self._reconciler = reconciler
        self._channel = channel
        self._notifier = notifier
        self._lock = lock or threading.RLock()

    def apply_local_patch(self, patch: GlobalConfigPatch) -> GlobalConfigPatch | None:
        """Send the fields of ``patch`` that actually change, then merge them locally.

        Local state is only touched once the send succeeded, so a closed
        channel never leaves an edit that the server does not know about.

        Returns:
            The patch that was sent, or None when nothing changed or the
            send failed.
        """
        with self._lock:
            current = self._reconciler.config
            effective = minimize_patch(current, patch)
            if patch_is_empty(effective):
                logger.debug("Config patch changes nothing, not sending")
                return None

            if not self._channel.send(UpdateConfig(config=effective)):
                logger.warning("Config patch was not sent, keeping local config")
                return None

            self._reconciler.replace_config(merge_config_patch(current, effective))
            return effective

    def apply_local_config(self, config: GlobalConfig) -> GlobalConfigPatch | None:
        """Apply a fully edited configuration as a minimal patch."""
        with self._lock:
            return self.apply_local_patch(
                diff_configs(self._reconciler.config, config)
            )

    def remove_tracker(self, tracker_id: str) -> bool:
        """Remove a tracker after the user confirms.

        Declining leaves everything untouched. On confirmation the removal is
        sent and the tracker plus its configuration entry are dropped locally
        without waiting for the server's own update.
        """
        tracker_config = self._reconciler.config.trackers.get(tracker_id)
        display_name = (tracker_config.name if tracker_config else None) or tracker_id

        try:
            confirmed = self._notifier.confirm(
                "Remove tracker",
                f"Are you sure you want to remove tracker {display_name}? "
                "It will need to be paired again before it can reconnect.",
            )
        except ConfirmationDeclined:
            confirmed = False

        if not confirmed:
            logger.info(f"Removal of tracker {tracker_id} cancelled")
            return False

        with self._lock:
            if not self._channel.send(RemoveTracker(id=tracker_id)):
                return False

            self._reconciler.forget_tracker(tracker_id)
        logger.info(f"Tracker {tracker_id} removed locally")
        return True
