"""
Data types shared by the micap client and server.

Field names follow the wire format exactly (snake_case), so the models can be
validated straight from decoded JSON and dumped back without an adapter layer.
Unknown fields are ignored to stay compatible with newer servers.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

Quaternion = tuple[float, float, float, float]
Vector3 = tuple[float, float, float]


class WireModel(BaseModel):
    """Base for every model that travels over the websocket."""

    model_config = ConfigDict(extra="ignore")


class TrackerStatus(str, Enum):
    OK = "Ok"
    ERROR = "Error"
    OFF = "Off"
    TIMED_OUT = "TimedOut"


class BoneLocation(str, Enum):
    """Closed set of skeleton joints known to the server."""

    HIP = "Hip"
    LEFT_UPPER_LEG = "LeftUpperLeg"
    RIGHT_UPPER_LEG = "RightUpperLeg"
    LEFT_LOWER_LEG = "LeftLowerLeg"
    RIGHT_LOWER_LEG = "RightLowerLeg"
    LEFT_FOOT = "LeftFoot"
    RIGHT_FOOT = "RightFoot"
    WAIST = "Waist"
    CHEST = "Chest"
    UPPER_CHEST = "UpperChest"
    NECK = "Neck"
    HEAD = "Head"
    LEFT_SHOULDER = "LeftShoulder"
    RIGHT_SHOULDER = "RightShoulder"
    LEFT_UPPER_ARM = "LeftUpperArm"
    RIGHT_UPPER_ARM = "RightUpperArm"
    LEFT_LOWER_ARM = "LeftLowerArm"
    RIGHT_LOWER_ARM = "RightLowerArm"
    LEFT_HAND = "LeftHand"
    RIGHT_HAND = "RightHand"
    LEFT_HIP = "LeftHip"
    RIGHT_HIP = "RightHip"


class BoneOffsetKind(str, Enum):
    """Length offsets (meters) applied between connected joints."""

    NECK_LENGTH = "NeckLength"
    WAIST_LENGTH = "WaistLength"
    CHEST_LENGTH = "ChestLength"
    UPPER_CHEST_LENGTH = "UpperChestLength"
    HIP_LENGTH = "HipLength"
    HIPS_WIDTH = "HipsWidth"
    UPPER_LEG_LENGTH = "UpperLegLength"
    LOWER_LEG_LENGTH = "LowerLegLength"
    SHOULDERS_WIDTH = "ShouldersWidth"
    SHOULDER_OFFSET = "ShoulderOffset"
    UPPER_ARM_LENGTH = "UpperArmLength"
    LOWER_ARM_LENGTH = "LowerArmLength"
    FOOT_LENGTH = "FootLength"
    HAND_LENGTH = "HandLength"


# Trackers


class TrackerInfo(WireModel):
    """Status of a tracker as reported by the server."""

    status: TrackerStatus
    latency_ms: int | None = None
    battery_level: float = 0.0
    address: str | None = None
    location: BoneLocation | None = None
    to_be_removed: bool = False


class TrackerData(WireModel):
    """Latest motion sample from a tracker."""

    orientation: Quaternion
    acceleration: Vector3
    position: Vector3


class Tracker(WireModel):
    info: TrackerInfo
    # Absent until the device has reported at least one sample
    data: TrackerData | None = None


# Skeleton


class Bone(WireModel):
    orientation: Quaternion
    tail_world_position: Vector3
    parent: BoneLocation | None = None


# Configuration (full variants)


class TrackerConfig(WireModel):
    name: str | None = None
    location: BoneLocation | None = None


class VmcConfig(WireModel):
    enabled: bool = False
    send_port: int = Field(default=39539, ge=0, le=65535)
    receive_port: int = Field(default=39540, ge=0, le=65535)


def _default_vrchat_bones() -> list[BoneLocation]:
    return [
        BoneLocation.HIP,
        BoneLocation.CHEST,
        BoneLocation.LEFT_FOOT,
        BoneLocation.RIGHT_FOOT,
        BoneLocation.RIGHT_LOWER_LEG,
        BoneLocation.LEFT_LOWER_LEG,
        BoneLocation.LEFT_UPPER_ARM,
        BoneLocation.RIGHT_UPPER_ARM,
    ]


class VrChatConfig(WireModel):
    enabled: bool = False
    send_port: int = Field(default=9000, ge=0, le=65535)
    bones_to_send: list[BoneLocation] = Field(default_factory=_default_vrchat_bones)


class SkeletonConfig(WireModel):
    # Length offset in meters from a bone to its connecting one
    offsets: dict[BoneOffsetKind, float] = Field(default_factory=dict)


class InterfaceConfig(WireModel):
    """Settings persisted by the host shell rather than the server."""

    hide_in_system_tray: bool = False


class GlobalConfig(WireModel):
    """Complete configuration. Every section is always present."""

    trackers: dict[str, TrackerConfig] = Field(default_factory=dict)
    vmc: VmcConfig = Field(default_factory=VmcConfig)
    vrchat: VrChatConfig = Field(default_factory=VrChatConfig)
    skeleton: SkeletonConfig = Field(default_factory=SkeletonConfig)
    interface: InterfaceConfig = Field(default_factory=InterfaceConfig)


# Configuration (patch variants)
#
# A field counts as present when it appears in ``model_fields_set``; an explicit
# None therefore clears an optional value while an omitted key leaves it alone.


class TrackerConfigPatch(WireModel):
    name: str | None = None
    location: BoneLocation | None = None


class VmcConfigPatch(WireModel):
    enabled: bool | None = None
    send_port: int | None = Field(default=None, ge=0, le=65535)
    receive_port: int | None = Field(default=None, ge=0, le=65535)


class VrChatConfigPatch(WireModel):
    enabled: bool | None = None
    send_port: int | None = Field(default=None, ge=0, le=65535)
    bones_to_send: list[BoneLocation] | None = None


class SkeletonConfigPatch(WireModel):
    offsets: dict[BoneOffsetKind, float] | None = None


class InterfaceConfigPatch(WireModel):
    hide_in_system_tray: bool | None = None


class GlobalConfigPatch(WireModel):
    """Partial configuration used for edits in both directions."""

    trackers: dict[str, TrackerConfigPatch] | None = None
    vmc: VmcConfigPatch | None = None
    vrchat: VrChatConfigPatch | None = None
    skeleton: SkeletonConfigPatch | None = None
    interface: InterfaceConfigPatch | None = None
