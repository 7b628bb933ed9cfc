"""
Derives drawable line segments from a skeleton snapshot.

Each bone that has a parent becomes one segment running from the parent's tail
to its own tail. Both endpoints carry the bone's color so a renderer can upload
per-vertex colors without any interpolation between bones.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .types import Bone, BoneLocation, Vector3

Color = tuple[float, float, float]

BONE_COLORS: dict[BoneLocation, Color] = {
    BoneLocation.HIP: (1.0, 0.0, 0.0),
    BoneLocation.LEFT_UPPER_LEG: (1.0, 1.0, 0.0),
    BoneLocation.RIGHT_UPPER_LEG: (1.0, 1.0, 0.0),
    BoneLocation.LEFT_LOWER_LEG: (0.0, 1.0, 0.0),
    BoneLocation.RIGHT_LOWER_LEG: (0.0, 1.0, 0.0),
    BoneLocation.LEFT_FOOT: (1.0, 0.0, 1.0),
    BoneLocation.RIGHT_FOOT: (1.0, 0.0, 1.0),
    BoneLocation.WAIST: (0.0, 0.0, 1.0),
    BoneLocation.CHEST: (0.0, 1.0, 1.0),
    BoneLocation.UPPER_CHEST: (0.0, 1.0, 0.5),
    BoneLocation.NECK: (1.0, 0.4, 0.3),
    BoneLocation.HEAD: (0.5, 0.5, 1.0),
    BoneLocation.LEFT_SHOULDER: (0.6, 0.3, 1.0),
    BoneLocation.RIGHT_SHOULDER: (0.6, 0.3, 1.0),
    BoneLocation.LEFT_UPPER_ARM: (0.2, 0.8, 0.0),
    BoneLocation.RIGHT_UPPER_ARM: (0.2, 0.8, 0.0),
    BoneLocation.LEFT_LOWER_ARM: (1.0, 0.0, 0.2),
    BoneLocation.RIGHT_LOWER_ARM: (1.0, 0.0, 0.2),
    BoneLocation.LEFT_HAND: (1.0, 0.8, 0.1),
    BoneLocation.RIGHT_HAND: (1.0, 0.8, 0.1),
    BoneLocation.LEFT_HIP: (0.2, 0.5, 0.0),
    BoneLocation.RIGHT_HIP: (0.2, 0.5, 0.0),
}

_missing_colors = set(BoneLocation) - set(BONE_COLORS)
if _missing_colors:
    raise RuntimeError(
        f"No color defined for bone locations: {sorted(m.value for m in _missing_colors)}"
    )


def bone_color(location: BoneLocation) -> Color:
    return BONE_COLORS[location]


@dataclass(frozen=True)
class LineSegment:
    location: BoneLocation
    start: Vector3
    end: Vector3
    color: Color


@dataclass(frozen=True)
class SkeletonGeometry:
    """Renderer-ready geometry.

    Attributes:
        segments: One entry per parented bone, in snapshot order.
        positions: Flat XYZ list, two points (start, end) per segment.
        colors: Flat RGB list, the segment's color repeated for both points.
    """

    segments: list[LineSegment] = field(default_factory=list)
    positions: list[float] = field(default_factory=list)
    colors: list[float] = field(default_factory=list)


def derive_skeleton_geometry(bones: Mapping[BoneLocation, Bone]) -> SkeletonGeometry:
    """Build line segments and vertex colors for a bone snapshot.

    Root bones (no parent) contribute no segment. A parent missing from the
    snapshot is skipped as well; decoded snapshots never contain one.
    """
    segments: list[LineSegment] = []
    positions: list[float] = []
    colors: list[float] = []

    for location, bone in bones.items():
        if bone.parent is None:
            continue
        parent = bones.get(bone.parent)
        if parent is None:
            continue

        color = bone_color(location)
        segment = LineSegment(
            location=location,
            start=tuple(parent.tail_world_position),  # type: ignore[arg-type]
            end=tuple(bone.tail_world_position),  # type: ignore[arg-type]
            color=color,
        )
        segments.append(segment)
        positions.extend(segment.start)
        positions.extend(segment.end)
        colors.extend(color)
        colors.extend(color)

    return SkeletonGeometry(segments=segments, positions=positions, colors=colors)
