"""
micap client package

Keeps a live, consistent view of the trackers, skeleton and configuration held
by a micap server, over the server's JSON websocket channel.

Main Classes:
    MicapClient: Facade that owns the channel, reconciler and patch engine
    EntityReconciler: Applies server messages to the local entity state
    ChannelManager: The single websocket connection

Examples:
    # Run the headless monitor (after installation)
    micap-client --host localhost

    # Use the client programmatically
    from micap_client import MicapClient
    client = MicapClient(host="localhost").start()
    trackers = client.get_trackers()
    client.set_tracker_name("AA:BB:CC", "Left ankle")
"""

from .channel import WEBSOCKET_PORT, ChannelManager, ChannelState
from .client import MicapClient
from .config_patch import ConfigPatchEngine, diff_configs, merge_config_patch
from .errors import (
    ChannelClosed,
    ChannelNotReady,
    ConfirmationDeclined,
    MicapClientError,
    ProtocolViolation,
    ServerReportedError,
)
from .notifications import LoggingNotifier, Notifier
from .reconciler import EntityReconciler
from .skeleton import BONE_COLORS, SkeletonGeometry, derive_skeleton_geometry
from .types import (
    Bone,
    BoneLocation,
    BoneOffsetKind,
    GlobalConfig,
    GlobalConfigPatch,
    Tracker,
    TrackerConfig,
    TrackerConfigPatch,
    TrackerData,
    TrackerInfo,
    TrackerStatus,
)

# Export public API
__all__ = [
    # Client API
    "MicapClient",
    "ChannelManager",
    "ChannelState",
    "EntityReconciler",
    "ConfigPatchEngine",
    "WEBSOCKET_PORT",
    # Collaborators
    "Notifier",
    "LoggingNotifier",
    # Derivations
    "merge_config_patch",
    "diff_configs",
    "derive_skeleton_geometry",
    "SkeletonGeometry",
    "BONE_COLORS",
    # Data types
    "Bone",
    "BoneLocation",
    "BoneOffsetKind",
    "GlobalConfig",
    "GlobalConfigPatch",
    "Tracker",
    "TrackerConfig",
    "TrackerConfigPatch",
    "TrackerData",
    "TrackerInfo",
    "TrackerStatus",
    # Errors
    "MicapClientError",
    "ChannelNotReady",
    "ChannelClosed",
    "ProtocolViolation",
    "ServerReportedError",
    "ConfirmationDeclined",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("micap-client")
except PackageNotFoundError:
    __version__ = "unknown"
