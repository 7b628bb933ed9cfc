"""
Websocket protocol codec.

Two disjoint message families travel over the channel, each tagged by a
``type`` discriminant:

    client -> server: SerialSend, RemoveTracker, UpdateConfig,
                      ResetTrackerOrientations, ResetSkeleton,
                      StartRecord, StopRecord
    server -> client: TrackerUpdate, InitialState, SkeletonUpdate,
                      ConfigUpdate, SerialLog, SerialPortChanged, Error

Messages are JSON objects. Unknown discriminants from the server are ignored so
that older clients keep working against newer servers; anything else that does
not match its declared shape is a ProtocolViolation.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter, ValidationError, model_validator

from .errors import ProtocolViolation
from .types import (
    Bone,
    BoneLocation,
    GlobalConfig,
    GlobalConfigPatch,
    Tracker,
    WireModel,
)

logger = logging.getLogger(__name__)


# Client -> Server


class SerialSend(WireModel):
    type: Literal["SerialSend"] = "SerialSend"
    data: str


class RemoveTracker(WireModel):
    type: Literal["RemoveTracker"] = "RemoveTracker"
    id: str


class UpdateConfig(WireModel):
    type: Literal["UpdateConfig"] = "UpdateConfig"
    config: GlobalConfigPatch


class ResetTrackerOrientations(WireModel):
    type: Literal["ResetTrackerOrientations"] = "ResetTrackerOrientations"


class ResetSkeleton(WireModel):
    type: Literal["ResetSkeleton"] = "ResetSkeleton"


class StartRecord(WireModel):
    type: Literal["StartRecord"] = "StartRecord"


class StopRecord(WireModel):
    type: Literal["StopRecord"] = "StopRecord"
    save_path: str


ClientMessage = Annotated[
    Union[
        SerialSend,
        RemoveTracker,
        UpdateConfig,
        ResetTrackerOrientations,
        ResetSkeleton,
        StartRecord,
        StopRecord,
    ],
    Field(discriminator="type"),
]


# Server -> Client


class TrackerUpdate(WireModel):
    """Delta update: only trackers that changed are included."""

    type: Literal["TrackerUpdate"] = "TrackerUpdate"
    trackers: dict[str, Tracker] = Field(default_factory=dict)


class InitialState(WireModel):
    """Session baseline sent once right after the channel opens."""

    type: Literal["InitialState"] = "InitialState"
    config: GlobalConfig
    default_config: GlobalConfig
    port_name: str | None = None
    trackers: dict[str, Tracker] = Field(default_factory=dict)


class SkeletonUpdate(WireModel):
    """Full snapshot of the bone hierarchy."""

    type: Literal["SkeletonUpdate"] = "SkeletonUpdate"
    bones: dict[BoneLocation, Bone] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_hierarchy(self) -> "SkeletonUpdate":
        for location in self.bones:
            visited: set[BoneLocation] = set()
            current: BoneLocation | None = location
            while current is not None:
                if current in visited:
                    raise ValueError(
                        f"bone hierarchy contains a cycle through {current.value}"
                    )
                visited.add(current)
                parent = self.bones[current].parent
                if parent is not None and parent not in self.bones:
                    raise ValueError(
                        f"bone {current.value} references missing parent {parent.value}"
                    )
                current = parent
        return self


class ConfigUpdate(WireModel):
    type: Literal["ConfigUpdate"] = "ConfigUpdate"
    config: GlobalConfig


class SerialLog(WireModel):
    type: Literal["SerialLog"] = "SerialLog"
    log: str


class SerialPortChanged(WireModel):
    type: Literal["SerialPortChanged"] = "SerialPortChanged"
    port_name: str | None = None


class ServerError(WireModel):
    type: Literal["Error"] = "Error"
    error: str


ServerMessage = Annotated[
    Union[
        TrackerUpdate,
        InitialState,
        SkeletonUpdate,
        ConfigUpdate,
        SerialLog,
        SerialPortChanged,
        ServerError,
    ],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[Any] = TypeAdapter(ClientMessage)
_server_message_adapter: TypeAdapter[Any] = TypeAdapter(ServerMessage)


def _discriminants(*models: type[WireModel]) -> frozenset[str]:
    return frozenset(model.model_fields["type"].default for model in models)


KNOWN_CLIENT_MESSAGE_TYPES = _discriminants(
    SerialSend,
    RemoveTracker,
    UpdateConfig,
    ResetTrackerOrientations,
    ResetSkeleton,
    StartRecord,
    StopRecord,
)

KNOWN_SERVER_MESSAGE_TYPES = _discriminants(
    TrackerUpdate,
    InitialState,
    SkeletonUpdate,
    ConfigUpdate,
    SerialLog,
    SerialPortChanged,
    ServerError,
)


def encode_client_message(message: WireModel) -> str:
    """Serialize an outbound message to its JSON text frame.

    Fields that were never set (e.g. untouched parts of a config patch) are
    omitted, while explicit nulls are kept so they can clear values remotely.
    """
    payload = message.model_dump(mode="json", exclude_unset=True)
    payload["type"] = message.type  # type: ignore[attr-defined]
    return json.dumps(payload, separators=(",", ":"))


def encode_server_message(message: WireModel) -> str:
    """Serialize a server message. Used by test fixtures and simulators."""
    payload = message.model_dump(mode="json", exclude_none=True)
    payload["type"] = message.type  # type: ignore[attr-defined]
    return json.dumps(payload, separators=(",", ":"))


def _load_object(raw: str | bytes, known: frozenset[str]) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolViolation(f"Invalid JSON payload: {e}", raw) from e

    if not isinstance(payload, dict):
        raise ProtocolViolation(
            f"Expected a JSON object, got {type(payload).__name__}", raw
        )

    msg_type = payload.get("type")
    if not isinstance(msg_type, str):
        raise ProtocolViolation("Message has no 'type' discriminant", raw)

    if msg_type not in known:
        logger.debug(f"Ignoring message with unknown type {msg_type!r}")
        return None

    return payload


def decode_server_message(raw: str | bytes) -> Any | None:
    """Decode and validate a server message.

    Returns:
        The typed message, or None if the discriminant is not recognized.

    Raises:
        ProtocolViolation: If the payload is not valid JSON, lacks a
            discriminant, or does not match the shape declared for its type.
    """
    payload = _load_object(raw, KNOWN_SERVER_MESSAGE_TYPES)
    if payload is None:
        return None

    try:
        return _server_message_adapter.validate_python(payload)
    except ValidationError as e:
        raise ProtocolViolation(
            f"Malformed {payload['type']} message: {e.error_count()} validation error(s): {e}",
            raw,
        ) from e


def decode_client_message(raw: str | bytes) -> Any | None:
    """Decode a client message (the server side of the exchange)."""
    payload = _load_object(raw, KNOWN_CLIENT_MESSAGE_TYPES)
    if payload is None:
        return None

    try:
        return _client_message_adapter.validate_python(payload)
    except ValidationError as e:
        raise ProtocolViolation(
            f"Malformed {payload['type']} message: {e}", raw
        ) from e
