"""Event payloads delivered by the engine, one class per event kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar

from .property import MQTTPropertyList


class EventKind(IntEnum):
    ON_CONNECT = 0
    ON_CONNECT_V5 = 1
    ON_DISCONNECT = 2
    ON_DISCONNECT_V5 = 3
    ON_PUBLISH = 4
    ON_PUBLISH_V5 = 5
    ON_MESSAGE = 6
    ON_MESSAGE_V5 = 7
    ON_SUBSCRIBE = 8
    ON_SUBSCRIBE_V5 = 9
    ON_UNSUBSCRIBE = 10
    ON_UNSUBSCRIBE_V5 = 11
    ON_LOG = 12


@dataclass(slots=True, frozen=True, match_args=True)
class ConnectEvent:
    kind: ClassVar[EventKind] = EventKind.ON_CONNECT
    rc: int
    reason: str


@dataclass(slots=True, frozen=True, match_args=True)
class ConnectV5Event:
    kind: ClassVar[EventKind] = EventKind.ON_CONNECT_V5
    reason_code: int
    reason: str
    flags: int
    properties: MQTTPropertyList = field(default_factory=MQTTPropertyList)


@dataclass(slots=True, frozen=True, match_args=True)
class DisconnectEvent:
    kind: ClassVar[EventKind] = EventKind.ON_DISCONNECT
    rc: int


@dataclass(slots=True, frozen=True, match_args=True)
class DisconnectV5Event:
    kind: ClassVar[EventKind] = EventKind.ON_DISCONNECT_V5
    reason_code: int
    properties: MQTTPropertyList = field(default_factory=MQTTPropertyList)


@dataclass(slots=True, frozen=True, match_args=True)
class PublishEvent:
    kind: ClassVar[EventKind] = EventKind.ON_PUBLISH
    mid: int


@dataclass(slots=True, frozen=True, match_args=True)
class PublishV5Event:
    kind: ClassVar[EventKind] = EventKind.ON_PUBLISH_V5
    mid: int
    reason_code: int
    reason: str
    properties: MQTTPropertyList = field(default_factory=MQTTPropertyList)


@dataclass(slots=True, frozen=True, match_args=True)
class MessageEvent:
    kind: ClassVar[EventKind] = EventKind.ON_MESSAGE
    mid: int
    topic: str
    payload: bytes
    qos: int
    retain: bool


@dataclass(slots=True, frozen=True, match_args=True)
class MessageV5Event:
    kind: ClassVar[EventKind] = EventKind.ON_MESSAGE_V5
    mid: int
    topic: str
    payload: bytes
    qos: int
    retain: bool
    properties: MQTTPropertyList = field(default_factory=MQTTPropertyList)


@dataclass(slots=True, frozen=True, match_args=True)
class SubscribeEvent:
    kind: ClassVar[EventKind] = EventKind.ON_SUBSCRIBE
    mid: int
    granted_qos: tuple[int, ...]


@dataclass(slots=True, frozen=True, match_args=True)
class SubscribeV5Event:
    kind: ClassVar[EventKind] = EventKind.ON_SUBSCRIBE_V5
    mid: int
    granted_qos: tuple[int, ...]
    properties: MQTTPropertyList = field(default_factory=MQTTPropertyList)


@dataclass(slots=True, frozen=True, match_args=True)
class UnsubscribeEvent:
    kind: ClassVar[EventKind] = EventKind.ON_UNSUBSCRIBE
    mid: int


@dataclass(slots=True, frozen=True, match_args=True)
class UnsubscribeV5Event:
    kind: ClassVar[EventKind] = EventKind.ON_UNSUBSCRIBE_V5
    mid: int
    properties: MQTTPropertyList = field(default_factory=MQTTPropertyList)


@dataclass(slots=True, frozen=True, match_args=True)
class LogEvent:
    kind: ClassVar[EventKind] = EventKind.ON_LOG
    level: int
    message: str


Event = (
    ConnectEvent |
    ConnectV5Event |
    DisconnectEvent |
    DisconnectV5Event |
    PublishEvent |
    PublishV5Event |
    MessageEvent |
    MessageV5Event |
    SubscribeEvent |
    SubscribeV5Event |
    UnsubscribeEvent |
    UnsubscribeV5Event |
    LogEvent
)
