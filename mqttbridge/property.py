from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Final, Iterable, Iterator, Mapping, NamedTuple, TypedDict

from .error import (
    DecodeFailedError,
    InvalidPropertyValueError,
    MQTTCallerError,
    PropertyNotAllowedForCommandError,
    UnknownPropertyError,
)
from .mqtt_spec import MAX_UINT8, MAX_UINT16, MAX_UINT32, MQTTCommand, MQTTPropertyId, MQTTPropertyType
from .serialization import (
    encode_uint8,
    decode_uint8,
    encode_uint16,
    decode_uint16,
    encode_uint32,
    decode_uint32,
    encode_string,
    decode_string,
    encode_string_pair,
    decode_string_pair,
    encode_binary,
    decode_binary,
    encode_varint,
    decode_varint,
)


MQTTPropertyDict = TypedDict("MQTTPropertyDict", {
    "payload-format-indicator": int,
    "message-expiry-interval": int,
    "content-type": str,
    "response-topic": str,
    "correlation-data": bytes,
    "subscription-identifier": int,
    "session-expiry-interval": int,
    "assigned-client-identifier": str,
    "server-keep-alive": int,
    "authentication-method": str,
    "authentication-data": bytes,
    "request-problem-information": int,
    "will-delay-interval": int,
    "request-response-information": int,
    "response-information": str,
    "server-reference": str,
    "reason-string": str,
    "receive-maximum": int,
    "topic-alias-maximum": int,
    "topic-alias": int,
    "maximum-qos": int,
    "retain-available": int,
    "user-property": dict[str, str],
    "maximum-packet-size": int,
    "wildcard-subscription-available": int,
    "subscription-identifier-available": int,
    "shared-subscription-available": int,
}, total=False)
"""Generic, host visible representation of a property list."""

PropertyValue = int | str | bytes | tuple[str, str]


class PropertyInfo(NamedTuple):
    identifier: MQTTPropertyId
    wire_type: MQTTPropertyType
    name: str


def _info(identifier: MQTTPropertyId, wire_type: MQTTPropertyType, name: str) -> tuple[MQTTPropertyId, PropertyInfo]:
    return identifier, PropertyInfo(identifier, wire_type, name)


_B = MQTTPropertyType.BYTE
_I16 = MQTTPropertyType.INT16
_I32 = MQTTPropertyType.INT32
_VAR = MQTTPropertyType.VARINT
_BIN = MQTTPropertyType.BINARY
_STR = MQTTPropertyType.STRING
_PAIR = MQTTPropertyType.STRING_PAIR

# Each identifier has exactly one wire type.
MQTTPropertyInfo: Final[Mapping[MQTTPropertyId, PropertyInfo]] = dict([
    _info(MQTTPropertyId.PayloadFormatIndicator, _B, "payload-format-indicator"),
    _info(MQTTPropertyId.MessageExpiryInterval, _I32, "message-expiry-interval"),
    _info(MQTTPropertyId.ContentType, _STR, "content-type"),
    _info(MQTTPropertyId.ResponseTopic, _STR, "response-topic"),
    _info(MQTTPropertyId.CorrelationData, _BIN, "correlation-data"),
    _info(MQTTPropertyId.SubscriptionIdentifier, _VAR, "subscription-identifier"),
    _info(MQTTPropertyId.SessionExpiryInterval, _I32, "session-expiry-interval"),
    _info(MQTTPropertyId.AssignedClientIdentifier, _STR, "assigned-client-identifier"),
    _info(MQTTPropertyId.ServerKeepAlive, _I16, "server-keep-alive"),
    _info(MQTTPropertyId.AuthenticationMethod, _STR, "authentication-method"),
    _info(MQTTPropertyId.AuthenticationData, _BIN, "authentication-data"),
    _info(MQTTPropertyId.RequestProblemInformation, _B, "request-problem-information"),
    _info(MQTTPropertyId.WillDelayInterval, _I32, "will-delay-interval"),
    _info(MQTTPropertyId.RequestResponseInformation, _B, "request-response-information"),
    _info(MQTTPropertyId.ResponseInformation, _STR, "response-information"),
    _info(MQTTPropertyId.ServerReference, _STR, "server-reference"),
    _info(MQTTPropertyId.ReasonString, _STR, "reason-string"),
    _info(MQTTPropertyId.ReceiveMaximum, _I16, "receive-maximum"),
    _info(MQTTPropertyId.TopicAliasMaximum, _I16, "topic-alias-maximum"),
    _info(MQTTPropertyId.TopicAlias, _I16, "topic-alias"),
    _info(MQTTPropertyId.MaximumQoS, _B, "maximum-qos"),
    _info(MQTTPropertyId.RetainAvailable, _B, "retain-available"),
    _info(MQTTPropertyId.UserProperty, _PAIR, "user-property"),
    _info(MQTTPropertyId.MaximumPacketSize, _I32, "maximum-packet-size"),
    _info(MQTTPropertyId.WildcardSubscriptionAvailable, _B, "wildcard-subscription-available"),
    _info(MQTTPropertyId.SubscriptionIdentifierAvailable, _B, "subscription-identifier-available"),
    _info(MQTTPropertyId.SharedSubscriptionAvailable, _B, "shared-subscription-available"),
])

MQTTPropertyNames: Final[Mapping[str, PropertyInfo]] = {info.name: info for info in MQTTPropertyInfo.values()}

USER_PROPERTY: Final = MQTTPropertyInfo[MQTTPropertyId.UserProperty].name


def property_info(name: str) -> PropertyInfo:
    """Look up a property by its canonical name.

    Raises UnknownPropertyError for names which are not MQTT v5 properties."""
    try:
        return MQTTPropertyNames[name]
    except (KeyError, TypeError):
        raise UnknownPropertyError(name) from None


# Allowed properties for each command kind.
_MQTTPropertyCommands: Final[Mapping[MQTTCommand, frozenset[MQTTPropertyId]]] = {
    MQTTCommand.CONNECT: frozenset({  # [MQ5 3.1.2.11]
        MQTTPropertyId.SessionExpiryInterval,
        MQTTPropertyId.ReceiveMaximum,
        MQTTPropertyId.MaximumPacketSize,
        MQTTPropertyId.TopicAliasMaximum,
        MQTTPropertyId.RequestResponseInformation,
        MQTTPropertyId.RequestProblemInformation,
        MQTTPropertyId.UserProperty,
        MQTTPropertyId.AuthenticationMethod,
        MQTTPropertyId.AuthenticationData,
    }),
    MQTTCommand.CONNACK: frozenset({  # [MQ5 3.2.2.3]
        MQTTPropertyId.SessionExpiryInterval,
        MQTTPropertyId.ReceiveMaximum,
        MQTTPropertyId.MaximumQoS,
        MQTTPropertyId.RetainAvailable,
        MQTTPropertyId.MaximumPacketSize,
        MQTTPropertyId.AssignedClientIdentifier,
        MQTTPropertyId.TopicAliasMaximum,
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
        MQTTPropertyId.WildcardSubscriptionAvailable,
        MQTTPropertyId.SubscriptionIdentifierAvailable,
        MQTTPropertyId.SharedSubscriptionAvailable,
        MQTTPropertyId.ServerKeepAlive,
        MQTTPropertyId.ResponseInformation,
        MQTTPropertyId.ServerReference,
        MQTTPropertyId.AuthenticationMethod,
        MQTTPropertyId.AuthenticationData,
    }),
    MQTTCommand.PUBLISH: frozenset({  # [MQ5 3.3.2.3]
        MQTTPropertyId.PayloadFormatIndicator,
        MQTTPropertyId.MessageExpiryInterval,
        MQTTPropertyId.TopicAlias,
        MQTTPropertyId.ResponseTopic,
        MQTTPropertyId.CorrelationData,
        MQTTPropertyId.UserProperty,
        MQTTPropertyId.SubscriptionIdentifier,
        MQTTPropertyId.ContentType,
    }),
    MQTTCommand.PUBACK: frozenset({  # [MQ5 3.4.2.2]
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.PUBREC: frozenset({  # [MQ5 3.5.2.2]
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.PUBREL: frozenset({  # [MQ5 3.6.2.2]
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.PUBCOMP: frozenset({  # [MQ5 3.7.2.2]
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.SUBSCRIBE: frozenset({  # [MQ5 3.8.2.1]
        MQTTPropertyId.SubscriptionIdentifier,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.SUBACK: frozenset({  # [MQ5 3.9.2.1]
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.UNSUBSCRIBE: frozenset({  # [MQ5 3.10.2.1]
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.UNSUBACK: frozenset({  # [MQ5 3.11.2.1]
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.DISCONNECT: frozenset({  # [MQ5 3.14.2.2]
        MQTTPropertyId.SessionExpiryInterval,
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
        MQTTPropertyId.ServerReference,
    }),
    MQTTCommand.AUTH: frozenset({  # [MQ5 3.15.2.2]
        MQTTPropertyId.AuthenticationMethod,
        MQTTPropertyId.AuthenticationData,
        MQTTPropertyId.ReasonString,
        MQTTPropertyId.UserProperty,
    }),
    MQTTCommand.WILL: frozenset({  # [MQ5 3.1.3.2]
        MQTTPropertyId.PayloadFormatIndicator,
        MQTTPropertyId.MessageExpiryInterval,
        MQTTPropertyId.ContentType,
        MQTTPropertyId.ResponseTopic,
        MQTTPropertyId.CorrelationData,
        MQTTPropertyId.WillDelayInterval,
        MQTTPropertyId.UserProperty,
    }),
}


@dataclass(slots=True, frozen=True, match_args=True)
class MQTTProperty:
    """A single entry of a property list."""
    identifier: MQTTPropertyId
    wire_type: MQTTPropertyType
    value: PropertyValue

    @property
    def name(self) -> str:
        return MQTTPropertyInfo[self.identifier].name


# Property value serializers, by wire type.
_MQTTPropertySerializers: Final[Mapping[MQTTPropertyType, Callable[..., bytes]]] = {
    MQTTPropertyType.BYTE: encode_uint8,
    MQTTPropertyType.INT16: encode_uint16,
    MQTTPropertyType.INT32: encode_uint32,
    MQTTPropertyType.VARINT: encode_varint,
    MQTTPropertyType.BINARY: encode_binary,
    MQTTPropertyType.STRING: encode_string,
    MQTTPropertyType.STRING_PAIR: encode_string_pair,
}

# Property value deserializers, by wire type.
_MQTTPropertyDeserializers: Final[Mapping[MQTTPropertyType, Callable[[bytes], tuple[PropertyValue, int]]]] = {
    MQTTPropertyType.BYTE: decode_uint8,
    MQTTPropertyType.INT16: decode_uint16,
    MQTTPropertyType.INT32: decode_uint32,
    MQTTPropertyType.VARINT: decode_varint,
    MQTTPropertyType.BINARY: decode_binary,
    MQTTPropertyType.STRING: decode_string,
    MQTTPropertyType.STRING_PAIR: decode_string_pair,
}


class MQTTPropertyList:
    """Ordered list of properties attached to one protocol message.

    The list is built incrementally and sealed when it is handed to the engine.
    A sealed list can not be appended to."""
    __slots__ = ("_entries", "_sealed")

    def __init__(self, entries: Iterable[MQTTProperty] = ()) -> None:
        self._entries: list[MQTTProperty] = []
        self._sealed = False
        for entry in entries:
            self.append(entry.identifier, entry.value)

    def __iter__(self) -> Iterator[MQTTProperty]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MQTTPropertyList):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}([{', '.join(f'{e.name}={e.value!r}' for e in self._entries)}])"

    @property
    def sealed(self) -> bool:
        return self._sealed

    def append(self, identifier: int, value: PropertyValue) -> None:
        """Append a property, its wire type taken from the property table."""
        if self._sealed:
            raise RuntimeError("Property list is sealed")
        try:
            info = MQTTPropertyInfo[MQTTPropertyId(identifier)]
        except ValueError:
            raise MQTTCallerError(f"Unknown property identifier: {identifier}") from None
        self._entries.append(MQTTProperty(info.identifier, info.wire_type, value))

    def extend(self, entries: Iterable[MQTTProperty]) -> None:
        for entry in entries:
            self.append(entry.identifier, entry.value)

    def seal(self) -> MQTTPropertyList:
        """Seal the list against further changes and return it."""
        self._sealed = True
        return self

    def clear(self) -> None:
        """Release all entries."""
        if self._sealed:
            raise RuntimeError("Property list is sealed")
        self._entries.clear()

    def to_bytes(self) -> bytes:
        """Encode the list as an MQTT v5 property section, including the length prefix.

        Raises InvalidPropertyValueError if a value does not fit its wire type."""
        data = bytearray()
        for entry in self._entries:
            data.extend(encode_varint(entry.identifier))
            try:
                data.extend(_MQTTPropertySerializers[entry.wire_type](entry.value))
            except (ValueError, OverflowError) as exc:
                raise InvalidPropertyValueError(entry.name, entry.value, str(exc)) from exc
        data[0:0] = encode_varint(len(data))
        return bytes(data)

    @classmethod
    def from_bytes(cls, data: bytes) -> MQTTPropertyList:
        """Decode an MQTT v5 property section, including the length prefix.

        Raises DecodeFailedError if the data is malformed."""
        view = memoryview(data)
        length, length_sz = decode_varint(view)
        if length > len(view) - length_sz:
            raise DecodeFailedError("Property section underrun")
        view = view[length_sz:length_sz + length]
        plist = cls()
        while view:
            identifier, sz = decode_varint(view)
            try:
                info = MQTTPropertyInfo[MQTTPropertyId(identifier)]
            except ValueError:
                raise DecodeFailedError(f"Unknown property identifier: {identifier}") from None
            value, value_sz = _MQTTPropertyDeserializers[info.wire_type](view[sz:])
            plist.append(info.identifier, value)
            view = view[sz + value_sz:]
        return plist


# Largest value of each numeric wire type.
_MaxValues: Final[Mapping[MQTTPropertyType, int]] = {
    MQTTPropertyType.BYTE: MAX_UINT8,
    MQTTPropertyType.INT16: MAX_UINT16,
    MQTTPropertyType.INT32: MAX_UINT32,
    MQTTPropertyType.VARINT: MAX_UINT32,
}

def _check_int(name: str, value: object, wire_type: MQTTPropertyType) -> int:
    if isinstance(value, bool):
        # Byte properties are flags, allow them to be given as booleans.
        if wire_type is not MQTTPropertyType.BYTE:
            raise InvalidPropertyValueError(name, value, "expected an integer")
        return int(value)
    if not isinstance(value, int):
        raise InvalidPropertyValueError(name, value, "expected an integer")
    maximum = _MaxValues[wire_type]
    if not 0 <= value <= maximum:
        raise InvalidPropertyValueError(name, value, f"out of range 0..{maximum}")
    return value


def _check_str(name: str, value: object) -> str:
    if not isinstance(value, str):
        raise InvalidPropertyValueError(name, value, "expected a string")
    try:
        size = len(value.encode("utf-8"))
    except UnicodeEncodeError:
        raise InvalidPropertyValueError(name, value, "not encodable as UTF-8") from None
    if size > MAX_UINT16:
        raise InvalidPropertyValueError(name, value, f"longer than {MAX_UINT16} bytes")
    if "\u0000" in value:
        raise InvalidPropertyValueError(name, value, "contains a null character")
    return value


def _check_binary(name: str, value: object) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray, memoryview)):
        raise InvalidPropertyValueError(name, value, "expected bytes")
    data = bytes(value)
    if len(data) > MAX_UINT16:
        raise InvalidPropertyValueError(name, value, f"longer than {MAX_UINT16} bytes")
    return data


def _check_user_properties(name: str, value: object) -> list[tuple[str, str]]:
    if not isinstance(value, Mapping):
        raise InvalidPropertyValueError(name, value, "expected a mapping of strings to strings")
    return [(_check_str(name, k), _check_str(name, v)) for k, v in value.items()]


def _check_value(info: PropertyInfo, value: object) -> PropertyValue:
    if info.wire_type in _MaxValues:
        return _check_int(info.name, value, info.wire_type)
    if info.wire_type is MQTTPropertyType.STRING:
        return _check_str(info.name, value)
    return _check_binary(info.name, value)


def check_command(properties: Iterable[MQTTProperty], command: int) -> None:
    """Validate a property list against a command kind.

    Raises PropertyNotAllowedForCommandError naming every disallowed property."""
    try:
        allowed = _MQTTPropertyCommands[MQTTCommand(command)]
    except ValueError:
        raise MQTTCallerError(f"Unknown command kind: {command}") from None
    disallowed = [entry.name for entry in properties if entry.identifier not in allowed]
    if disallowed:
        raise PropertyNotAllowedForCommandError(list(dict.fromkeys(disallowed)), command)


def encode_properties(
    properties: Mapping[str, object] | None,
    command: int,
    plist: MQTTPropertyList | None = None,
) -> MQTTPropertyList:
    """Convert a generic property map to a validated property list.

    Entries are appended to plist if given, otherwise to a new list.
    Nothing is appended unless the whole map is valid for the command."""
    if plist is None:
        plist = MQTTPropertyList()
    elif plist.sealed:
        raise RuntimeError("Property list is sealed")
    staged = MQTTPropertyList(plist)
    for name, value in (properties or {}).items():
        info = property_info(name)
        if info.wire_type is MQTTPropertyType.STRING_PAIR:
            # Each pair becomes its own entry under the same identifier.
            for pair in _check_user_properties(name, value):
                staged.append(info.identifier, pair)
        else:
            staged.append(info.identifier, _check_value(info, value))
    check_command(staged, command)
    plist.extend(list(staged)[len(plist):])
    return plist


def _read_value(info: PropertyInfo, entry: MQTTProperty) -> PropertyValue:
    value = entry.value
    if entry.wire_type is not info.wire_type:
        raise DecodeFailedError(f"Wire type mismatch for {info.name}: {entry.wire_type.name}")
    if info.wire_type in _MaxValues:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _MaxValues[info.wire_type]:
            raise DecodeFailedError(f"Invalid integer for {info.name}: {value!r}")
        return value
    if info.wire_type is MQTTPropertyType.STRING:
        if not isinstance(value, str):
            raise DecodeFailedError(f"Invalid string for {info.name}: {value!r}")
        return value
    if info.wire_type is MQTTPropertyType.BINARY:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise DecodeFailedError(f"Invalid binary for {info.name}: {value!r}")
        return bytes(value)
    if not (isinstance(value, tuple) and len(value) == 2 and all(isinstance(v, str) for v in value)):
        raise DecodeFailedError(f"Invalid string pair for {info.name}: {value!r}")
    return value


def decode_properties(plist: Iterable[MQTTProperty] | None) -> MQTTPropertyDict:
    """Convert a property list to a generic property map.

    User properties are folded into a single nested mapping, which is only present
    when the list holds at least one user property.

    Raises DecodeFailedError if an entry can not be read."""
    properties: dict[str, object] = {}
    user_properties: dict[str, str] | None = None
    for entry in plist or ():
        try:
            info = MQTTPropertyInfo[entry.identifier]
        except KeyError:
            raise DecodeFailedError(f"Unknown property identifier: {entry.identifier}") from None
        value = _read_value(info, entry)
        if info.wire_type is MQTTPropertyType.STRING_PAIR:
            if user_properties is None:
                user_properties = {}
            key, pair_value = value  # type: ignore[misc]
            user_properties[key] = pair_value
        else:
            # Repeated identifiers are not expected here; the last one is kept.
            properties[info.name] = value
    if user_properties is not None:
        properties[USER_PROPERTY] = user_properties
    # Type ignore required at this conversion point.
    return properties  # type: ignore[return-value]
