"""Boundary to the MQTT client engine.

The rest of the package talks to the engine through the `Engine` protocol.
`PahoEngine` implements it on top of paho-mqtt, converting property lists to
and from paho `Properties` and paho callbacks to event payloads."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import ssl
from typing import Callable, Final, Iterator, Mapping, Protocol

import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import MQTTException, Properties
from paho.mqtt.reasoncodes import ReasonCode
from paho.mqtt.subscribeoptions import SubscribeOptions

from .error import MQTTFatalError, MQTTSystemError
from .events import (
    ConnectEvent,
    ConnectV5Event,
    DisconnectEvent,
    DisconnectV5Event,
    Event,
    EventKind,
    LogEvent,
    MessageEvent,
    MessageV5Event,
    PublishEvent,
    PublishV5Event,
    SubscribeEvent,
    SubscribeV5Event,
    UnsubscribeEvent,
    UnsubscribeV5Event,
)
from .logger import get_logger
from .mqtt_spec import MQTTCommand, MQTTErrorCode, MQTTPropertyId, MQTTProtocolVersion, MQTTSubOption
from .property import MQTTPropertyList
from .serialization import MAX_VARINT

logger: Final = get_logger("engine")
paho_logger: Final = get_logger("engine.paho")

EventSink = Callable[[Event], None]


@dataclass(slots=True, match_args=True, frozen=True)
class ConnectParams:
    """Parameters for connecting to a broker."""
    host: str = "localhost"
    port: int = 1883
    keepalive: int = 60
    bind_address: str = ""
    properties: MQTTPropertyList | None = None


_TLSVersions: Final[Mapping[str, ssl.TLSVersion]] = {
    "tlsv1": ssl.TLSVersion.TLSv1,
    "tlsv1.1": ssl.TLSVersion.TLSv1_1,
    "tlsv1.2": ssl.TLSVersion.TLSv1_2,
    "tlsv1.3": ssl.TLSVersion.TLSv1_3,
}


@dataclass(slots=True, match_args=True, frozen=True)
class TLSParams:
    """TLS settings, applied by the engine when it connects."""
    cafile: str | None = None
    capath: str | None = None
    certfile: str | None = None
    keyfile: str | None = None
    cert_required: bool = True
    tls_version: str | None = None
    ciphers: str | None = None
    insecure: bool = False

    def create_context(self) -> ssl.SSLContext:
        """Build an SSL context from the settings.

        Raises OSError or ssl.SSLError if the files can not be loaded."""
        context = ssl.create_default_context(cafile=self.cafile, capath=self.capath)
        if self.certfile is not None:
            context.load_cert_chain(self.certfile, self.keyfile)
        if not self.cert_required:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        if self.tls_version is not None:
            try:
                context.minimum_version = _TLSVersions[self.tls_version.lower()]
            except KeyError:
                raise MQTTFatalError(
                    MQTTErrorCode.MQTT_ERR_INVAL, f"Unsupported TLS version: {self.tls_version}",
                ) from None
        if self.ciphers is not None:
            context.set_ciphers(self.ciphers)
        return context


class Engine(Protocol):
    """The operations the connection object needs from an MQTT client engine.

    Status calls return an MQTTErrorCode value, traffic calls return it with the message id."""
    def route(self, kind: EventKind, sink: EventSink) -> None:
        """Deliver events of this kind to the sink. Routing the same kind again is a no-op."""
    def destroy(self) -> None: ...
    def reinitialise(self, client_id: str | None, clean_session: bool) -> int: ...
    def error_string(self, rc: int) -> str: ...
    def will_set(
        self, topic: str, payload: bytes | str | None, qos: int, retain: bool, properties: MQTTPropertyList,
    ) -> int: ...
    def will_clear(self) -> int: ...
    def login_set(self, username: str | None, password: str | None) -> int: ...
    def tls_set(self, params: TLSParams) -> int: ...
    def connect(self, params: ConnectParams) -> int: ...
    def connect_async(self, params: ConnectParams) -> int: ...
    def reconnect(self) -> int: ...
    def disconnect(self, reason_code: int, properties: MQTTPropertyList) -> int: ...
    def publish(
        self, topic: str, payload: bytes | str | None, qos: int, retain: bool, properties: MQTTPropertyList,
    ) -> tuple[int, int]: ...
    def subscribe(self, sub: str, qos: int, options: int, properties: MQTTPropertyList) -> tuple[int, int]: ...
    def unsubscribe(self, sub: str, properties: MQTTPropertyList) -> tuple[int, int]: ...
    def loop(self, timeout: float) -> int: ...
    def loop_forever(self, timeout: float) -> int: ...
    def loop_start(self) -> int: ...
    def loop_stop(self) -> int: ...
    def loop_read(self, max_packets: int) -> int: ...
    def loop_write(self) -> int: ...
    def loop_misc(self) -> int: ...
    def want_write(self) -> bool: ...
    def socket(self) -> int | None: ...


EngineFactory = Callable[[str | None, bool, int, str], Engine]


# paho packet types for each outbound command kind.
_PacketTypes: Final[Mapping[MQTTCommand, int]] = {
    MQTTCommand.CONNECT: PacketTypes.CONNECT,
    MQTTCommand.WILL: PacketTypes.WILLMESSAGE,
    MQTTCommand.PUBLISH: PacketTypes.PUBLISH,
    MQTTCommand.SUBSCRIBE: PacketTypes.SUBSCRIBE,
    MQTTCommand.UNSUBSCRIBE: PacketTypes.UNSUBSCRIBE,
    MQTTCommand.DISCONNECT: PacketTypes.DISCONNECT,
    MQTTCommand.AUTH: PacketTypes.AUTH,
}

# Properties paho keeps as a list, because they may repeat.
_RepeatableProperties: Final = frozenset({MQTTPropertyId.UserProperty, MQTTPropertyId.SubscriptionIdentifier})


def to_paho_properties(plist: MQTTPropertyList, command: MQTTCommand) -> Properties | None:
    """Convert a property list to paho Properties for a command, or None if the list is empty."""
    if not plist:
        return None
    props = Properties(_PacketTypes[command])
    for entry in plist:
        # paho attribute names match the identifier names, and repeatable
        #   properties are appended to on each assignment.
        setattr(props, entry.identifier.name, entry.value)
    return props


def from_paho_properties(props: Properties | None) -> MQTTPropertyList:
    """Convert paho Properties to a property list."""
    plist = MQTTPropertyList()
    if props is None:
        return plist
    for identifier in MQTTPropertyId:
        value = getattr(props, identifier.name, None)
        if value is None:
            continue
        if identifier in _RepeatableProperties and isinstance(value, list):
            for item in value:
                plist.append(identifier, tuple(item) if identifier is MQTTPropertyId.UserProperty else item)
        else:
            plist.append(identifier, value)
    return plist


# Largest application message paho will send.
MAX_PAYLOAD_SIZE: Final = MAX_VARINT

# paho reports MQTT v3.1.1 CONNACK return codes as v5 reason codes, these map them back.
_ConnackReturnCodes: Final[Mapping[int, int]] = {
    0x84: mqtt.CONNACK_REFUSED_PROTOCOL_VERSION,
    0x85: mqtt.CONNACK_REFUSED_IDENTIFIER_REJECTED,
    0x88: mqtt.CONNACK_REFUSED_SERVER_UNAVAILABLE,
    0x86: mqtt.CONNACK_REFUSED_BAD_USERNAME_PASSWORD,
    0x87: mqtt.CONNACK_REFUSED_NOT_AUTHORIZED,
}


def _rc_value(rc: ReasonCode | int) -> int:
    """Get the integer value of a paho ReasonCode, which may already be an int."""
    return int(getattr(rc, "value", rc))


@contextmanager
def _engine_errors() -> Iterator[None]:
    """Translate exceptions raised by paho to engine errors."""
    try:
        yield
    except OSError as exc:
        raise MQTTSystemError(exc.errno or 0, exc.strerror or str(exc)) from exc
    except (ValueError, MQTTException) as exc:
        raise MQTTFatalError(MQTTErrorCode.MQTT_ERR_INVAL, str(exc)) from exc


class PahoEngine:
    """Engine implementation backed by a paho-mqtt client."""
    __slots__ = (
        "_client",
        "_client_id",
        "_clean_session",
        "_protocol",
        "_transport",
        "_sinks",
        "_tls",
        "_tls_context",
        "_tls_applied",
        "_loop_started",
    )

    def __init__(
        self,
        client_id: str | None = None,
        clean_session: bool = True,
        protocol_version: int = MQTTProtocolVersion.MQTT_PROTOCOL_V311,
        transport: str = "tcp",
    ) -> None:
        self._client_id = client_id
        self._clean_session = clean_session
        self._protocol = protocol_version
        self._transport = transport
        self._sinks: dict[EventKind, EventSink] = {}
        self._tls: TLSParams | None = None
        self._tls_context: ssl.SSLContext | None = None
        self._tls_applied = False
        self._loop_started = False
        self._client = self._new_client()

    @property
    def is_v5(self) -> bool:
        return self._protocol == MQTTProtocolVersion.MQTT_PROTOCOL_V5

    def _new_client(self) -> mqtt.Client:
        with _engine_errors():
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=self._client_id or "",
                # MQTT v5 uses clean start on connect instead.
                clean_session=None if self.is_v5 else self._clean_session,
                protocol=self._protocol,
                transport=self._transport,
            )
        client.enable_logger(paho_logger)
        return client

    def _properties(self, plist: MQTTPropertyList, command: MQTTCommand) -> Properties | None:
        if plist and not self.is_v5:
            raise MQTTFatalError(
                MQTTErrorCode.MQTT_ERR_NOT_SUPPORTED, "Properties require MQTT v5",
            )
        with _engine_errors():
            return to_paho_properties(plist, command)

    def _emit(self, kind: EventKind, build: Callable[[], Event]) -> None:
        sink = self._sinks.get(kind)
        if sink is not None:
            sink(build())

    def route(self, kind: EventKind, sink: EventSink) -> None:
        if kind in self._sinks:
            return
        self._sinks[kind] = sink
        self._install(kind)

    def _install(self, kind: EventKind) -> None:
        # paho has one callback per family, covering the plain and v5 event kinds.
        client = self._client
        match kind:
            case EventKind.ON_CONNECT | EventKind.ON_CONNECT_V5:
                client.on_connect = self._on_connect
            case EventKind.ON_DISCONNECT | EventKind.ON_DISCONNECT_V5:
                client.on_disconnect = self._on_disconnect
            case EventKind.ON_PUBLISH | EventKind.ON_PUBLISH_V5:
                client.on_publish = self._on_publish
            case EventKind.ON_MESSAGE | EventKind.ON_MESSAGE_V5:
                client.on_message = self._on_message
            case EventKind.ON_SUBSCRIBE | EventKind.ON_SUBSCRIBE_V5:
                client.on_subscribe = self._on_subscribe
            case EventKind.ON_UNSUBSCRIBE | EventKind.ON_UNSUBSCRIBE_V5:
                client.on_unsubscribe = self._on_unsubscribe
            case EventKind.ON_LOG:
                client.on_log = self._on_log

    def _uninstall(self) -> None:
        client = self._client
        client.on_connect = None
        client.on_disconnect = None
        client.on_publish = None
        client.on_message = None
        client.on_subscribe = None
        client.on_unsubscribe = None
        client.on_log = None
        self._sinks.clear()

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: mqtt.ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None,
    ) -> None:
        rc = _rc_value(reason_code)
        if self.is_v5:
            self._emit(EventKind.ON_CONNECT, lambda: ConnectEvent(rc, str(reason_code)))
        else:
            return_code = _ConnackReturnCodes.get(rc, rc)
            self._emit(EventKind.ON_CONNECT, lambda: ConnectEvent(return_code, mqtt.connack_string(return_code)))
        self._emit(EventKind.ON_CONNECT_V5, lambda: ConnectV5Event(
            rc,
            str(reason_code),
            int(flags.session_present),
            from_paho_properties(properties),
        ))

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: mqtt.DisconnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None,
    ) -> None:
        rc = _rc_value(reason_code)
        self._emit(EventKind.ON_DISCONNECT, lambda: DisconnectEvent(rc))
        self._emit(EventKind.ON_DISCONNECT_V5, lambda: DisconnectV5Event(rc, from_paho_properties(properties)))

    def _on_publish(
        self,
        client: mqtt.Client,
        userdata: object,
        mid: int,
        reason_code: ReasonCode,
        properties: Properties | None,
    ) -> None:
        self._emit(EventKind.ON_PUBLISH, lambda: PublishEvent(mid))
        self._emit(EventKind.ON_PUBLISH_V5, lambda: PublishV5Event(
            mid,
            _rc_value(reason_code),
            str(reason_code),
            from_paho_properties(properties),
        ))

    def _on_message(self, client: mqtt.Client, userdata: object, message: mqtt.MQTTMessage) -> None:
        self._emit(EventKind.ON_MESSAGE, lambda: MessageEvent(
            message.mid,
            message.topic,
            message.payload,
            message.qos,
            bool(message.retain),
        ))
        self._emit(EventKind.ON_MESSAGE_V5, lambda: MessageV5Event(
            message.mid,
            message.topic,
            message.payload,
            message.qos,
            bool(message.retain),
            from_paho_properties(getattr(message, "properties", None)),
        ))

    def _on_subscribe(
        self,
        client: mqtt.Client,
        userdata: object,
        mid: int,
        reason_code_list: list[ReasonCode],
        properties: Properties | None,
    ) -> None:
        # The granted QoS is carried as the reason code of each filter.
        granted_qos = tuple(_rc_value(rc) for rc in reason_code_list)
        self._emit(EventKind.ON_SUBSCRIBE, lambda: SubscribeEvent(mid, granted_qos))
        self._emit(EventKind.ON_SUBSCRIBE_V5, lambda: SubscribeV5Event(
            mid, granted_qos, from_paho_properties(properties),
        ))

    def _on_unsubscribe(
        self,
        client: mqtt.Client,
        userdata: object,
        mid: int,
        reason_code_list: list[ReasonCode],
        properties: Properties | None,
    ) -> None:
        self._emit(EventKind.ON_UNSUBSCRIBE, lambda: UnsubscribeEvent(mid))
        self._emit(EventKind.ON_UNSUBSCRIBE_V5, lambda: UnsubscribeV5Event(mid, from_paho_properties(properties)))

    def _on_log(self, client: mqtt.Client, userdata: object, level: int, buf: str) -> None:
        self._emit(EventKind.ON_LOG, lambda: LogEvent(int(level), buf))

    def destroy(self) -> None:
        """Detach all callbacks and release the network resources."""
        self._uninstall()
        if self._loop_started:
            self._client.loop_stop()
            self._loop_started = False
        sock = self._client.socket()
        if sock is not None:
            sock.close()
        logger.debug(f"Destroyed engine for client id {self._client_id!r}")

    def reinitialise(self, client_id: str | None, clean_session: bool) -> int:
        self.destroy()
        self._client_id = client_id
        self._clean_session = clean_session
        self._tls = None
        self._tls_context = None
        self._tls_applied = False
        self._client = self._new_client()
        return MQTTErrorCode.MQTT_ERR_SUCCESS

    def error_string(self, rc: int) -> str:
        return mqtt.error_string(rc)

    def will_set(
        self, topic: str, payload: bytes | str | None, qos: int, retain: bool, properties: MQTTPropertyList,
    ) -> int:
        props = self._properties(properties, MQTTCommand.WILL)
        with _engine_errors():
            self._client.will_set(topic, payload, qos, retain, props)
        return MQTTErrorCode.MQTT_ERR_SUCCESS

    def will_clear(self) -> int:
        self._client.will_clear()
        return MQTTErrorCode.MQTT_ERR_SUCCESS

    def login_set(self, username: str | None, password: str | None) -> int:
        self._client.username_pw_set(username, password)
        return MQTTErrorCode.MQTT_ERR_SUCCESS

    def tls_set(self, params: TLSParams) -> int:
        # Build the context now so bad files are reported here rather than on connect.
        with _engine_errors():
            self._tls_context = params.create_context()
        self._tls = params
        return MQTTErrorCode.MQTT_ERR_SUCCESS

    def _apply_tls(self) -> None:
        if self._tls is None or self._tls_context is None or self._tls_applied:
            return
        with _engine_errors():
            self._client.tls_set_context(self._tls_context)
            self._client.tls_insecure_set(self._tls.insecure)
        self._tls_applied = True

    def _connect_kwargs(self, params: ConnectParams) -> dict[str, object]:
        kwargs: dict[str, object] = {
            "host": params.host,
            "port": params.port,
            "keepalive": params.keepalive,
            "bind_address": params.bind_address,
        }
        if self.is_v5:
            kwargs["clean_start"] = self._clean_session
            kwargs["properties"] = self._properties(params.properties or MQTTPropertyList(), MQTTCommand.CONNECT)
        elif params.properties:
            self._properties(params.properties, MQTTCommand.CONNECT)
        return kwargs

    def connect(self, params: ConnectParams) -> int:
        kwargs = self._connect_kwargs(params)
        self._apply_tls()
        logger.debug(f"Connecting to {params.host}:{params.port}")
        with _engine_errors():
            return self._client.connect(**kwargs)  # type: ignore[arg-type]

    def connect_async(self, params: ConnectParams) -> int:
        kwargs = self._connect_kwargs(params)
        self._apply_tls()
        with _engine_errors():
            rc = self._client.connect_async(**kwargs)  # type: ignore[arg-type,func-returns-value]
        return MQTTErrorCode.MQTT_ERR_SUCCESS if rc is None else rc

    def reconnect(self) -> int:
        with _engine_errors():
            return self._client.reconnect()

    def disconnect(self, reason_code: int, properties: MQTTPropertyList) -> int:
        props = self._properties(properties, MQTTCommand.DISCONNECT)
        reason = None
        if reason_code and not self.is_v5:
            raise MQTTFatalError(MQTTErrorCode.MQTT_ERR_NOT_SUPPORTED, "Disconnect reason codes require MQTT v5")
        if reason_code:
            with _engine_errors():
                reason = ReasonCode(PacketTypes.DISCONNECT, identifier=reason_code)
        return self._client.disconnect(reasoncode=reason, properties=props)

    def publish(
        self, topic: str, payload: bytes | str | None, qos: int, retain: bool, properties: MQTTPropertyList,
    ) -> tuple[int, int]:
        props = self._properties(properties, MQTTCommand.PUBLISH)
        size = len(payload.encode("utf-8")) if isinstance(payload, str) else len(payload or b"")
        if size > MAX_PAYLOAD_SIZE:
            return MQTTErrorCode.MQTT_ERR_PAYLOAD_SIZE, 0
        with _engine_errors():
            info = self._client.publish(topic, payload, qos, retain, props)
        return info.rc, info.mid

    def subscribe(self, sub: str, qos: int, options: int, properties: MQTTPropertyList) -> tuple[int, int]:
        props = self._properties(properties, MQTTCommand.SUBSCRIBE)
        with _engine_errors():
            if self.is_v5:
                sub_options = SubscribeOptions(
                    qos=qos,
                    noLocal=bool(options & MQTTSubOption.MQTT_SUB_OPT_NO_LOCAL),
                    retainAsPublished=bool(options & MQTTSubOption.MQTT_SUB_OPT_RETAIN_AS_PUBLISHED),
                    retainHandling=(options >> 4) & 0x03,
                )
                rc, mid = self._client.subscribe(sub, options=sub_options, properties=props)
            elif options:
                raise MQTTFatalError(MQTTErrorCode.MQTT_ERR_NOT_SUPPORTED, "Subscribe options require MQTT v5")
            else:
                rc, mid = self._client.subscribe(sub, qos)
        return rc, mid or 0

    def unsubscribe(self, sub: str, properties: MQTTPropertyList) -> tuple[int, int]:
        props = self._properties(properties, MQTTCommand.UNSUBSCRIBE)
        with _engine_errors():
            rc, mid = self._client.unsubscribe(sub, properties=props)
        return rc, mid or 0

    def loop(self, timeout: float) -> int:
        with _engine_errors():
            return self._client.loop(timeout)

    def loop_forever(self, timeout: float) -> int:
        with _engine_errors():
            return self._client.loop_forever(timeout)

    def loop_start(self) -> int:
        rc = self._client.loop_start()
        if rc == MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._loop_started = True
        return rc

    def loop_stop(self) -> int:
        rc = self._client.loop_stop()
        self._loop_started = False
        return rc

    def loop_read(self, max_packets: int) -> int:
        with _engine_errors():
            return self._client.loop_read(max_packets)

    def loop_write(self) -> int:
        with _engine_errors():
            return self._client.loop_write()

    def loop_misc(self) -> int:
        return self._client.loop_misc()

    def want_write(self) -> bool:
        return self._client.want_write()

    def socket(self) -> int | None:
        sock = self._client.socket()
        return None if sock is None else sock.fileno()
