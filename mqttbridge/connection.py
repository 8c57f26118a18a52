from __future__ import annotations

from dataclasses import replace
import threading
from types import TracebackType
from typing import Final, Literal, Mapping

from .callbacks import CallbackSlots, ErrorCallback, Handler, parse_event_kind
from .engine import ConnectParams, Engine, EngineFactory, PahoEngine, TLSParams
from .error import ConnectionDestroyedError, MQTTCallerError, check_rc
from .events import (
    ConnectEvent,
    ConnectV5Event,
    DisconnectEvent,
    DisconnectV5Event,
    Event,
    EventKind,
)
from .logger import get_logger
from .mqtt_spec import MQTT_RC_SUCCESS, MQTTCommand, MQTTProtocolVersion
from .property import encode_properties

logger: Final = get_logger("connection")

PropertyMap = Mapping[str, object]

# Engine default for a negative loop timeout, in seconds.
DEFAULT_LOOP_TIMEOUT: Final = 1.0


def _check_client_id(client_id: str | None, clean_session: bool) -> None:
    # A broker can only resume a session it can find by client id.
    if client_id is None and not clean_session:
        raise MQTTCallerError("clean_session must be True when client_id is None")


class Connection:
    """A single MQTT client connection.

    Property maps passed to the operations are validated against the command they
    are attached to before anything reaches the engine. Engine failures raise
    subclasses of MQTTEngineError, see `check_rc`.

    Handlers registered with `callback_set` run on whichever thread runs the
    engine's network loop."""
    __slots__ = (
        "_engine",
        "_slots",
        "_error_callback",
        "_tls",
        "_tls_enabled",
        "_state_cond",
        "_connected",
        "_destroyed",
        "__weakref__",
    )

    def __init__(
        self,
        client_id: str | None = None,
        clean_session: bool = True,
        *,
        protocol_version: int = MQTTProtocolVersion.MQTT_PROTOCOL_V311,
        transport: str = "tcp",
        error_callback: ErrorCallback | None = None,
        engine_factory: EngineFactory | None = None,
    ) -> None:
        _check_client_id(client_id, clean_session)
        factory: EngineFactory = engine_factory if engine_factory is not None else PahoEngine
        self._slots = CallbackSlots()
        self._error_callback = error_callback
        self._tls = TLSParams()
        self._tls_enabled = False
        self._state_cond = threading.Condition()
        self._connected = False
        self._destroyed = False
        self._engine: Engine = factory(client_id, clean_session, protocol_version, transport)
        self._route_state()

    def __enter__(self) -> Connection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.destroy()

    def _route_state(self) -> None:
        # Connection state is tracked whether or not handlers are set for these kinds.
        self._engine.route(EventKind.ON_CONNECT, self._dispatch)
        self._engine.route(EventKind.ON_DISCONNECT, self._dispatch)

    def _live(self) -> Engine:
        if self._destroyed:
            raise ConnectionDestroyedError("Connection has been destroyed")
        return self._engine

    def _check(self, rc: int) -> Literal[True]:
        return check_rc(rc, self._engine.error_string)

    def _set_connected(self, connected: bool) -> None:
        with self._state_cond:
            self._connected = connected
            self._state_cond.notify_all()

    def _dispatch(self, event: Event) -> None:
        match event:
            case ConnectEvent(rc=rc) | ConnectV5Event(reason_code=rc):
                self._set_connected(rc == MQTT_RC_SUCCESS)
            case DisconnectEvent() | DisconnectV5Event():
                self._set_connected(False)
        self._slots.dispatch(event, self._report_error)

    def _report_error(self, exc: Exception) -> None:
        if self._error_callback is None:
            logger.error(f"Error in callback: {exc}", exc_info=exc)
            return
        try:
            self._error_callback(exc)
        except Exception:
            logger.exception("Unhandled error in error callback")

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def is_connected(self) -> bool:
        return self._connected

    def destroy(self) -> None:
        """Release the handlers and the engine.

        Blocks until a running handler returns. Calling it again does nothing,
        any other operation afterwards raises ConnectionDestroyedError."""
        with self._slots:
            if self._destroyed:
                return
            self._destroyed = True
            self._slots.close()
        self._engine.destroy()
        self._set_connected(False)
        logger.debug("Connection destroyed")

    def reinitialise(self, client_id: str | None = None, clean_session: bool = True) -> Literal[True]:
        """Return the connection to its freshly created state, with a new client id."""
        _check_client_id(client_id, clean_session)
        engine = self._live()
        with self._slots:
            self._slots.clear()
        self._tls = TLSParams()
        self._tls_enabled = False
        self._set_connected(False)
        self._check(engine.reinitialise(client_id, clean_session))
        self._route_state()
        return True

    def callback_set(self, kind: EventKind | str | int, handler: Handler) -> Literal[True]:
        """Register a handler for an event kind, replacing any previous handler.

        The kind may be given as an EventKind, its name or its code."""
        event_kind = parse_event_kind(kind)
        engine = self._live()
        with self._slots:
            self._slots.set(event_kind, handler)
        engine.route(event_kind, self._dispatch)
        return True

    def will_set(
        self,
        topic: str,
        payload: bytes | str | None = None,
        qos: int = 0,
        retain: bool = False,
        properties: PropertyMap | None = None,
    ) -> Literal[True]:
        engine = self._live()
        plist = encode_properties(properties, MQTTCommand.WILL).seal()
        return self._check(engine.will_set(topic, payload, qos, retain, plist))

    def will_clear(self) -> Literal[True]:
        return self._check(self._live().will_clear())

    def login_set(self, username: str | None = None, password: str | None = None) -> Literal[True]:
        return self._check(self._live().login_set(username, password))

    def tls_set(
        self,
        cafile: str | None = None,
        capath: str | None = None,
        certfile: str | None = None,
        keyfile: str | None = None,
    ) -> Literal[True]:
        """Enable TLS with the given certificate files.

        Options from `tls_opts_set` and `tls_insecure_set` apply."""
        engine = self._live()
        tls = replace(self._tls, cafile=cafile, capath=capath, certfile=certfile, keyfile=keyfile)
        self._check(engine.tls_set(tls))
        self._tls = tls
        self._tls_enabled = True
        return True

    def _update_tls(self, tls: TLSParams) -> Literal[True]:
        engine = self._live()
        if self._tls_enabled:
            self._check(engine.tls_set(tls))
        self._tls = tls
        return True

    def tls_insecure_set(self, value: bool) -> Literal[True]:
        """Disable verification of the server hostname in its certificate."""
        return self._update_tls(replace(self._tls, insecure=bool(value)))

    def tls_opts_set(
        self,
        cert_required: bool = True,
        tls_version: str | None = None,
        ciphers: str | None = None,
    ) -> Literal[True]:
        return self._update_tls(replace(
            self._tls,
            cert_required=bool(cert_required),
            tls_version=tls_version,
            ciphers=ciphers,
        ))

    def _connect_params(
        self,
        host: str,
        port: int,
        keepalive: int,
        bind_address: str,
        properties: PropertyMap | None,
    ) -> ConnectParams:
        plist = encode_properties(properties, MQTTCommand.CONNECT).seal()
        return ConnectParams(host, port, keepalive, bind_address, plist)

    def connect(
        self,
        host: str = "localhost",
        port: int = 1883,
        keepalive: int = 60,
        bind_address: str = "",
        properties: PropertyMap | None = None,
    ) -> Literal[True]:
        """Connect to a broker, blocking until the network connection is made.

        The CONNACK is reported by the ON_CONNECT handlers once the loop runs."""
        engine = self._live()
        params = self._connect_params(host, port, keepalive, bind_address, properties)
        return self._check(engine.connect(params))

    def connect_async(
        self,
        host: str = "localhost",
        port: int = 1883,
        keepalive: int = 60,
        bind_address: str = "",
        properties: PropertyMap | None = None,
    ) -> Literal[True]:
        """Connect to a broker from the loop thread started with `loop_start`."""
        engine = self._live()
        params = self._connect_params(host, port, keepalive, bind_address, properties)
        return self._check(engine.connect_async(params))

    def reconnect(self) -> Literal[True]:
        return self._check(self._live().reconnect())

    def disconnect(self, reason_code: int = MQTT_RC_SUCCESS, properties: PropertyMap | None = None) -> Literal[True]:
        engine = self._live()
        plist = encode_properties(properties, MQTTCommand.DISCONNECT).seal()
        return self._check(engine.disconnect(reason_code, plist))

    def publish(
        self,
        topic: str,
        payload: bytes | str | None = None,
        qos: int = 0,
        retain: bool = False,
        properties: PropertyMap | None = None,
    ) -> int:
        """Publish a message, returning its message id."""
        engine = self._live()
        plist = encode_properties(properties, MQTTCommand.PUBLISH).seal()
        rc, mid = engine.publish(topic, payload, qos, retain, plist)
        self._check(rc)
        logger.debug(f"Published to {topic} with mid {mid}")
        return mid

    def subscribe(
        self,
        sub: str,
        qos: int = 0,
        options: int = 0,
        properties: PropertyMap | None = None,
    ) -> int:
        """Subscribe to a topic filter, returning the message id of the SUBSCRIBE.

        options is a combination of MQTTSubOption bits, which require MQTT v5."""
        engine = self._live()
        plist = encode_properties(properties, MQTTCommand.SUBSCRIBE).seal()
        rc, mid = engine.subscribe(sub, qos, options, plist)
        self._check(rc)
        logger.debug(f"Subscribed to {sub} with mid {mid}")
        return mid

    def unsubscribe(self, sub: str, properties: PropertyMap | None = None) -> int:
        engine = self._live()
        plist = encode_properties(properties, MQTTCommand.UNSUBSCRIBE).seal()
        rc, mid = engine.unsubscribe(sub, plist)
        self._check(rc)
        return mid

    def loop(self, timeout: float = -1) -> Literal[True]:
        """Run one iteration of the network loop, waiting up to timeout seconds for traffic."""
        return self._check(self._live().loop(DEFAULT_LOOP_TIMEOUT if timeout < 0 else timeout))

    def loop_forever(self, timeout: float = -1) -> Literal[True]:
        """Run the network loop until `disconnect` is called."""
        return self._check(self._live().loop_forever(DEFAULT_LOOP_TIMEOUT if timeout < 0 else timeout))

    def loop_start(self) -> Literal[True]:
        """Run the network loop on a new thread."""
        return self._check(self._live().loop_start())

    def loop_stop(self) -> Literal[True]:
        return self._check(self._live().loop_stop())

    def loop_read(self, max_packets: int = 1) -> Literal[True]:
        return self._check(self._live().loop_read(max_packets))

    def loop_write(self) -> Literal[True]:
        return self._check(self._live().loop_write())

    def loop_misc(self) -> Literal[True]:
        return self._check(self._live().loop_misc())

    def want_write(self) -> bool:
        return self._live().want_write()

    def socket(self) -> int | Literal[False]:
        """Get the file number of the network socket, or False when not connected."""
        fileno = self._live().socket()
        return False if fileno is None else fileno

    def wait_for_connect(self, timeout: float | None = None) -> None:
        """Wait for the broker to accept the connection.

        Raises TimeoutError if the timeout is exceeded."""
        with self._state_cond:
            if not self._state_cond.wait_for(lambda: self._connected, timeout=timeout):
                raise TimeoutError("Waiting for connection timed out")

    def wait_for_disconnect(self, timeout: float | None = None) -> None:
        """Wait for the connection to close.

        Raises TimeoutError if the timeout is exceeded."""
        with self._state_cond:
            if not self._state_cond.wait_for(lambda: not self._connected, timeout=timeout):
                raise TimeoutError("Waiting for disconnection timed out")
