import threading

import pytest

from mqttbridge.connection import Connection
from mqttbridge.engine import ConnectParams, PahoEngine, TLSParams
from mqttbridge.error import (
    ConnectionDestroyedError,
    InvalidHandlerError,
    MQTTCallerError,
    MQTTFatalError,
    MQTTRecoverableError,
    MQTTSystemError,
    PropertyNotAllowedForCommandError,
    UnknownEventKindError,
)
from mqttbridge.events import ConnectEvent, DisconnectEvent, EventKind, LogEvent, MessageV5Event, PublishEvent
from mqttbridge.mqtt_spec import MQTTErrorCode, MQTTSubOption
from mqttbridge.property import MQTTPropertyList, decode_properties


@pytest.fixture
def conn(fake_engine):
    with Connection("client-1", engine_factory=fake_engine) as connection:
        yield connection


@pytest.fixture
def engine(conn, fake_engine):
    return fake_engine.engines[-1]


def test_connection_create(fake_engine):
    connection = Connection(None, True, protocol_version=5, transport="websockets", engine_factory=fake_engine)
    engine = fake_engine.engines[0]
    assert (engine.client_id, engine.clean_session, engine.protocol_version, engine.transport) == (
        None, True, 5, "websockets",
    )
    connection.destroy()


def test_connection_client_id_required(fake_engine):
    with pytest.raises(MQTTCallerError):
        Connection(None, False, engine_factory=fake_engine)
    # The engine is never created.
    assert fake_engine.engines == []
    Connection("persistent", False, engine_factory=fake_engine).destroy()


def test_connection_publish(conn, engine):
    assert conn.publish("a/b", b"hello", 1) == 1
    assert conn.publish("a/b") == 2
    call = engine.calls[0]
    assert call[:5] == ("publish", "a/b", b"hello", 1, False)
    assert call[5] == MQTTPropertyList()
    assert call[5].sealed


def test_connection_publish_properties(conn, engine):
    conn.publish("a/b", b"", properties={"content-type": "text/plain", "user-property": {"k": "v"}})
    plist = engine.calls[0][5]
    assert plist.sealed
    assert decode_properties(plist) == {"content-type": "text/plain", "user-property": {"k": "v"}}


def test_connection_publish_invalid_properties(conn, engine):
    with pytest.raises(PropertyNotAllowedForCommandError):
        conn.publish("a/b", b"", properties={"will-delay-interval": 5})
    assert engine.calls == []


@pytest.mark.parametrize("rc, error", [
    (MQTTErrorCode.MQTT_ERR_NO_CONN, MQTTRecoverableError),
    (MQTTErrorCode.MQTT_ERR_CONN_LOST, MQTTRecoverableError),
    (MQTTErrorCode.MQTT_ERR_PAYLOAD_SIZE, MQTTRecoverableError),
    (MQTTErrorCode.MQTT_ERR_INVAL, MQTTFatalError),
    (MQTTErrorCode.MQTT_ERR_NOMEM, MQTTFatalError),
    (MQTTErrorCode.MQTT_ERR_PROTOCOL, MQTTFatalError),
    (MQTTErrorCode.MQTT_ERR_NOT_SUPPORTED, MQTTFatalError),
    (MQTTErrorCode.MQTT_ERR_ERRNO, MQTTSystemError),
])
def test_connection_errors(conn, engine, rc, error):
    engine.rc = rc
    with pytest.raises(error) as excinfo:
        conn.publish("a/b", b"")
    assert excinfo.value.code == rc
    assert excinfo.value.description == f"error {rc}"
    with pytest.raises(error):
        conn.loop()


def test_connection_subscribe(conn, engine):
    options = MQTTSubOption.MQTT_SUB_OPT_NO_LOCAL
    assert conn.subscribe("a/#", 1, options, {"subscription-identifier": 3}) == 1
    call = engine.calls[0]
    assert call[:4] == ("subscribe", "a/#", 1, options)
    assert decode_properties(call[4]) == {"subscription-identifier": 3}
    assert conn.unsubscribe("a/#") == 2
    assert engine.calls[1][:2] == ("unsubscribe", "a/#")


def test_connection_connect(conn, engine):
    assert conn.connect("broker", 1884, 10, properties={"session-expiry-interval": 60}) is True
    params = engine.calls[0][1]
    assert isinstance(params, ConnectParams)
    assert (params.host, params.port, params.keepalive, params.bind_address) == ("broker", 1884, 10, "")
    assert decode_properties(params.properties) == {"session-expiry-interval": 60}
    conn.connect_async()
    assert engine.calls[1][1] == ConnectParams(properties=MQTTPropertyList())
    conn.reconnect()
    assert engine.calls[2] == ("reconnect",)


def test_connection_will(conn, engine):
    conn.will_set("will/topic", b"gone", 1, True, {"will-delay-interval": 10})
    call = engine.calls[0]
    assert call[:5] == ("will_set", "will/topic", b"gone", 1, True)
    assert decode_properties(call[5]) == {"will-delay-interval": 10}
    conn.will_clear()
    assert engine.calls[1] == ("will_clear",)


def test_connection_disconnect(conn, engine):
    conn.disconnect()
    assert engine.calls[0][:2] == ("disconnect", 0)
    conn.disconnect(0x04, {"reason-string": "bye"})
    assert decode_properties(engine.calls[1][2]) == {"reason-string": "bye"}
    with pytest.raises(PropertyNotAllowedForCommandError):
        conn.disconnect(properties={"content-type": "x"})


def test_connection_tls(conn, engine):
    conn.tls_opts_set(cert_required=False)
    conn.tls_insecure_set(True)
    # Options are held until TLS is enabled.
    assert engine.calls == []
    conn.tls_set(cafile="ca.pem")
    assert engine.calls[-1] == ("tls_set", TLSParams(cafile="ca.pem", cert_required=False, insecure=True))
    conn.tls_opts_set(tls_version="tlsv1.3")
    assert engine.calls[-1][1].tls_version == "tlsv1.3"
    assert engine.calls[-1][1].cafile == "ca.pem"


def test_connection_login(conn, engine):
    conn.login_set("user", "pass")
    assert engine.calls == [("login_set", "user", "pass")]


def test_connection_loop(conn, engine):
    conn.loop()
    conn.loop(0.5)
    conn.loop_forever()
    conn.loop_start()
    conn.loop_stop()
    conn.loop_read()
    conn.loop_write()
    conn.loop_misc()
    assert engine.calls == [
        ("loop", 1.0),
        ("loop", 0.5),
        ("loop_forever", 1.0),
        ("loop_start",),
        ("loop_stop",),
        ("loop_read", 1),
        ("loop_write",),
        ("loop_misc",),
    ]
    assert conn.want_write() is False


def test_connection_socket(conn, engine):
    assert conn.socket() is False
    engine.fileno = 7
    assert conn.socket() == 7


def test_connection_callback_set(conn, engine, mocker):
    handler = mocker.Mock()
    assert conn.callback_set("ON_PUBLISH", handler) is True
    engine.emit(PublishEvent(3))
    handler.assert_called_once_with(3)

    with pytest.raises(UnknownEventKindError):
        conn.callback_set("LOG_INFO", handler)
    with pytest.raises(InvalidHandlerError):
        conn.callback_set(EventKind.ON_LOG, None)


def test_connection_callback_v5(conn, engine, mocker):
    handler = mocker.Mock()
    conn.callback_set(EventKind.ON_MESSAGE_V5, handler)
    plist = MQTTPropertyList()
    plist.append(0x03, "text/plain")
    plist.append(0x26, ("a", "1"))
    engine.emit(MessageV5Event(1, "t", b"p", 0, False, plist.seal()))
    handler.assert_called_once_with(1, "t", b"p", 0, False, {"content-type": "text/plain", "user-property": {"a": "1"}})


def test_connection_error_callback(fake_engine, mocker):
    error_callback = mocker.Mock()
    conn = Connection(error_callback=error_callback, engine_factory=fake_engine)
    engine = fake_engine.engines[0]
    exc = ValueError("handler failed")
    conn.callback_set(EventKind.ON_LOG, mocker.Mock(side_effect=exc))
    engine.emit(LogEvent(1, "x"))
    error_callback.assert_called_once_with(exc)
    conn.destroy()


def test_connection_default_error_channel(conn, engine, mocker, caplog):
    conn.callback_set(EventKind.ON_LOG, mocker.Mock(side_effect=RuntimeError("boom")))
    with caplog.at_level("ERROR", logger="mqttbridge"):
        engine.emit(LogEvent(1, "x"))
    assert "boom" in caplog.text


def test_connection_destroy(fake_engine, mocker):
    conn = Connection(engine_factory=fake_engine)
    engine = fake_engine.engines[0]
    handler = mocker.Mock()
    for kind in EventKind:
        conn.callback_set(kind, handler)
    sink = engine.sinks[EventKind.ON_PUBLISH]

    conn.destroy()
    assert conn.destroyed
    assert engine.destroyed
    # A late event from the engine reaches no handler.
    sink(PublishEvent(1))
    sink(LogEvent(1, "late"))
    handler.assert_not_called()

    conn.destroy()
    assert engine.calls.count(("destroy",)) == 1
    with pytest.raises(ConnectionDestroyedError):
        conn.publish("a/b")
    with pytest.raises(ConnectionDestroyedError):
        conn.callback_set(EventKind.ON_LOG, handler)


def test_connection_reinitialise(conn, engine, mocker):
    handler = mocker.Mock()
    conn.callback_set(EventKind.ON_PUBLISH, handler)
    assert conn.reinitialise("client-2", False) is True
    assert (engine.client_id, engine.clean_session) == ("client-2", False)
    engine.emit(PublishEvent(1))
    handler.assert_not_called()
    with pytest.raises(MQTTCallerError):
        conn.reinitialise(None, False)


def test_connection_wait_for_connect(conn, engine):
    with pytest.raises(TimeoutError):
        conn.wait_for_connect(0.01)

    thread = threading.Timer(0.05, engine.emit, args=(ConnectEvent(0, "Connection Accepted."),))
    thread.start()
    conn.wait_for_connect(5.0)
    assert conn.is_connected

    # A refused connection does not count.
    engine.emit(ConnectEvent(5, "Connection Refused: not authorised."))
    assert not conn.is_connected
    engine.emit(ConnectEvent(0, "Connection Accepted."))

    thread = threading.Timer(0.05, engine.emit, args=(DisconnectEvent(7),))
    thread.start()
    conn.wait_for_disconnect(5.0)
    assert not conn.is_connected


def test_connection_payload_too_large(mocker):
    client = mocker.patch("paho.mqtt.client.Client").return_value
    client.socket.return_value = None
    mocker.patch("mqttbridge.engine.MAX_PAYLOAD_SIZE", 4)
    with Connection(engine_factory=PahoEngine) as conn:
        with pytest.raises(MQTTRecoverableError) as excinfo:
            conn.publish("a/b", b"12345")
        assert excinfo.value.code == MQTTErrorCode.MQTT_ERR_PAYLOAD_SIZE
        client.publish.assert_not_called()


def test_connection_destroy_concurrent(fake_engine):
    conn = Connection(engine_factory=fake_engine)
    engine = fake_engine.engines[0]
    barrier = threading.Barrier(8)

    def destroy():
        barrier.wait(5.0)
        conn.destroy()

    threads = [threading.Thread(target=destroy, daemon=True) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5.0)
    assert conn.destroyed
    assert engine.calls.count(("destroy",)) == 1
