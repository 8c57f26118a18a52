import pytest
import yaml

from mqttbridge.engine import ConnectParams, EventSink, TLSParams
from mqttbridge.events import Event, EventKind
from mqttbridge.mqtt_spec import MQTTErrorCode
from mqttbridge.property import MQTTPropertyList


@pytest.fixture
def test_data(request):
    """Load test data from a YAML file.

    The YAML file must be named after the test suite, and contain a mapping of test names to test data."""
    suite_name = request.module.__name__.split(".")[-1]
    test_name = request.node.originalname
    with open(f"tests/data/{suite_name}.yml") as f:
        data = yaml.safe_load(f)
    return data[test_name]


class FakeEngine:
    """An engine which records calls instead of talking to a broker.

    Set `rc` to make status calls fail, and call `emit` to deliver events as the network loop would."""
    def __init__(self, client_id=None, clean_session=True, protocol_version=4, transport="tcp"):
        self.client_id = client_id
        self.clean_session = clean_session
        self.protocol_version = protocol_version
        self.transport = transport
        self.sinks: dict[EventKind, EventSink] = {}
        self.calls: list[tuple] = []
        self.rc = MQTTErrorCode.MQTT_ERR_SUCCESS
        self.next_mid = 1
        self.fileno = None
        self.destroyed = False

    def emit(self, event: Event) -> None:
        sink = self.sinks.get(event.kind)
        if sink is not None:
            sink(event)

    def _status(self, *call) -> int:
        self.calls.append(call)
        return self.rc

    def _traffic(self, *call) -> tuple[int, int]:
        self.calls.append(call)
        mid = self.next_mid
        self.next_mid += 1
        return self.rc, mid

    def route(self, kind: EventKind, sink: EventSink) -> None:
        self.sinks.setdefault(kind, sink)

    def destroy(self) -> None:
        self.calls.append(("destroy",))
        self.sinks.clear()
        self.destroyed = True

    def reinitialise(self, client_id, clean_session) -> int:
        self.client_id = client_id
        self.clean_session = clean_session
        self.sinks.clear()
        return self._status("reinitialise", client_id, clean_session)

    def error_string(self, rc: int) -> str:
        return f"error {rc}"

    def will_set(self, topic, payload, qos, retain, properties: MQTTPropertyList) -> int:
        return self._status("will_set", topic, payload, qos, retain, properties)

    def will_clear(self) -> int:
        return self._status("will_clear")

    def login_set(self, username, password) -> int:
        return self._status("login_set", username, password)

    def tls_set(self, params: TLSParams) -> int:
        return self._status("tls_set", params)

    def connect(self, params: ConnectParams) -> int:
        return self._status("connect", params)

    def connect_async(self, params: ConnectParams) -> int:
        return self._status("connect_async", params)

    def reconnect(self) -> int:
        return self._status("reconnect")

    def disconnect(self, reason_code, properties) -> int:
        return self._status("disconnect", reason_code, properties)

    def publish(self, topic, payload, qos, retain, properties) -> tuple[int, int]:
        return self._traffic("publish", topic, payload, qos, retain, properties)

    def subscribe(self, sub, qos, options, properties) -> tuple[int, int]:
        return self._traffic("subscribe", sub, qos, options, properties)

    def unsubscribe(self, sub, properties) -> tuple[int, int]:
        return self._traffic("unsubscribe", sub, properties)

    def loop(self, timeout) -> int:
        return self._status("loop", timeout)

    def loop_forever(self, timeout) -> int:
        return self._status("loop_forever", timeout)

    def loop_start(self) -> int:
        return self._status("loop_start")

    def loop_stop(self) -> int:
        return self._status("loop_stop")

    def loop_read(self, max_packets) -> int:
        return self._status("loop_read", max_packets)

    def loop_write(self) -> int:
        return self._status("loop_write")

    def loop_misc(self) -> int:
        return self._status("loop_misc")

    def want_write(self) -> bool:
        return False

    def socket(self):
        return self.fileno


@pytest.fixture
def fake_engine():
    """A FakeEngine, and a factory for passing to Connection which returns it."""
    engines: list[FakeEngine] = []

    def factory(client_id, clean_session, protocol_version, transport):
        engine = FakeEngine(client_id, clean_session, protocol_version, transport)
        engines.append(engine)
        return engine
    factory.engines = engines  # type: ignore[attr-defined]
    return factory
