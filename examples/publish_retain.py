#!/usr/bin/env python3
"""This example demonstrates publishing a retained message and receiving it back."""

from queue import Queue

from mqttbridge import Connection, EventKind


def main() -> None:
    q: Queue[tuple[str, bytes, int, bool]] = Queue()

    def on_message(mid: int, topic: str, payload: bytes, qos: int, retain: bool) -> None:
        q.put((topic, payload, qos, retain))

    with Connection() as conn:
        conn.callback_set(EventKind.ON_MESSAGE, on_message)
        conn.connect("localhost")
        conn.loop_start()
        conn.wait_for_connect(timeout=5.0)
        print("*** Connected to broker")

        conn.publish("mqttbridge/examples/publish_retain", b"test_payload", qos=1, retain=True)
        conn.subscribe("mqttbridge/examples/publish_retain", qos=1)
        topic, payload, qos, retain = q.get(timeout=5.0)
        assert topic == "mqttbridge/examples/publish_retain"
        assert payload == b"test_payload"
        assert retain
        print(f"*** Received retained message on {topic}: {payload!r} (qos {qos})")

        conn.disconnect()
        conn.wait_for_disconnect(timeout=5.0)
        conn.loop_stop()
        print("*** Disconnected from broker")


if __name__ == "__main__":
    main()
