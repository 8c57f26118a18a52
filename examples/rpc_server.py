#!/usr/bin/env python3
"""This example demonstrates a simple RPC server over MQTT v5.

It listens for incoming RPC requests on a specific topic and responds with the result of the RPC call.

The response-topic property is used by the requestor to specify the topic to which the response should be sent,
and correlation-data, when present, is sent back unchanged."""

import logging

from mqttbridge import Connection, EventKind, MQTTProtocolVersion
from mqttbridge.property import MQTTPropertyDict


class RPCServer:
    """A simple stateless RPC server."""
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def handle_request(
        self, mid: int, topic: str, payload: bytes, qos: int, retain: bool, properties: MQTTPropertyDict,
    ) -> None:
        """Handle incoming RPC requests."""
        print(f"*** Received RPC request on {topic}: {payload!r}")

        response_topic = properties.get("response-topic")
        if response_topic is None:
            print("Request was missing required response-topic property")
            return

        response_props: dict[str, object] = {}
        if "correlation-data" in properties:
            response_props["correlation-data"] = properties["correlation-data"]

        # Simulate some processing.
        response = f"This is a good day for {payload.decode()}"
        self.conn.publish(response_topic, response.encode(), qos=2, properties=response_props)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    with Connection(protocol_version=MQTTProtocolVersion.MQTT_PROTOCOL_V5) as conn:
        rpc_server = RPCServer(conn)

        def on_connect(success: bool, rc: int, reason: str) -> None:
            # Subscriptions are made once the broker has accepted the connection.
            if success:
                conn.subscribe("mqttbridge/examples/rpc/request", qos=2)

        conn.callback_set(EventKind.ON_CONNECT, on_connect)
        conn.callback_set(EventKind.ON_MESSAGE_V5, rpc_server.handle_request)
        conn.connect("localhost")

        print("*** Waiting for RPC requests...")
        try:
            conn.loop_forever()  # Wait indefinitely for incoming messages.
        except KeyboardInterrupt:
            print("\n*** Shutting down RPC server...")


if __name__ == "__main__":
    main()
