"""Constants from the MQTT v5 specification and the client engine."""

from enum import IntEnum, IntFlag
from typing import Final


class MQTTPropertyId(IntEnum):
    PayloadFormatIndicator = 0x01
    MessageExpiryInterval = 0x02
    ContentType = 0x03
    ResponseTopic = 0x08
    CorrelationData = 0x09
    SubscriptionIdentifier = 0x0B
    SessionExpiryInterval = 0x11
    AssignedClientIdentifier = 0x12
    ServerKeepAlive = 0x13
    AuthenticationMethod = 0x15
    AuthenticationData = 0x16
    RequestProblemInformation = 0x17
    WillDelayInterval = 0x18
    RequestResponseInformation = 0x19
    ResponseInformation = 0x1A
    ServerReference = 0x1C
    ReasonString = 0x1F
    ReceiveMaximum = 0x21
    TopicAliasMaximum = 0x22
    TopicAlias = 0x23
    MaximumQoS = 0x24
    RetainAvailable = 0x25
    UserProperty = 0x26
    MaximumPacketSize = 0x27
    WildcardSubscriptionAvailable = 0x28
    SubscriptionIdentifierAvailable = 0x29
    SharedSubscriptionAvailable = 0x2A


class MQTTPropertyType(IntEnum):
    """Wire encoding of a property value."""
    BYTE = 1
    INT16 = 2
    INT32 = 3
    VARINT = 4
    BINARY = 5
    STRING = 6
    STRING_PAIR = 7


class MQTTCommand(IntEnum):
    """Command kinds a property list may be attached to."""
    CONNECT = 0x10
    CONNACK = 0x20
    PUBLISH = 0x30
    PUBACK = 0x40
    PUBREC = 0x50
    PUBREL = 0x60
    PUBCOMP = 0x70
    SUBSCRIBE = 0x80
    SUBACK = 0x90
    UNSUBSCRIBE = 0xA0
    UNSUBACK = 0xB0
    DISCONNECT = 0xE0
    AUTH = 0xF0
    WILL = 0x100


class MQTTErrorCode(IntEnum):
    """Result codes returned by the engine."""
    MQTT_ERR_AGAIN = -1
    MQTT_ERR_SUCCESS = 0
    MQTT_ERR_NOMEM = 1
    MQTT_ERR_PROTOCOL = 2
    MQTT_ERR_INVAL = 3
    MQTT_ERR_NO_CONN = 4
    MQTT_ERR_CONN_REFUSED = 5
    MQTT_ERR_NOT_FOUND = 6
    MQTT_ERR_CONN_LOST = 7
    MQTT_ERR_TLS = 8
    MQTT_ERR_PAYLOAD_SIZE = 9
    MQTT_ERR_NOT_SUPPORTED = 10
    MQTT_ERR_AUTH = 11
    MQTT_ERR_ACL_DENIED = 12
    MQTT_ERR_UNKNOWN = 13
    MQTT_ERR_ERRNO = 14
    MQTT_ERR_QUEUE_SIZE = 15
    MQTT_ERR_KEEPALIVE = 16


class MQTTLogLevel(IntFlag):
    LOG_NONE = 0x00
    LOG_INFO = 0x01
    LOG_NOTICE = 0x02
    LOG_WARNING = 0x04
    LOG_ERROR = 0x08
    LOG_DEBUG = 0x10
    LOG_ALL = 0xFFFF


class MQTTProtocolVersion(IntEnum):
    MQTT_PROTOCOL_V31 = 3
    MQTT_PROTOCOL_V311 = 4
    MQTT_PROTOCOL_V5 = 5


class MQTTSubOption(IntFlag):
    """Subscribe option bits, combined with the QoS in a SUBSCRIBE."""
    MQTT_SUB_OPT_SEND_RETAIN_ALWAYS = 0x00
    MQTT_SUB_OPT_NO_LOCAL = 0x04
    MQTT_SUB_OPT_RETAIN_AS_PUBLISHED = 0x08
    MQTT_SUB_OPT_SEND_RETAIN_NEW = 0x10
    MQTT_SUB_OPT_SEND_RETAIN_NEVER = 0x20


# Reason code 0 in CONNACK, PUBACK and DISCONNECT.
MQTT_RC_SUCCESS: Final = 0

MAX_UINT8: Final = 0xFF
MAX_UINT16: Final = 0xFFFF
MAX_UINT32: Final = 0xFFFFFFFF
