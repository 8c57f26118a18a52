from .callbacks import parse_event_kind as parse_event_kind
from .connection import Connection as Connection
from .engine import ConnectParams as ConnectParams
from .engine import Engine as Engine
from .engine import PahoEngine as PahoEngine
from .engine import TLSParams as TLSParams
from .error import ConnectionDestroyedError as ConnectionDestroyedError
from .error import DecodeFailedError as DecodeFailedError
from .error import InvalidHandlerError as InvalidHandlerError
from .error import InvalidPropertyValueError as InvalidPropertyValueError
from .error import MQTTCallerError as MQTTCallerError
from .error import MQTTEngineError as MQTTEngineError
from .error import MQTTError as MQTTError
from .error import MQTTFatalError as MQTTFatalError
from .error import MQTTRecoverableError as MQTTRecoverableError
from .error import MQTTSystemError as MQTTSystemError
from .error import MQTTValidationError as MQTTValidationError
from .error import PropertyNotAllowedForCommandError as PropertyNotAllowedForCommandError
from .error import UnknownEventKindError as UnknownEventKindError
from .error import UnknownPropertyError as UnknownPropertyError
from .events import EventKind as EventKind
from .library import Library as Library
from .library import topic_matches_sub as topic_matches_sub
from .library import version as version
from .mqtt_spec import MQTTCommand as MQTTCommand
from .mqtt_spec import MQTTErrorCode as MQTTErrorCode
from .mqtt_spec import MQTTLogLevel as MQTTLogLevel
from .mqtt_spec import MQTTProtocolVersion as MQTTProtocolVersion
from .mqtt_spec import MQTTSubOption as MQTTSubOption
from .property import MQTTPropertyList as MQTTPropertyList
from .property import decode_properties as decode_properties
from .property import encode_properties as encode_properties
