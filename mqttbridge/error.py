from __future__ import annotations

from typing import Callable, Final, Literal

from .mqtt_spec import MQTTErrorCode


class MQTTError(Exception):
    """Base class of every error raised by mqttbridge."""


class MQTTCallerError(MQTTError, ValueError):
    """The caller passed malformed arguments."""


class UnknownPropertyError(MQTTCallerError):
    def __init__(self, name: object) -> None:
        super().__init__(f"Unknown property: {name!r}")
        self.name = name


class UnknownEventKindError(MQTTCallerError):
    def __init__(self, kind: object) -> None:
        super().__init__(f"Not a proper callback type: {kind!r}")
        self.kind = kind


class InvalidHandlerError(MQTTCallerError, TypeError):
    def __init__(self, handler: object) -> None:
        super().__init__(f"Expecting a callback function, got {type(handler).__name__}")


class ConnectionDestroyedError(MQTTCallerError):
    """The connection was destroyed and may not be used again."""


class MQTTValidationError(MQTTError):
    """A property map failed validation before reaching the engine."""


class InvalidPropertyValueError(MQTTValidationError):
    def __init__(self, name: str, value: object, reason: str) -> None:
        super().__init__(f"Invalid value for property {name}: {value!r} ({reason})")
        self.name = name
        self.value = value


class PropertyNotAllowedForCommandError(MQTTValidationError):
    def __init__(self, names: list[str], command: int) -> None:
        super().__init__(f"Properties not allowed for command {hex(command)}: {', '.join(names)}")
        self.names = names
        self.command = command


class DecodeFailedError(MQTTError):
    """A property list could not be decoded."""


class MQTTEngineError(MQTTError):
    """A failure reported by the engine, with its numeric code and description."""
    def __init__(self, code: int, description: str) -> None:
        super().__init__(description)
        self.code = code
        self.description = description

    def __str__(self) -> str:
        try:
            name = MQTTErrorCode(self.code).name
        except ValueError:
            name = "UNKNOWN"
        return f"{self.description} (error code: {name}{{{hex(self.code)}}})"


class MQTTRecoverableError(MQTTEngineError):
    """An operational failure the caller may retry, e.g. no connection."""


class MQTTFatalError(MQTTEngineError):
    """An engine-internal failure which aborts the call."""


class MQTTSystemError(MQTTEngineError):
    """An operating system error, carrying the OS errno and its description."""
    def __str__(self) -> str:
        return f"[Errno {self.code}] {self.description}"


_FatalCodes: Final[frozenset[int]] = frozenset({
    MQTTErrorCode.MQTT_ERR_INVAL,
    MQTTErrorCode.MQTT_ERR_NOMEM,
    MQTTErrorCode.MQTT_ERR_PROTOCOL,
    MQTTErrorCode.MQTT_ERR_NOT_SUPPORTED,
})


def check_rc(rc: int, describe: Callable[[int], str]) -> Literal[True]:
    """Convert an engine result code to True or raise the matching error.

    describe is the engine's code to description lookup."""
    if rc == MQTTErrorCode.MQTT_ERR_SUCCESS:
        return True
    if rc in _FatalCodes:
        raise MQTTFatalError(rc, describe(rc))
    if rc == MQTTErrorCode.MQTT_ERR_ERRNO:
        raise MQTTSystemError(rc, describe(rc))
    raise MQTTRecoverableError(rc, describe(rc))
