from __future__ import annotations

from typing import Callable, Final

from .error import ConnectionDestroyedError, DecodeFailedError, InvalidHandlerError, UnknownEventKindError
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
from .mqtt_spec import MQTT_RC_SUCCESS
from .property import decode_properties
from .protected import Protected, protect

logger: Final = get_logger("callbacks")

Handler = Callable[..., object]
ErrorCallback = Callable[[Exception], None]


def parse_event_kind(kind: object) -> EventKind:
    """Resolve an event kind given as an EventKind, its integer code or its name.

    Names must carry the ON_ prefix, so other constant names are never mistaken for events."""
    if isinstance(kind, EventKind):
        return kind
    if isinstance(kind, str):
        if kind.startswith("ON_") and kind in EventKind.__members__:
            return EventKind[kind]
        raise UnknownEventKindError(kind)
    if isinstance(kind, int) and not isinstance(kind, bool):
        try:
            return EventKind(kind)
        except ValueError:
            raise UnknownEventKindError(kind) from None
    raise UnknownEventKindError(kind)


def _describe_disconnect(rc: int) -> tuple[bool, str]:
    if rc == 0:
        return True, "client-initiated disconnect"
    return False, "unexpected disconnect"


def event_args(event: Event) -> tuple[object, ...]:
    """Build the positional arguments a handler receives for an event.

    Raises DecodeFailedError if the properties of a v5 event can not be decoded."""
    match event:
        case ConnectEvent(rc, reason):
            return (rc == 0, rc, reason)
        case ConnectV5Event(reason_code, reason, flags, properties):
            return (reason_code == MQTT_RC_SUCCESS, reason_code, reason, flags, decode_properties(properties))
        case DisconnectEvent(rc):
            success, description = _describe_disconnect(rc)
            return (success, rc, description)
        case DisconnectV5Event(reason_code, properties):
            success, description = _describe_disconnect(reason_code)
            return (success, reason_code, description, decode_properties(properties))
        case PublishEvent(mid):
            return (mid,)
        case PublishV5Event(mid, reason_code, reason, properties):
            return (mid, reason_code, reason, decode_properties(properties))
        case MessageEvent(mid, topic, payload, qos, retain):
            return (mid, topic, payload, qos, retain)
        case MessageV5Event(mid, topic, payload, qos, retain, properties):
            return (mid, topic, payload, qos, retain, decode_properties(properties))
        case SubscribeEvent(mid, granted_qos):
            return (mid, *granted_qos)
        case SubscribeV5Event(mid, granted_qos, properties):
            return (mid, decode_properties(properties), *granted_qos)
        case UnsubscribeEvent(mid):
            return (mid,)
        case UnsubscribeV5Event(mid, properties):
            return (mid, decode_properties(properties))
        case LogEvent(level, message):
            return (level, message)
    raise TypeError(f"Not an event: {event!r}")


class CallbackSlots(Protected):
    """One handler slot per event kind for a single connection.

    The slot lock is held while a handler runs, so handlers for one connection
    never overlap and none starts once the slots have been closed."""
    __slots__ = ("_handlers", "_closed")

    def __init__(self) -> None:
        super().__init__()
        self._handlers: list[Handler | None] = [None] * len(EventKind)
        self._closed = False

    @protect
    def set(self, kind: EventKind, handler: Handler) -> None:
        """Store a handler, replacing any previous one."""
        if not callable(handler):
            raise InvalidHandlerError(handler)
        if self._closed:
            raise ConnectionDestroyedError("Connection has been destroyed")
        self._handlers[kind] = None
        self._handlers[kind] = handler

    @protect
    def get(self, kind: EventKind) -> Handler | None:
        return self._handlers[kind]

    @protect
    def is_set(self, kind: EventKind) -> bool:
        return self._handlers[kind] is not None

    @protect
    def clear(self) -> None:
        """Release every handler, in slot order."""
        for kind in EventKind:
            self._handlers[kind] = None

    @protect
    def close(self) -> None:
        """Release every handler and refuse any further registration or dispatch."""
        self._closed = True
        self.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def dispatch(self, event: Event, on_error: ErrorCallback) -> None:
        """Invoke the handler registered for an event, if any.

        Errors are passed to on_error and never raised to the caller,
        which is the engine's network loop."""
        with self:
            handler = self._handlers[event.kind]
            if handler is None:
                return
            try:
                args = event_args(event)
            except DecodeFailedError as exc:
                logger.debug(f"Skipping {event.kind.name} callback, properties failed to decode: {exc}")
                on_error(exc)
                return
            try:
                handler(*args)
            except Exception as exc:
                logger.debug(f"{event.kind.name} callback raised {exc!r}")
                on_error(exc)
