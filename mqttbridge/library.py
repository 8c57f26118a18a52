from __future__ import annotations

from typing import Any, Final, Literal
import weakref

import paho.mqtt
import paho.mqtt.client as mqtt

from .connection import Connection
from .logger import get_logger
from .protected import Protected, protect

logger: Final = get_logger("library")


def version() -> str:
    """Get the version of the engine library, as "major.minor.revision"."""
    return paho.mqtt.__version__


def topic_matches_sub(sub: str, topic: str) -> bool:
    """Check whether a topic matches a subscription filter."""
    return mqtt.topic_matches_sub(sub, topic)


class Library(Protected):
    """Process-lifetime state shared by connections.

    `init` and `cleanup` are reference counted. The final `cleanup` destroys
    every connection created with `new` which is still alive."""
    __slots__ = ("_refcount", "_connections")

    def __init__(self) -> None:
        super().__init__()
        self._refcount = 0
        self._connections: weakref.WeakSet[Connection] = weakref.WeakSet()

    def __enter__(self) -> Library:  # type: ignore[override]
        self.init()
        return self

    def __exit__(self, *args: object) -> None:
        self.cleanup()

    @property
    def initialised(self) -> bool:
        return self._refcount > 0

    def init(self) -> Literal[True]:
        with self._lock:
            self._refcount += 1
            logger.debug(f"Library init, refcount {self._refcount}")
        return True

    def cleanup(self) -> Literal[True]:
        with self._lock:
            if self._refcount == 0:
                return True
            self._refcount -= 1
            logger.debug(f"Library cleanup, refcount {self._refcount}")
            if self._refcount == 0:
                self._destroy_all()
        return True

    @protect
    def _destroy_all(self) -> None:
        for connection in list(self._connections):
            connection.destroy()
        self._connections.clear()

    def new(self, client_id: str | None = None, clean_session: bool = True, **kwargs: Any) -> Connection:
        """Create a connection tracked by the library.

        Keyword arguments are passed to `Connection`."""
        connection = Connection(client_id, clean_session, **kwargs)
        with self._lock:
            self._connections.add(connection)
        return connection

    @property
    def connections(self) -> list[Connection]:
        """Connections created with `new` which have not been destroyed."""
        with self._lock:
            return [c for c in self._connections if not c.destroyed]
