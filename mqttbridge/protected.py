from __future__ import annotations

from functools import wraps
import sys
import threading
from typing import Any, Callable, Concatenate, ParamSpec, TypeVar

if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


ProtectedT = TypeVar("ProtectedT", bound="Protected")
ProtectP = ParamSpec("ProtectP")
ProtectR = TypeVar("ProtectR")


def protect(
    func: Callable[Concatenate[ProtectedT, ProtectP], ProtectR],
) -> Callable[Concatenate[ProtectedT, ProtectP], ProtectR]:
    """Decorator requiring the instance lock to be held by the calling thread."""
    @wraps(func)
    def wrapper(self: ProtectedT, /, *args: Any, **kwargs: Any) -> ProtectR:
        if not self._lock._is_owned():  # type: ignore[attr-defined]
            raise RuntimeError(f"{self.__class__.__name__} instance lock is not owned by this thread")
        return func(self, *args, **kwargs)
    return wrapper


class Protected:
    """State guarded by a re-entrant lock.

    Enter the instance as a context manager to hold the lock,
    then call the methods decorated with `@protect`."""
    __slots__ = ("_lock", "__weakref__")

    def __init__(self) -> None:
        # Re-entrant, so a callback running under the lock may call back in.
        self._lock = threading.RLock()

    def __enter__(self) -> Self:
        self._lock.acquire()
        return self

    def __exit__(self, *args: object) -> None:
        self._lock.release()
