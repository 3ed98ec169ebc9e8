from __future__ import annotations

import threading
import types

import anyio

__all__ = ("AsyncLock", "Lock")


class AsyncLock:
    """
    An `anyio` lock used by the async stores.

    The sync tree is generated from the async one, so this class and
    :class:`Lock` must expose the same context manager protocol.
    """

    __slots__ = ("_lock",)

    def __init__(self) -> None:
        self._lock = anyio.Lock()

    async def __aenter__(self) -> "AsyncLock":
        await self._lock.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        self._lock.release()


class Lock:
    """
    A thread lock with the same interface as :class:`AsyncLock`.

    Also used directly by the invalidation registry, whose critical
    sections never await and are therefore safe to enter from async code.
    """

    __slots__ = ("_lock",)

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> "Lock":
        self._lock.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        self._lock.release()
