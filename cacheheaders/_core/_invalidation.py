from __future__ import annotations

import logging
from typing import FrozenSet, Iterable, Set, Union

from cacheheaders._core.models import StoreKey
from cacheheaders._synchronization import Lock

logger = logging.getLogger("cacheheaders.core.invalidation")

__all__ = ("InvalidationRegistry",)


class InvalidationRegistry:
    """
    Store keys that were marked stale out of band.

    A mark stays pending until the engine reads the key, at which point it
    is consumed and the stored validator is evicted. Marking and consuming
    share one lock, so a mark racing a read is either seen by that read or
    left for the next one, never lost.

    One registry is shared by every request that uses the same store.
    """

    def __init__(self) -> None:
        self._pending: Set[StoreKey] = set()
        self._lock = Lock()

    def mark_for_invalidation(self, keys: Union[StoreKey, Iterable[StoreKey]]) -> None:
        if isinstance(keys, str):
            keys = [keys]

        with self._lock:
            for key in keys:
                self._pending.add(StoreKey(key))
                logger.debug(f"Marked the store key '{key}' for invalidation.")

    @property
    def keys_marked_for_invalidation(self) -> FrozenSet[StoreKey]:
        """A snapshot of the pending marks."""
        with self._lock:
            return frozenset(self._pending)

    def consume(self, key: StoreKey) -> bool:
        """
        Remove the mark for `key`, returning whether there was one.
        """
        with self._lock:
            if key in self._pending:
                self._pending.discard(key)
                return True
            return False

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
