"""Thread-safe store of the last committed cloud state of a pool."""

from threading import Lock
from typing import Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Snapshotter(Generic[K, V]):
    """
    Keyed cache of committed resources.

    Pools write to it from the reconcile loop while status readers may call
    ``get`` and ``snapshot`` from other threads.
    """

    def __init__(self):
        """Initialize an empty snapshot."""
        self._items: dict[K, V] = {}
        self._lock = Lock()

    def add(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = value

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            return self._items.get(key)

    def remove(self, key: K) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> set[K]:
        with self._lock:
            return set(self._items)

    def snapshot(self) -> dict[K, V]:
        """Return a copy of every committed item."""
        with self._lock:
            return dict(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
