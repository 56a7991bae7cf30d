from __future__ import annotations

import contextlib
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

V = TypeVar("V")


class KeyValueStore(ABC, Generic[V]):
    """
    Keyed shared state.

    `update` is the only read-modify-write primitive: implementations must run
    `fn` atomically with respect to other writers of the same key. `fn` gets the
    current value (or None) and returns the new value, or None to delete.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[V]: ...

    @abstractmethod
    def put(self, key: str, value: V) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def update(self, key: str, fn: Callable[[Optional[V]], Optional[V]]) -> Optional[V]: ...

    @abstractmethod
    def items(self) -> List[Tuple[str, V]]: ...

    def values(self) -> List[V]:
        return [v for _, v in self.items()]

    def __len__(self) -> int:
        return len(self.items())


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class InMemoryStore(KeyValueStore[V]):
    """
    Dict-backed store with per-key locks.

    The structure lock only guards the dict and the lock table; callbacks run
    under the key lock so unrelated keys never wait on each other. A key lock
    lives only while some thread holds or waits on it.
    """

    def __init__(self) -> None:
        self._data: Dict[str, V] = {}
        self._struct_lock = threading.Lock()
        self._key_locks: Dict[str, _KeyLock] = {}

    @contextlib.contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        with self._struct_lock:
            kl = self._key_locks.get(key)
            if kl is None:
                kl = self._key_locks[key] = _KeyLock()
            kl.users += 1
        try:
            with kl.lock:
                yield
        finally:
            with self._struct_lock:
                kl.users -= 1
                if kl.users == 0:
                    del self._key_locks[key]

    def lock_count(self) -> int:
        with self._struct_lock:
            return len(self._key_locks)

    def get(self, key: str) -> Optional[V]:
        with self._struct_lock:
            return self._data.get(key)

    def put(self, key: str, value: V) -> None:
        with self._locked(key):
            with self._struct_lock:
                self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._locked(key):
            with self._struct_lock:
                return self._data.pop(key, None) is not None

    def update(self, key: str, fn: Callable[[Optional[V]], Optional[V]]) -> Optional[V]:
        with self._locked(key):
            with self._struct_lock:
                current = self._data.get(key)
            new = fn(current)
            with self._struct_lock:
                if new is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = new
            return new

    def items(self) -> List[Tuple[str, V]]:
        with self._struct_lock:
            return list(self._data.items())
