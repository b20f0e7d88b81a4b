from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager


class MemoryStore:
    """In-process store; the critical section is a plain RLock."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[bytes, float | None]] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: bytes, *, ttl: float | None = None) -> None:
        expires_at = None if ttl is None else self._clock() + ttl
        with self._lock:
            self._data[key] = (bytes(value), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield
