"""
Shared key/value store backends.

A store holds the small pieces of state the engine shares across requests:
the ownership claim, the stage record, the stored lock file hash and the
cached status check. Values are opaque bytes (msgspec-encoded by callers).

A store backend provides:
- get/set/delete with an optional per-entry TTL (expired entries read as absent),
- a re-entrant critical section (`locked()`) so callers can do check-then-set
  atomically with respect to every other process sharing the store.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> bytes | None: ...
    def set(self, key: str, value: bytes, *, ttl: float | None = None) -> None: ...
    def delete(self, key: str) -> None: ...
    def locked(self) -> AbstractContextManager[None]: ...
