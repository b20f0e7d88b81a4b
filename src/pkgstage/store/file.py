"""
pkgstage.store.file
===================

FileStore keeps one JSON document per key under a state directory:

    <state_dir>/<key>.json   {"value": <raw JSON>, "expires_at": <epoch|null>}

Writes go through write_bytes_atomic (temp file + os.replace), so readers
never see a torn entry. The critical section is an ``fcntl`` exclusive lock
on a sidecar file, shared by every process pointing at the same directory.
Within one process the lock is re-entrant: nested ``locked()`` calls only
take the file lock once.
"""

from __future__ import annotations

import fcntl
import re
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

import msgspec
import msgspec.json

from pkgstage.utils.fs_utils import write_bytes_atomic

_LOCK_BASENAME = ".store.lock"
_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class _Entry(msgspec.Struct, frozen=True):
    value: msgspec.Raw
    expires_at: float | None = None


class FileStore:
    def __init__(self, root: str | Path, *, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root).expanduser()
        self._clock = clock
        self._mutex = threading.RLock()
        self._depth = 0
        self._handle: IO[str] | None = None

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> bytes | None:
        p = self._path(key)
        try:
            data = p.read_bytes()
        except FileNotFoundError:
            return None
        entry = msgspec.json.decode(data, type=_Entry)
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            return None
        return bytes(entry.value)

    def set(self, key: str, value: bytes, *, ttl: float | None = None) -> None:
        expires_at = None if ttl is None else self._clock() + ttl
        entry = _Entry(value=msgspec.Raw(value), expires_at=expires_at)
        write_bytes_atomic(self._path(key), msgspec.json.encode(entry) + b"\n")

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._mutex:
            if self._depth == 0:
                self.root.mkdir(parents=True, exist_ok=True)
                handle = (self.root / _LOCK_BASENAME).open("a+", encoding="utf-8")
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                self._handle = handle
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._handle is not None:
                    fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
                    self._handle.close()
                    self._handle = None
