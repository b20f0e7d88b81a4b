"""
pkgstage.store
==============

Unified import surface for the shared key/value store backends.
"""

from __future__ import annotations

from pkgstage.store.base import KeyValueStore
from pkgstage.store.file import FileStore
from pkgstage.store.memory import MemoryStore

__all__ = ["KeyValueStore", "FileStore", "MemoryStore"]
