from __future__ import annotations

import hmac
from pathlib import Path

import msgspec
import msgspec.json

from pkgstage.constants import LOCK_HASH_KEY
from pkgstage.errors import DriftDetected
from pkgstage.locator import PathResolver
from pkgstage.store.base import KeyValueStore
from pkgstage.utils.fs_utils import sha256_file


class LockFileHash(msgspec.Struct, frozen=True):
    # None when the lock file did not exist at create() time
    digest: str | None


class LockFileDriftDetector:
    """
    Detects changes to the active lock file made outside the current stage.

    The lock file itself is hashed, not any content-hash it embeds: the point
    is to notice that the installed packages changed, not the constraints.
    """

    def __init__(
        self, store: KeyValueStore, resolver: PathResolver, *, key: str = LOCK_HASH_KEY
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._key = key

    def current_hash(self, directory: Path | None = None) -> str | None:
        try:
            return sha256_file(self._resolver.lock_file_path(directory))
        except FileNotFoundError:
            return None

    def store_hash(self) -> LockFileHash:
        record = LockFileHash(digest=self.current_hash())
        self._store.set(self._key, msgspec.json.encode(record))
        return record

    def stored_hash(self) -> LockFileHash | None:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        return msgspec.json.decode(raw, type=LockFileHash)

    def has_drifted(self) -> bool:
        stored = self.stored_hash()
        if stored is None:
            return True
        return not _digests_equal(stored.digest, self.current_hash())

    def assert_unchanged(self) -> None:
        stored = self.stored_hash()
        if stored is None:
            raise DriftDetected("The stored lock file hash is missing.")
        if not _digests_equal(stored.digest, self.current_hash()):
            raise DriftDetected(
                f"Unexpected changes were detected in {self._resolver.lock_file}, which "
                "indicates that other package operations were performed since this stage "
                "was created."
            )

    def delete_hash(self) -> None:
        self._store.delete(self._key)


def _digests_equal(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return a is b
    return hmac.compare_digest(a, b)
