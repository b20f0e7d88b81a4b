"""
pkgstage.lock
=============

OwnershipLock: a single-writer claim on the one stage a site may have.

The claim lives in the shared store under one key per site. Claiming is a
check-then-set performed inside the store's critical section, so of two
concurrent claimants exactly one wins and the other gets AlreadyClaimed.
Claims carry a TTL; an abandoned claim silently expires and the site becomes
available again. Re-claiming by the current owner renews the TTL.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import msgspec
import msgspec.json

from pkgstage.constants import LOCK_KEY
from pkgstage.errors import AlreadyClaimed, NotOwner
from pkgstage.store.base import KeyValueStore

logger = logging.getLogger(__name__)


class ClaimRecord(msgspec.Struct, frozen=True):
    stage_id: str
    owner_token: str
    claimed_at: float
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class OwnershipLock:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = LOCK_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._key = key
        self._clock = clock

    def current(self) -> ClaimRecord | None:
        """The unexpired claim, if any."""
        raw = self._store.get(self._key)
        if raw is None:
            return None
        record = msgspec.json.decode(raw, type=ClaimRecord)
        if record.is_expired(self._clock()):
            return None
        return record

    def is_available(self) -> bool:
        return self.current() is None

    def claim(self, stage_id: str, owner_token: str, ttl: float | None) -> ClaimRecord:
        with self._store.locked():
            existing = self.current()
            if existing is not None and (
                existing.stage_id != stage_id or existing.owner_token != owner_token
            ):
                raise AlreadyClaimed(
                    "Cannot claim the stage because it is already claimed by another owner."
                )

            now = self._clock()
            record = ClaimRecord(
                stage_id=stage_id,
                owner_token=owner_token,
                claimed_at=existing.claimed_at if existing is not None else now,
                expires_at=None if ttl is None else now + ttl,
            )
            self._store.set(self._key, msgspec.json.encode(record), ttl=ttl)

        logger.debug(
            "%s stage %s for owner %s",
            "Renewed claim on" if existing is not None else "Claimed",
            stage_id,
            owner_token,
        )
        return record

    def verify(self, stage_id: str, owner_token: str) -> ClaimRecord:
        record = self.current()
        if record is None:
            raise NotOwner("The stage is not claimed, or its claim has expired.")
        if record.stage_id != stage_id:
            raise NotOwner("The current claim does not match this stage.")
        if record.owner_token != owner_token:
            raise NotOwner("The stage is not owned by the current owner.")
        return record

    def release(self, stage_id: str) -> None:
        with self._store.locked():
            raw = self._store.get(self._key)
            if raw is None:
                return
            record = msgspec.json.decode(raw, type=ClaimRecord)
            if record.stage_id != stage_id:
                return
            self._store.delete(self._key)
        logger.debug("Released claim on stage %s", stage_id)
