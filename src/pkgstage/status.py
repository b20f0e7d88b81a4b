"""
pkgstage.status
===============

The read-only status check: run the StatusCheck validators without performing
any transition, and cache the outcome.

A cached run is only trusted while the validator registry is unchanged, so
each run records the pipeline's listener signature next to its results.
Enabling or removing a validator invalidates the cache immediately, even
inside the TTL window.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import msgspec
import msgspec.json

from pkgstage.constants import DEFAULT_STATUS_TTL_S, STATUS_CHECK_KEY
from pkgstage.events import EventKind, ValidationEvent, ValidationPipeline
from pkgstage.errors import FailureMarkerExists
from pkgstage.marker import FailureMarker
from pkgstage.model import Stage
from pkgstage.reporting.results import Severity, ValidationResult
from pkgstage.store.base import KeyValueStore

logger = logging.getLogger(__name__)

__all__ = ["run_status_check", "CachedValidationRun", "ValidationResultCache"]


def run_status_check(
    pipeline: ValidationPipeline, stage: Stage | None, marker: FailureMarker
) -> list[ValidationResult]:
    """
    Dispatch StatusCheck and return its results.

    A present failure marker is reported as the first error result; the
    validators still run so the caller sees everything else that is wrong.
    """
    event = ValidationEvent(EventKind.STATUS_CHECK, stage)
    try:
        message = marker.get_message(include_trace=False)
    except FailureMarkerExists as e:
        message = e.message
    if message is not None:
        event.add_error(message)
    pipeline.dispatch(event)
    return list(event.results)


class CachedValidationRun(msgspec.Struct, frozen=True):
    results: tuple[ValidationResult, ...]
    listener_signature: str
    computed_at: float


class ValidationResultCache:
    def __init__(
        self,
        store: KeyValueStore,
        pipeline: ValidationPipeline,
        *,
        marker: FailureMarker,
        stage_provider: Callable[[], Stage | None] = lambda: None,
        ttl_s: float = DEFAULT_STATUS_TTL_S,
        key: str = STATUS_CHECK_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        self._store = store
        self._pipeline = pipeline
        self._marker = marker
        self._stage_provider = stage_provider
        self._ttl_s = ttl_s
        self._key = key
        self._clock = clock

    def run(self) -> list[ValidationResult]:
        """Always recompute, store and return the results."""
        results = run_status_check(self._pipeline, self._stage_provider(), self._marker)
        record = CachedValidationRun(
            results=tuple(results),
            listener_signature=self._pipeline.signature(),
            computed_at=self._clock(),
        )
        self._store.set(self._key, msgspec.json.encode(record), ttl=self._ttl_s)
        logger.debug("Status check stored %d result(s)", len(results))
        return results

    def _load(self) -> CachedValidationRun | None:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            record = msgspec.json.decode(raw, type=CachedValidationRun)
        except (msgspec.DecodeError, ValueError):
            logger.warning("Discarding an unreadable cached status check")
            return None
        if self._clock() - record.computed_at >= self._ttl_s:
            return None
        return record

    def get_cached(self, severity: Severity | None = None) -> list[ValidationResult] | None:
        """
        Cached results, or None when there is no cache, it is older than the
        TTL, or the validator registry changed since it was computed.
        `severity` filters the returned results.
        """
        record = self._load()
        if record is None:
            return None
        if record.listener_signature != self._pipeline.signature():
            return None
        results = list(record.results)
        if severity is not None:
            results = [r for r in results if r.severity is severity]
        return results

    def run_if_absent(self) -> list[ValidationResult]:
        cached = self.get_cached()
        if cached is not None:
            return cached
        return self.run()

    def last_run_time(self) -> float | None:
        """When the current cache was computed (epoch seconds), if any."""
        record = self._load()
        return None if record is None else record.computed_at
