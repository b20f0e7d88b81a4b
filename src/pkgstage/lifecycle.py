"""
pkgstage.lifecycle
==================

StageLifecycle drives the one stage a site may have through

    Available --create--> Created --require--> Staged --apply--> Applied
    (any non-Available state) --destroy--> Destroyed

Every transition other than create first passes these gates, in order:

1. FailureMarker.assert_not_exists()   hard stop after a crashed apply
2. OwnershipLock.verify()              fail closed with NotOwner
3. reload the persisted Stage record and check the predecessor state
4. renew the claim
5. drift check of the active lock file (require / apply only)
6. dispatch the Pre* event; any error result aborts with no side effect

The raw file and package-manager work is delegated to an OperationExecutor.
All collaborators are injected; `build_lifecycle` wires them from a
StageConfig.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

import msgspec
import msgspec.json

from pkgstage.config import StageConfig
from pkgstage.constants import (
    DEFAULT_APPLY_TIMEOUT_S,
    DEFAULT_CLAIM_TTL_S,
    DEFAULT_CREATE_TIMEOUT_S,
    DEFAULT_REQUIRE_TIMEOUT_S,
    STAGE_KEY,
    default_state_dir,
)
from pkgstage.drift import LockFileDriftDetector
from pkgstage.errors import (
    ApplyFailed,
    FailureMarkerExists,
    InvalidRequirement,
    InvalidStageState,
    NotOwner,
    StageValidationException,
)
from pkgstage.events import EventKind, ValidationEvent, ValidationPipeline
from pkgstage.executors import OperationExecutor, resolve_executor
from pkgstage.locator import PathResolver
from pkgstage.lock import OwnershipLock
from pkgstage.marker import FailureMarker, FailureMarkerRecord
from pkgstage.model import TRANSITIONS, Stage, StageState
from pkgstage.reporting.results import ValidationResult
from pkgstage.requirements import PackageRequirement, parse_requirements
from pkgstage.status import run_status_check
from pkgstage.store import FileStore, KeyValueStore
from pkgstage.utils.time_utils import now_iso

logger = logging.getLogger(__name__)

__all__ = ["StageLifecycle", "build_lifecycle"]

_APPLY_FAILED_MESSAGE = (
    "Staged changes failed to apply to the active code base. The code base may be in an "
    "indeterminate state; restore it from a backup, then remove the failure marker."
)


class StageLifecycle:
    """
    A handle on the site's stage, acting on behalf of `owner_token`.

    A fresh handle starts out Available. It becomes bound to a stage either by
    `create()` or, in a later request, by `claim(stage_id)`.
    """

    def __init__(
        self,
        *,
        owner_token: str,
        resolver: PathResolver,
        store: KeyValueStore,
        executor: OperationExecutor,
        pipeline: ValidationPipeline | None = None,
        lock: OwnershipLock | None = None,
        marker: FailureMarker | None = None,
        drift: LockFileDriftDetector | None = None,
        claim_ttl_s: float | None = DEFAULT_CLAIM_TTL_S,
        create_timeout_s: float | None = DEFAULT_CREATE_TIMEOUT_S,
        require_timeout_s: float | None = DEFAULT_REQUIRE_TIMEOUT_S,
        apply_timeout_s: float | None = DEFAULT_APPLY_TIMEOUT_S,
        extra_exclusions: Sequence[str | Path] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not owner_token:
            raise ValueError("owner_token must be a non-empty string")
        self.owner_token = owner_token
        self.resolver = resolver
        self.store = store
        self.executor = executor
        self.pipeline = pipeline if pipeline is not None else ValidationPipeline()
        self.lock = lock if lock is not None else OwnershipLock(store, clock=clock)
        self.marker = marker if marker is not None else FailureMarker(
            resolver.failure_marker_path()
        )
        self.drift = drift if drift is not None else LockFileDriftDetector(store, resolver)
        self.claim_ttl_s = claim_ttl_s
        self.create_timeout_s = create_timeout_s
        self.require_timeout_s = require_timeout_s
        self.apply_timeout_s = apply_timeout_s
        self.extra_exclusions = tuple(extra_exclusions)
        self._stage: Stage | None = None

    # ---- read helpers ---------------------------------------------------------------

    @property
    def stage(self) -> Stage | None:
        return self._stage

    @property
    def state(self) -> StageState:
        return StageState.AVAILABLE if self._stage is None else self._stage.state

    @property
    def stage_id(self) -> str | None:
        return None if self._stage is None else self._stage.id

    def is_available(self) -> bool:
        """True when no owner holds an unexpired claim on the site's stage."""
        return self.lock.is_available()

    def current_record(self) -> Stage | None:
        """The persisted stage record for the site, whoever owns it."""
        raw = self.store.get(STAGE_KEY)
        if raw is None:
            return None
        return msgspec.json.decode(raw, type=Stage)

    def exclusions(self) -> tuple[str, ...]:
        return self.resolver.exclusions(*self.extra_exclusions)

    # ---- transitions ----------------------------------------------------------------

    def create(
        self, metadata: Mapping[str, Any] | None = None, *, timeout: float | None = None
    ) -> str:
        """
        Claim the site, copy the active code base into a new staging directory
        and return the new stage id.

        `timeout` defaults to the configured create timeout.
        """
        self.marker.assert_not_exists()
        self._expect_local("create", TRANSITIONS["create"])

        stage_id = secrets.token_hex(16)
        staging_dir = self.resolver.stage_directory(stage_id)
        self.lock.claim(stage_id, self.owner_token, self.claim_ttl_s)

        now = now_iso()
        stage = Stage(
            id=stage_id,
            owner_token=self.owner_token,
            state=StageState.AVAILABLE,
            active_root=str(self.resolver.project_root),
            staging_root=str(staging_dir),
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        logger.info("Creating stage %s in %s", stage_id, staging_dir)

        event = ValidationEvent(EventKind.PRE_CREATE, stage, excluded_paths=self.exclusions())
        try:
            self._dispatch_or_raise(event)
        except StageValidationException:
            self.lock.release(stage_id)
            raise

        self.drift.store_hash()
        try:
            self.executor.begin(
                self.resolver.project_root.path,
                staging_dir,
                event.excluded_paths,
                timeout=self.create_timeout_s if timeout is None else timeout,
            )
        except Exception:
            logger.error("Copying the code base into stage %s failed", stage_id)
            self._clean_quietly(staging_dir)
            self.drift.delete_hash()
            self.lock.release(stage_id)
            raise

        # exclusions added by PreCreate listeners also keep those paths out of the apply
        self._save(stage.evolve(state=StageState.CREATED, excluded_paths=event.excluded_paths))
        logger.info("Created stage %s", stage_id)
        return stage_id

    def claim(self, stage_id: str) -> StageLifecycle:
        """Attach this handle to a stage created in an earlier request."""
        self.marker.assert_not_exists()
        record = self.current_record()
        if record is None:
            raise InvalidStageState("Cannot claim the stage because no stage has been created.")
        if record.id != stage_id:
            raise NotOwner(f"Cannot claim stage {stage_id}: it is not the site's current stage.")
        if record.owner_token != self.owner_token:
            raise NotOwner("Cannot claim the stage because it is not owned by the current owner.")
        self.lock.verify(stage_id, self.owner_token)
        self._renew(record)
        logger.debug("Claimed stage %s (%s)", stage_id, record.state)
        return self

    def require(
        self,
        runtime: Iterable[str | PackageRequirement],
        dev: Iterable[str | PackageRequirement] = (),
        *,
        timeout: float | None = None,
    ) -> None:
        """
        Change package requirements inside the stage, then update them.

        Requirements look like ``vendor/name`` or ``vendor/name:constraint``.
        """
        runtime_reqs = parse_requirements(runtime)
        dev_reqs = parse_requirements(dev)
        # a package may only be required once across both lists
        parse_requirements([*runtime_reqs, *dev_reqs])
        if not runtime_reqs and not dev_reqs:
            raise InvalidRequirement("At least one package requirement is needed.")

        stage = self._enter("require")
        self.drift.assert_unchanged()
        self._dispatch_or_raise(
            ValidationEvent(
                EventKind.PRE_REQUIRE, stage, requirements=(*runtime_reqs, *dev_reqs)
            )
        )

        t = self.require_timeout_s if timeout is None else timeout
        wanted = ", ".join(map(str, runtime_reqs + dev_reqs))
        logger.info("Requiring %s in stage %s", wanted, stage.id)
        for command in _composer_commands(runtime_reqs, dev_reqs):
            self.executor.stage_operation(command, stage.staging_dir, timeout=t)

        self._save(
            stage.evolve(
                state=StageState.STAGED,
                requirements=tuple(str(r) for r in (*runtime_reqs, *dev_reqs)),
            )
        )
        logger.info("Staged requirements for stage %s", stage.id)

    def apply(self, *, timeout: float | None = None) -> None:
        """
        Commit the stage into the active code base.

        A failure marker guards the commit. If the commit raises, the marker is
        left in place with the cause recorded, and ApplyFailed is raised.
        """
        stage = self._enter("apply")
        self.drift.assert_unchanged()
        event = ValidationEvent(
            EventKind.PRE_APPLY,
            stage,
            excluded_paths=tuple(dict.fromkeys((*self.exclusions(), *stage.excluded_paths))),
        )
        self._dispatch_or_raise(event)

        self.marker.write(FailureMarkerRecord.for_exception(stage.id, _APPLY_FAILED_MESSAGE))
        stage = self._save(stage.evolve(state=StageState.APPLYING))
        logger.info("Applying stage %s to %s", stage.id, stage.active_root)
        try:
            self.executor.commit(
                stage.staging_dir,
                self.resolver.project_root.path,
                event.excluded_paths,
                timeout=self.apply_timeout_s if timeout is None else timeout,
            )
        except Exception as e:
            logger.error(
                "Applying stage %s failed; failure marker left at %s", stage.id, self.marker.path
            )
            try:
                self.marker.annotate_cause(stage.id, e)
            except (FailureMarkerExists, OSError):
                logger.exception("Could not record the failure cause in %s", self.marker.path)
            raise ApplyFailed(
                f"Applying stage {stage.id} failed: {e}", marker_path=str(self.marker.path)
            ) from e

        self.marker.clear()
        stage = self._save(stage.evolve(state=StageState.APPLIED))
        logger.info("Applied stage %s", stage.id)

        self._dispatch_and_log(ValidationEvent(EventKind.POST_APPLY, stage))

    def destroy(self, *, force: bool = False) -> None:
        """
        Remove the staging directory and release the claim.

        PreDestroy errors and clean failures are logged and never block the
        destroy. `force` skips the ownership check, for an operator removing an
        abandoned stage; it does not bypass the failure marker.
        """
        self.marker.assert_not_exists()
        if force:
            stage = self.current_record() or self._stage
            if stage is None or stage.state in (StageState.AVAILABLE, StageState.DESTROYED):
                raise InvalidStageState("Cannot destroy the stage because no stage exists.")
            logger.warning("Force-destroying stage %s owned by %s", stage.id, stage.owner_token)
        else:
            stage = self._enter("destroy")
            if stage.state is StageState.APPLYING:
                raise InvalidStageState(
                    "Cannot destroy the stage while it is being applied to the active code base."
                )

        logger.info("Destroying stage %s", stage.id)
        self._dispatch_and_log(ValidationEvent(EventKind.PRE_DESTROY, stage))

        self._clean_quietly(stage.staging_dir)
        self.drift.delete_hash()
        self.lock.release(stage.id)
        self.store.delete(STAGE_KEY)

        destroyed = stage.evolve(state=StageState.DESTROYED, updated_at=now_iso())
        self._stage = destroyed
        logger.info("Destroyed stage %s", stage.id)

        self._dispatch_and_log(ValidationEvent(EventKind.POST_DESTROY, destroyed))

    # ---- metadata -------------------------------------------------------------------

    def get_metadata(self, key: str, default: Any = None) -> Any:
        stage = self._verified()
        return stage.metadata.get(key, default)

    def set_metadata(self, key: str, value: Any) -> None:
        stage = self._verified()
        self._save(stage.evolve(metadata={**stage.metadata, key: value}))

    # ---- status check -----------------------------------------------------------------

    def status_check(self) -> list[ValidationResult]:
        """Run the read-only status check; never performs a transition."""
        return run_status_check(self.pipeline, self.current_record(), self.marker)

    # ---- internals --------------------------------------------------------------------

    def _expect_local(self, op: str, allowed: Iterable[StageState]) -> None:
        allowed = tuple(allowed)
        if self.state not in allowed:
            raise InvalidStageState(
                f"Cannot {op} the stage from state {self.state!s}; "
                f"expected one of: {', '.join(map(str, allowed))}."
            )

    def _verified(self, *, renew: bool = True) -> Stage:
        """Verify ownership, reload the stage record and (by default) renew the claim."""
        if self._stage is None or self._stage.state is StageState.DESTROYED:
            raise InvalidStageState("No stage has been created or claimed by this handle.")
        self.lock.verify(self._stage.id, self.owner_token)
        record = self.current_record()
        if record is None or record.id != self._stage.id:
            raise InvalidStageState(f"The record for stage {self._stage.id} is missing.")
        self._stage = record
        if renew:
            self._renew(record)
        return record

    def _enter(self, op: str) -> Stage:
        allowed = TRANSITIONS.get(op) or tuple(
            s for s in StageState if s not in (StageState.AVAILABLE, StageState.DESTROYED)
        )
        self.marker.assert_not_exists()
        self._expect_local(op, allowed)
        stage = self._verified(renew=False)
        self._expect_local(op, allowed)
        return self._renew(stage)

    def _save(self, stage: Stage) -> Stage:
        return self._renew(stage.evolve(updated_at=now_iso()))

    def _renew(self, stage: Stage) -> Stage:
        """Write the claim and the stage record together so they expire together."""
        with self.store.locked():
            self.lock.claim(stage.id, self.owner_token, self.claim_ttl_s)
            self.store.set(STAGE_KEY, msgspec.json.encode(stage), ttl=self.claim_ttl_s)
        self._stage = stage
        return stage

    def _dispatch_or_raise(self, event: ValidationEvent) -> ValidationEvent:
        self.pipeline.dispatch(event)
        if event.has_errors:
            logger.info("%s blocked by %d error(s)", event.kind, len(event.errors))
            raise StageValidationException(event.results)
        return event

    def _dispatch_and_log(self, event: ValidationEvent) -> ValidationEvent:
        self.pipeline.dispatch(event)
        for r in event.errors:
            logger.error("%s reported an error: %s", event.kind, "; ".join(r.messages))
        for r in event.warnings:
            logger.warning("%s reported a warning: %s", event.kind, "; ".join(r.messages))
        return event

    def _clean_quietly(self, staging_dir: Path) -> None:
        try:
            self.executor.clean(staging_dir)
        except Exception:
            logger.exception("Could not remove staging directory %s", staging_dir)


def _composer_commands(
    runtime: Sequence[PackageRequirement], dev: Sequence[PackageRequirement]
) -> list[list[str]]:
    commands: list[list[str]] = []
    if runtime:
        commands.append(["require", "--no-update", *map(str, runtime)])
    if dev:
        commands.append(["require", "--dev", "--no-update", *map(str, dev)])
    commands.append(["update", "--with-all-dependencies", *map(str, (*runtime, *dev))])
    return commands


def build_lifecycle(
    config: StageConfig,
    owner_token: str,
    *,
    pipeline: ValidationPipeline | None = None,
    executor: OperationExecutor | None = None,
    store: KeyValueStore | None = None,
    clock: Callable[[], float] = time.time,
) -> StageLifecycle:
    """Wire a StageLifecycle (and its collaborators) from configuration."""
    resolver = PathResolver.from_config(config)
    state_dir = Path(config.state_dir) if config.state_dir else default_state_dir(config.site_id)
    if store is None:
        store = FileStore(state_dir, clock=clock)
    if executor is None:
        executor = resolve_executor(config.executor, composer_bin=config.composer_bin)
    return StageLifecycle(
        owner_token=owner_token,
        resolver=resolver,
        store=store,
        executor=executor,
        pipeline=pipeline,
        lock=OwnershipLock(store, clock=clock),
        marker=FailureMarker(resolver.failure_marker_path()),
        drift=LockFileDriftDetector(store, resolver),
        claim_ttl_s=config.claim_ttl_s,
        create_timeout_s=config.create_timeout_s,
        require_timeout_s=config.require_timeout_s,
        apply_timeout_s=config.apply_timeout_s,
        extra_exclusions=(state_dir,),
        clock=clock,
    )
