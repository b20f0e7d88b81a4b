from __future__ import annotations

from pathlib import Path

import pytest

from pkgstage.errors import (
    AlreadyClaimed,
    ApplyFailed,
    DriftDetected,
    FailureMarkerExists,
    InvalidRequirement,
    InvalidStageState,
    NotOwner,
    StageValidationException,
)
from pkgstage.events import EventKind, ValidationEvent, ValidationPipeline
from pkgstage.locator import PathResolver
from pkgstage.lock import OwnershipLock
from pkgstage.model import StageState
from pkgstage.store import MemoryStore

from tests.utils import (
    FailingCommitExecutor,
    FakeClock,
    FakeComposerExecutor,
    MakeLifecycle,
    write_lock,
)


# --- happy path ---------------------------------------------------------------

def test_full_lifecycle(
    make_lifecycle: MakeLifecycle, project: Path, executor: FakeComposerExecutor
) -> None:
    lc = make_lifecycle()
    assert lc.state is StageState.AVAILABLE
    assert lc.is_available()

    stage_id = lc.create({"purpose": "core update"})
    assert lc.state is StageState.CREATED
    assert not lc.is_available()
    staging = lc.stage.staging_dir
    assert (staging / "composer.json").is_file()
    assert (staging / "vendor" / "drupal" / "core" / "core.php").is_file()
    assert not (staging / ".git").exists()
    assert not (staging / "node_modules").exists()

    lc.require(["drupal/core:^10.2"], dev=["drupal/devel:5.1"])
    assert lc.state is StageState.STAGED
    assert executor.commands == [
        ["require", "--no-update", "drupal/core:^10.2"],
        ["require", "--dev", "--no-update", "drupal/devel:5.1"],
        ["update", "--with-all-dependencies", "drupal/core:^10.2", "drupal/devel:5.1"],
    ]

    lc.apply()
    assert lc.state is StageState.APPLIED
    assert "10.2" in (project / "vendor" / "drupal" / "core" / "core.php").read_text()
    assert (project / ".git" / "HEAD").is_file()
    assert (project / "node_modules" / "left-pad" / "index.js").is_file()
    assert not lc.marker.exists()

    lc.destroy()
    assert lc.state is StageState.DESTROYED
    assert lc.is_available()
    assert not staging.exists()
    assert lc.drift.stored_hash() is None
    assert lc.stage.id == stage_id


def test_create_returns_unique_ids(make_lifecycle: MakeLifecycle) -> None:
    lc = make_lifecycle()
    first = lc.create()
    lc.destroy()
    second = lc.create()
    assert first != second
    assert lc.state is StageState.CREATED


def test_metadata_round_trips_through_claim(make_lifecycle: MakeLifecycle) -> None:
    lc = make_lifecycle()
    stage_id = lc.create({"versions": {"drupal/core": "10.2.0"}})
    lc.set_metadata("note", "weekly")

    later = make_lifecycle().claim(stage_id)
    assert later.state is StageState.CREATED
    assert later.get_metadata("versions") == {"drupal/core": "10.2.0"}
    assert later.get_metadata("note") == "weekly"
    assert later.get_metadata("missing", "dflt") == "dflt"


# --- ownership ----------------------------------------------------------------

def test_other_owner_cannot_claim_until_destroy(
    make_lifecycle: MakeLifecycle, store: MemoryStore, clock: FakeClock
) -> None:
    lock = OwnershipLock(store, clock=clock)
    a = make_lifecycle("A")
    s1 = a.create()

    with pytest.raises(AlreadyClaimed):
        lock.claim(s1, "B", ttl=60)
    with pytest.raises(NotOwner):
        make_lifecycle("B").claim(s1)
    with pytest.raises(AlreadyClaimed):
        make_lifecycle("B").create()

    a.destroy()
    lock.claim(s1, "B", ttl=60)
    assert lock.current().owner_token == "B"


def test_claim_expires_after_ttl(make_lifecycle: MakeLifecycle, clock: FakeClock) -> None:
    a = make_lifecycle("A", claim_ttl_s=10)
    a.create()
    clock.advance(11)

    b = make_lifecycle("B", claim_ttl_s=10)
    assert b.is_available()
    b.create()
    assert b.state is StageState.CREATED

    with pytest.raises(NotOwner):
        a.require(["drupal/core:^10.2"])


def test_operations_renew_the_claim(make_lifecycle: MakeLifecycle, clock: FakeClock) -> None:
    lc = make_lifecycle(claim_ttl_s=10)
    lc.create()
    clock.advance(8)
    lc.set_metadata("k", "v")
    clock.advance(8)
    lc.require(["drupal/core:^10.2"])
    assert lc.state is StageState.STAGED


def test_claim_and_reads_keep_the_stage_record_alive(
    make_lifecycle: MakeLifecycle, clock: FakeClock
) -> None:
    stage_id = make_lifecycle(claim_ttl_s=10).create()
    clock.advance(8)
    later = make_lifecycle(claim_ttl_s=10).claim(stage_id)
    clock.advance(5)
    assert not later.is_available()
    assert later.current_record() is not None
    later.require(["drupal/core:^10.2"])
    assert later.state is StageState.STAGED

    clock.advance(8)
    assert later.get_metadata("note") is None
    clock.advance(5)
    later.apply()
    assert later.state is StageState.APPLIED
    later.destroy()


def test_claim_without_stage(make_lifecycle: MakeLifecycle) -> None:
    with pytest.raises(InvalidStageState):
        make_lifecycle().claim("deadbeef")


def test_claim_wrong_stage_id(make_lifecycle: MakeLifecycle) -> None:
    make_lifecycle().create()
    with pytest.raises(NotOwner):
        make_lifecycle().claim("deadbeef")


# --- state machine ------------------------------------------------------------

def test_transitions_from_wrong_state(
    make_lifecycle: MakeLifecycle, executor: FakeComposerExecutor
) -> None:
    lc = make_lifecycle()
    with pytest.raises(InvalidStageState):
        lc.require(["drupal/core:^10.2"])
    with pytest.raises(InvalidStageState):
        lc.apply()
    with pytest.raises(InvalidStageState):
        lc.destroy()

    lc.create()
    with pytest.raises(InvalidStageState):
        lc.create()
    with pytest.raises(InvalidStageState):
        lc.apply()

    lc.require(["drupal/core:^10.2"])
    with pytest.raises(InvalidStageState):
        lc.require(["drupal/core:^10.3"])
    assert len(executor.commands) == 2

    lc.apply()
    with pytest.raises(InvalidStageState):
        lc.apply()

    lc.destroy()
    for op in (lambda: lc.require(["drupal/core:^10.2"]), lc.apply, lc.destroy):
        with pytest.raises(InvalidStageState):
            op()


def test_destroy_from_created(make_lifecycle: MakeLifecycle) -> None:
    lc = make_lifecycle()
    lc.create()
    staging = lc.stage.staging_dir
    lc.destroy()
    assert not staging.exists()
    assert lc.is_available()


def test_invalid_requirement_has_no_side_effect(
    make_lifecycle: MakeLifecycle, executor: FakeComposerExecutor
) -> None:
    lc = make_lifecycle()
    lc.create()
    with pytest.raises(InvalidRequirement):
        lc.require(["not a package"])
    with pytest.raises(InvalidRequirement):
        lc.require([])
    assert executor.commands == []
    assert lc.state is StageState.CREATED


# --- validation ---------------------------------------------------------------

def test_pre_apply_error_keeps_stage_staged(
    make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline, project: Path
) -> None:
    pipeline.on_event(EventKind.PRE_APPLY, 0, lambda e: e.add_error("Nope."))
    lc = make_lifecycle()
    lc.create()
    lc.require(["drupal/core:^10.2"])

    with pytest.raises(StageValidationException) as ei:
        lc.apply()
    assert [r.messages for r in ei.value.results] == [("Nope.",)]
    assert lc.state is StageState.STAGED
    assert "10.1.0" in (project / "vendor" / "drupal" / "core" / "core.php").read_text()
    assert not lc.marker.exists()


def test_pre_create_error_releases_claim(
    make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline, resolver: PathResolver
) -> None:
    pipeline.on_event(EventKind.PRE_CREATE, 0, lambda e: e.add_error("No disk space."))
    lc = make_lifecycle()
    with pytest.raises(StageValidationException):
        lc.create()
    assert lc.state is StageState.AVAILABLE
    assert lc.is_available()
    assert not resolver.staging_root.path.exists()


def test_pre_create_exclusions_survive_apply(
    make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline, project: Path
) -> None:
    uploads = project / "sites" / "default" / "files"
    uploads.mkdir(parents=True)
    (uploads / "a.png").write_bytes(b"\x89PNG")
    pipeline.on_event(EventKind.PRE_CREATE, 0, lambda e: e.add_excluded_path("sites/*/files"))

    lc = make_lifecycle()
    lc.create()
    assert not (lc.stage.staging_dir / "sites" / "default" / "files").exists()
    assert "sites/*/files" in lc.current_record().excluded_paths

    lc.require(["drupal/core:^10.2"])
    lc.apply()
    assert (uploads / "a.png").read_bytes() == b"\x89PNG"


def test_warnings_do_not_block(make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline) -> None:
    pipeline.on_event(EventKind.PRE_REQUIRE, 0, lambda e: e.add_warning("Heads up."))
    lc = make_lifecycle()
    lc.create()
    lc.require(["drupal/core:^10.2"])
    assert lc.state is StageState.STAGED


def test_pre_require_sees_requirements(
    make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline
) -> None:
    seen: list[str] = []
    pipeline.on_event(
        EventKind.PRE_REQUIRE, 0, lambda e: seen.extend(r.package for r in e.requirements)
    )
    lc = make_lifecycle()
    lc.create()
    lc.require(["drupal/core:^10.2"], dev=["drupal/devel"])
    assert seen == ["drupal/core", "drupal/devel"]


def test_pre_destroy_error_does_not_block(
    make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline
) -> None:
    pipeline.on_event(EventKind.PRE_DESTROY, 0, lambda e: e.add_error("Please don't."))
    post: list[ValidationEvent] = []
    pipeline.on_event(EventKind.POST_DESTROY, 0, post.append)
    lc = make_lifecycle()
    lc.create()
    lc.destroy()
    assert lc.state is StageState.DESTROYED
    assert len(post) == 1
    assert post[0].stage.state is StageState.DESTROYED


def test_post_apply_failure_is_swallowed(
    make_lifecycle: MakeLifecycle, pipeline: ValidationPipeline
) -> None:
    def boom(event: ValidationEvent) -> None:
        raise RuntimeError("cache rebuild failed")

    pipeline.on_event(EventKind.POST_APPLY, 0, boom)
    lc = make_lifecycle()
    lc.create()
    lc.require(["drupal/core:^10.2"])
    lc.apply()
    assert lc.state is StageState.APPLIED


# --- drift ----------------------------------------------------------------------

def test_drift_blocks_require(
    make_lifecycle: MakeLifecycle, project: Path, executor: FakeComposerExecutor
) -> None:
    lc = make_lifecycle()
    lc.create()
    write_lock(project, {"drupal/core": "10.1.1"})
    with pytest.raises(DriftDetected):
        lc.require(["drupal/core:^10.2"])
    assert executor.commands == []
    assert lc.state is StageState.CREATED


def test_drift_blocks_apply(make_lifecycle: MakeLifecycle, project: Path) -> None:
    lc = make_lifecycle()
    lc.create()
    lc.require(["drupal/core:^10.2"])
    (project / "composer.lock").unlink()
    with pytest.raises(DriftDetected):
        lc.apply()
    assert lc.state is StageState.STAGED


def test_missing_stored_hash_is_drift(make_lifecycle: MakeLifecycle) -> None:
    lc = make_lifecycle()
    lc.create()
    lc.drift.delete_hash()
    with pytest.raises(DriftDetected):
        lc.require(["drupal/core:^10.2"])


# --- failure marker -----------------------------------------------------------

def test_failed_commit_leaves_marker(
    make_lifecycle: MakeLifecycle, executor: FakeComposerExecutor
) -> None:
    lc = make_lifecycle(executor=FailingCommitExecutor())
    lc.create()
    lc.require(["drupal/core:^10.2"])

    with pytest.raises(ApplyFailed) as ei:
        lc.apply()
    assert isinstance(ei.value.__cause__, OSError)
    assert lc.marker.exists()
    assert ei.value.marker_path == str(lc.marker.path)
    assert lc.state is StageState.APPLYING

    record = lc.marker.read()
    assert record is not None
    assert record.stage_id == lc.stage_id
    assert record.cause_message == "disk full"

    for op in (lc.destroy, lc.apply, lc.create, lambda: lc.destroy(force=True)):
        with pytest.raises(FailureMarkerExists):
            op()
    with pytest.raises(FailureMarkerExists):
        make_lifecycle("B").create()

    lc.marker.clear()
    lc.destroy(force=True)
    assert lc.is_available()


def test_marker_write_failure_leaves_stage_staged(
    make_lifecycle: MakeLifecycle, monkeypatch: pytest.MonkeyPatch
) -> None:
    lc = make_lifecycle()
    lc.create()
    lc.require(["drupal/core:^10.2"])

    def broken_write(record: object) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr(lc.marker, "write", broken_write)
    with pytest.raises(OSError, match="read-only"):
        lc.apply()
    assert lc.state is StageState.STAGED
    assert lc.current_record().state is StageState.STAGED
    assert not lc.marker.exists()

    lc.destroy()
    assert lc.is_available()


def test_status_check_reports_marker(make_lifecycle: MakeLifecycle) -> None:
    lc = make_lifecycle(executor=FailingCommitExecutor())
    lc.create()
    lc.require(["drupal/core:^10.2"])
    with pytest.raises(ApplyFailed):
        lc.apply()

    results = lc.status_check()
    assert results[0].is_error
    assert "disk full" in results[0].messages[0]


# --- destroy ----------------------------------------------------------------------

def test_force_destroy_by_other_owner(make_lifecycle: MakeLifecycle) -> None:
    a = make_lifecycle("A")
    a.create()
    staging = a.stage.staging_dir

    operator = make_lifecycle("operator")
    with pytest.raises(InvalidStageState):
        operator.destroy()
    operator.destroy(force=True)
    assert not staging.exists()
    assert operator.is_available()
    with pytest.raises(NotOwner):
        a.require(["drupal/core:^10.2"])


def test_clean_failure_does_not_block_destroy(
    make_lifecycle: MakeLifecycle, executor: FakeComposerExecutor, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_clean(staging_root: Path, *, timeout: float | None = None) -> None:
        raise PermissionError("read-only")

    lc = make_lifecycle()
    lc.create()
    monkeypatch.setattr(executor, "clean", broken_clean)
    lc.destroy()
    assert lc.state is StageState.DESTROYED
    assert lc.is_available()
