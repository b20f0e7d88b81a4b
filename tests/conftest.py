from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from pkgstage.events import ValidationPipeline
from pkgstage.lifecycle import StageLifecycle
from pkgstage.locator import PathResolver
from pkgstage._paths import AbsDir
from pkgstage.store import MemoryStore

from tests.utils import FakeClock, FakeComposerExecutor, MakeLifecycle, make_project


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    return make_project(tmp_path / "project")


@pytest.fixture
def resolver(project: Path, tmp_path: Path) -> PathResolver:
    return PathResolver(
        project_root=AbsDir.existing(project),
        staging_root=AbsDir.normalized(tmp_path / "staging"),
    )


@pytest.fixture
def pipeline() -> ValidationPipeline:
    return ValidationPipeline()


@pytest.fixture
def executor() -> FakeComposerExecutor:
    return FakeComposerExecutor()


@pytest.fixture
def make_lifecycle(
    resolver: PathResolver,
    store: MemoryStore,
    pipeline: ValidationPipeline,
    executor: FakeComposerExecutor,
    clock: FakeClock,
) -> MakeLifecycle:
    def _make(owner: str = "owner-a", **kwargs: Any) -> StageLifecycle:
        kwargs.setdefault("executor", executor)
        return StageLifecycle(
            owner_token=owner,
            resolver=resolver,
            store=store,
            pipeline=pipeline,
            clock=clock,
            **kwargs,
        )

    return _make
