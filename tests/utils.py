from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from pathlib import Path

from pkgstage.executors.local import LocalExecutor
from pkgstage.lifecycle import StageLifecycle

# the `make_lifecycle` fixture: owner token plus StageLifecycle keyword overrides
MakeLifecycle = Callable[..., StageLifecycle]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write_lock(root: Path, packages: dict[str, str]) -> None:
    doc = {"packages": [{"name": n, "version": v} for n, v in sorted(packages.items())]}
    (root / "composer.lock").write_text(json.dumps(doc, indent=2) + "\n")


def make_project(root: Path) -> Path:
    """A small code base that looks enough like a Composer project."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "composer.json").write_text('{"require": {"drupal/core": "^10"}}\n')
    write_lock(root, {"drupal/core": "10.1.0"})
    (root / "index.php").write_text("<?php\n")
    (root / "vendor" / "drupal" / "core").mkdir(parents=True)
    (root / "vendor" / "drupal" / "core" / "core.php").write_text("<?php // 10.1.0\n")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / "node_modules" / "left-pad").mkdir(parents=True)
    (root / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1;\n")
    return root


class FakeComposerExecutor(LocalExecutor):
    """
    LocalExecutor with Composer replaced: every `update` bumps the staged lock
    file and vendor code as if the packages had been installed.
    """

    def __init__(self) -> None:
        super().__init__(composer_bin="composer")
        self.commands: list[list[str]] = []

    def stage_operation(
        self, command: Sequence[str], staging_root: Path, *, timeout: float | None = None
    ) -> None:
        self.commands.append(list(command))
        if command[0] == "update":
            pkgs: dict[str, str] = {}
            for spec in command[2:]:
                name, _, constraint = spec.partition(":")
                pkgs[name] = constraint.lstrip("^~") or "dev-main"
            write_lock(staging_root, pkgs)
            (staging_root / "vendor" / "drupal" / "core" / "core.php").write_text(
                f"<?php // {pkgs.get('drupal/core', 'unknown')}\n"
            )


class FailingCommitExecutor(FakeComposerExecutor):
    def commit(
        self,
        staging_root: Path,
        active_root: Path,
        exclusions: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> None:
        (active_root / "index.php").write_text("<?php // half copied\n")
        raise OSError("disk full")
