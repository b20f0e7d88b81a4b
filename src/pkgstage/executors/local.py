"""
pkgstage.executors.local
========================

LocalExecutor performs the four primitives on the local filesystem and runs
Composer as a subprocess.

Design recap
------------
- begin(): walk the active tree top-down, pruning excluded directories, and
  copy files (symlinks are recreated, not followed) into a new staging dir.
- stage_operation(): `composer <command...>` with cwd = staging dir, output
  captured; non-zero exit raises ProcessFailed.
- commit(): rsync-like. Every staged file replaces its active counterpart
  (temp file + os.replace, so readers never see a half-written file), then
  active entries that no longer exist in the stage are deleted. Excluded
  paths are never read, written or deleted on either side.
- clean(): remove the staging dir, then the parent staging root if that left
  it empty.

Timeouts are checked between files; a copy in progress is never interrupted.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import time
from collections.abc import Sequence
from pathlib import Path

from pkgstage.errors import ProcessFailed
from pkgstage.executors.base import is_excluded
from pkgstage.utils.fs_utils import remove_tree

logger = logging.getLogger(__name__)


class _Deadline:
    def __init__(self, timeout: float | None, what: str) -> None:
        self._at = None if timeout is None else time.monotonic() + timeout
        self._timeout = timeout
        self._what = what

    def check(self) -> None:
        if self._at is not None and time.monotonic() >= self._at:
            raise TimeoutError(f"{self._what} did not finish within {self._timeout} seconds")


def _rel(root: Path, p: Path) -> str:
    return p.relative_to(root).as_posix()


def _lexists(p: Path) -> bool:
    return os.path.lexists(p)


def _remove_any(p: Path) -> None:
    if p.is_symlink() or not p.is_dir():
        p.unlink(missing_ok=True)
    else:
        remove_tree(p)


def _copy_entry(src: Path, dst: Path) -> None:
    """Copy one file or symlink to `dst`, replacing whatever is there."""
    if dst.is_dir() and not dst.is_symlink():
        remove_tree(dst)
    if src.is_symlink():
        target = os.readlink(src)
        dst.unlink(missing_ok=True)
        os.symlink(target, dst)
        return

    fd, tmp_name = tempfile.mkstemp(prefix=f".{dst.name}.", suffix=".tmp", dir=str(dst.parent))
    os.close(fd)
    try:
        shutil.copy2(src, tmp_name)
        os.replace(tmp_name, dst)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class LocalExecutor:
    def __init__(self, composer_bin: str = "composer", *, env: dict[str, str] | None = None):
        self.composer_bin = composer_bin
        self.env = env

    # ---- begin -------------------------------------------------------------------

    def begin(
        self,
        active_root: Path,
        staging_root: Path,
        exclusions: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> None:
        if _lexists(staging_root) and any(staging_root.iterdir()):
            raise FileExistsError(f"Staging directory is not empty: {staging_root}")
        staging_root.mkdir(parents=True, exist_ok=True)
        deadline = _Deadline(timeout, "Copying the code base into the stage")
        logger.debug("Copying %s -> %s (excluding %s)", active_root, staging_root, exclusions)
        self._sync_into(active_root, staging_root, exclusions, deadline)

    # ---- stage_operation -----------------------------------------------------------

    def stage_operation(
        self,
        command: Sequence[str],
        staging_root: Path,
        *,
        timeout: float | None = None,
    ) -> None:
        argv = [self.composer_bin, *command, "--no-interaction"]
        env = None if self.env is None else {**os.environ, **self.env}
        logger.info("Running %s in %s", " ".join(argv), staging_root)
        try:
            proc = subprocess.run(
                argv,
                cwd=str(staging_root),
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise TimeoutError(
                f"Command {' '.join(argv)!r} did not finish within {timeout} seconds"
            ) from e
        if proc.returncode != 0:
            raise ProcessFailed(argv, proc.returncode, stdout=proc.stdout, stderr=proc.stderr)

    # ---- commit ---------------------------------------------------------------------

    def commit(
        self,
        staging_root: Path,
        active_root: Path,
        exclusions: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> None:
        if not staging_root.is_dir():
            raise FileNotFoundError(f"Staging directory does not exist: {staging_root}")
        deadline = _Deadline(timeout, "Committing the stage")
        logger.debug("Committing %s -> %s (excluding %s)", staging_root, active_root, exclusions)
        self._sync_into(staging_root, active_root, exclusions, deadline)
        self._delete_extraneous(staging_root, active_root, exclusions, deadline)

    # ---- clean ----------------------------------------------------------------------

    def clean(self, staging_root: Path, *, timeout: float | None = None) -> None:
        _ = timeout
        remove_tree(staging_root)
        parent = staging_root.parent
        try:
            if parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()
        except OSError:
            # Another stage may have been created under it meanwhile
            logger.debug("Left staging root %s in place", parent)

    # ---- helpers ----------------------------------------------------------------------

    def _sync_into(
        self, src_root: Path, dst_root: Path, exclusions: Sequence[str], deadline: _Deadline
    ) -> None:
        for dirpath, dirnames, filenames in os.walk(src_root, followlinks=False):
            here = Path(dirpath)
            rel_here = "" if here == src_root else _rel(src_root, here)
            dst_here = dst_root / rel_here if rel_here else dst_root

            kept: list[str] = []
            for name in sorted(dirnames):
                src = here / name
                rel = _rel(src_root, src)
                if is_excluded(rel, exclusions):
                    continue
                if src.is_symlink():
                    # os.walk lists symlinked dirs as dirs; treat them as links
                    deadline.check()
                    _copy_entry(src, dst_here / name)
                    continue
                dst = dst_here / name
                if _lexists(dst) and (dst.is_symlink() or not dst.is_dir()):
                    dst.unlink()
                dst.mkdir(exist_ok=True)
                kept.append(name)
            dirnames[:] = kept

            for name in sorted(filenames):
                src = here / name
                if is_excluded(_rel(src_root, src), exclusions):
                    continue
                deadline.check()
                _copy_entry(src, dst_here / name)

            if rel_here:
                shutil.copystat(here, dst_here, follow_symlinks=False)

    def _delete_extraneous(
        self,
        staging_root: Path,
        active_root: Path,
        exclusions: Sequence[str],
        deadline: _Deadline,
    ) -> None:
        for dirpath, dirnames, filenames in os.walk(active_root, followlinks=False):
            here = Path(dirpath)
            kept: list[str] = []
            for name in sorted(dirnames):
                p = here / name
                rel = _rel(active_root, p)
                if is_excluded(rel, exclusions):
                    continue
                if not _lexists(staging_root / rel):
                    deadline.check()
                    logger.debug("Removing %s", rel)
                    _remove_any(p)
                    continue
                if not p.is_symlink():
                    kept.append(name)
            dirnames[:] = kept

            for name in filenames:
                p = here / name
                rel = _rel(active_root, p)
                if is_excluded(rel, exclusions) or _lexists(staging_root / rel):
                    continue
                deadline.check()
                logger.debug("Removing %s", rel)
                p.unlink(missing_ok=True)
