"""
pkgstage.locator
================

PathResolver computes every filesystem path the engine needs: the active
project root, its vendor directory, manifest and lock file, the failure
marker, and a deterministic staging directory per stage id. It is a pure
function of configuration and holds no state of its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from pkgstage._paths import AbsDir, RelPath
from pkgstage.config import StageConfig
from pkgstage.constants import (
    DEFAULT_EXCLUDES,
    FAILURE_MARKER_BASENAME,
    LOCK_FILE_BASENAME,
    MANIFEST_BASENAME,
    VENDOR_DIRNAME,
    default_staging_root,
    failure_marker_path,
)

_STAGE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True, slots=True)
class PathResolver:
    project_root: AbsDir
    staging_root: AbsDir
    vendor_dir: RelPath = RelPath(VENDOR_DIRNAME)
    manifest: RelPath = RelPath(MANIFEST_BASENAME)
    lock_file: RelPath = RelPath(LOCK_FILE_BASENAME)
    exclude: tuple[str, ...] = DEFAULT_EXCLUDES

    @classmethod
    def from_config(cls, config: StageConfig) -> PathResolver:
        staging = config.staging_root or default_staging_root(config.site_id)
        return cls(
            project_root=AbsDir.existing(config.project_root),
            staging_root=AbsDir.normalized(staging),
            vendor_dir=RelPath(config.vendor_dir),
            manifest=RelPath(config.manifest),
            lock_file=RelPath(config.lock_file),
            exclude=tuple(config.exclude),
        )

    def vendor_directory(self) -> Path:
        return self.vendor_dir.join_under(self.project_root)

    def stage_directory(self, stage_id: str) -> Path:
        if not _STAGE_ID.match(stage_id):
            raise ValueError(f"Invalid stage id: {stage_id!r}")
        return self.staging_root.path / stage_id

    def manifest_path(self, directory: Path | None = None) -> Path:
        return self.manifest.join_under(directory or self.project_root.path)

    def lock_file_path(self, directory: Path | None = None) -> Path:
        return self.lock_file.join_under(directory or self.project_root.path)

    def failure_marker_path(self) -> Path:
        return failure_marker_path(self.project_root.path)

    def exclusions(self, *extra: Path | str) -> tuple[str, ...]:
        """
        Paths (POSIX globs relative to the project root) that copy operations
        must never touch: configured excludes, the failure marker, and any of
        `extra` / the staging root that happen to live inside the project.
        """
        out: list[str] = [*self.exclude, FAILURE_MARKER_BASENAME]
        for p in (self.staging_root.path, *extra):
            if isinstance(p, str):
                out.append(str(RelPath(p)))
                continue
            rel = RelPath.relative_to(p, self.project_root.path)
            if rel is not None:
                out.append(str(rel))
        return tuple(dict.fromkeys(out))
