"""
pkgstage.executors.base
=======================

The operation executor is the collaborator that performs the raw filesystem
and package-manager work. The lifecycle only ever calls these four primitives
and stays agnostic to how they are carried out.

- begin:            copy the active code base into a fresh staging directory
- stage_operation:  run one package-manager command inside the staging directory
- commit:           fold the staging directory back into the active code base
- clean:            remove the staging directory

Every primitive accepts a keyword `timeout` (seconds, None = unbounded) and
raises TimeoutError when it runs out, OSError on filesystem failure and
ProcessFailed when a command exits non-zero.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Protocol, runtime_checkable

__all__ = ["OperationExecutor", "is_excluded"]


@runtime_checkable
class OperationExecutor(Protocol):
    def begin(
        self,
        active_root: Path,
        staging_root: Path,
        exclusions: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> None: ...

    def stage_operation(
        self,
        command: Sequence[str],
        staging_root: Path,
        *,
        timeout: float | None = None,
    ) -> None: ...

    def commit(
        self,
        staging_root: Path,
        active_root: Path,
        exclusions: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> None: ...

    def clean(self, staging_root: Path, *, timeout: float | None = None) -> None: ...


def is_excluded(rel_posix: str, patterns: Iterable[str]) -> bool:
    """
    True if `rel_posix` (a POSIX path relative to the root being copied) or any
    of its parent directories matches one of the glob `patterns`.

    >>> is_excluded("node_modules/a/b.js", ["node_modules"])
    True
    >>> is_excluded("sites/default/files/x.png", ["sites/*/files"])
    True
    >>> is_excluded("vendor/autoload.php", [".git"])
    False
    """
    parts = rel_posix.split("/")
    prefixes = ["/".join(parts[: i + 1]) for i in range(len(parts))]
    return any(fnmatchcase(prefix, pat) for pat in patterns for prefix in prefixes)
