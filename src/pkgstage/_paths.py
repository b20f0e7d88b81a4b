"""
Path types used by PathResolver.

Directories the engine owns (project root, staging root) are absolute
`AbsDir`s, resolved once when the resolver is built. Paths inside the
project (vendor dir, manifest, lock file, exclusions) are `RelPath`s: POSIX
strings that cannot escape the root they are joined under.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath
from typing import Self


@dataclass(frozen=True, slots=True, init=False)
class RelPath:
    """A relative, forward-slash path with no '..' segments."""

    value: str

    def __init__(self, p: str | os.PathLike[str]):
        raw = os.fspath(p)
        s = raw.replace("\\", "/")
        if s.startswith("/") or PureWindowsPath(raw).anchor:
            raise ValueError(f"Expected a path relative to the project root, got {raw!r}")

        segments = [seg for seg in s.split("/") if seg not in ("", ".")]
        if not segments:
            raise ValueError("Empty relative path.")
        if ".." in segments:
            raise ValueError(f"Relative path may not leave its root: {raw!r}")
        object.__setattr__(self, "value", "/".join(segments))

    def __str__(self) -> str:
        return self.value

    def join_under(self, base: Path | AbsDir) -> Path:
        root = base.path if isinstance(base, AbsDir) else base
        return root.joinpath(*self.value.split("/"))

    @classmethod
    def relative_to(cls, child: Path, root: Path) -> Self | None:
        """RelPath of `child` under `root`, or None if it lives elsewhere."""
        try:
            rel = child.resolve(strict=False).relative_to(root.resolve(strict=False))
        except ValueError:
            return None
        if not rel.parts:
            return None
        return cls(rel.as_posix())


@dataclass(frozen=True, slots=True)
class AbsDir:
    path: Path

    @classmethod
    def existing(cls, p: str | os.PathLike[str]) -> Self:
        """An existing directory; symlinks are resolved."""
        q = Path(p).expanduser().resolve(strict=True)
        if not q.is_dir():
            raise NotADirectoryError(str(q))
        return cls(q)

    @classmethod
    def normalized(cls, p: str | os.PathLike[str]) -> Self:
        """A directory that may not exist yet (the staging root is created lazily)."""
        q = Path(p).expanduser().absolute().resolve(strict=False)
        if q.exists() and not q.is_dir():
            raise NotADirectoryError(str(q))
        return cls(q)

    def __str__(self) -> str:
        return str(self.path)
