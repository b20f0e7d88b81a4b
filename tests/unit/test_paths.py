from __future__ import annotations

from pathlib import Path

import pytest

from pkgstage._paths import AbsDir, RelPath


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("vendor", "vendor"),
        ("./sites//default/", "sites/default"),
        ("sites\\default\\files", "sites/default/files"),
    ],
)
def test_relpath_normalizes(raw: str, expected: str) -> None:
    assert str(RelPath(raw)) == expected


@pytest.mark.parametrize("raw", ["/etc", "C:/vendor", "\\\\server\\share", "a/../../b", ".", ""])
def test_relpath_rejects_escaping_paths(raw: str) -> None:
    with pytest.raises(ValueError):
        RelPath(raw)


def test_relpath_join_under(tmp_path: Path) -> None:
    rel = RelPath("vendor/drupal")
    assert rel.join_under(tmp_path) == tmp_path / "vendor" / "drupal"
    assert rel.join_under(AbsDir.existing(tmp_path)) == tmp_path.resolve() / "vendor" / "drupal"


def test_relpath_relative_to(tmp_path: Path) -> None:
    root = tmp_path / "project"
    assert str(RelPath.relative_to(root / "staging" / "x", root)) == "staging/x"
    assert RelPath.relative_to(tmp_path / "elsewhere", root) is None
    assert RelPath.relative_to(root, root) is None


def test_absdir(tmp_path: Path) -> None:
    (tmp_path / "file").write_text("x")
    with pytest.raises(NotADirectoryError):
        AbsDir.existing(tmp_path / "file")
    with pytest.raises(FileNotFoundError):
        AbsDir.existing(tmp_path / "missing")

    later = AbsDir.normalized(tmp_path / "not" / ".." / "yet")
    assert later.path == tmp_path.resolve() / "yet"
    assert str(later) == str(tmp_path.resolve() / "yet")
