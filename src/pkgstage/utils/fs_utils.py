import hashlib
import os
import shutil
import stat
import tempfile
from pathlib import Path


def ensure_parent_dirs(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def write_bytes_atomic(path: Path, out: bytes) -> None:
    ensure_parent_dirs(path)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(out)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        _fsync_dir(path.parent)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_bytes_exclusive(path: Path, out: bytes) -> None:
    """Create `path` with `out`; raises FileExistsError instead of replacing."""
    ensure_parent_dirs(path)
    with path.open("xb") as f:
        f.write(out)
        f.flush()
        os.fsync(f.fileno())
    _fsync_dir(path.parent)


def _fsync_dir(directory: Path) -> None:
    # Make the rename durable
    try:
        dfd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dfd)
    except OSError:
        pass
    finally:
        os.close(dfd)


def sha256_file(p: Path) -> str:
    h = hashlib.sha256()
    with p.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def remove_tree(path: Path) -> None:
    """rmtree that also clears read-only bits (vendor trees often carry them)."""

    def _onexc(func, p, exc):  # type: ignore[no-untyped-def]
        if isinstance(exc, FileNotFoundError):
            return
        if func not in (os.unlink, os.rmdir):
            raise exc
        # the parent must be writable to unlink an entry in it
        os.chmod(os.path.dirname(p), stat.S_IRWXU)
        if not os.path.islink(p):
            os.chmod(p, stat.S_IRWXU)
        func(p)

    if path.is_symlink() or path.is_file():
        path.unlink()
        return
    if not path.exists():
        return
    shutil.rmtree(path, onexc=_onexc)
