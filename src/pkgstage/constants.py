"""
pkgstage.constants
==================

Single place for file names, store keys and defaults. The lifecycle, the
validators and the status check all import from here so the same string is
never spelled twice.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

# ---- files in the active code base ------------------------------------------

MANIFEST_BASENAME = "composer.json"
LOCK_FILE_BASENAME = "composer.lock"
VENDOR_DIRNAME = "vendor"

# crash witness, written to the project root while staged code is committed
FAILURE_MARKER_BASENAME = "PKGSTAGE_FAILURE.json"

DEFAULT_EXCLUDES: tuple[str, ...] = (".git", "node_modules")

# ---- shared store keys --------------------------------------------------------

LOCK_KEY = "lock"
STAGE_KEY = "stage"
LOCK_HASH_KEY = "lock_hash"
STATUS_CHECK_KEY = "status_check_last_run"

# ---- schema versions ----------------------------------------------------------

MARKER_SCHEMA = 0
STAGE_SCHEMA = 0

# ---- timeouts / TTLs (seconds) --------------------------------------------------

DEFAULT_CLAIM_TTL_S: float = 60 * 60
DEFAULT_CREATE_TIMEOUT_S: float = 300
DEFAULT_REQUIRE_TIMEOUT_S: float = 300
DEFAULT_APPLY_TIMEOUT_S: float = 600
DEFAULT_STATUS_TTL_S: float = 24 * 60 * 60

# ---- helpers ----------------------------------------------------------------


def default_staging_root(site_id: str) -> Path:
    """Directory holding every staging area created for one site."""
    return Path(tempfile.gettempdir()) / f".pkgstage-{site_id}"


def default_state_dir(site_id: str) -> Path:
    """Directory backing the shared FileStore for one site."""
    return Path(tempfile.gettempdir()) / f".pkgstage-state-{site_id}"


def failure_marker_path(project_root: Path) -> Path:
    return project_root / FAILURE_MARKER_BASENAME
