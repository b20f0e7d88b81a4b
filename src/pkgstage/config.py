"""
pkgstage.config
===============

StageConfig is the one knob bag the host hands to the engine. It can be built
in code or loaded from TOML:

    # pkgstage.toml                      # or pyproject.toml
    [pkgstage]                           [tool.pkgstage]
    project_root = "."                   project_root = "."
    site_id = "example"                  ...
    exclude = [".git", "node_modules", "sites/*/files"]

Relative directories in a file are resolved against the file's directory, not
the process working directory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import msgspec
import msgspec.structs
import msgspec.toml

from pkgstage.constants import (
    DEFAULT_APPLY_TIMEOUT_S,
    DEFAULT_CLAIM_TTL_S,
    DEFAULT_CREATE_TIMEOUT_S,
    DEFAULT_EXCLUDES,
    DEFAULT_REQUIRE_TIMEOUT_S,
    DEFAULT_STATUS_TTL_S,
    LOCK_FILE_BASENAME,
    MANIFEST_BASENAME,
    VENDOR_DIRNAME,
)
from pkgstage.errors import ConfigError

__all__ = ["StageConfig", "load_config"]


class StageConfig(msgspec.Struct, frozen=True, kw_only=True, forbid_unknown_fields=True):
    project_root: str
    site_id: str = "default"
    vendor_dir: str = VENDOR_DIRNAME
    staging_root: str | None = None  # default: <tmp>/.pkgstage-<site_id>
    state_dir: str | None = None  # default: <tmp>/.pkgstage-state-<site_id>
    manifest: str = MANIFEST_BASENAME
    lock_file: str = LOCK_FILE_BASENAME
    composer_bin: str = "composer"
    executor: str = "local"
    claim_ttl_s: float | None = DEFAULT_CLAIM_TTL_S
    create_timeout_s: float | None = DEFAULT_CREATE_TIMEOUT_S
    require_timeout_s: float | None = DEFAULT_REQUIRE_TIMEOUT_S
    apply_timeout_s: float | None = DEFAULT_APPLY_TIMEOUT_S
    status_ttl_s: float = DEFAULT_STATUS_TTL_S
    exclude: tuple[str, ...] = DEFAULT_EXCLUDES

    def __post_init__(self) -> None:
        if not self.site_id or not self.site_id.replace("-", "").replace("_", "").isalnum():
            raise ValueError(
                f"site_id must be alphanumeric (dashes/underscores allowed): {self.site_id!r}"
            )
        for label, v in (
            ("claim_ttl_s", self.claim_ttl_s),
            ("create_timeout_s", self.create_timeout_s),
            ("require_timeout_s", self.require_timeout_s),
            ("apply_timeout_s", self.apply_timeout_s),
        ):
            if v is not None and v <= 0:
                raise ValueError(f"{label} must be positive (or None)")
        if self.status_ttl_s <= 0:
            raise ValueError("status_ttl_s must be positive")

    def evolve(self, **changes: Any) -> StageConfig:
        return msgspec.structs.replace(self, **changes)


def load_config(path: str | os.PathLike[str]) -> StageConfig:
    """
    Load a StageConfig from a TOML file.

    ``pyproject.toml`` is read from its ``[tool.pkgstage]`` table, any other
    file from its ``[pkgstage]`` table.

    Raises
    ------
    ConfigError
        If the file is missing, is not valid TOML, lacks the table, or the
        table does not validate.
    """
    p = Path(path).expanduser()
    try:
        data = p.read_bytes()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {p}: {e}") from e

    try:
        doc = msgspec.toml.decode(data)
    except msgspec.DecodeError as e:
        raise ConfigError(f"Invalid TOML in {p}: {e}") from e

    if p.name == "pyproject.toml":
        table = doc.get("tool", {}).get("pkgstage")
        where = "[tool.pkgstage]"
    else:
        table = doc.get("pkgstage")
        where = "[pkgstage]"
    if not isinstance(table, dict):
        raise ConfigError(f"No {where} table found in {p}")

    base = p.resolve().parent
    for key in ("project_root", "staging_root", "state_dir"):
        v = table.get(key)
        if isinstance(v, str) and not Path(v).expanduser().is_absolute():
            table[key] = str((base / v).resolve(strict=False))

    try:
        return msgspec.convert(table, StageConfig)
    except (msgspec.ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid {where} in {p}: {e}") from e
