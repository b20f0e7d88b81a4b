from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

import msgspec
import msgspec.structs

from pkgstage.constants import STAGE_SCHEMA


class StageState(StrEnum):
    AVAILABLE = "available"
    CREATED = "created"
    STAGED = "staged"
    APPLYING = "applying"
    APPLIED = "applied"
    DESTROYED = "destroyed"


# Predecessor state each forward transition requires
TRANSITIONS: dict[str, tuple[StageState, ...]] = {
    "create": (StageState.AVAILABLE, StageState.DESTROYED),
    "require": (StageState.CREATED,),
    "apply": (StageState.STAGED,),
}


class Stage(msgspec.Struct, frozen=True, kw_only=True):
    """
    Persisted record of the one stage a site may have. Stored in the shared
    store next to the ownership claim so a later request can pick it up.
    """

    id: str
    owner_token: str
    state: StageState
    active_root: str
    staging_root: str
    metadata: dict[str, Any] = msgspec.field(default_factory=dict)
    requirements: tuple[str, ...] = ()
    # exclusions in force when the stage was created
    excluded_paths: tuple[str, ...] = ()
    created_at: str | None = None
    updated_at: str | None = None
    schema: int = STAGE_SCHEMA

    def evolve(self, **changes: Any) -> Stage:
        return msgspec.structs.replace(self, **changes)

    @property
    def active_dir(self) -> Path:
        return Path(self.active_root)

    @property
    def staging_dir(self) -> Path:
        return Path(self.staging_root)
