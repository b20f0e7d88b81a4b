"""
pkgstage
========

Staged package-manager mutations with crash-safe apply: claim the site, copy
the code base into a stage, change requirements there, validate at every
checkpoint, then fold the stage back into the live code base.
"""

from __future__ import annotations

from pkgstage.config import StageConfig, load_config
from pkgstage.errors import (
    AlreadyClaimed,
    ApplyFailed,
    ConfigError,
    DriftDetected,
    FailureMarkerExists,
    InvalidRequirement,
    InvalidStageState,
    NotOwner,
    ProcessFailed,
    StageError,
    StageValidationException,
)
from pkgstage.events import EventKind, ValidationEvent, ValidationPipeline
from pkgstage.lifecycle import StageLifecycle, build_lifecycle
from pkgstage.model import Stage, StageState
from pkgstage.reporting.results import Severity, ValidationResult
from pkgstage.status import ValidationResultCache, run_status_check

__all__ = [
    "StageConfig",
    "load_config",
    "StageLifecycle",
    "build_lifecycle",
    "Stage",
    "StageState",
    "EventKind",
    "ValidationEvent",
    "ValidationPipeline",
    "Severity",
    "ValidationResult",
    "ValidationResultCache",
    "run_status_check",
    "StageError",
    "ConfigError",
    "AlreadyClaimed",
    "NotOwner",
    "InvalidStageState",
    "DriftDetected",
    "InvalidRequirement",
    "StageValidationException",
    "ApplyFailed",
    "FailureMarkerExists",
    "ProcessFailed",
]
