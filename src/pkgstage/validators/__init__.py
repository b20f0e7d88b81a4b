"""
pkgstage.validators
===================

Stock validators a host may register. Each one is a plain object exposing
``subscribed_events()``; nothing here is registered implicitly.
"""

from __future__ import annotations

from pkgstage.drift import LockFileDriftDetector
from pkgstage.events import ListenerRegistration, ValidationPipeline
from pkgstage.locator import PathResolver
from pkgstage.validators.filesystem import WritableFileSystemValidator
from pkgstage.validators.lock_file import LockFileValidator
from pkgstage.validators.manifest import ManifestExistsValidator


def register_default_validators(
    pipeline: ValidationPipeline, resolver: PathResolver, drift: LockFileDriftDetector
) -> list[ListenerRegistration]:
    regs: list[ListenerRegistration] = []
    regs += pipeline.subscribe(ManifestExistsValidator(resolver))
    regs += pipeline.subscribe(WritableFileSystemValidator(resolver))
    regs += pipeline.subscribe(LockFileValidator(resolver, drift))
    return regs


__all__ = [
    "ManifestExistsValidator",
    "WritableFileSystemValidator",
    "LockFileValidator",
    "register_default_validators",
]
