from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pkgstage.events import EventKind, ValidationEvent
from pkgstage.locator import PathResolver

_SUMMARY = "The file system is not writable."


def _writable(p: Path) -> bool:
    return os.access(p, os.W_OK)


class WritableFileSystemValidator:
    PRIORITY = 0

    def __init__(self, resolver: PathResolver) -> None:
        self.resolver = resolver

    def subscribed_events(self) -> Mapping[EventKind, tuple[str, int]]:
        return {
            EventKind.PRE_CREATE: ("validate", self.PRIORITY),
            EventKind.PRE_APPLY: ("validate", self.PRIORITY),
            EventKind.STATUS_CHECK: ("validate", self.PRIORITY),
        }

    def validate(self, event: ValidationEvent) -> None:
        messages: list[str] = []

        root = self.resolver.project_root.path
        if not _writable(root):
            messages.append(f'The project directory "{root}" is not writable.')

        vendor = self.resolver.vendor_directory()
        if vendor.exists() and not _writable(vendor):
            messages.append(f'The vendor directory "{vendor}" is not writable.')

        # the staging root is irrelevant once the stage exists
        if event.kind is not EventKind.PRE_APPLY:
            staging = self.resolver.staging_root.path
            if not staging.exists():
                parent = _nearest_existing(staging)
                if not _writable(parent):
                    messages.append(
                        f'The staging root directory will not be able to be created at "{parent}".'
                    )
            elif not _writable(staging):
                messages.append(f'The staging root directory "{staging}" is not writable.')

        if messages:
            event.add_error(messages, _SUMMARY if len(messages) > 1 else None)


def _nearest_existing(p: Path) -> Path:
    while not p.exists() and p != p.parent:
        p = p.parent
    return p
