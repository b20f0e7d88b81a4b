from __future__ import annotations

from collections.abc import Mapping

from pkgstage.events import EventKind, ValidationEvent
from pkgstage.locator import PathResolver


class ManifestExistsValidator:
    """
    Fails fast when the active composer.json is missing. Runs just ahead of
    everything else and stops propagation, since no other check means
    anything without a manifest.
    """

    PRIORITY = 190

    def __init__(self, resolver: PathResolver) -> None:
        self.resolver = resolver

    def subscribed_events(self) -> Mapping[EventKind, tuple[str, int]]:
        return {
            EventKind.PRE_CREATE: ("validate", self.PRIORITY),
            EventKind.PRE_APPLY: ("validate", self.PRIORITY),
            EventKind.STATUS_CHECK: ("validate", self.PRIORITY),
        }

    def validate(self, event: ValidationEvent) -> None:
        if not self.resolver.manifest_path().is_file():
            event.add_error(
                f"No {self.resolver.manifest} file can be found at {self.resolver.project_root}"
            )
            event.stop_propagation()
