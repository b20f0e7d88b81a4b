from __future__ import annotations

from collections.abc import Mapping

from pkgstage.drift import LockFileDriftDetector
from pkgstage.events import EventKind, ValidationEvent
from pkgstage.locator import PathResolver
from pkgstage.model import StageState

_SUMMARY = "Problems detected in lock file during stage operations."


class LockFileValidator:
    """
    Lock file checks that go beyond the lifecycle's own drift gate:

    - PreCreate: the active lock file must exist.
    - PreApply: the staged lock file must differ from the active one,
      otherwise there is nothing to apply.
    - StatusCheck: report drift while a stage exists.
    """

    PRIORITY = 0

    def __init__(self, resolver: PathResolver, drift: LockFileDriftDetector) -> None:
        self.resolver = resolver
        self.drift = drift

    def subscribed_events(self) -> Mapping[EventKind, tuple[str, int]]:
        return {
            EventKind.PRE_CREATE: ("check_exists", self.PRIORITY),
            EventKind.PRE_APPLY: ("check_pending", self.PRIORITY),
            EventKind.STATUS_CHECK: ("check_drift", self.PRIORITY),
        }

    def check_exists(self, event: ValidationEvent) -> None:
        if self.drift.current_hash() is None:
            event.add_error("The active lock file does not exist.")

    def check_pending(self, event: ValidationEvent) -> None:
        if event.stage is None:
            return
        active = self.drift.current_hash()
        staged = self.drift.current_hash(event.stage.staging_dir)
        if staged is not None and staged == active:
            event.add_error("There are no pending Composer operations.")

    def check_drift(self, event: ValidationEvent) -> None:
        stage = event.stage
        if stage is None or stage.state in (StageState.AVAILABLE, StageState.DESTROYED):
            return
        messages: list[str] = []
        if self.drift.current_hash() is None:
            messages.append("The active lock file does not exist.")
        if self.drift.stored_hash() is None:
            messages.append("The stored lock file hash is missing.")
        elif self.drift.has_drifted():
            messages.append(
                f"Unexpected changes were detected in {self.resolver.lock_file}, which "
                "indicates that other package operations were performed since this stage "
                "was created."
            )
        if messages:
            event.add_error(messages, _SUMMARY if len(messages) > 1 else None)
