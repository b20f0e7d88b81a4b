"""
pkgstage exceptions. Everything the engine raises derives from StageError,
which prints as plain text and renders nicely when printed via a rich Console.

Transition-level failures (lock, drift, state, marker) always propagate to the
caller. Validator failures never show up here directly: the pipeline turns
them into ValidationResults, and StageValidationException carries those.
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, ConsoleOptions, RenderResult
from rich.text import Text

from pkgstage.reporting.results import ValidationResult, render_results

__all__ = [
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


class StageError(Exception):
    """Base pkgstage exception."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:  # pragma: no cover - trivial formatting
        return self.message

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        _ = console
        _ = options
        yield Text(f"{type(self).__name__}: {self.message}", style="bold red")


class ConfigError(StageError):
    """The configuration file is missing, unreadable or invalid."""


class AlreadyClaimed(StageError):
    """Another owner holds an unexpired claim on the site's stage."""


class NotOwner(StageError):
    """The caller does not hold the claim it is acting under."""


class InvalidStageState(StageError):
    """A transition was attempted from a state that does not allow it."""


class DriftDetected(StageError):
    """The active lock file changed since the stage was created."""


class InvalidRequirement(StageError, ValueError):
    """A package requirement string could not be parsed."""


class StageValidationException(StageError):
    """One or more validators reported an error; the transition did not happen."""

    def __init__(self, results: Sequence[ValidationResult], message: str | None = None) -> None:
        self.results: tuple[ValidationResult, ...] = tuple(results)
        if message is None:
            message = "; ".join(r.headline() for r in self.results if r.is_error)
            message = message or "Validation failed."
        super().__init__(message)

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        _ = console
        _ = options
        yield render_results(self.results, heading="Stage validation failed")


class ApplyFailed(StageError):
    """
    Committing the staged code to the active code base failed. A failure
    marker was written before the commit started and has been left in place.
    """

    def __init__(self, message: str, *, marker_path: str) -> None:
        super().__init__(message)
        self.marker_path = marker_path


class FailureMarkerExists(StageError):
    """
    A previous apply was interrupted. This is a hard stop: the code base is in
    an indeterminate state until an operator restores it and clears the marker.
    """


class ProcessFailed(StageError):
    """An executor subprocess exited with a non-zero status."""

    def __init__(
        self,
        command: Sequence[str],
        returncode: int,
        *,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        message = f"Command {' '.join(self.command)!r} exited with status {returncode}"
        super().__init__(f"{message}: {detail}" if detail else message)
