"""
pkgstage validation results: shared data model, a rich renderer and a
lightweight Emitter. Used by the validation pipeline, the status check and
StageValidationException alike.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import msgspec
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

__all__ = [
    "Severity",
    "ValidationResult",
    "overall_severity",
    "Theme",
    "Emitter",
    "render_result",
    "render_results",
]


# ────────────────────────── Core model ──────────────────────────


class Severity(StrEnum):
    WARNING = "warning"
    ERROR = "error"


class ValidationResult(msgspec.Struct, frozen=True):
    """
    One finding reported by a validator.

    At least one message is required, and a summary is required as soon as
    there is more than one message. Equality is field-wise, so two results are
    equal iff severity, summary and messages (in order) are equal.
    """

    severity: Severity
    messages: tuple[str, ...]
    summary: str | None = None

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("At least one message is required.")
        if len(self.messages) > 1 and not self.summary:
            raise ValueError("If more than one message is provided, a summary is required.")

    @classmethod
    def error(cls, messages: Iterable[str], summary: str | None = None) -> ValidationResult:
        return cls(Severity.ERROR, tuple(str(m) for m in messages), summary)

    @classmethod
    def warning(cls, messages: Iterable[str], summary: str | None = None) -> ValidationResult:
        return cls(Severity.WARNING, tuple(str(m) for m in messages), summary)

    @classmethod
    def from_exception(cls, exc: BaseException, summary: str | None = None) -> ValidationResult:
        message = str(exc) or type(exc).__name__
        return cls(Severity.ERROR, (message,), summary)

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def headline(self) -> str:
        return self.summary or self.messages[0]


def overall_severity(results: Iterable[ValidationResult]) -> Severity | None:
    """ERROR if any result is an error, WARNING if only warnings, None if empty."""
    seen = False
    for r in results:
        if r.severity is Severity.ERROR:
            return Severity.ERROR
        seen = True
    return Severity.WARNING if seen else None


# ─────────────────────── Rendering theme ───────────────────────


@dataclass(frozen=True, slots=True)
class Theme:
    warning_header: str = "bold yellow"
    error_header: str = "bold red"
    message: str = ""
    bullet: str = "dim"
    count: str = "dim"


def _sev_style(sev: Severity, theme: Theme) -> str:
    return {
        Severity.WARNING: theme.warning_header,
        Severity.ERROR: theme.error_header,
    }[sev]


# ────────────────────────── Renderers ──────────────────────────


def render_result(r: ValidationResult, *, theme: Theme | None = None) -> RenderableType:
    """A panel titled with the severity (and summary); one bullet per message."""
    theme = theme or Theme()

    title = Text()
    title.append(r.severity.upper(), style=_sev_style(r.severity, theme))
    if r.summary:
        title.append(f": {r.summary}")

    body = Text()
    for i, m in enumerate(r.messages):
        if i:
            body.append("\n")
        body.append("• ", style=theme.bullet)
        body.append(m, style=theme.message)

    return Panel.fit(
        body, title=title, title_align="left", border_style=_sev_style(r.severity, theme)
    )


def render_results(
    results: Sequence[ValidationResult],
    *,
    heading: str | None = None,
    theme: Theme | None = None,
) -> RenderableType:
    theme = theme or Theme()
    sev = overall_severity(results)

    head = Text()
    head.append(heading or "Validation results", style=_sev_style(sev, theme) if sev else "")
    n_err = sum(1 for r in results if r.is_error)
    head.append(f" ({n_err} error(s), {len(results) - n_err} warning(s))", style=theme.count)

    return Group(
        head,
        Rule(style=_sev_style(sev, theme) if sev else "dim"),
        *(render_result(r, theme=theme) for r in results),
    )


# ────────────────────────── Emitter ──────────────────────────


class Emitter:
    """
    Lightweight printer for validation results, e.g. for a host that wants to
    show the outcome of a status check on a terminal.
    """

    def __init__(self, console: Console | None = None, theme: Theme | None = None):
        self.console = console or Console()
        self.theme = theme or Theme()

    def emit(self, results: Sequence[ValidationResult], *, heading: str | None = None) -> None:
        if not results:
            self.console.print(Text("No problems detected.", style="green"))
            return
        self.console.print(render_results(results, heading=heading, theme=self.theme))
