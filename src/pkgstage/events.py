"""
pkgstage.events
===============

The validation pipeline: a typed event bus that lets registered listeners veto
lifecycle transitions.

- EventKind enumerates the checkpoints.
- ValidationEvent is created right before dispatch and dropped right after.
- ValidationPipeline keeps an explicit registry of (kind, priority, callback)
  and dispatches in descending priority order; equal priorities keep their
  registration order.

A listener that raises never aborts dispatch. Its exception becomes an error
result and propagation stops there, so the caller always gets something it
can report.
"""

from __future__ import annotations

import hashlib
import inspect
import itertools
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pkgstage.reporting.results import Severity, ValidationResult

if TYPE_CHECKING:
    from pkgstage.model import Stage
    from pkgstage.requirements import PackageRequirement

logger = logging.getLogger(__name__)

__all__ = [
    "EventKind",
    "ValidationEvent",
    "Listener",
    "ListenerRegistration",
    "EventSubscriber",
    "ValidationPipeline",
    "listener_identity",
]


class EventKind(StrEnum):
    PRE_CREATE = "pre_create"
    PRE_REQUIRE = "pre_require"
    PRE_APPLY = "pre_apply"
    POST_APPLY = "post_apply"
    PRE_DESTROY = "pre_destroy"
    POST_DESTROY = "post_destroy"
    STATUS_CHECK = "status_check"


@dataclass
class ValidationEvent:
    kind: EventKind
    stage: Stage | None = None
    results: list[ValidationResult] = field(default_factory=list)
    # PreRequire only
    requirements: tuple[PackageRequirement, ...] = ()
    # PreCreate / PreApply only: POSIX globs relative to the project root
    excluded_paths: tuple[str, ...] = ()
    _stopped: bool = field(default=False, repr=False)

    def add_result(self, result: ValidationResult) -> None:
        self.results.append(result)

    def add_error(self, messages: str | Iterable[str], summary: str | None = None) -> None:
        msgs = [messages] if isinstance(messages, str) else list(messages)
        self.results.append(ValidationResult.error(msgs, summary))

    def add_warning(self, messages: str | Iterable[str], summary: str | None = None) -> None:
        msgs = [messages] if isinstance(messages, str) else list(messages)
        self.results.append(ValidationResult.warning(msgs, summary))

    def add_error_from_exception(self, exc: BaseException, summary: str | None = None) -> None:
        self.results.append(ValidationResult.from_exception(exc, summary))

    def add_excluded_path(self, *paths: str) -> None:
        """
        Keep `paths` (globs relative to the project root) out of the copy.

        Paths excluded at PreCreate are stored with the stage and stay
        excluded when it is applied.
        """
        self.excluded_paths = tuple(dict.fromkeys((*self.excluded_paths, *paths)))

    def stop_propagation(self) -> None:
        self._stopped = True

    @property
    def propagation_stopped(self) -> bool:
        return self._stopped

    @property
    def errors(self) -> list[ValidationResult]:
        return [r for r in self.results if r.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationResult]:
        return [r for r in self.results if r.severity is Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(r.is_error for r in self.results)


Listener = Callable[[ValidationEvent], None]


@dataclass(frozen=True, slots=True)
class ListenerRegistration:
    kind: EventKind
    priority: int
    callback: Listener
    seq: int
    identity: str


@runtime_checkable
class EventSubscriber(Protocol):
    def subscribed_events(self) -> Mapping[EventKind, tuple[str, int]]: ...


def listener_identity(callback: Callable[..., Any]) -> str:
    """
    Stable, human-readable identity of a listener.

    Bound methods are named ``module.QualName::method`` after their class, so
    two instances of the same validator share an identity. Plain functions and
    other callables fall back to ``module.qualname``.
    """
    if inspect.ismethod(callback):
        owner = callback.__self__
        cls = owner if inspect.isclass(owner) else type(owner)
        return f"{cls.__module__}.{cls.__qualname__}::{callback.__func__.__name__}"
    module = getattr(callback, "__module__", None) or "<unknown>"
    qualname = getattr(callback, "__qualname__", None)
    if qualname is None:
        cls = type(callback)
        qualname = f"{cls.__qualname__}.__call__"
        module = cls.__module__
    return f"{module}.{qualname}"


class ValidationPipeline:
    def __init__(self) -> None:
        self._registrations: list[ListenerRegistration] = []
        self._seq = itertools.count()

    # ---- registration ---------------------------------------------------------

    def register_listener(
        self, kind: EventKind | str, priority: int, callback: Listener
    ) -> ListenerRegistration:
        if not callable(callback):
            raise TypeError(f"Listener must be callable, got {type(callback).__name__}")
        reg = ListenerRegistration(
            kind=EventKind(kind),
            priority=int(priority),
            callback=callback,
            seq=next(self._seq),
            identity=listener_identity(callback),
        )
        self._registrations.append(reg)
        return reg

    def on_event(
        self, kind: EventKind | str, priority: int, callback: Listener
    ) -> ListenerRegistration:
        return self.register_listener(kind, priority, callback)

    def unregister(self, registration: ListenerRegistration) -> None:
        try:
            self._registrations.remove(registration)
        except ValueError:
            raise KeyError(f"Listener {registration.identity} is not registered") from None

    def subscribe(self, subscriber: EventSubscriber) -> list[ListenerRegistration]:
        """Register every method named by ``subscriber.subscribed_events()``."""
        out: list[ListenerRegistration] = []
        for kind, (method_name, priority) in subscriber.subscribed_events().items():
            callback = getattr(subscriber, method_name)
            out.append(self.register_listener(kind, priority, callback))
        return out

    def listeners(self, kind: EventKind | str) -> list[ListenerRegistration]:
        k = EventKind(kind)
        regs = [r for r in self._registrations if r.kind is k]
        return sorted(regs, key=lambda r: (-r.priority, r.seq))

    # ---- dispatch ---------------------------------------------------------------

    def dispatch(self, event: ValidationEvent) -> ValidationEvent:
        for reg in self.listeners(event.kind):
            try:
                reg.callback(event)
            except Exception as e:
                logger.warning(
                    "Listener %s failed during %s", reg.identity, event.kind, exc_info=True
                )
                event.add_error_from_exception(e)
                event.stop_propagation()
            if event.propagation_stopped:
                break
        return event

    # ---- signature --------------------------------------------------------------

    def signature(self) -> str:
        """
        SHA-256 over the ordered (kind, priority, identity) triples of the whole
        registry. Any listener being added, removed or reprioritized changes it.
        """
        h = hashlib.sha256()
        for kind in EventKind:
            for reg in self.listeners(kind):
                h.update(f"{reg.kind}\0{reg.priority}\0{reg.identity}\n".encode())
        return h.hexdigest()

    def __len__(self) -> int:
        return len(self._registrations)

