"""Tagged events flowing between workflow steps."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Tuple, Union

from .errors import WorkflowValidationError

START = "start"
STOP = "stop"
RESERVED_KINDS = frozenset({START, STOP})


@dataclass(frozen=True)
class Event:
    """An immutable payload tagged with the kind used for step matching."""

    kind: str
    payload: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, str) or not self.kind:
            raise ValueError("Event kind must be a non-empty string")

    @property
    def is_start(self) -> bool:
        return self.kind == START

    @property
    def is_stop(self) -> bool:
        return self.kind == STOP

    def __str__(self) -> str:
        return self.kind


@dataclass(frozen=True)
class EventKind:
    """Named factory for events of one kind.

    ``Retrieved = EventKind("retrieved")`` declares a kind; calling it
    builds events (``Retrieved({"nodes": [...]})``) and the object itself
    can be passed wherever steps expect a kind.
    """

    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Event kind name must be a non-empty string")

    def __call__(self, payload: Any = None) -> Event:
        return Event(kind=self.name, payload=payload)

    def matches(self, event: Event) -> bool:
        return event.kind == self.name

    def __str__(self) -> str:
        return self.name


KindLike = Union[str, EventKind]

StartEvent = EventKind(START)
StopEvent = EventKind(STOP)


def kind_name(kind: KindLike) -> str:
    if isinstance(kind, EventKind):
        return kind.name
    if isinstance(kind, str) and kind:
        return kind
    raise TypeError(f"Expected an event kind name or EventKind, got {kind!r}")


def normalize_kinds(kinds: Union[KindLike, Iterable[KindLike], None]) -> Tuple[str, ...]:
    """Turn a single kind or an iterable of kinds into an ordered, de-duplicated tuple."""
    if kinds is None:
        return ()
    if isinstance(kinds, (str, EventKind)):
        kinds = [kinds]
    names = []
    for kind in kinds:
        name = kind_name(kind)
        if name not in names:
            names.append(name)
    return tuple(names)


def as_start_event(start: Any) -> Event:
    """Wrap a run input in a start event unless it already is one."""
    if isinstance(start, Event):
        if not start.is_start:
            raise WorkflowValidationError(f"Runs can only be seeded with a start event, got '{start.kind}'")
        return start
    return StartEvent(start)
