"""Step records and the opaque handles issued when steps are registered."""
from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, List, Optional, Tuple, Union

from .errors import OutputValidationError
from .events import START, Event

StepOutput = Union[None, Event, Iterable[Event]]
StepHandler = Callable[[Any, Event], Union[StepOutput, Awaitable[StepOutput]]]

_handle_ids = itertools.count(1)


@dataclass(frozen=True)
class StepHandle:
    """Opaque identity of a registered step."""

    id: int
    name: str

    @classmethod
    def issue(cls, name: str) -> "StepHandle":
        return cls(id=next(_handle_ids), name=name)

    def __repr__(self) -> str:
        return f"StepHandle({self.id}, {self.name!r})"


@dataclass(frozen=True)
class Step:
    """A registered handler together with the kinds it consumes and emits."""

    handle: StepHandle
    input_kinds: Tuple[str, ...]
    handler: StepHandler
    output_kinds: Optional[FrozenSet[str]] = None

    @property
    def name(self) -> str:
        return self.handle.name

    def accepts(self, event: Event) -> bool:
        return event.kind in self.input_kinds

    async def invoke(self, context: Any, event: Event) -> List[Event]:
        """Call the handler and normalise whatever it returned into a list of events."""
        result = self.handler(context, event)
        if inspect.isawaitable(result):
            result = await result
        elif inspect.isasyncgen(result):
            result = [item async for item in result]
        return self._collect(result)

    def _collect(self, result: Any) -> List[Event]:
        if result is None:
            return []
        if isinstance(result, Event):
            return [result]
        if isinstance(result, (str, bytes, dict)) or not isinstance(result, Iterable):
            raise OutputValidationError(
                self.name, f"returned {type(result).__name__}, expected an event or events"
            )
        events = list(result)
        for item in events:
            if not isinstance(item, Event):
                raise OutputValidationError(
                    self.name, f"returned {type(item).__name__} among its events"
                )
        return events

    def check_outputs(self, events: List[Event], strict_outputs: bool) -> None:
        for event in events:
            if event.kind == START:
                raise OutputValidationError(self.name, "emitted a start event")
            if strict_outputs and self.output_kinds is not None:
                if event.kind not in self.output_kinds:
                    raise OutputValidationError(
                        self.name,
                        f"emitted undeclared kind '{event.kind}' "
                        f"(declared: {sorted(self.output_kinds)})",
                    )


def handler_name(handler: Callable[..., Any]) -> str:
    name = getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None)
    if name is None:
        func = getattr(handler, "func", None)  # functools.partial
        name = getattr(func, "__qualname__", None) or type(handler).__name__
    return name
