"""Per-run execution state and the read-only view handed to steps."""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Tuple, runtime_checkable

from .events import Event


class RunStatus(str, enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.TIMED_OUT)


class TracePhase(str, enum.Enum):
    DISPATCH = "dispatch"
    SETTLE = "settle"
    DROPPED = "dropped"


@dataclass(frozen=True)
class TraceRecord:
    """One entry of the verbose dispatch log."""

    cycle: int
    phase: TracePhase
    event_kind: str
    step: Optional[str] = None
    ok: Optional[bool] = None
    emitted: Tuple[str, ...] = ()
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RunState:
    """Mutable state of one run. Only the driver writes to it."""

    run_id: str
    start_event: Event
    status: RunStatus = RunStatus.CREATED
    queue: List[Event] = field(default_factory=list)
    next_queue: List[Event] = field(default_factory=list)
    trace: List[TraceRecord] = field(default_factory=list)
    cycle: int = 0
    deadline: Optional[float] = None
    result: Any = None
    error: Optional[BaseException] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


@dataclass(frozen=True)
class ContextParams:
    """Arguments passed to a context factory."""

    state: RunState
    workflow_name: str
    verbose: bool
    timeout: Optional[float]


@runtime_checkable
class RunContext(Protocol):
    """Capabilities the engine requires from a context object."""

    run_id: str
    workflow_name: str

    @property
    def status(self) -> RunStatus: ...

    @property
    def cycle(self) -> int: ...

    @property
    def start_event(self) -> Event: ...

    @property
    def trace(self) -> Tuple[TraceRecord, ...]: ...

    @property
    def is_terminal(self) -> bool: ...


class Context:
    """Read-only view of a run, passed to every step handler.

    Subclass it (and pass the subclass as ``context_factory``) to give steps
    access to shared services such as an LLM client.
    """

    def __init__(self, params: ContextParams) -> None:
        self._state = params.state
        self.run_id = params.state.run_id
        self.workflow_name = params.workflow_name
        self.verbose = params.verbose
        self.timeout = params.timeout

    @property
    def status(self) -> RunStatus:
        return self._state.status

    @property
    def cycle(self) -> int:
        return self._state.cycle

    @property
    def start_event(self) -> Event:
        return self._state.start_event

    @property
    def input(self) -> Any:
        return self._state.start_event.payload

    @property
    def trace(self) -> Tuple[TraceRecord, ...]:
        return tuple(self._state.trace)

    @property
    def is_terminal(self) -> bool:
        return self._state.status.is_terminal

    @property
    def elapsed(self) -> Optional[float]:
        if self._state.started_at is None:
            return None
        end = self._state.finished_at or time.monotonic()
        return end - self._state.started_at

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.workflow_name} run={self.run_id} {self.status.value}>"
