"""Event-driven workflow engine for composing asynchronous pipelines out of typed events."""

__version__ = "0.1.0"

from .context import Context, ContextParams, RunContext, RunStatus, TracePhase, TraceRecord
from .engine import ExecutionEngine, RunHandle
from .errors import (
    OutputValidationError,
    StepExecutionError,
    UnmatchedEventError,
    UnterminatedWorkflowError,
    WorkflowCancelledError,
    WorkflowError,
    WorkflowTimeoutError,
    WorkflowValidationError,
)
from .events import Event, EventKind, StartEvent, StopEvent
from .settings import RunOptions, WorkflowSettings
from .steps import Step, StepHandle
from .workflow import WorkflowDefinition, define_workflow

__all__ = [
    "Context",
    "ContextParams",
    "RunContext",
    "RunStatus",
    "TracePhase",
    "TraceRecord",
    "ExecutionEngine",
    "RunHandle",
    "WorkflowError",
    "WorkflowValidationError",
    "OutputValidationError",
    "UnmatchedEventError",
    "StepExecutionError",
    "WorkflowTimeoutError",
    "UnterminatedWorkflowError",
    "WorkflowCancelledError",
    "Event",
    "EventKind",
    "StartEvent",
    "StopEvent",
    "RunOptions",
    "WorkflowSettings",
    "Step",
    "StepHandle",
    "WorkflowDefinition",
    "define_workflow",
]
