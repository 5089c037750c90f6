"""Custom exceptions for the workflow engine."""
from __future__ import annotations

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for workflow related errors."""


class WorkflowValidationError(WorkflowError):
    """Raised when a step registration or run configuration is malformed."""


class OutputValidationError(WorkflowValidationError):
    """Raised when a step emits something it is not allowed to emit."""

    def __init__(self, step_name: str, message: str) -> None:
        self.step_name = step_name
        super().__init__(f"Step '{step_name}' {message}")


class UnmatchedEventError(WorkflowValidationError):
    """Raised in strict mode when no step accepts an event."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"No step accepts events of kind '{kind}'")


class StepExecutionError(WorkflowError):
    """Wraps an exception raised by a step handler."""

    def __init__(self, step_name: str, event: Any, cause: Optional[BaseException] = None) -> None:
        self.step_name = step_name
        self.event = event
        self.cause = cause
        reason = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Step '{step_name}' failed on '{event}': {reason}")


class WorkflowTimeoutError(WorkflowError, TimeoutError):
    """Raised when a run does not reach a stop event before its deadline."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Workflow run timed out after {timeout}s")


class UnterminatedWorkflowError(WorkflowError):
    """Raised when the event queue drains without a stop event."""


class WorkflowCancelledError(WorkflowError):
    """Raised when the driver of a run is cancelled."""
