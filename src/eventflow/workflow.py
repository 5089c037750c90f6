"""Workflow definitions: the step registry and the entry point for runs."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from .context import Context, ContextParams, RunContext, RunState
from .engine import ExecutionEngine, RunHandle
from .errors import WorkflowValidationError
from .events import STOP, KindLike, as_start_event, normalize_kinds
from .monitoring import EventLogger, MetricsRecorder, TracingManager
from .settings import RunOptions, WorkflowSettings, get_settings
from .steps import Step, StepHandle, StepHandler, handler_name

LOGGER = logging.getLogger(__name__)

Kinds = Union[KindLike, Iterable[KindLike]]


class WorkflowDefinition:
    """An ordered registry of steps that can be run any number of times.

    Steps are matched against events by kind; registration order decides
    dispatch order within a cycle. Every call to :meth:`run` works on a
    snapshot of the registry, so steps added later never leak into runs
    that have already started.
    """

    def __init__(
        self,
        name: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        verbose: Optional[bool] = None,
        strict: Optional[bool] = None,
        validate_outputs: Optional[bool] = None,
        settings: Optional[WorkflowSettings] = None,
        metrics: Optional[MetricsRecorder] = None,
    ) -> None:
        if timeout is not None and timeout <= 0:
            raise WorkflowValidationError("timeout must be positive")
        self.name = name or f"workflow-{uuid.uuid4().hex[:8]}"
        self.settings = settings or get_settings()
        self.timeout = timeout
        self.verbose = verbose
        self.strict = strict
        self.validate_outputs = validate_outputs
        self.metrics = metrics or MetricsRecorder()
        self.tracer = TracingManager()
        self.events = EventLogger()
        self._steps: List[Step] = []
        self._handles: Dict[StepHandle, Step] = {}
        self._handler_index: Dict[Any, StepHandle] = {}

    def add_step(
        self,
        inputs: Kinds,
        handler: StepHandler,
        outputs: Optional[Kinds] = None,
        name: Optional[str] = None,
    ) -> StepHandle:
        """Register ``handler`` for the given input kinds and return its handle."""
        if not callable(handler):
            raise WorkflowValidationError(f"Step handler must be callable, got {handler!r}")
        try:
            input_kinds = normalize_kinds(inputs)
            output_kinds = normalize_kinds(outputs) if outputs is not None else None
        except (TypeError, ValueError) as exc:
            raise WorkflowValidationError(str(exc)) from exc
        if not input_kinds:
            raise WorkflowValidationError("A step needs at least one input kind")
        if STOP in input_kinds:
            raise WorkflowValidationError("Stop events end the run and cannot trigger a step")
        if self._lookup(handler) is not None:
            raise WorkflowValidationError(
                f"Handler {handler_name(handler)} is already registered in '{self.name}'"
            )

        handle = StepHandle.issue(name or handler_name(handler))
        step = Step(
            handle=handle,
            input_kinds=input_kinds,
            handler=handler,
            output_kinds=frozenset(output_kinds) if output_kinds is not None else None,
        )
        self._steps.append(step)
        self._handles[handle] = step
        self._index(handler, handle)
        LOGGER.debug(
            "Registered step %s on %s in '%s'", handle.name, ", ".join(input_kinds), self.name
        )
        return handle

    def step(
        self,
        inputs: Kinds,
        outputs: Optional[Kinds] = None,
        name: Optional[str] = None,
    ) -> Callable[[StepHandler], StepHandler]:
        """Decorator form of :meth:`add_step`; returns the handler unchanged."""

        def register(handler: StepHandler) -> StepHandler:
            self.add_step(inputs, handler, outputs=outputs, name=name)
            return handler

        return register

    def has_step(self, step: Union[StepHandle, StepHandler]) -> bool:
        if isinstance(step, StepHandle):
            return step in self._handles
        return self._lookup(step) is not None

    def get_step(self, handle: StepHandle) -> Step:
        try:
            return self._handles[handle]
        except KeyError:
            raise KeyError(f"{handle!r} is not registered in '{self.name}'") from None

    @property
    def steps(self) -> Tuple[Step, ...]:
        return tuple(self._steps)

    def run(
        self,
        start: Any = None,
        *,
        timeout: Optional[float] = None,
        verbose: Optional[bool] = None,
        strict: Optional[bool] = None,
        validate_outputs: Optional[bool] = None,
        context_factory: Optional[Callable[[ContextParams], Any]] = None,
    ) -> RunHandle:
        """Start a run seeded with ``start`` (a payload or a start event)."""
        try:
            options = RunOptions(
                start=start,
                timeout=timeout,
                verbose=verbose,
                strict=strict,
                validate_outputs=validate_outputs,
                context_factory=context_factory,
            )
        except ValidationError as exc:
            raise WorkflowValidationError(str(exc)) from exc
        return self.run_with(options)

    def run_with(self, options: RunOptions) -> RunHandle:
        """Start a run described by a :class:`RunOptions` object."""
        start_event = as_start_event(options.start)
        timeout = _first(options.timeout, self.timeout, self.settings.timeout)
        verbose = bool(_first(options.verbose, self.verbose, self.settings.verbose))
        strict = bool(_first(options.strict, self.strict, self.settings.strict))
        validate_outputs = bool(
            _first(options.validate_outputs, self.validate_outputs, self.settings.validate_outputs)
        )

        state = RunState(run_id=uuid.uuid4().hex, start_event=start_event)
        factory = options.context_factory or Context
        context = factory(
            ContextParams(state=state, workflow_name=self.name, verbose=verbose, timeout=timeout)
        )
        if not isinstance(context, RunContext):
            raise WorkflowValidationError(
                f"Context factory {handler_name(factory)} produced {type(context).__name__}, "
                "which does not provide the run context capabilities"
            )

        engine = ExecutionEngine(
            self.steps,
            state,
            context,
            workflow_name=self.name,
            timeout=timeout,
            verbose=verbose,
            strict=strict,
            validate_outputs=validate_outputs,
            metrics=self.metrics,
            tracer=self.tracer,
            event_logger=self.events,
        )
        return RunHandle(engine)

    def _index(self, handler: Any, handle: StepHandle) -> None:
        try:
            self._handler_index[handler] = handle
        except TypeError:
            # unhashable callables are tracked by identity
            self._handler_index[id(handler)] = handle

    def _lookup(self, handler: Any) -> Optional[StepHandle]:
        try:
            return self._handler_index.get(handler)
        except TypeError:
            handle = self._handler_index.get(id(handler))
            if handle is not None and self._handles[handle].handler is handler:
                return handle
            return None

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"<WorkflowDefinition {self.name} steps={len(self._steps)}>"


def define_workflow(name: Optional[str] = None, **options: Any) -> WorkflowDefinition:
    """Create an empty :class:`WorkflowDefinition`."""
    return WorkflowDefinition(name, **options)


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None
