"""Superstep driver for workflow runs."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import (
    Any,
    AsyncGenerator,
    AsyncIterator,
    Deque,
    Dict,
    Generator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from .context import RunState, RunStatus, TracePhase, TraceRecord
from .errors import (
    OutputValidationError,
    StepExecutionError,
    UnmatchedEventError,
    UnterminatedWorkflowError,
    WorkflowCancelledError,
    WorkflowError,
    WorkflowTimeoutError,
)
from .events import Event
from .monitoring import EventLogger, MetricsRecorder, TracingManager
from .steps import Step

LOGGER = logging.getLogger("eventflow.engine")

Dispatch = Tuple[Step, Event]


class EventStream:
    """Single-consumer, pull-based view of the events a run dispatches.

    Nothing is buffered until a consumer attaches. After that an event is
    held only until the consumer pulls it, and the buffer is released as
    soon as the consumer goes away.
    """

    def __init__(self) -> None:
        self._buffer: Deque[Event] = deque()
        self._closed = False
        self._signal: Optional[asyncio.Event] = None
        self._attached = False
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of published events the consumer has not pulled yet."""
        return len(self._buffer)

    def publish(self, event: Event) -> None:
        if self._closed or not self._attached or self._detached:
            return
        self._buffer.append(event)
        self._notify()

    def close(self) -> None:
        self._closed = True
        self._notify()

    def consume(self) -> AsyncGenerator[Event, None]:
        if self._attached:
            raise RuntimeError("Run events can only be consumed once")
        self._attached = True
        return self._iterate()

    def _notify(self) -> None:
        if self._signal is not None:
            self._signal.set()

    async def _iterate(self) -> AsyncGenerator[Event, None]:
        try:
            while True:
                if self._buffer:
                    yield self._buffer.popleft()
                    continue
                if self._closed:
                    return
                if self._signal is None:
                    self._signal = asyncio.Event()
                self._signal.clear()
                await self._signal.wait()
        finally:
            self._detached = True
            self._buffer.clear()


class ExecutionEngine:
    """Drives one run through barrier-synchronised cycles.

    Each cycle dispatches every (step, event) pair matched from the current
    queue concurrently and waits for all of them before the events they
    returned become the next queue. A stop event, a step failure or the
    deadline ends the run immediately; handlers still in flight are left to
    finish on their own and whatever they return is discarded.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        state: RunState,
        context: Any,
        *,
        workflow_name: str,
        timeout: Optional[float] = None,
        verbose: bool = False,
        strict: bool = False,
        validate_outputs: bool = False,
        metrics: Optional[MetricsRecorder] = None,
        tracer: Optional[TracingManager] = None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.steps = tuple(steps)
        self.state = state
        self.context = context
        self.workflow_name = workflow_name
        self.timeout = timeout
        self.verbose = verbose
        self.strict = strict
        self.validate_outputs = validate_outputs
        self.metrics = metrics or MetricsRecorder()
        self.tracer = tracer or TracingManager()
        self.events = event_logger or EventLogger()
        self.stream = EventStream()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def run(self) -> None:
        """Run to a terminal state. Only cancellation propagates out of here."""
        state = self.state
        self._loop = asyncio.get_running_loop()
        state.status = RunStatus.RUNNING
        state.started_at = time.monotonic()
        if self.timeout is not None:
            state.deadline = self._loop.time() + self.timeout
        state.queue = [state.start_event]
        self.events.run_started(state.run_id, self.workflow_name)
        try:
            while state.queue and not state.status.is_terminal:
                remaining = self._remaining()
                if remaining is not None and remaining <= 0:
                    self._time_out(set())
                    break
                await self._run_cycle()
            if not state.status.is_terminal:
                self._finalize(
                    RunStatus.FAILED,
                    error=UnterminatedWorkflowError(
                        f"Workflow '{self.workflow_name}' ran out of events after "
                        f"{state.cycle} cycle(s) without producing a stop event"
                    ),
                )
        except asyncio.CancelledError:
            self._finalize(
                RunStatus.FAILED,
                error=WorkflowCancelledError(f"Run {state.run_id} was cancelled"),
            )
            raise

    async def _run_cycle(self) -> None:
        state = self.state
        state.cycle += 1
        plan = self._plan(state.queue)
        if plan is None:
            return
        LOGGER.debug(
            "Run %s cycle %d: %d event(s), %d dispatch(es)",
            state.run_id, state.cycle, len(state.queue), len(plan),
        )

        tasks: Dict["asyncio.Task[List[Event]]", int] = {}
        for index, (step, event) in enumerate(plan):
            self._record(TracePhase.DISPATCH, event, step=step)
            tasks[asyncio.create_task(self._invoke(step, event))] = index

        outputs: List[List[Event]] = [[] for _ in plan]
        pending: Set["asyncio.Task[List[Event]]"] = set(tasks)
        while pending:
            try:
                done, pending = await asyncio.wait(
                    pending, timeout=self._remaining(), return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                self._abandon(pending)
                raise
            if not done:
                self._time_out(pending)
                return
            for task in sorted(done, key=tasks.__getitem__):
                step, event = plan[tasks[task]]
                error = self._task_error(task, step, event)
                if error is not None:
                    self._record(TracePhase.SETTLE, event, step=step, ok=False, error=error)
                    self._finalize(RunStatus.FAILED, error=error)
                    self._abandon(pending | (done - {task}))
                    return
                emitted = task.result()
                self._record(TracePhase.SETTLE, event, step=step, ok=True, emitted=emitted)
                stop = next((item for item in emitted if item.is_stop), None)
                if stop is not None:
                    self._finalize(RunStatus.COMPLETED, stop=stop)
                    self._abandon(pending | (done - {task}))
                    return
                outputs[tasks[task]] = emitted

        for emitted in outputs:
            state.next_queue.extend(emitted)
        state.queue, state.next_queue = state.next_queue, []

    def _plan(self, queue: List[Event]) -> Optional[List[Dispatch]]:
        plan: List[Dispatch] = []
        for event in queue:
            self.stream.publish(event)
            matched = [step for step in self.steps if step.accepts(event)]
            if not matched:
                if self.strict:
                    self._finalize(RunStatus.FAILED, error=UnmatchedEventError(event.kind))
                    return None
                LOGGER.debug("Dropping '%s' event: no step accepts it", event.kind)
                self._record(TracePhase.DROPPED, event)
            plan.extend((step, event) for step in matched)
        return plan

    async def _invoke(self, step: Step, event: Event) -> List[Event]:
        self.metrics.step_dispatched(self.workflow_name, step.name)
        start = time.monotonic()
        ok = False
        try:
            with self.tracer.step_span(
                step.name, run_id=self.state.run_id, event_kind=event.kind, cycle=self.state.cycle
            ):
                emitted = await step.invoke(self.context, event)
            step.check_outputs(emitted, self.validate_outputs)
            ok = True
        except OutputValidationError:
            raise
        except Exception as exc:
            raise StepExecutionError(step.name, event, exc) from exc
        finally:
            self.metrics.step_settled(self.workflow_name, step.name, time.monotonic() - start, ok)
        return emitted

    def _task_error(
        self, task: "asyncio.Task[List[Event]]", step: Step, event: Event
    ) -> Optional[BaseException]:
        if task.cancelled():
            return StepExecutionError(step.name, event, asyncio.CancelledError())
        return task.exception()

    def _remaining(self) -> Optional[float]:
        if self.state.deadline is None or self._loop is None:
            return None
        return max(self.state.deadline - self._loop.time(), 0.0)

    def _time_out(self, pending: Set["asyncio.Task[List[Event]]"]) -> None:
        self._finalize(RunStatus.TIMED_OUT, error=WorkflowTimeoutError(self.timeout or 0.0))
        self._abandon(pending)

    def _abandon(self, pending: Set["asyncio.Task[List[Event]]"]) -> None:
        for task in pending:
            task.add_done_callback(self._discard_late_result)

    def _discard_late_result(self, task: "asyncio.Task[List[Event]]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.debug("Run %s: ignoring late failure: %s", self.state.run_id, error)
        else:
            LOGGER.debug("Run %s: discarding late result of an abandoned step", self.state.run_id)

    def _record(
        self,
        phase: TracePhase,
        event: Event,
        step: Optional[Step] = None,
        ok: Optional[bool] = None,
        emitted: Sequence[Event] = (),
        error: Optional[BaseException] = None,
    ) -> None:
        if not self.verbose:
            return
        record = TraceRecord(
            cycle=self.state.cycle,
            phase=phase,
            event_kind=event.kind,
            step=step.name if step is not None else None,
            ok=ok,
            emitted=tuple(item.kind for item in emitted),
            error=str(error) if error is not None else None,
        )
        self.state.trace.append(record)
        LOGGER.info(
            "[%s] cycle %d %s %s <- %s%s",
            self.workflow_name,
            record.cycle,
            phase.value,
            record.step or "-",
            record.event_kind,
            f" -> {', '.join(record.emitted)}" if record.emitted else "",
        )

    def _finalize(
        self,
        status: RunStatus,
        stop: Optional[Event] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        state = self.state
        if state.status.is_terminal:
            return
        state.status = status
        state.queue = []
        state.next_queue = []
        state.finished_at = time.monotonic()
        duration = state.finished_at - (state.started_at or state.finished_at)
        self.metrics.run_finished(self.workflow_name, status.value)

        if status is RunStatus.COMPLETED and stop is not None:
            state.result = stop.payload
            self.stream.publish(stop)
        else:
            state.error = error
        self.events.run_finished(state.run_id, status.value, state.cycle, duration, state.error)
        self.stream.close()


class RunHandle:
    """Handle on a started run.

    Awaiting the handle yields the stop event's payload or raises the error
    that ended the run. Any number of callers may await it; cancelling one
    await leaves the run and the other awaiters alone. ``stream_events()``
    observes the run as it goes.
    """

    def __init__(self, engine: ExecutionEngine) -> None:
        self._engine = engine
        self._task: Optional["asyncio.Task[None]"] = None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self._start()

    def _start(self) -> "asyncio.Task[None]":
        if self._task is None:
            self._task = asyncio.create_task(self._engine.run())
        return self._task

    @property
    def run_id(self) -> str:
        return self._engine.state.run_id

    @property
    def context(self) -> Any:
        return self._engine.context

    @property
    def status(self) -> RunStatus:
        return self._engine.state.status

    @property
    def trace(self) -> Tuple[TraceRecord, ...]:
        return tuple(self._engine.state.trace)

    @property
    def cycles(self) -> int:
        return self._engine.state.cycle

    @property
    def error(self) -> Optional[BaseException]:
        return self._engine.state.error

    def done(self) -> bool:
        return self._engine.state.status.is_terminal

    async def result(self) -> Any:
        driver = self._start()
        try:
            await asyncio.shield(driver)
        except asyncio.CancelledError:
            # only this await was cancelled, the run goes on
            if not driver.done():
                raise
        state = self._engine.state
        if state.status is RunStatus.COMPLETED:
            return state.result
        if state.error is None:
            raise WorkflowError(
                f"Run {state.run_id} ended in state {state.status.value} without an error"
            )
        raise state.error

    def __await__(self) -> Generator[Any, None, Any]:
        return self.result().__await__()

    def stream_events(self) -> AsyncIterator[Event]:
        """Iterate over the events dispatched from now on, ending with the stop event if any.

        Only events published after this call are seen; a run that already
        finished yields nothing.
        """
        events = self._engine.stream.consume()
        return self._follow(events)

    async def _follow(self, events: AsyncGenerator[Event, None]) -> AsyncIterator[Event]:
        self._start()
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()

    def __repr__(self) -> str:
        return f"<RunHandle {self._engine.workflow_name} run={self.run_id} {self.status.value}>"
