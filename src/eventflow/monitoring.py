"""Logging, tracing and in-memory metrics for workflow runs."""
from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

STEP_DISPATCHES = "step_dispatches_total"
STEP_FAILURES = "step_failures_total"
STEP_DURATION = "step_duration_seconds"
RUNS = "runs_total"

LabelKey = Tuple[Tuple[str, str], ...]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _label_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


class MetricsRecorder:
    """Counters and duration samples shared by the runs of one definition.

    Series are keyed by metric name and label set; label order is ignored.
    The step and run helpers are what the engine calls, ``inc`` and
    ``observe`` stay available for steps that want their own series.
    """

    def __init__(self) -> None:
        self.counters: Dict[str, Dict[LabelKey, float]] = defaultdict(dict)
        self.histograms: Dict[str, Dict[LabelKey, List[float]]] = defaultdict(dict)

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        series = self.counters[name]
        key = _label_key(labels)
        series[key] = series.get(key, 0.0) + value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.histograms[name].setdefault(_label_key(labels), []).append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self.counters.get(name, {}).get(_label_key(labels), 0.0)

    def get_observations(self, name: str, labels: Optional[Dict[str, str]] = None) -> List[float]:
        return list(self.histograms.get(name, {}).get(_label_key(labels), []))

    def step_dispatched(self, workflow: str, step: str) -> None:
        self.inc(STEP_DISPATCHES, {"workflow": workflow, "step": step})

    def step_settled(self, workflow: str, step: str, duration: float, ok: bool) -> None:
        labels = {"workflow": workflow, "step": step}
        self.observe(STEP_DURATION, duration, labels)
        if not ok:
            self.inc(STEP_FAILURES, labels)

    def run_finished(self, workflow: str, status: str) -> None:
        self.inc(RUNS, {"workflow": workflow, "status": status})


class TracingManager:
    """Debug spans around step dispatches."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("eventflow.tracing")

    @contextmanager
    def step_span(self, step: str, **attrs: Any) -> Iterator[None]:
        start = time.monotonic()
        self.logger.debug("step %s started", step, extra={"span": f"step.{step}", **attrs})
        try:
            yield
        finally:
            self.logger.debug(
                "step %s finished",
                step,
                extra={"span": f"step.{step}", "duration": time.monotonic() - start, **attrs},
            )


class EventLogger:
    """Structured lifecycle logger for workflow runs."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("eventflow.events")

    def log(self, event: str, level: int = logging.INFO, **payload: Any) -> None:
        self.logger.log(level, event, extra=payload)

    def run_started(self, run_id: str, workflow: str) -> None:
        self.log("run_started", run_id=run_id, workflow=workflow)

    def run_finished(
        self,
        run_id: str,
        status: str,
        cycles: int,
        duration: float,
        error: Optional[BaseException] = None,
    ) -> None:
        if error is None:
            self.log("run_completed", run_id=run_id, cycles=cycles, duration=duration)
            return
        self.log(
            "run_timed_out" if status == "timed_out" else "run_failed",
            level=logging.WARNING,
            run_id=run_id,
            cycles=cycles,
            duration=duration,
            error=str(error),
        )
