"""
Metrics, tracing and lifecycle logging
"""
import logging

import pytest

from eventflow import OutputValidationError, StartEvent, StopEvent, define_workflow
from eventflow.monitoring import (
    RUNS,
    STEP_DISPATCHES,
    STEP_DURATION,
    STEP_FAILURES,
    EventLogger,
    MetricsRecorder,
)


class TestMetricsRecorder:

    def test_counters(self):
        metrics = MetricsRecorder()
        metrics.inc("runs_total", {"status": "completed"})
        metrics.inc("runs_total", {"status": "completed"}, value=2)
        metrics.inc("runs_total", {"status": "failed"})

        assert metrics.get_counter("runs_total", {"status": "completed"}) == 3
        assert metrics.get_counter("runs_total", {"status": "failed"}) == 1
        assert metrics.get_counter("runs_total", {"status": "timed_out"}) == 0

    def test_label_order_does_not_matter(self):
        metrics = MetricsRecorder()
        metrics.inc("step_dispatches_total", {"workflow": "w", "step": "s"})

        assert metrics.get_counter("step_dispatches_total", {"step": "s", "workflow": "w"}) == 1

    def test_unlabelled_metrics(self):
        metrics = MetricsRecorder()
        metrics.inc("ticks")
        metrics.observe("latency", 0.5)
        metrics.observe("latency", 1.5)

        assert metrics.get_counter("ticks") == 1
        assert metrics.get_observations("latency") == [0.5, 1.5]
        assert metrics.get_observations("missing") == []
        assert "missing" not in metrics.histograms

    def test_step_helpers(self):
        metrics = MetricsRecorder()
        metrics.step_dispatched("w", "s")
        metrics.step_settled("w", "s", 0.25, ok=True)
        metrics.step_dispatched("w", "s")
        metrics.step_settled("w", "s", 0.75, ok=False)
        metrics.run_finished("w", "failed")

        labels = {"workflow": "w", "step": "s"}
        assert metrics.get_counter(STEP_DISPATCHES, labels) == 2
        assert metrics.get_counter(STEP_FAILURES, labels) == 1
        assert metrics.get_observations(STEP_DURATION, labels) == [0.25, 0.75]
        assert metrics.get_counter(RUNS, {"workflow": "w", "status": "failed"}) == 1


class TestRunMetrics:

    @pytest.mark.asyncio
    async def test_successful_run_is_counted(self, chain_workflow):
        await chain_workflow.run(1)
        await chain_workflow.run(2)

        metrics = chain_workflow.metrics
        for step in ("double", "finish"):
            labels = {"workflow": "chain", "step": step}
            assert metrics.get_counter("step_dispatches_total", labels) == 2
            assert metrics.get_counter("step_failures_total", labels) == 0
            assert len(metrics.get_observations("step_duration_seconds", labels)) == 2
        assert metrics.get_counter("runs_total", {"workflow": "chain", "status": "completed"}) == 2

    @pytest.mark.asyncio
    async def test_failed_run_is_counted(self):
        definition = define_workflow("failing")

        def broken(ctx, event):
            raise RuntimeError("boom")

        definition.add_step(StartEvent, broken, name="broken")
        with pytest.raises(Exception):
            await definition.run(None)

        metrics = definition.metrics
        labels = {"workflow": "failing", "step": "broken"}
        assert metrics.get_counter("step_failures_total", labels) == 1
        assert metrics.get_counter("runs_total", {"workflow": "failing", "status": "failed"}) == 1

    @pytest.mark.asyncio
    async def test_invalid_output_counts_as_step_failure(self):
        definition = define_workflow("restarting")
        definition.add_step(StartEvent, lambda ctx, event: StartEvent(None), name="restart")

        with pytest.raises(OutputValidationError):
            await definition.run(None)

        labels = {"workflow": "restarting", "step": "restart"}
        assert definition.metrics.get_counter(STEP_FAILURES, labels) == 1

    @pytest.mark.asyncio
    async def test_shared_recorder(self):
        shared = MetricsRecorder()
        definition = define_workflow("shared", metrics=shared)
        definition.add_step(StartEvent, lambda ctx, event: StopEvent(None), name="stop")

        await definition.run(None)

        assert definition.metrics is shared
        assert shared.get_counter("runs_total", {"workflow": "shared", "status": "completed"}) == 1


class TestLogging:

    def test_event_logger_attaches_payload(self, caplog):
        caplog.set_level(logging.INFO, logger="eventflow.events")

        EventLogger().log("run_started", run_id="abc", workflow="w")

        (record,) = caplog.records
        assert record.getMessage() == "run_started"
        assert record.run_id == "abc"
        assert record.workflow == "w"

    @pytest.mark.asyncio
    async def test_run_lifecycle_is_logged(self, caplog, chain_workflow):
        caplog.set_level(logging.INFO, logger="eventflow")

        handle = chain_workflow.run(1)
        await handle

        lifecycle = [r.getMessage() for r in caplog.records if r.name == "eventflow.events"]
        assert lifecycle == ["run_started", "run_completed"]
        assert all(
            r.run_id == handle.run_id for r in caplog.records if r.name == "eventflow.events"
        )

    @pytest.mark.asyncio
    async def test_verbose_dispatch_is_logged(self, caplog, chain_workflow):
        caplog.set_level(logging.INFO, logger="eventflow.engine")

        await chain_workflow.run(1, verbose=True)

        messages = [r.getMessage() for r in caplog.records if r.name == "eventflow.engine"]
        assert "[chain] cycle 1 dispatch double <- start" in messages
        assert "[chain] cycle 2 settle finish <- doubled -> stop" in messages

    @pytest.mark.asyncio
    async def test_failure_logged_as_warning(self, caplog):
        caplog.set_level(logging.INFO, logger="eventflow.events")
        definition = define_workflow("empty")

        with pytest.raises(Exception):
            await definition.run(None)

        (failed,) = [r for r in caplog.records if r.getMessage() == "run_failed"]
        assert failed.levelno == logging.WARNING
        assert "stop event" in failed.error
