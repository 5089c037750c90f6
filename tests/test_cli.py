"""
Command line interface tests
"""
import itertools
import json
import textwrap

import pytest
from click.testing import CliRunner

from eventflow.cli import cli

_module_ids = itertools.count()

WORKFLOW_SOURCE = textwrap.dedent(
    """
    from eventflow import EventKind, StartEvent, StopEvent, define_workflow

    Shouted = EventKind("shouted")

    workflow = define_workflow("shout")


    @workflow.step(StartEvent, outputs=Shouted, name="shout")
    def shout(ctx, event):
        payload = event.payload
        if isinstance(payload, str):
            payload = payload.upper()
        return Shouted(payload)


    @workflow.step(Shouted, outputs=StopEvent, name="finish")
    async def finish(ctx, event):
        return StopEvent(event.payload)


    def build():
        return workflow


    broken = define_workflow("broken")
    not_a_workflow = 42
    """
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def module_name(tmp_path, monkeypatch):
    """Write the sample workflow module under a fresh name and make it importable"""
    name = f"cli_workflows_{next(_module_ids)}"
    (tmp_path / f"{name}.py").write_text(WORKFLOW_SOURCE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return name


def test_run_prints_result(runner, module_name):
    result = runner.invoke(cli, ["run", f"{module_name}:workflow", "--input", "hello"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output.strip()) == "HELLO"


def test_run_accepts_factory(runner, module_name):
    result = runner.invoke(cli, ["run", f"{module_name}:build", "--input", "hi"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == '"HI"'


def test_run_streams_events(runner, module_name):
    result = runner.invoke(cli, ["run", f"{module_name}:workflow", "--input", "x", "--stream"])

    assert result.exit_code == 0, result.output
    lines = result.output.strip().splitlines()
    assert lines == ["event: start", "event: shouted", "event: stop", '"X"']


def test_run_reads_yaml_input(runner, module_name, tmp_path):
    input_file = tmp_path / "input.yaml"
    input_file.write_text("question: what is eventflow?\ntop_k: 3\n", encoding="utf-8")

    result = runner.invoke(
        cli, ["run", f"{module_name}:workflow", "--input-file", str(input_file)]
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"question": "what is eventflow?", "top_k": 3}


def test_run_reads_json_input(runner, module_name, tmp_path):
    input_file = tmp_path / "input.json"
    input_file.write_text(json.dumps([1, 2, 3]), encoding="utf-8")

    result = runner.invoke(
        cli, ["run", f"{module_name}:workflow", "--input-file", str(input_file)]
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == [1, 2, 3]


def test_run_failure_exits_non_zero(runner, module_name):
    result = runner.invoke(cli, ["run", f"{module_name}:broken", "--input", "x"])

    assert result.exit_code == 1
    assert "without producing a stop event" in result.output


def test_run_rejects_invalid_timeout(runner, module_name):
    result = runner.invoke(
        cli, ["run", f"{module_name}:workflow", "--input", "x", "--timeout", "0"]
    )

    assert result.exit_code == 1
    assert "timeout" in result.output


@pytest.mark.parametrize(
    "target",
    ["no_colon", "missing_module_for_cli_tests:workflow", "{module}:nothing", "{module}:not_a_workflow"],
)
def test_bad_targets(runner, module_name, target):
    result = runner.invoke(cli, ["run", target.format(module=module_name)])

    assert result.exit_code != 0
    assert result.exception is None or isinstance(result.exception, SystemExit)


def test_steps_lists_registry(runner, module_name):
    result = runner.invoke(cli, ["steps", f"{module_name}:workflow"])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [
        "shout: 2 step(s)",
        "  shout: start -> shouted",
        "  finish: shouted -> stop",
    ]
