"""
eventflow CLI
"""
import asyncio
import importlib
import json
from pathlib import Path

import click
import yaml

from .errors import WorkflowError
from .monitoring import configure_logging
from .settings import get_settings
from .workflow import WorkflowDefinition


def load_definition(target: str) -> WorkflowDefinition:
    """Import ``module:attribute`` and return the workflow definition it names."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(f"expected MODULE:ATTRIBUTE, got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise click.BadParameter(f"cannot import {module_name}: {exc}") from exc

    definition = module
    for part in attribute.split("."):
        definition = getattr(definition, part, None)
        if definition is None:
            raise click.BadParameter(f"{module_name} has no attribute {attribute}")
    if callable(definition) and not isinstance(definition, WorkflowDefinition):
        definition = definition()
    if not isinstance(definition, WorkflowDefinition):
        raise click.BadParameter(f"{target} is not a WorkflowDefinition")
    return definition


def load_input(text, input_file):
    if input_file:
        content = Path(input_file).read_text(encoding="utf-8")
        if input_file.endswith((".yaml", ".yml")):
            return yaml.safe_load(content)
        return json.loads(content)
    return text


@click.group()
@click.option("--log-level", default=None, help="Logging level (defaults to EVENTFLOW_LOG_LEVEL)")
def cli(log_level):
    """eventflow CLI"""
    configure_logging(log_level or get_settings().log_level)


@cli.command()
@click.argument("target")
@click.option("--input", "text", default=None, help="Start payload as a string")
@click.option("--input-file", type=click.Path(exists=True, dir_okay=False), help="YAML or JSON start payload")
@click.option("--timeout", type=float, default=None, help="Run deadline in seconds")
@click.option("--verbose", is_flag=True, help="Record and log the dispatch trace")
@click.option("--strict", is_flag=True, help="Fail on events no step accepts")
@click.option("--stream", is_flag=True, help="Print every dispatched event kind")
def run(target, text, input_file, timeout, verbose, strict, stream):
    """Run the workflow TARGET (module:attribute) and print its result"""
    definition = load_definition(target)
    payload = load_input(text, input_file)

    async def _run():
        handle = definition.run(
            payload, timeout=timeout, verbose=verbose or None, strict=strict or None
        )
        if stream:
            async for event in handle.stream_events():
                click.echo(f"event: {event.kind}")
        return await handle

    try:
        result = asyncio.run(_run())
    except WorkflowError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(result, ensure_ascii=False, default=str))


@cli.command()
@click.argument("target")
def steps(target):
    """List the steps registered in TARGET"""
    definition = load_definition(target)
    click.echo(f"{definition.name}: {len(definition)} step(s)")
    for step in definition.steps:
        outputs = ", ".join(sorted(step.output_kinds)) if step.output_kinds is not None else "?"
        click.echo(f"  {step.name}: {', '.join(step.input_kinds)} -> {outputs}")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
