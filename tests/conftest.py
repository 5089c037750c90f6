"""
Pytest configuration and shared fixtures
"""
import pytest

from eventflow import EventKind, StartEvent, StopEvent, WorkflowSettings, define_workflow
from eventflow.settings import set_settings


@pytest.fixture(autouse=True)
def default_settings():
    """Keep EVENTFLOW_* variables and .env files out of the tests"""
    set_settings(WorkflowSettings())
    yield
    set_settings(None)


@pytest.fixture
def workflow():
    """An empty workflow definition"""
    return define_workflow("test")


@pytest.fixture
def chain_workflow():
    """start -> doubled -> stop"""
    definition = define_workflow("chain")
    doubled = EventKind("doubled")

    async def double(ctx, event):
        return doubled(event.payload * 2)

    async def finish(ctx, event):
        return StopEvent(event.payload)

    definition.add_step(StartEvent, double, outputs=doubled, name="double")
    definition.add_step(doubled, finish, outputs=StopEvent, name="finish")
    return definition
