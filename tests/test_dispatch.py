"""Execution dispatcher tests."""

import sys
import time
import types

import pytest

from stepflow import ExecutionDispatcher, StepflowConfig, load_state_machines
from stepflow.contracts import ExecutionStatus
from stepflow.errors import StateMachineDoesNotExist
from stepflow.transports.inmemory import InMemoryTransport

DOCUMENT = {
    "stateMachines": {
        "orderFlow": {
            "name": "OrderFlow",
            "definition": {
                "StartAt": "Validate",
                "States": {
                    "Validate": {
                        "Type": "Task",
                        "Resource": "validate",
                        "ResultPath": "$.valid",
                        "End": True,
                    }
                },
            },
        }
    }
}


@pytest.fixture
def machines():
    return load_state_machines(DOCUMENT)


@pytest.fixture
def dispatcher(machines, invoker, handlers):
    handlers.register("validate", lambda event, context: event.get("id", 0) > 0)
    return ExecutionDispatcher(machines, invoker)


@pytest.mark.asyncio
async def test_start_and_wait(dispatcher):
    """Starting returns immediately with an identifier that can be awaited."""
    response = await dispatcher.start_execution("orderFlow", {"id": 3})

    assert response.execution_arn == f"orderFlow-Validate-{response.start_date}"
    assert response.execution_arn in dispatcher.running()

    result = await dispatcher.wait(response.execution_arn)
    assert result.status == ExecutionStatus.SUCCEEDED
    assert result.output == {"id": 3, "valid": True}
    assert dispatcher.running() == []


@pytest.mark.asyncio
async def test_start_by_name_and_arn(dispatcher):
    by_name = await dispatcher.start_execution("OrderFlow", {"id": 1})
    by_arn = await dispatcher.start_execution_from_arn(
        "arn:aws:states:eu-west-1:123456789012:stateMachine:orderFlow", {"id": -1}
    )

    assert (await dispatcher.wait(by_name.execution_arn)).output["valid"] is True
    assert (await dispatcher.wait(by_arn.execution_arn)).output["valid"] is False


@pytest.mark.asyncio
async def test_start_state_override(dispatcher):
    response = await dispatcher.start_execution("orderFlow", {"id": 1}, "Validate")
    assert response.execution_arn.startswith("orderFlow-Validate-")
    await dispatcher.wait(response.execution_arn)


@pytest.mark.asyncio
async def test_unknown_machine_and_run(dispatcher):
    with pytest.raises(StateMachineDoesNotExist):
        await dispatcher.start_execution("missing", {})
    with pytest.raises(KeyError):
        await dispatcher.wait("missing-Start-0")


@pytest.mark.asyncio
async def test_from_config_loads_handlers(machines, monkeypatch):
    module = types.ModuleType("dispatch_handlers")
    module.validate = lambda event, context: context.provider["strict"]
    monkeypatch.setitem(sys.modules, "dispatch_handlers", module)

    config = StepflowConfig(
        handlers={"validate": "dispatch_handlers:validate"},
        provider={"strict": "yes"},
    )
    dispatcher = ExecutionDispatcher.from_config(
        machines, config, transport=InMemoryTransport()
    )
    response = await dispatcher.start_execution("orderFlow", {"id": 1})
    result = await dispatcher.wait(response.execution_arn)

    assert result.output == {"id": 1, "valid": "yes"}


@pytest.mark.asyncio
async def test_runs_started_in_the_same_millisecond_stay_apart(dispatcher, monkeypatch):
    monkeypatch.setattr(time, "time", lambda: 1700000000.0)

    first = await dispatcher.start_execution("orderFlow", {"id": 1})
    second = await dispatcher.start_execution("orderFlow", {"id": -1})

    assert first.execution_arn == "orderFlow-Validate-1700000000000"
    assert second.execution_arn == "orderFlow-Validate-1700000000000-2"
    assert (await dispatcher.wait(first.execution_arn)).output == {"id": 1, "valid": True}
    assert (await dispatcher.wait(second.execution_arn)).output == {"id": -1, "valid": False}


@pytest.mark.asyncio
async def test_wait_releases_finished_run(dispatcher):
    response = await dispatcher.start_execution("orderFlow", {"id": 1})
    await dispatcher.wait(response.execution_arn)

    with pytest.raises(KeyError):
        await dispatcher.wait(response.execution_arn)
