"""Shared fixtures for stepflow tests."""

from typing import Any, Dict, List

import pytest

from stepflow import DefaultTaskInvoker, HandlerRegistry, StateMachineExecutor
from stepflow.contracts import Definition, StateMachine
from stepflow.services import default_services
from stepflow.transports.inmemory import InMemoryTransport


def build_machine(states: Dict[str, Any], start_at: str, key: str = "testMachine") -> StateMachine:
    return StateMachine(
        key=key,
        name=key,
        definition=Definition.model_validate({"StartAt": start_at, "States": states}),
    )


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def handlers() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def invoker(handlers, transport) -> DefaultTaskInvoker:
    return DefaultTaskInvoker(handlers=handlers, services=default_services(transport))


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_executor(invoker, recording_sleep):
    def _make(states: Dict[str, Any], start_at: str, **kwargs) -> StateMachineExecutor:
        kwargs.setdefault("sleep", recording_sleep)
        return StateMachineExecutor(build_machine(states, start_at), invoker, **kwargs)

    return _make
