"""Execution dispatcher for stepflow."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .choice import ChoiceEvaluator
from .config import StepflowConfig, load_config
from .contracts import ExecutionResult, StartExecutionResponse, StateMachine
from .errors import StateMachineDoesNotExist
from .execute import StateMachineExecutor
from .invoke import DefaultTaskInvoker, HandlerRegistry, TaskInvoker
from .services import default_services
from .transports import BaseTransport, get_transport

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """Starts runs of loaded state machines in the background."""

    def __init__(
        self,
        machines: Dict[str, StateMachine],
        invoker: TaskInvoker,
        choice_evaluator: Optional[ChoiceEvaluator] = None,
        provider: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._machines = machines
        self._invoker = invoker
        self._choice = choice_evaluator
        self._provider = provider or {}
        self._runs: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_config(
        cls,
        machines: Dict[str, StateMachine],
        config: Optional[StepflowConfig] = None,
        handlers: Optional[HandlerRegistry] = None,
        transport: Optional[BaseTransport] = None,
    ) -> "ExecutionDispatcher":
        """Wire handlers, services and transport from configuration."""
        config = config or load_config()
        handlers = handlers or HandlerRegistry()
        handlers.load_handlers(config.handlers)
        transport = transport or get_transport(config=config)
        invoker = DefaultTaskInvoker(
            handlers=handlers,
            services=default_services(transport),
            service_resources=config.services,
        )
        return cls(machines, invoker, provider=config.provider)

    def get_machine(self, machine_name: str) -> StateMachine:
        """Find a machine by its document key or its ``name``."""
        if machine_name in self._machines:
            return self._machines[machine_name]
        for machine in self._machines.values():
            if machine.name == machine_name:
                return machine
        raise StateMachineDoesNotExist(f"State machine '{machine_name}' does not exist")

    async def start_execution(
        self,
        machine_name: str,
        input: Any = None,
        start_state: Optional[str] = None,
    ) -> StartExecutionResponse:
        """Schedule a run and return without waiting for it.

        Args:
            machine_name: Key or name of the state machine to run.
            input: JSON value handed to the first state.
            start_state: State to begin at instead of ``StartAt``.

        Returns:
            The run's start timestamp and execution identifier.
        """
        machine = self.get_machine(machine_name)
        executor = StateMachineExecutor(
            machine,
            self._invoker,
            choice_evaluator=self._choice,
            provider=self._provider,
        )
        context = executor.create_context(input, start_state)
        context.execution_arn = self._unique_arn(context.execution_arn)
        self._runs[context.execution_arn] = asyncio.create_task(
            executor.run(context=context)
        )
        logger.info(
            f"Started execution {context.execution_arn} of {machine.key} "
            f"at {context.current_state_name}"
        )
        return StartExecutionResponse(
            start_date=context.start_date, execution_arn=context.execution_arn
        )

    async def start_execution_from_arn(
        self, state_machine_arn: str, input: Any = None
    ) -> StartExecutionResponse:
        """Start a run for ``arn:...:stateMachine:<name>``."""
        return await self.start_execution(state_machine_arn.split(":")[-1], input)

    def _unique_arn(self, execution_arn: str) -> str:
        # Runs of one machine started in the same millisecond share a base id
        candidate, suffix = execution_arn, 1
        while candidate in self._runs:
            suffix += 1
            candidate = f"{execution_arn}-{suffix}"
        return candidate

    async def wait(self, execution_arn: str) -> ExecutionResult:
        """Wait for a started run to finish and return its outcome.

        The run is forgotten once its result has been returned.
        """
        task = self._runs.get(execution_arn)
        if task is None:
            raise KeyError(f"Unknown execution '{execution_arn}'")
        try:
            return await task
        finally:
            if task.done():
                self._runs.pop(execution_arn, None)

    def running(self) -> List[str]:
        """Identifiers of runs that have not finished yet."""
        return [arn for arn, task in self._runs.items() if not task.done()]
