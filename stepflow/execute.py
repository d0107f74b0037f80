"""State machine execution engine for stepflow."""

from __future__ import annotations

import asyncio
import copy
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .choice import ChoiceEvaluator, RuleChoiceEvaluator
from .constants import LOG_PREFIX
from .contracts import (
    ExecutionContext,
    ExecutionResult,
    ExecutionStatus,
    InvocationContext,
    State,
    StateMachine,
    StateType,
)
from .errors import (
    HandlerNotFoundError,
    InvalidTransitionError,
    InvalidWaitTimeError,
    NoChoiceMatchedError,
    StateMachineError,
    StateRuntimeError,
    TaskInvocationError,
    UnsupportedStateTypeError,
    to_error_output,
)
from .invoke import TaskInvoker
from .paths import (
    apply_input_path,
    apply_output_path,
    apply_parameters,
    apply_result_path,
    query,
)
from .utils.timestamps import parse_timestamp, seconds_until

logger = logging.getLogger(__name__)

# State types whose work produces a result merged through ResultPath
RESULT_TYPES = {StateType.TASK.value, StateType.PASS.value, StateType.PARALLEL.value}
IMPLEMENTED_TYPES = {
    StateType.TASK.value,
    StateType.PASS.value,
    StateType.WAIT.value,
    StateType.CHOICE.value,
    StateType.SUCCEED.value,
    StateType.FAIL.value,
}


@dataclass
class StepOutcome:
    """What happened after one state ran without raising."""

    output: Any = None
    next_state: Optional[str] = None
    terminal: bool = False
    failure: Optional[Dict[str, Any]] = None


def _to_seconds(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        try:
            seconds = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(seconds) or math.isinf(seconds):
        return None
    return seconds


class StateMachineExecutor:
    """Runs a state machine from its start state to a terminal state.

    Each state goes through InputPath, Parameters, its own work, ResultPath
    and OutputPath before the run moves to ``Next`` or stops. Failures of the
    work are retried and caught according to the state's ``Retry`` and
    ``Catch`` rules. Transitions and retries are iterations of one loop, so
    long or heavily retried runs do not grow the call stack.
    """

    def __init__(
        self,
        machine: StateMachine,
        invoker: TaskInvoker,
        choice_evaluator: Optional[ChoiceEvaluator] = None,
        provider: Optional[Dict[str, Any]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.machine = machine
        self._invoker = invoker
        self._choice = choice_evaluator or RuleChoiceEvaluator()
        self._provider = provider or {}
        self._sleep = sleep

    def create_context(
        self, input: Any = None, start_state: Optional[str] = None
    ) -> ExecutionContext:
        """Create the bookkeeping record for a new run."""
        return ExecutionContext(
            machine_name=self.machine.key,
            definition=self.machine.definition,
            current_state_name=start_state or self.machine.definition.start_at,
            input=input,
        )

    async def run(
        self,
        input: Any = None,
        start_state: Optional[str] = None,
        context: Optional[ExecutionContext] = None,
    ) -> ExecutionResult:
        """Run to completion and return the outcome.

        Errors never propagate out of this method; a failed run is reported
        through the returned :class:`ExecutionResult`.
        """
        context = context or self.create_context(input, start_state)
        logger.info(f"{LOG_PREFIX} Starting execution {context.execution_arn}")

        while True:
            try:
                state = context.current_state
                logger.info(f"{LOG_PREFIX} * * * * * {context.current_state_name} * * * * *")
                outcome = await self._run_state(context, state)
            except Exception as exc:
                # Only failures of the Task work itself are retryable
                error = (
                    exc if isinstance(exc, StateMachineError) else StateRuntimeError(exc)
                )
                if not error.retryable:
                    return self._finish_with_error(context, error)

                if self._should_retry(context, state, error):
                    continue

                rule = state.find_catch(error.error, error.retryable)
                if rule is None:
                    return self._finish_with_error(context, error)

                logger.info(
                    f"{LOG_PREFIX} Catch {error.error} in {context.current_state_name}, "
                    f"going to {rule.next}"
                )
                try:
                    recovered = apply_result_path(
                        context.input, rule.result_path, to_error_output(error)
                    )
                except StateMachineError as path_error:
                    return self._finish_with_error(context, path_error)
                context.advance(rule.next, recovered)
                continue

            if outcome.terminal:
                return self._finish(context, outcome)

            logger.debug(f"{LOG_PREFIX} output: {outcome.output}")
            context.advance(outcome.next_state, outcome.output)

    def _should_retry(
        self, context: ExecutionContext, state: State, error: StateMachineError
    ) -> bool:
        rule = state.find_retry(error.error, error.retryable)
        if rule is None:
            return False
        context.retry_count += 1
        if context.retry_count > rule.max_attempts:
            return False
        logger.info(
            f"{LOG_PREFIX} Retry {context.retry_count}/{rule.max_attempts} "
            f"of {context.current_state_name} after {error.error}"
        )
        return True

    async def _run_state(self, context: ExecutionContext, state: State) -> StepOutcome:
        name = context.current_state_name
        if state.type not in IMPLEMENTED_TYPES:
            raise UnsupportedStateTypeError(name, state.type)

        if state.type == StateType.FAIL.value:
            return StepOutcome(
                terminal=True,
                failure={"Error": state.error or "States.Fail", "Cause": state.cause},
            )

        # ResultPath merges into the input as it was before InputPath
        global_input = context.input
        effective = apply_input_path(global_input, state.declared("input_path"))
        effective = apply_parameters(
            effective, state.declared("parameters"), context.context_object()
        )
        logger.debug(f"{LOG_PREFIX} input: {effective}")

        if state.type == StateType.CHOICE.value:
            next_state = self._choice.evaluate(state, effective)
            if not next_state:
                raise NoChoiceMatchedError(name)
            logger.info(f"{LOG_PREFIX} Choice {name} -> {next_state}")
            return StepOutcome(output=global_input, next_state=next_state)

        result = await self._dispatch(context, state, effective)

        if state.type in RESULT_TYPES:
            data = apply_result_path(
                global_input,
                state.declared("result_path"),
                result if result is not None else {},
            )
        else:
            data = global_input
        output = apply_output_path(data, state.declared("output_path"), name)

        if state.is_terminal:
            return StepOutcome(output=output, terminal=True)
        if not state.next:
            raise InvalidTransitionError(name)
        return StepOutcome(output=output, next_state=state.next)

    async def _dispatch(self, context: ExecutionContext, state: State, payload: Any) -> Any:
        """Do the state's own work and return its raw result."""
        if state.type == StateType.TASK.value:
            return await self._run_task(context, state, payload)
        if state.type == StateType.PASS.value:
            if "result" in state.model_fields_set:
                return copy.deepcopy(state.result)
            return None
        if state.type == StateType.WAIT.value:
            seconds = self.wait_seconds(context.current_state_name, state, payload)
            logger.info(f"{LOG_PREFIX} Waiting {seconds}s in {context.current_state_name}")
            await self._sleep(seconds)
        return None

    async def _run_task(self, context: ExecutionContext, state: State, payload: Any) -> Any:
        invocation = InvocationContext(
            execution_arn=context.execution_arn,
            state_machine=context.machine_name,
            state_name=context.current_state_name,
            attempt=context.retry_count + 1,
            environment=dict(state.environment),
            provider=self._provider,
        )
        try:
            if self._invoker.is_service(state.resource):
                return await self._invoker.invoke_service(
                    state.resource, payload, invocation
                )

            handler = state.handler or state.resource
            if not handler:
                raise HandlerNotFoundError(str(handler))
            return await self._invoker.invoke_handler(handler, payload, invocation)
        except StateMachineError:
            raise
        except Exception as exc:
            raise TaskInvocationError.wrap(exc) from exc

    def wait_seconds(self, state_name: str, state: State, payload: Any) -> float:
        """Work out how long a Wait state suspends the run."""
        if state.seconds is not None:
            seconds = _to_seconds(state.seconds)
            if seconds is not None:
                return self._check_wait(state_name, seconds, state.seconds)

        if state.seconds_path:
            found = query(payload, state.seconds_path)
            value = found[0] if found else None
            seconds = _to_seconds(value)
            if seconds is None:
                raise InvalidWaitTimeError(state_name, value)
            return self._check_wait(state_name, seconds, value)

        if state.timestamp or state.timestamp_path:
            if state.timestamp:
                value = state.timestamp
            else:
                found = query(payload, state.timestamp_path)
                value = found[0] if found else None
            moment = parse_timestamp(value)
            if moment is None:
                raise InvalidWaitTimeError(state_name, value)
            return seconds_until(moment)

        if state.seconds is not None:
            raise InvalidWaitTimeError(state_name, state.seconds)
        return 0.0

    @staticmethod
    def _check_wait(state_name: str, seconds: float, value: Any) -> float:
        if seconds < 0:
            raise InvalidWaitTimeError(state_name, value)
        return seconds

    def _finish(self, context: ExecutionContext, outcome: StepOutcome) -> ExecutionResult:
        if outcome.failure is not None:
            context.status = ExecutionStatus.FAILED
            logger.error(f"{LOG_PREFIX} Fail state reached: {outcome.failure}")
        else:
            context.status = ExecutionStatus.SUCCEEDED
            logger.info(f"{LOG_PREFIX} State Machine Completed")
            logger.info(f"{LOG_PREFIX} output: {outcome.output}")
        return ExecutionResult(
            execution_arn=context.execution_arn,
            status=context.status,
            output=outcome.output,
            error=outcome.failure,
            last_state=context.current_state_name,
            last_input=context.input,
            start_date=context.start_date,
        )

    def _finish_with_error(
        self, context: ExecutionContext, error: StateMachineError
    ) -> ExecutionResult:
        if isinstance(error, UnsupportedStateTypeError):
            context.status = ExecutionStatus.UNSUPPORTED
        else:
            context.status = ExecutionStatus.FAILED
        error_output = to_error_output(error)
        logger.error(f"{LOG_PREFIX} Error: {error.error}: {error.error_message}")
        logger.error(f"{LOG_PREFIX} input: {context.input}")
        return ExecutionResult(
            execution_arn=context.execution_arn,
            status=context.status,
            error=error_output,
            last_state=context.current_state_name,
            last_input=context.input,
            start_date=context.start_date,
        )
