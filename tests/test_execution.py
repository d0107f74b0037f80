"""End-to-end tests for the state machine executor."""

import asyncio

import pytest

from stepflow.contracts import ExecutionStatus

SUCCEED = {"Type": "Succeed"}


class FlakyHandler:
    """Fails ``failures`` times with ``error`` and then returns ``result``."""

    def __init__(self, failures, result=None, error=RuntimeError):
        self.failures = failures
        self.result = result
        self.error = error
        self.attempts = []

    def __call__(self, event, context):
        self.attempts.append(context.attempt)
        if len(self.attempts) <= self.failures:
            raise self.error(f"failure {len(self.attempts)}")
        return self.result


@pytest.mark.asyncio
async def test_pass_result_replaces_input(make_executor):
    executor = make_executor(
        {"Only": {"Type": "Pass", "Result": {"ok": True}, "End": True}}, "Only"
    )
    result = await executor.run({"x": 1})

    assert result.status == ExecutionStatus.SUCCEEDED
    assert result.succeeded
    assert result.output == {"ok": True}
    assert result.last_state == "Only"


@pytest.mark.asyncio
async def test_retry_until_success(make_executor, handlers):
    flaky = FlakyHandler(failures=2, result={"done": True})
    handlers.register("flaky", flaky)
    executor = make_executor(
        {
            "Work": {
                "Type": "Task",
                "Resource": "flaky",
                "Retry": [{"MaxAttempts": 3}],
                "End": True,
            }
        },
        "Work",
    )
    result = await executor.run({"in": 1})

    assert result.succeeded
    assert result.output == {"done": True}
    assert flaky.attempts == [1, 2, 3]


@pytest.mark.asyncio
async def test_catch_merges_error_into_original_input(make_executor, handlers):
    handlers.register("broken", FlakyHandler(failures=10, error=ValueError))
    executor = make_executor(
        {
            "Work": {
                "Type": "Task",
                "Resource": "broken",
                "Catch": [{"ErrorEquals": ["States.ALL"], "Next": "HandleError", "ResultPath": "$.error"}],
                "Next": "Unreachable",
            },
            "Unreachable": SUCCEED,
            "HandleError": SUCCEED,
        },
        "Work",
    )
    result = await executor.run({"a": 1})

    assert result.succeeded
    assert result.last_state == "HandleError"
    assert result.output["a"] == 1
    error = result.output["error"]
    assert error["Error"] == "ValueError"
    assert error["Cause"]["errorType"] == "ValueError"
    assert error["Cause"]["errorMessage"] == "failure 1"
    assert "ValueError" in error["Cause"]["trace"]


@pytest.mark.asyncio
async def test_wait_passes_input_through(make_executor):
    executor = make_executor(
        {"Pause": {"Type": "Wait", "Seconds": 0.001, "End": True}},
        "Pause",
        sleep=asyncio.sleep,
    )
    result = await executor.run({"keep": [1, 2]})

    assert result.succeeded
    assert result.output == {"keep": [1, 2]}


class FixedChoice:
    def __init__(self, target):
        self.target = target
        self.seen = []

    def evaluate(self, state, input):
        self.seen.append(input)
        return self.target


@pytest.mark.asyncio
async def test_choice_goes_to_evaluated_state(make_executor):
    choice = FixedChoice("StateB")
    executor = make_executor(
        {
            "Decide": {
                "Type": "Choice",
                "InputPath": "$.payload",
                "OutputPath": "$.not.there",
                "Choices": [],
                "Default": "StateA",
            },
            "StateA": SUCCEED,
            "StateB": SUCCEED,
        },
        "Decide",
        choice_evaluator=choice,
    )
    result = await executor.run({"payload": {"n": 1}})

    assert result.succeeded
    assert result.last_state == "StateB"
    assert result.output == {"payload": {"n": 1}}
    assert choice.seen == [{"n": 1}]


@pytest.mark.asyncio
async def test_choice_rules_with_default(make_executor):
    states = {
        "Decide": {
            "Type": "Choice",
            "Choices": [{"Variable": "$.size", "NumericGreaterThan": 10, "Next": "Big"}],
            "Default": "Small",
        },
        "Big": {"Type": "Pass", "Result": "big", "End": True},
        "Small": {"Type": "Pass", "Result": "small", "End": True},
    }
    assert (await make_executor(states, "Decide").run({"size": 11})).output == "big"
    assert (await make_executor(states, "Decide").run({"size": 1})).output == "small"


@pytest.mark.asyncio
async def test_choice_without_match_fails(make_executor):
    executor = make_executor(
        {
            "Decide": {
                "Type": "Choice",
                "Choices": [{"Variable": "$.n", "NumericEquals": 1, "Next": "One"}],
            },
            "One": SUCCEED,
        },
        "Decide",
    )
    result = await executor.run({"n": 2})

    assert result.status == ExecutionStatus.FAILED
    assert result.error["Error"] == "States.NoChoiceMatched"


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts(make_executor, handlers):
    flaky = FlakyHandler(failures=10)
    handlers.register("flaky", flaky)
    executor = make_executor(
        {
            "Work": {
                "Type": "Task",
                "Resource": "flaky",
                "Retry": [{"MaxAttempts": 2}],
                "End": True,
            }
        },
        "Work",
    )
    result = await executor.run({})

    assert result.status == ExecutionStatus.FAILED
    assert result.error["Error"] == "RuntimeError"
    assert result.error["Cause"]["errorMessage"] == "failure 3"
    assert flaky.attempts == [1, 2, 3]


@pytest.mark.asyncio
async def test_first_matching_retry_rule_applies(make_executor, handlers):
    key_errors = FlakyHandler(failures=10, error=KeyError)
    value_errors = FlakyHandler(failures=10, error=ValueError)
    handlers.register("keys", key_errors)
    handlers.register("values", value_errors)
    retry = [
        {"ErrorEquals": ["KeyError"], "MaxAttempts": 0},
        {"ErrorEquals": ["States.ALL"], "MaxAttempts": 2},
    ]

    await make_executor(
        {"Work": {"Type": "Task", "Resource": "keys", "Retry": retry, "End": True}},
        "Work",
    ).run({})
    await make_executor(
        {"Work": {"Type": "Task", "Resource": "values", "Retry": retry, "End": True}},
        "Work",
    ).run({})

    assert key_errors.attempts == [1]
    assert value_errors.attempts == [1, 2, 3]


@pytest.mark.asyncio
async def test_retry_count_resets_between_states(make_executor, handlers):
    first = FlakyHandler(failures=1, result={"step": 1})
    second = FlakyHandler(failures=1, result={"step": 2})
    handlers.register("first", first)
    handlers.register("second", second)
    retry = [{"MaxAttempts": 1}]
    executor = make_executor(
        {
            "One": {"Type": "Task", "Resource": "first", "Retry": retry, "Next": "Two"},
            "Two": {"Type": "Task", "Resource": "second", "Retry": retry, "End": True},
        },
        "One",
    )
    result = await executor.run({})

    assert result.output == {"step": 2}
    assert first.attempts == [1, 2]
    assert second.attempts == [1, 2]


@pytest.mark.asyncio
async def test_catch_selects_rule_by_error_name(make_executor, handlers):
    handlers.register("broken", FlakyHandler(failures=10, error=KeyError))
    executor = make_executor(
        {
            "Work": {
                "Type": "Task",
                "Resource": "broken",
                "Catch": [
                    {"ErrorEquals": ["ValueError"], "Next": "OnValue"},
                    {"ErrorEquals": ["KeyError"], "Next": "OnKey"},
                ],
                "End": True,
            },
            "OnValue": SUCCEED,
            "OnKey": SUCCEED,
        },
        "Work",
    )
    result = await executor.run({"a": 1})

    assert result.last_state == "OnKey"
    assert result.output["Error"] == "KeyError"


@pytest.mark.asyncio
async def test_path_errors_are_not_caught(make_executor, handlers):
    handlers.register("echo", lambda event, context: event)
    executor = make_executor(
        {
            "Work": {
                "Type": "Task",
                "Resource": "echo",
                "OutputPath": "$.missing",
                "Retry": [{"ErrorEquals": ["States.ALL"]}],
                "Catch": [{"ErrorEquals": ["States.ALL"], "Next": "Recover"}],
                "End": True,
            },
            "Recover": SUCCEED,
        },
        "Work",
    )
    result = await executor.run({"a": 1})

    assert result.status == ExecutionStatus.FAILED
    assert result.last_state == "Work"
    assert result.error["Error"] == "States.Runtime"
    assert "Invalid OutputPath '$.missing'" in result.error["Cause"]["errorMessage"]


@pytest.mark.asyncio
async def test_wait_seconds_path(make_executor, recording_sleep):
    executor = make_executor(
        {"Pause": {"Type": "Wait", "SecondsPath": "$.delay", "End": True}}, "Pause"
    )
    result = await executor.run({"delay": 5})

    assert result.succeeded
    assert recording_sleep.calls == [5.0]


@pytest.mark.asyncio
async def test_wait_timestamp_in_the_past(make_executor, recording_sleep):
    executor = make_executor(
        {"Pause": {"Type": "Wait", "Timestamp": "2000-01-01T00:00:00Z", "End": True}},
        "Pause",
    )
    result = await executor.run({})

    assert result.succeeded
    assert recording_sleep.calls == [0.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "wait,input",
    [
        ({"Seconds": "soon"}, {}),
        ({"Seconds": -1}, {}),
        ({"SecondsPath": "$.delay"}, {"delay": "abc"}),
        ({"TimestampPath": "$.at"}, {"at": "not a date"}),
    ],
)
async def test_invalid_wait_time_fails(make_executor, recording_sleep, wait, input):
    executor = make_executor({"Pause": {"Type": "Wait", "End": True, **wait}}, "Pause")
    result = await executor.run(input)

    assert result.status == ExecutionStatus.FAILED
    assert result.error["Error"] == "States.Runtime"
    assert result.error["Cause"]["errorType"] == "InvalidWaitTimeError"
    assert recording_sleep.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("state_type", ["Parallel", "Map"])
async def test_unsupported_state_types(make_executor, state_type):
    executor = make_executor(
        {
            "Start": {"Type": "Pass", "Next": "Fanout"},
            "Fanout": {"Type": state_type, "Branches": [], "End": True},
        },
        "Start",
    )
    result = await executor.run({})

    assert result.status == ExecutionStatus.UNSUPPORTED
    assert result.last_state == "Fanout"
    assert result.error["Error"] == "UnsupportedStateTypeError"


@pytest.mark.asyncio
async def test_fail_state(make_executor):
    executor = make_executor(
        {
            "Reject": {
                "Type": "Fail",
                "Error": "OrderRejected",
                "Cause": "out of stock",
                "InputPath": "$.missing",
            }
        },
        "Reject",
    )
    result = await executor.run({"id": 1})

    assert result.status == ExecutionStatus.FAILED
    assert result.error == {"Error": "OrderRejected", "Cause": "out of stock"}
    assert result.output is None


@pytest.mark.asyncio
async def test_transition_to_missing_state_fails(make_executor):
    executor = make_executor({"Start": {"Type": "Pass", "Next": "Nowhere"}}, "Start")
    result = await executor.run({})

    assert result.status == ExecutionStatus.FAILED
    assert result.error["Error"] == "StateNotFoundError"
    assert result.last_state == "Nowhere"


@pytest.mark.asyncio
async def test_state_without_next_or_end_fails(make_executor):
    result = await make_executor({"Start": {"Type": "Pass"}}, "Start").run({})

    assert result.status == ExecutionStatus.FAILED
    assert result.error["Error"] == "InvalidTransitionError"


@pytest.mark.asyncio
async def test_unknown_service_is_catchable(make_executor):
    executor = make_executor(
        {
            "Notify": {
                "Type": "Task",
                "Resource": "arn:aws:states:::sns:publish",
                "Catch": [{"ErrorEquals": ["States.TaskFailed"], "Next": "Fallback", "ResultPath": "$.failure"}],
                "End": True,
            },
            "Fallback": SUCCEED,
        },
        "Notify",
    )
    result = await executor.run({})

    assert result.last_state == "Fallback"
    assert result.output["failure"]["Error"] == "UnknownServiceError"


@pytest.mark.asyncio
async def test_missing_handler_fails_run(make_executor):
    executor = make_executor({"Work": {"Type": "Task", "Resource": "ghost", "End": True}}, "Work")
    result = await executor.run({})

    assert result.status == ExecutionStatus.FAILED
    assert result.error["Error"] == "HandlerNotFoundError"


@pytest.mark.asyncio
async def test_pass_without_result_outputs_empty_object(make_executor):
    result = await make_executor({"Only": {"Type": "Pass", "End": True}}, "Only").run({"x": 1})
    assert result.output == {}


@pytest.mark.asyncio
async def test_task_data_flow(make_executor, handlers):
    received = []

    @handlers.register("enrich")
    def enrich(event, context):
        received.append((event, context.environment))
        return {"total": event["amount"] * 2}

    executor = make_executor(
        {
            "Enrich": {
                "Type": "Task",
                "Resource": "enrich",
                "environment": {"TABLE": "orders"},
                "InputPath": "$.order",
                "Parameters": {"amount.$": "$.amount", "state.$": "$$.State.Name"},
                "ResultPath": "$.order.pricing",
                "OutputPath": "$.order",
                "End": True,
            }
        },
        "Enrich",
    )
    result = await executor.run({"order": {"amount": 4}, "other": True})

    assert received == [({"amount": 4, "state": "Enrich"}, {"TABLE": "orders"})]
    assert result.output == {"amount": 4, "pricing": {"total": 8}}


@pytest.mark.asyncio
async def test_null_paths(make_executor, handlers):
    seen = []
    handlers.register("spy", lambda event, context: seen.append(event) or "ignored")
    executor = make_executor(
        {
            "Spy": {
                "Type": "Task",
                "Resource": "spy",
                "InputPath": None,
                "ResultPath": None,
                "Next": "Drop",
            },
            "Drop": {"Type": "Pass", "OutputPath": None, "End": True},
        },
        "Spy",
    )
    result = await executor.run({"a": 1})

    assert seen == [{}]
    assert result.output == {}


@pytest.mark.asyncio
async def test_start_state_override(make_executor):
    executor = make_executor(
        {
            "First": {"Type": "Pass", "Result": "first", "End": True},
            "Second": {"Type": "Pass", "Result": "second", "End": True},
        },
        "First",
    )
    result = await executor.run({}, start_state="Second")
    assert result.output == "second"
    assert result.execution_arn.startswith("testMachine-Second-")


@pytest.mark.asyncio
async def test_long_runs_do_not_recurse(make_executor):
    states = {
        f"Step{i}": {"Type": "Pass", "ResultPath": None, "Next": f"Step{i + 1}"}
        for i in range(3000)
    }
    states["Step3000"] = SUCCEED
    result = await make_executor(states, "Step0").run({"a": 1})

    assert result.succeeded
    assert result.output == {"a": 1}


class BrokenChoice:
    def __init__(self):
        self.calls = 0

    def evaluate(self, state, input):
        self.calls += 1
        raise ValueError("Choice rule has no comparison")


@pytest.mark.asyncio
async def test_failures_outside_task_work_are_fatal(make_executor):
    choice = BrokenChoice()
    executor = make_executor(
        {
            "Decide": {
                "Type": "Choice",
                "Choices": [],
                "Retry": [{"ErrorEquals": ["States.ALL"], "MaxAttempts": 2}],
                "Catch": [{"ErrorEquals": ["States.ALL"], "Next": "Recover"}],
            },
            "Recover": SUCCEED,
        },
        "Decide",
        choice_evaluator=choice,
    )
    result = await executor.run({"a": 1})

    assert result.status == ExecutionStatus.FAILED
    assert result.last_state == "Decide"
    assert result.error["Error"] == "States.Runtime"
    assert result.error["Cause"]["errorType"] == "ValueError"
    assert choice.calls == 1
