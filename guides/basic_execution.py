"""Simple example showing a state machine run with in-process handlers."""

import asyncio

from stepflow import (
    DefaultTaskInvoker,
    HandlerRegistry,
    StateMachineExecutor,
    load_state_machines,
)

DOCUMENT = {
    "orderFlow": {
        "definition": {
            "StartAt": "ValidateOrder",
            "States": {
                "ValidateOrder": {
                    "Type": "Task",
                    "Resource": "validateOrder",
                    "ResultPath": "$.validation",
                    "Retry": [{"ErrorEquals": ["States.TaskFailed"], "MaxAttempts": 2}],
                    "Catch": [
                        {"ErrorEquals": ["States.ALL"], "Next": "Rejected", "ResultPath": "$.error"}
                    ],
                    "Next": "IsValid",
                },
                "IsValid": {
                    "Type": "Choice",
                    "Choices": [
                        {"Variable": "$.validation.ok", "BooleanEquals": True, "Next": "Approved"}
                    ],
                    "Default": "Rejected",
                },
                "Approved": {"Type": "Pass", "Result": {"status": "approved"}, "End": True},
                "Rejected": {"Type": "Fail", "Error": "OrderRejected", "Cause": "Validation failed"},
            },
        }
    }
}

handlers = HandlerRegistry()


@handlers.register("validateOrder")
def validate_order(event, context):
    return {"ok": event.get("quantity", 0) > 0, "attempt": context.attempt}


async def main():
    machine = load_state_machines(DOCUMENT)["orderFlow"]
    executor = StateMachineExecutor(machine, DefaultTaskInvoker(handlers=handlers))

    for order in ({"id": 1, "quantity": 3}, {"id": 2, "quantity": 0}):
        result = await executor.run(order)
        print(f"{result.execution_arn}: {result.status.value}")
        print(f"  output: {result.output}")
        print(f"  error:  {result.error}")


if __name__ == "__main__":
    asyncio.run(main())
