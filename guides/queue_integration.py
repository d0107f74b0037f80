"""Example sending a message through the sqs:sendMessage integration.

Set STEPFLOW_TRANSPORT=redis (or sqs) and read the queue from another shell
with ``stepflow queue receive orders``.
"""

import asyncio

from stepflow import ExecutionDispatcher, load_config, load_state_machines

DOCUMENT = {
    "notifyFlow": {
        "definition": {
            "StartAt": "Notify",
            "States": {
                "Notify": {
                    "Type": "Task",
                    "Resource": "arn:aws:states:::sqs:sendMessage",
                    "Parameters": {
                        "QueueUrl": "orders",
                        "MessageBody": {"orderId.$": "$.id", "startedBy.$": "$$.Execution.Id"},
                    },
                    "ResultPath": "$.message",
                    "End": True,
                }
            },
        }
    }
}


async def main():
    dispatcher = ExecutionDispatcher.from_config(load_state_machines(DOCUMENT), load_config())

    response = await dispatcher.start_execution("notifyFlow", {"id": "order-123"})
    print(f"Started {response.execution_arn}")

    result = await dispatcher.wait(response.execution_arn)
    print(f"{result.status.value}: {result.output}")


if __name__ == "__main__":
    asyncio.run(main())
