"""Shared constants for stepflow."""

LOG_PREFIX = "[stepflow]"

DEFAULT_MAX_ATTEMPTS = 3

SERVICE_RESOURCE_PREFIX = "arn:aws:states:::"
SQS_SEND_MESSAGE = "arn:aws:states:::sqs:sendMessage"

# Error names understood by Retry and Catch matchers
STATES_ALL = "States.ALL"
STATES_TASK_FAILED = "States.TaskFailed"
STATES_RUNTIME = "States.Runtime"
