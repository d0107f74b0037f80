"""Error kinds raised while running a state machine."""

from __future__ import annotations

import traceback
from typing import Any, Dict, Optional

from .constants import STATES_RUNTIME


def _format_trace(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


class StateMachineError(Exception):
    """Base error for everything that can stop or redirect a run.

    ``error`` is the name used in the ``Error`` field of error output and in
    ``ErrorEquals`` matching. ``retryable`` errors are eligible for Retry and
    Catch rules; the rest terminate the run immediately.
    """

    retryable = False

    def __init__(self, message: str, error: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error = error or type(self).__name__

    @property
    def error_type(self) -> str:
        return type(self).__name__

    @property
    def error_message(self) -> str:
        return self.message

    @property
    def trace(self) -> str:
        return _format_trace(self)


class TaskInvocationError(StateMachineError):
    """The invoked unit of work failed.

    Wraps the underlying exception and reports its name, message and trace.
    """

    retryable = True

    def __init__(
        self, message: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(
            message, error=type(cause).__name__ if cause is not None else None
        )
        self.cause = cause

    @property
    def error_type(self) -> str:
        origin = self.cause if self.cause is not None else self
        return type(origin).__name__

    @classmethod
    def wrap(cls, cause: BaseException) -> "TaskInvocationError":
        """Wrap an exception raised by a handler or service."""
        return cls(str(cause), cause=cause)

    @property
    def trace(self) -> str:
        return _format_trace(self.cause if self.cause is not None else self)


class UnknownServiceError(TaskInvocationError):
    """A Task names a service integration that is not registered."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"Unknown service integration '{resource}'")
        self.resource = resource


class HandlerNotFoundError(TaskInvocationError):
    """A Task names a handler that is not in the handler registry."""

    def __init__(self, handler: str) -> None:
        super().__init__(f"No handler registered for '{handler}'")
        self.handler = handler


class StateRuntimeError(StateMachineError):
    """An unexpected exception raised outside a Task's own work.

    Reported as ``States.Runtime``; never retried or caught.
    """

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause) or type(cause).__name__, error=STATES_RUNTIME)
        self.cause = cause

    @property
    def error_type(self) -> str:
        return type(self.cause).__name__

    @property
    def trace(self) -> str:
        return _format_trace(self.cause)


class PathError(StateMachineError):
    """Base class for path evaluation failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error=STATES_RUNTIME)


class PathSyntaxError(PathError):
    """A path expression could not be parsed."""


class InvalidInputPathError(PathError):
    """InputPath did not match anything in the state input."""


class InvalidParametersError(PathError):
    """A ``.$`` parameter referenced a path with no match."""


class InvalidResultPathError(PathError):
    """ResultPath cannot be written into the state input."""


class InvalidOutputPathError(PathError):
    """OutputPath did not match anything in the state output."""

    def __init__(self, state_name: Optional[str], path: str) -> None:
        super().__init__(
            f"An error occurred while executing the state '{state_name}'. "
            f"Invalid OutputPath '{path}': The Output path references an invalid value."
        )
        self.state_name = state_name
        self.path = path


class InvalidWaitTimeError(StateMachineError):
    """A Wait state's delay is not a usable number of seconds."""

    def __init__(self, state_name: str, value: Any) -> None:
        super().__init__(
            f"Specified wait time is not a number in state '{state_name}': {value!r}",
            error=STATES_RUNTIME,
        )
        self.state_name = state_name
        self.value = value


class UnsupportedStateTypeError(StateMachineError):
    """The run reached a state type the executor does not implement."""

    def __init__(self, state_name: str, state_type: str) -> None:
        if state_type == "Parallel":
            message = f"'Parallel' state type is not supported (state '{state_name}')"
        else:
            message = f"Invalid state type '{state_type}' (state '{state_name}')"
        super().__init__(message)
        self.state_name = state_name
        self.state_type = state_type


class StateNotFoundError(StateMachineError):
    """A transition names a state missing from the definition."""

    def __init__(self, state_name: Optional[str]) -> None:
        super().__init__(f"State '{state_name}' does not exist in the definition")
        self.state_name = state_name


class InvalidTransitionError(StateMachineError):
    """A non-terminal state has no ``Next`` to move to."""

    def __init__(self, state_name: str) -> None:
        super().__init__(
            f"State '{state_name}' has neither 'Next' nor 'End: true'"
        )
        self.state_name = state_name


class NoChoiceMatchedError(StateMachineError):
    """No Choice rule matched and the state has no ``Default``."""

    def __init__(self, state_name: str) -> None:
        super().__init__(
            f"No choice rule matched and no Default is set in state '{state_name}'",
            error="States.NoChoiceMatched",
        )
        self.state_name = state_name


class StateMachineDoesNotExist(Exception):
    """The requested state machine is not loaded."""


def to_error_output(error: StateMachineError) -> Dict[str, Any]:
    """Build the structured error value handed to Catch rules."""
    return {
        "Error": error.error,
        "Cause": {
            "errorType": error.error_type,
            "errorMessage": error.error_message,
            "trace": error.trace,
        },
    }
