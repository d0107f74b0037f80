"""Core data contracts for stepflow state machines."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_MAX_ATTEMPTS, STATES_ALL, STATES_TASK_FAILED
from .errors import StateNotFoundError
from .paths import OMITTED

logger = logging.getLogger(__name__)


class StateType(str, Enum):
    TASK = "Task"
    PASS = "Pass"
    WAIT = "Wait"
    CHOICE = "Choice"
    SUCCEED = "Succeed"
    FAIL = "Fail"
    PARALLEL = "Parallel"


class ExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    UNSUPPORTED = "UNSUPPORTED"


class _AslModel(BaseModel):
    """Base for models read from definition documents (PascalCase keys)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


def _matches_error(error_equals: Optional[List[str]], error: str, retryable: bool) -> bool:
    if error_equals is None:
        return True
    if STATES_ALL in error_equals or error in error_equals:
        return True
    return retryable and STATES_TASK_FAILED in error_equals


class RetryRule(_AslModel):
    """One entry of a state's ``Retry`` list."""

    error_equals: Optional[List[str]] = Field(default=None, alias="ErrorEquals")
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, alias="MaxAttempts")
    # Accepted for compatibility; retries are immediate.
    interval_seconds: Optional[float] = Field(default=None, alias="IntervalSeconds")
    backoff_rate: Optional[float] = Field(default=None, alias="BackoffRate")

    def matches(self, error: str, retryable: bool = True) -> bool:
        """Return ``True`` if this rule applies to ``error``."""
        return _matches_error(self.error_equals, error, retryable)


class CatchRule(_AslModel):
    """One entry of a state's ``Catch`` list."""

    error_equals: Optional[List[str]] = Field(default=None, alias="ErrorEquals")
    next: str = Field(alias="Next")
    result_path: Optional[str] = Field(default="$", alias="ResultPath")

    def matches(self, error: str, retryable: bool = True) -> bool:
        return _matches_error(self.error_equals, error, retryable)


class State(_AslModel):
    """A single node of a state machine definition.

    Only the fields relevant to the state's ``Type`` are used. Unknown fields
    are kept so that definitions written for other tools still load.
    """

    type: str = Field(alias="Type")
    comment: Optional[str] = Field(default=None, alias="Comment")

    input_path: Optional[str] = Field(default="$", alias="InputPath")
    parameters: Optional[Any] = Field(default=None, alias="Parameters")
    result_path: Optional[str] = Field(default="$", alias="ResultPath")
    output_path: Optional[str] = Field(default="$", alias="OutputPath")

    next: Optional[str] = Field(default=None, alias="Next")
    end: bool = Field(default=False, alias="End")
    retry: Optional[List[RetryRule]] = Field(default=None, alias="Retry")
    catch: Optional[List[CatchRule]] = Field(default=None, alias="Catch")

    # Task
    resource: Optional[str] = Field(default=None, alias="Resource")
    handler: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)

    # Pass
    result: Any = Field(default=None, alias="Result")

    # Wait
    seconds: Any = Field(default=None, alias="Seconds")
    seconds_path: Optional[str] = Field(default=None, alias="SecondsPath")
    timestamp: Optional[str] = Field(default=None, alias="Timestamp")
    timestamp_path: Optional[str] = Field(default=None, alias="TimestampPath")

    # Choice
    choices: Optional[List[Dict[str, Any]]] = Field(default=None, alias="Choices")
    default: Optional[str] = Field(default=None, alias="Default")

    # Fail
    error: Optional[str] = Field(default=None, alias="Error")
    cause: Optional[str] = Field(default=None, alias="Cause")

    # Parallel
    branches: Optional[List[Dict[str, Any]]] = Field(default=None, alias="Branches")

    def declared(self, field_name: str) -> Any:
        """Return the field value, or ``OMITTED`` if the definition left it out."""
        if field_name in self.model_fields_set:
            return getattr(self, field_name)
        return OMITTED

    @property
    def is_terminal(self) -> bool:
        return self.type in (StateType.SUCCEED.value, StateType.FAIL.value) or self.end

    def find_retry(self, error: str, retryable: bool = True) -> Optional[RetryRule]:
        """Return the first Retry rule that applies to ``error``."""
        for rule in self.retry or []:
            if rule.matches(error, retryable):
                return rule
        return None

    def find_catch(self, error: str, retryable: bool = True) -> Optional[CatchRule]:
        """Return the first Catch rule that applies to ``error``."""
        for rule in self.catch or []:
            if rule.matches(error, retryable):
                return rule
        return None


class Definition(_AslModel):
    """``StartAt`` plus the named states of a machine."""

    start_at: str = Field(alias="StartAt")
    states: Dict[str, State] = Field(alias="States")
    comment: Optional[str] = Field(default=None, alias="Comment")

    def get_state(self, name: Optional[str]) -> State:
        """Look up a state, failing at the point of transition if missing."""
        if name is None or name not in self.states:
            raise StateNotFoundError(name)
        return self.states[name]


class StateMachine(BaseModel):
    """A named definition as found in a definition document."""

    key: str
    name: str
    definition: Definition


class InvocationContext(BaseModel):
    """Per-invocation settings handed to handlers and services.

    Carries the state's ``environment`` overrides explicitly so that
    concurrent runs never share them through ``os.environ``.
    """

    execution_arn: str
    state_machine: str
    state_name: str
    attempt: int = 1
    environment: Dict[str, str] = Field(default_factory=dict)
    provider: Dict[str, Any] = Field(default_factory=dict)


def _now_millis() -> int:
    return int(time.time() * 1000)


class ExecutionContext(BaseModel):
    """Bookkeeping for one run; owned by exactly one executor."""

    machine_name: str
    definition: Definition
    current_state_name: str
    input: Any = None
    retry_count: int = 0
    start_date: int = Field(default_factory=_now_millis)
    execution_arn: str = ""
    status: ExecutionStatus = ExecutionStatus.RUNNING

    def model_post_init(self, __context: Any) -> None:
        if not self.execution_arn:
            # Not unique for two runs started within the same millisecond.
            self.execution_arn = (
                f"{self.machine_name}-{self.current_state_name}-{self.start_date}"
            )

    @property
    def current_state(self) -> State:
        return self.definition.get_state(self.current_state_name)

    def advance(self, next_state: str, output: Any) -> None:
        """Move to ``next_state`` with ``output`` as its input."""
        self.current_state_name = next_state
        self.input = output
        self.retry_count = 0

    def context_object(self) -> Dict[str, Any]:
        """Return the value addressed by ``$$`` paths."""
        started = datetime.fromtimestamp(self.start_date / 1000, tz=timezone.utc)
        return {
            "Execution": {
                "Id": self.execution_arn,
                "Name": self.execution_arn,
                "StartTime": started.isoformat(),
            },
            "State": {
                "Name": self.current_state_name,
                "RetryCount": self.retry_count,
            },
            "StateMachine": {"Name": self.machine_name},
        }


class ExecutionResult(BaseModel):
    """Outcome of a finished run."""

    execution_arn: str
    status: ExecutionStatus
    output: Any = None
    error: Optional[Dict[str, Any]] = None
    last_state: Optional[str] = None
    last_input: Any = None
    start_date: int
    stop_date: int = Field(default_factory=_now_millis)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED


class StartExecutionResponse(BaseModel):
    """Returned to the caller as soon as a run is scheduled."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: int = Field(alias="startDate")
    execution_arn: str = Field(alias="executionArn")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def load_state_machines(document: Dict[str, Any]) -> Dict[str, StateMachine]:
    """Read state machines from a definition document.

    Accepts ``{"<machine>": {"definition": {...}}}`` as well as documents
    that nest that mapping under ``stateMachines`` or
    ``stepFunctions.stateMachines``.
    """
    if "stepFunctions" in document:
        document = document["stepFunctions"] or {}
    if "stateMachines" in document:
        document = document["stateMachines"] or {}

    machines: Dict[str, StateMachine] = {}
    for key, machine in document.items():
        if not isinstance(machine, dict) or "definition" not in machine:
            logger.debug(f"Skipping '{key}': no state machine definition")
            continue
        machines[key] = StateMachine(
            key=key,
            name=machine.get("name") or key,
            definition=Definition.model_validate(machine["definition"]),
        )
    return machines


def load_state_machines_file(path: Union[str, Path]) -> Dict[str, StateMachine]:
    """Load state machines from a JSON or YAML file."""
    with open(path) as f:
        document = yaml.safe_load(f) or {}
    return load_state_machines(document)


class QueueMessage(BaseModel):
    """Message produced by the queue service integration."""

    message_id: str
    queue_url: str
    body: str
    md5_of_body: str
    delay_seconds: Optional[int] = None
    message_group_id: Optional[str] = None
    message_deduplication_id: Optional[str] = None
    message_attributes: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "QueueMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)
