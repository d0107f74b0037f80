"""stepflow: a local interpreter for Amazon States Language state machines."""

from .choice import ChoiceEvaluator, RuleChoiceEvaluator
from .config import StepflowConfig, load_config
from .contracts import (
    Definition,
    ExecutionContext,
    ExecutionResult,
    ExecutionStatus,
    InvocationContext,
    StartExecutionResponse,
    State,
    StateMachine,
    load_state_machines,
    load_state_machines_file,
)
from .dispatch import ExecutionDispatcher
from .execute import StateMachineExecutor
from .invoke import DefaultTaskInvoker, HandlerRegistry, TaskInvoker
from .services import ServiceRegistry, default_services
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ChoiceEvaluator",
    "DefaultTaskInvoker",
    "Definition",
    "ExecutionContext",
    "ExecutionDispatcher",
    "ExecutionResult",
    "ExecutionStatus",
    "HandlerRegistry",
    "InvocationContext",
    "RuleChoiceEvaluator",
    "ServiceRegistry",
    "StartExecutionResponse",
    "State",
    "StateMachine",
    "StateMachineExecutor",
    "StepflowConfig",
    "TaskInvoker",
    "default_services",
    "get_transport",
    "load_config",
    "load_state_machines",
    "load_state_machines_file",
]
