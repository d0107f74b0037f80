"""Task invocation: the contract between the executor and the work it runs.

A Task state either names a service integration (its ``Resource`` is a known
service identifier) or a user handler. Both are resolved through registries
injected at construction, and both report failure the same way: by raising
:class:`~stepflow.errors.TaskInvocationError`.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Protocol

from .constants import SERVICE_RESOURCE_PREFIX
from .contracts import InvocationContext
from .errors import (
    HandlerNotFoundError,
    StateMachineError,
    TaskInvocationError,
    UnknownServiceError,
)
from .services import ServiceRegistry

logger = logging.getLogger(__name__)

Handler = Callable[[Any, InvocationContext], Any]


class TaskInvoker(Protocol):
    """Runs the work behind Task states."""

    def is_service(self, resource: Optional[str]) -> bool:
        """Return ``True`` if ``resource`` names a service integration."""

    async def invoke_service(
        self, resource: str, payload: Any, context: InvocationContext
    ) -> Any:
        """Call a service integration and return its result."""

    async def invoke_handler(
        self, handler: str, payload: Any, context: InvocationContext
    ) -> Any:
        """Call a registered handler and return its result."""


def import_handler(target: str) -> Handler:
    """Import ``"package.module:function"`` or ``"package.module.function"``."""
    if ":" in target:
        module_name, attr = target.split(":", 1)
    else:
        module_name, _, attr = target.rpartition(".")
    if not module_name or not attr:
        raise ValueError(f"Invalid handler path '{target}'")

    module = importlib.import_module(module_name)
    handler = getattr(module, attr, None)
    if handler is None or not callable(handler):
        raise ValueError(f"'{attr}' in module '{module_name}' is not callable")
    return handler


class HandlerRegistry:
    """Maps handler names to callables taking ``(event, context)``.

    Handlers may be plain functions, which run in a worker thread, or
    coroutine functions.
    """

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None) -> None:
        self._handlers: Dict[str, Handler] = dict(handlers or {})

    def register(self, name: str, handler: Optional[Handler] = None):
        """Register ``handler`` under ``name``; usable as a decorator."""
        if handler is None:

            def decorator(func: Handler) -> Handler:
                self._handlers[name] = func
                return func

            return decorator

        self._handlers[name] = handler
        return handler

    def load_handlers(self, mapping: Dict[str, str]) -> None:
        """Import and register every ``name -> import path`` entry."""
        for name, target in mapping.items():
            self._handlers[name] = import_handler(target)
            logger.debug(f"Registered handler {name} -> {target}")

    def get(self, name: str) -> Optional[Handler]:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)


def _is_async(handler: Handler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


class DefaultTaskInvoker:
    """Task invoker backed by a handler registry and a service registry."""

    def __init__(
        self,
        handlers: Optional[HandlerRegistry] = None,
        services: Optional[ServiceRegistry] = None,
        service_resources: Optional[Iterable[str]] = None,
    ) -> None:
        self.handlers = handlers or HandlerRegistry()
        self.services = services or ServiceRegistry()
        self._service_resources = set(service_resources or [])

    def is_service(self, resource: Optional[str]) -> bool:
        if not resource:
            return False
        return (
            resource in self._service_resources
            or resource in self.services
            or resource.startswith(SERVICE_RESOURCE_PREFIX)
        )

    async def invoke_service(
        self, resource: str, payload: Any, context: InvocationContext
    ) -> Any:
        service = self.services.get(resource)
        if service is None:
            raise UnknownServiceError(resource)
        try:
            return await service(payload, context)
        except StateMachineError:
            raise
        except Exception as exc:
            raise TaskInvocationError.wrap(exc) from exc

    async def invoke_handler(
        self, handler: str, payload: Any, context: InvocationContext
    ) -> Any:
        func = self.handlers.get(handler)
        if func is None:
            raise HandlerNotFoundError(handler)
        try:
            if _is_async(func):
                return await func(payload, context)
            result = await asyncio.to_thread(func, payload, context)
            if inspect.isawaitable(result):
                result = await result
            return result
        except StateMachineError:
            raise
        except Exception as exc:
            raise TaskInvocationError.wrap(exc) from exc
