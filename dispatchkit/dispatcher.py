"""
Request dispatcher - drives one request through the dispatch states.

    MATCHING -> PRE_MIDDLEWARE -> ARGUMENT_BINDING -> INVOKING
             -> POST_MIDDLEWARE -> RESPONDING

Any state may move to ERROR; the exception is resolved through the
registry's exception handlers and handed to the response layer.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Any, List

from .controller.binder import bind_arguments
from .controller.metadata import RouteRule
from .faults import HandlerConfigurationError
from .handlers import resolve_exception
from .middleware import HANDLER_ID_PARAM, ROUTE_RULE_PARAM, MiddlewarePhase
from .registry import UNAVAILABLE, WorkerRegistry
from .request import Request
from .response import Response

logger = logging.getLogger("dispatchkit.dispatcher")

STATE_PARAM = "dispatch_state"


class DispatchState(str, Enum):
    MATCHING = "matching"
    PRE_MIDDLEWARE = "pre_middleware"
    ARGUMENT_BINDING = "argument_binding"
    INVOKING = "invoking"
    POST_MIDDLEWARE = "post_middleware"
    RESPONDING = "responding"
    ERROR = "error"


class RequestDispatcher:
    """
    Dispatches requests against one worker's registry.

    Example:
        ```python
        dispatcher = RequestDispatcher(WorkerRegistry.bootstrap(config))
        response = await dispatcher.dispatch(Request("GET", "/users/1"))
        ```
    """

    def __init__(self, registry: WorkerRegistry):
        self.registry = registry

    def _enter(self, request: Request, state: DispatchState) -> DispatchState:
        request.with_context_param(STATE_PARAM, state)
        return state

    async def dispatch(self, request: Request) -> Response:
        config = self.registry.config
        response = Response(
            gzip_enabled=config.gzip_output_enabled,
            accept_encoding=request.header("accept-encoding"),
            cors=config.cors,
            origin=request.header("origin"),
        )
        state = self._enter(request, DispatchState.MATCHING)

        try:
            if request.method == "OPTIONS":
                response.with_payload({"code": 200})
            else:
                match = self.registry.matcher.match(request.method, request.url)
                rule = match.rule
                request.path_variables = dict(match.params)
                request.with_context_param(ROUTE_RULE_PARAM, rule)
                request.with_context_param(HANDLER_ID_PARAM, rule.handler_id)

                state = self._enter(request, DispatchState.PRE_MIDDLEWARE)
                await self.registry.middleware.run(MiddlewarePhase.PRE, request, response)

                state = self._enter(request, DispatchState.ARGUMENT_BINDING)
                args = bind_arguments(rule, request)

                state = self._enter(request, DispatchState.INVOKING)
                result = await self._invoke(rule, args)
                response.with_payload(result)

                state = self._enter(request, DispatchState.POST_MIDDLEWARE)
                await self.registry.middleware.run(MiddlewarePhase.POST, request, response)
        except Exception as exc:
            logger.debug("%s %s failed during %s: %r", request.method, request.url, state.value, exc)
            self._enter(request, DispatchState.ERROR)
            response.with_payload(resolve_exception(exc, self.registry.exception_handlers))

        self._enter(request, DispatchState.RESPONDING)
        return response.render()

    async def _invoke(self, rule: RouteRule, args: List[Any]) -> Any:
        if rule.controller is None:
            raise HandlerConfigurationError(
                f"controller {rule.controller_ref} for handler {rule.handler_id} is not loaded",
                handler_id=rule.handler_id,
            )

        instance = self.registry.get_or_create_controller(rule.controller)
        if instance is UNAVAILABLE:
            raise HandlerConfigurationError(
                f"controller {rule.controller_ref} for handler {rule.handler_id} could not be constructed",
                handler_id=rule.handler_id,
            )

        method = getattr(instance, rule.method_name, None)
        if not callable(method):
            raise HandlerConfigurationError(
                f"handler method {rule.method_name} not found on {rule.controller_ref}",
                handler_id=rule.handler_id,
            )

        result = method(*args)
        if inspect.isawaitable(result):
            result = await result
        return result


async def dispatch(registry: WorkerRegistry, request: Request) -> Response:
    """Dispatch ``request`` with a one-off dispatcher for ``registry``."""
    return await RequestDispatcher(registry).dispatch(request)


__all__ = ["DispatchState", "RequestDispatcher", "dispatch"]
