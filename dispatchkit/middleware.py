"""
Middleware system - ordered pre/post phase hooks around the handler.

Each middleware declares a ``phase`` and an ``order`` (1 runs first, 255
last). Within a phase the stack sorts by order and keeps registration
order for ties.
"""

from __future__ import annotations

import inspect
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ._io import DEFAULT_TIMEOUT, bounded
from .faults import AuthErrno, AuthenticationError, RateLimitExceeded, ValidationError
from .ratelimit import RateLimiter, limiter_key
from .request import Request
from .response import Response
from .security import HmacTokenVerifier, JwtSettings, VerifyResult
from .validation import DataValidator

HIGHEST_ORDER = 1
LOWEST_ORDER = 255
DEFAULT_ORDER = 128

ROUTE_RULE_PARAM = "route_rule"
HANDLER_ID_PARAM = "handler_id"


class MiddlewarePhase(str, Enum):
    PRE = "pre"
    POST = "post"


class Middleware(ABC):
    """
    Base middleware.

    ``handle`` may be a plain method or a coroutine. Raising aborts the
    request; the exception is resolved by the exception handlers.
    """

    phase: MiddlewarePhase = MiddlewarePhase.PRE
    order: int = DEFAULT_ORDER

    @abstractmethod
    def handle(self, request: Request, response: Response) -> Any:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.phase.value}:{self.order}>"


def _route_rule(request: Request):
    return request.context_param(ROUTE_RULE_PARAM)


class MiddlewareStack:
    """
    Manages the middleware list with deterministic ordering.
    """

    def __init__(self, middlewares: Sequence[Middleware] = ()):
        self.middlewares: List[Middleware] = list(middlewares)

    @staticmethod
    def check_order(middleware: Middleware) -> None:
        if not HIGHEST_ORDER <= middleware.order <= LOWEST_ORDER:
            raise ValueError(f"middleware order must be within 1..255, got {middleware.order}")

    def add(self, middleware: Middleware) -> None:
        self.check_order(middleware)
        self.middlewares.append(middleware)

    def phase(self, phase: MiddlewarePhase) -> List[Middleware]:
        """Middleware of ``phase`` in execution order (stable by order)."""
        return sorted((m for m in self.middlewares if m.phase == phase), key=lambda m: m.order)

    async def run(self, phase: MiddlewarePhase, request: Request, response: Response) -> None:
        for middleware in self.phase(phase):
            result = middleware.handle(request, response)
            if inspect.isawaitable(result):
                await result


# ============================================================================
# Built-in middleware
# ============================================================================

class RequestLogMiddleware(Middleware):
    """Logs ``<METHOD> <url> from <ip>`` and, at DEBUG, the raw body."""

    phase = MiddlewarePhase.PRE
    order = HIGHEST_ORDER

    def __init__(self):
        self.logger = logging.getLogger("dispatchkit.request")

    def handle(self, request: Request, response: Response) -> None:
        client_ip = request.client_ip
        url = request.url_with_query()
        if not request.method or not client_ip:
            return

        self.logger.info("%s %s from %s", request.method, url, client_ip)
        if request.body:
            self.logger.debug(request.body.decode("utf-8", errors="replace"))


class AuthenticationMiddleware(Middleware):
    """
    Verifies the bearer token for routes declaring ``@JwtAuth(key)``.

    Routes whose key has no settings, or settings without an issuer, are
    not checked.
    """

    phase = MiddlewarePhase.PRE
    order = HIGHEST_ORDER

    def __init__(self, settings: Optional[Dict[str, JwtSettings]] = None, verifier: Optional[HmacTokenVerifier] = None):
        self.settings: Dict[str, JwtSettings] = dict(settings or {})
        self.verifier = verifier or HmacTokenVerifier()

    def handle(self, request: Request, response: Response) -> None:
        rule = _route_rule(request)
        if rule is None or not rule.auth_key:
            return

        settings = self.settings.get(rule.auth_key)
        if settings is None or not settings.issuer:
            return

        authorization = request.header("authorization").strip()
        if not authorization:
            raise AuthenticationError(AuthErrno.NOT_FOUND)

        token = request.token
        if token is None:
            raise AuthenticationError(AuthErrno.INVALID)

        result = self.verifier.verify(token, settings)
        if result == VerifyResult.INVALID:
            raise AuthenticationError(AuthErrno.INVALID)
        if result == VerifyResult.EXPIRED:
            raise AuthenticationError(AuthErrno.EXPIRED)


class RateLimitMiddleware(Middleware):
    """Counts the request against the route's rate-limit policy."""

    phase = MiddlewarePhase.PRE
    order = HIGHEST_ORDER

    def __init__(self, limiter: RateLimiter, timeout: float = DEFAULT_TIMEOUT):
        self.limiter = limiter
        self.timeout = timeout

    async def handle(self, request: Request, response: Response) -> None:
        rule = _route_rule(request)
        policy = rule.rate_limit if rule is not None else None
        if policy is None or policy.total < 1 or policy.window_seconds < 1:
            return

        key = limiter_key(rule.handler_id, request.client_ip, policy.limit_by_client_ip)
        info = await bounded(
            self.limiter.hit,
            key,
            policy.total,
            policy.window_seconds,
            timeout=self.timeout,
            operation=f"rate limit {key}",
        )
        if info.exceeded:
            raise RateLimitExceeded(info.total, info.remaining, info.retry_after)


class ValidationMiddleware(Middleware):
    """Validates the request data map against the route's rules."""

    phase = MiddlewarePhase.PRE
    order = HIGHEST_ORDER

    def __init__(self, validator: Optional[DataValidator] = None):
        self.validator = validator or DataValidator()

    def handle(self, request: Request, response: Response) -> None:
        rule = _route_rule(request)
        spec = rule.validation if rule is not None else None
        if spec is None or not spec.rules:
            return

        result = self.validator.validate(request.data_map(), spec.rules, spec.failfast)
        if spec.failfast and result:
            raise ValidationError(result, failfast=True)
        if not spec.failfast and result:
            raise ValidationError(errors=result)


def format_elapsed(seconds: float) -> str:
    """``"<n>ms"`` up to one second (at least 1ms), otherwise trimmed seconds."""
    millis = seconds * 1000
    if millis <= 1000:
        return f"{max(1, int(millis))}ms"
    text = f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{text}s"


class ExecuteTimeLogMiddleware(Middleware):
    """Logs total elapsed time and sets ``X-Response-Time``."""

    phase = MiddlewarePhase.POST
    order = LOWEST_ORDER

    def __init__(self):
        self.logger = logging.getLogger("dispatchkit.execute_time")

    def handle(self, request: Request, response: Response) -> None:
        if not request.method:
            return

        parts = [f"{request.method} {request.url_with_query()}"]
        handler_id = request.context_param(HANDLER_ID_PARAM)
        if isinstance(handler_id, str) and "@" in handler_id:
            parts.append(f", handler: {handler_id}(...)")

        elapsed = format_elapsed(time.perf_counter() - request.exec_start)
        parts.append(f", total elapsed time: {elapsed}.")
        self.logger.info("".join(parts))
        response.add_header("X-Response-Time", elapsed)


__all__ = [
    "HIGHEST_ORDER",
    "LOWEST_ORDER",
    "DEFAULT_ORDER",
    "MiddlewarePhase",
    "Middleware",
    "MiddlewareStack",
    "RequestLogMiddleware",
    "AuthenticationMiddleware",
    "RateLimitMiddleware",
    "ValidationMiddleware",
    "ExecuteTimeLogMiddleware",
    "format_elapsed",
]
