"""
Exception handlers - turn exceptions raised while dispatching into
response payloads.

A handler targets one exception type by name. Selection walks the raised
exception's MRO and returns the handler registered for the most specific
class; names are compared exactly, either as the bare class name or as
``module.QualName``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from .faults import AuthErrno, AuthenticationError, Fault, UnhandledException, ValidationError
from .response import HttpError, JsonPayload, ResponsePayload

logger = logging.getLogger("dispatchkit.faults")


class ExceptionHandler(ABC):
    """Maps exceptions of ``target_type_name`` to a payload."""

    @property
    @abstractmethod
    def target_type_name(self) -> str:
        ...

    @abstractmethod
    def handle(self, exc: BaseException) -> Optional[ResponsePayload]:
        ...


AUTH_CODES = {
    AuthErrno.NOT_FOUND: 1001,
    AuthErrno.INVALID: 1002,
    AuthErrno.EXPIRED: 1003,
}

AUTH_MESSAGES = {
    1001: "token missing",
    1002: "invalid token",
    1003: "token expired",
}

VALIDATION_FAILFAST_CODE = 1999
VALIDATION_ERRORS_CODE = 1006


class AuthenticationErrorHandler(ExceptionHandler):
    """``{"code": 1001|1002|1003, "msg": ...}`` for rejected tokens."""

    target_type_name = "AuthenticationError"

    def handle(self, exc: BaseException) -> Optional[ResponsePayload]:
        if not isinstance(exc, AuthenticationError):
            return None
        code = AUTH_CODES.get(exc.errno, 1001)
        msg = exc.message or AUTH_MESSAGES[code]
        return JsonPayload({"code": code, "msg": msg})


class ValidationErrorHandler(ExceptionHandler):
    """
    ``{"code": 1999, "msg": <message>}`` in fail-fast mode, otherwise
    ``{"code": 1006, "msg": <JSON-encoded field map>}``.
    """

    target_type_name = "ValidationError"

    def handle(self, exc: BaseException) -> Optional[ResponsePayload]:
        if not isinstance(exc, ValidationError):
            return None
        if exc.failfast:
            return JsonPayload({"code": VALIDATION_FAILFAST_CODE, "msg": exc.message})
        return JsonPayload({
            "code": VALIDATION_ERRORS_CODE,
            "msg": json.dumps(exc.errors, ensure_ascii=False),
        })


BUILTIN_HANDLERS = (AuthenticationErrorHandler, ValidationErrorHandler)


def type_names(cls: type) -> tuple:
    return (cls.__name__, f"{cls.__module__}.{cls.__qualname__}")


def select_handler(exc: BaseException, handlers: Sequence[ExceptionHandler]) -> Optional[ExceptionHandler]:
    """Handler registered for the most specific class in ``type(exc).__mro__``."""
    for cls in type(exc).__mro__:
        names = type_names(cls)
        for handler in handlers:
            if handler.target_type_name in names:
                return handler
    return None


def resolve_exception(exc: BaseException, handlers: Sequence[ExceptionHandler]) -> Any:
    """
    Convert ``exc`` into something ``Response`` can render.

    Returns the claiming handler's payload, or ``HttpError(500)`` when that
    handler misbehaves. Unclaimed faults and ``HttpError`` are returned as
    is; any other exception is wrapped in ``UnhandledException``.
    """
    handler = select_handler(exc, handlers)
    if handler is None:
        if isinstance(exc, (Fault, HttpError)):
            return exc
        return UnhandledException(exc)

    try:
        payload = handler.handle(exc)
    except Exception:
        logger.error(
            "Exception handler %s failed for %s", type(handler).__name__, type(exc).__name__, exc_info=True,
        )
        return HttpError(500)

    if not isinstance(payload, ResponsePayload):
        logger.error(
            "Exception handler %s returned %s instead of a ResponsePayload",
            type(handler).__name__,
            type(payload).__name__,
        )
        return HttpError(500)
    return payload


__all__ = [
    "ExceptionHandler",
    "AuthenticationErrorHandler",
    "ValidationErrorHandler",
    "BUILTIN_HANDLERS",
    "select_handler",
    "resolve_exception",
]
