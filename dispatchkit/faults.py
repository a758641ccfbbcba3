"""
DispatchFaults - Core fault types and taxonomy.

Defines:
- Fault base class (structured fault objects)
- FaultDomain (explicit fault domains)
- Severity levels
- The dispatch fault taxonomy (routing, configuration, security,
  validation, rate limiting, I/O)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines the log level used when the fault is reported.
    """
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the functional area where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.ROUTING = FaultDomain("routing", "Route matching errors")
FaultDomain.FLOW = FaultDomain("flow", "Handler execution errors")
FaultDomain.IO = FaultDomain("io", "I/O operations")
FaultDomain.SECURITY = FaultDomain("security", "Security and auth")
FaultDomain.VALIDATION = FaultDomain("validation", "Request validation")
FaultDomain.SYSTEM = FaultDomain("system", "System level faults")


DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "status": 500},
    FaultDomain.ROUTING: {"severity": Severity.INFO, "status": 404},
    FaultDomain.FLOW: {"severity": Severity.ERROR, "status": 500},
    FaultDomain.IO: {"severity": Severity.WARN, "status": 504},
    FaultDomain.SECURITY: {"severity": Severity.WARN, "status": 401},
    FaultDomain.VALIDATION: {"severity": Severity.INFO, "status": 400},
    FaultDomain.SYSTEM: {"severity": Severity.FATAL, "status": 500},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    A fault is a first-class value with:
    - Stable machine-readable code
    - Human-readable message
    - Severity level
    - Domain classification
    - HTTP status used when no exception handler claims it
    - Public exposure control

    Subclasses declare ``code``, ``message`` and ``domain`` as class
    attributes; constructor arguments override them.

    Example:
        ```python
        raise Fault(
            code="ORDER_LOCKED",
            message="Order 12 is locked",
            domain=FaultDomain.FLOW,
            public=True,
        )
        ```
    """

    code: str = None  # type: ignore[assignment]
    message: str = None  # type: ignore[assignment]
    domain: FaultDomain = None  # type: ignore[assignment]
    status: int = None  # type: ignore[assignment]

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        status: Optional[int] = None,
        public: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        self.code = code if code is not None else type(self).code
        self.message = message if message is not None else type(self).message
        self.domain = domain if domain is not None else type(self).domain

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "status": 500})
        self.severity = severity or defaults["severity"]
        if status is not None:
            self.status = status
        elif type(self).status is not None:
            self.status = type(self).status
        else:
            self.status = defaults["status"]

        self.public = public
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self.code!r}, domain={self.domain.value}, "
            f"status={self.status}, public={self.public})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "status": self.status,
            "public": self.public,
            "metadata": self.metadata,
        }


# ============================================================================
# Routing Faults
# ============================================================================

class NoRouteMatch(Fault):
    """No route rule matches the request path."""

    code = "ROUTE_NOT_FOUND"
    domain = FaultDomain.ROUTING
    status = 404

    def __init__(self, path: str):
        super().__init__(message=f"No route matches path: {path}", public=True, metadata={"path": path})
        self.path = path


class MethodNotAllowed(Fault):
    """A route matched the path but does not accept the HTTP verb."""

    code = "METHOD_NOT_ALLOWED"
    domain = FaultDomain.ROUTING
    status = 405

    def __init__(self, method: str, path: str, allowed: list[str]):
        super().__init__(
            message=f"Method {method} not allowed for {path}",
            public=True,
            metadata={"method": method, "path": path, "allowed": list(allowed)},
        )
        self.method = method
        self.path = path
        self.allowed = list(allowed)


# ============================================================================
# Configuration Faults
# ============================================================================

class HandlerConfigurationError(Fault):
    """
    The matched handler cannot be executed as declared.

    Raised for a missing or unconstructible controller, or an argument
    binding that cannot be resolved.
    """

    code = "HANDLER_CONFIGURATION"
    domain = FaultDomain.CONFIG
    status = 500

    def __init__(self, message: str, *, handler_id: str = "", arg_index: Optional[int] = None):
        super().__init__(
            message=message,
            metadata={"handler_id": handler_id, "arg_index": arg_index},
        )
        self.handler_id = handler_id
        self.arg_index = arg_index


# ============================================================================
# Security Faults
# ============================================================================

class AuthErrno(int, Enum):
    """Reasons a bearer token was rejected."""
    NOT_FOUND = 1
    INVALID = 2
    EXPIRED = 3


class AuthenticationError(Fault):
    """Missing, invalid or expired bearer token."""

    code = "AUTHENTICATION_FAILED"
    domain = FaultDomain.SECURITY
    status = 401

    def __init__(self, errno: AuthErrno = AuthErrno.NOT_FOUND, message: str = ""):
        super().__init__(message=message, public=True, metadata={"errno": int(errno)})
        self.errno = AuthErrno(errno)


class RateLimitExceeded(Fault):
    """
    The client exhausted its request budget for the current window.

    Carries the values needed for the ``X-Ratelimit-*`` and
    ``Retry-After`` response headers.
    """

    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests"
    domain = FaultDomain.SECURITY
    status = 429

    def __init__(self, total: int, remaining: int, retry_after: int = 0):
        remaining = max(0, remaining)
        super().__init__(
            public=True,
            metadata={"total": total, "remaining": remaining, "retry_after": retry_after},
        )
        self.total = total
        self.remaining = remaining
        self.retry_after = retry_after

    def headers(self) -> dict[str, str]:
        """Headers describing the exhausted limit."""
        if self.total < 1:
            return {}

        headers = {
            "X-Ratelimit-Limit": str(self.total),
            "X-Ratelimit-Remaining": str(self.remaining),
        }
        if self.retry_after > 0:
            headers["Retry-After"] = str(self.retry_after)
        return headers


# ============================================================================
# Validation Faults
# ============================================================================

class ValidationError(Fault):
    """
    Request data failed declared validation rules.

    In fail-fast mode ``message`` holds the single failure; otherwise
    ``errors`` maps every failing field to its message.
    """

    code = "VALIDATION_FAILED"
    domain = FaultDomain.VALIDATION
    status = 400

    def __init__(
        self,
        message: str = "",
        *,
        errors: Optional[dict[str, str]] = None,
        failfast: bool = False,
    ):
        super().__init__(message=message, public=True, metadata={"errors": dict(errors or {})})
        self.errors = dict(errors or {})
        self.failfast = failfast


# ============================================================================
# I/O & System Faults
# ============================================================================

class IOTimeoutFault(Fault):
    """A bounded I/O join exceeded its timeout."""

    code = "IO_TIMEOUT"
    domain = FaultDomain.IO
    status = 504

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            message=f"{operation} did not complete within {timeout:g}s",
            metadata={"operation": operation, "timeout": timeout},
        )
        self.operation = operation
        self.timeout = timeout


class UnhandledException(Fault):
    """Wraps an exception no handler claimed."""

    code = "INTERNAL_ERROR"
    message = "Internal server error"
    domain = FaultDomain.SYSTEM
    status = 500

    def __init__(self, cause: BaseException):
        super().__init__(metadata={"cause": type(cause).__name__})
        self.cause = cause


__all__ = [
    "Severity",
    "FaultDomain",
    "Fault",
    "NoRouteMatch",
    "MethodNotAllowed",
    "HandlerConfigurationError",
    "AuthErrno",
    "AuthenticationError",
    "RateLimitExceeded",
    "ValidationError",
    "IOTimeoutFault",
    "UnhandledException",
]
