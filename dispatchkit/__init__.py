"""
dispatchkit - declarative-routing web dispatch core.

Controller methods carry routing metadata (verb, path, argument bindings,
rate limit, authentication, validation). ``RouteCompiler`` turns it into a
cached routing table; ``RequestDispatcher`` matches requests against it,
binds handler arguments, runs the pre/post middleware chain and normalizes
the handler's result into a ``Response``.
"""

__version__ = "0.1.0"

# ============================================================================
# Core
# ============================================================================

from .config import ConfigError, ConfigLoader, DispatchConfig
from .request import Headers, Request
from .response import (
    AttachmentPayload,
    HtmlPayload,
    HttpError,
    ImagePayload,
    JsonPayload,
    Response,
    ResponsePayload,
    TextPayload,
    XmlPayload,
)
from .registry import UNAVAILABLE, WorkerRegistries, WorkerRegistry
from .dispatcher import DispatchState, RequestDispatcher, dispatch
from .asgi import DispatchApp

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    AuthErrno,
    AuthenticationError,
    Fault,
    FaultDomain,
    HandlerConfigurationError,
    IOTimeoutFault,
    MethodNotAllowed,
    NoRouteMatch,
    RateLimitExceeded,
    Severity,
    UnhandledException,
    ValidationError,
)
from .handlers import (
    AuthenticationErrorHandler,
    ExceptionHandler,
    ValidationErrorHandler,
)

# ============================================================================
# Controllers & directives
# ============================================================================

from .controller import (
    ALL,
    DELETE,
    GET,
    PATCH,
    POST,
    PUT,
    ClientIp,
    Controller,
    Extra,
    Header,
    JwtAuth,
    MapBind,
    PathVariable,
    RateLimit,
    RawBody,
    RequestParam,
    RouteCache,
    RouteCompiler,
    RouteRule,
    SanitizeMode,
    TokenClaim,
    Validate,
    bind,
)

# ============================================================================
# Middleware & collaborators
# ============================================================================

from .middleware import (
    AuthenticationMiddleware,
    ExecuteTimeLogMiddleware,
    Middleware,
    MiddlewarePhase,
    RateLimitMiddleware,
    RequestLogMiddleware,
    ValidationMiddleware,
)
from .caching import CacheStore, FileCache, MemoryCache, NullCache, create_cache
from .ratelimit import CacheRateLimiter, RateLimiter, RateLimitInfo
from .security import CorsSettings, HmacTokenVerifier, JwtSettings, Token, VerifyResult, sign_token
from .validation import DataValidator, RuleChecker

__all__ = [
    "__version__",
    # Core
    "ConfigError",
    "ConfigLoader",
    "DispatchConfig",
    "Headers",
    "Request",
    "Response",
    "ResponsePayload",
    "JsonPayload",
    "HtmlPayload",
    "TextPayload",
    "XmlPayload",
    "AttachmentPayload",
    "ImagePayload",
    "HttpError",
    "UNAVAILABLE",
    "WorkerRegistry",
    "WorkerRegistries",
    "DispatchState",
    "RequestDispatcher",
    "dispatch",
    "DispatchApp",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "NoRouteMatch",
    "MethodNotAllowed",
    "HandlerConfigurationError",
    "AuthErrno",
    "AuthenticationError",
    "RateLimitExceeded",
    "ValidationError",
    "IOTimeoutFault",
    "UnhandledException",
    "ExceptionHandler",
    "AuthenticationErrorHandler",
    "ValidationErrorHandler",
    # Controllers
    "Controller",
    "GET",
    "POST",
    "PUT",
    "PATCH",
    "DELETE",
    "ALL",
    "RateLimit",
    "JwtAuth",
    "Validate",
    "Extra",
    "bind",
    "ClientIp",
    "Header",
    "MapBind",
    "PathVariable",
    "RawBody",
    "RequestParam",
    "SanitizeMode",
    "TokenClaim",
    "RouteRule",
    "RouteCache",
    "RouteCompiler",
    # Middleware & collaborators
    "Middleware",
    "MiddlewarePhase",
    "RequestLogMiddleware",
    "AuthenticationMiddleware",
    "RateLimitMiddleware",
    "ValidationMiddleware",
    "ExecuteTimeLogMiddleware",
    "CacheStore",
    "MemoryCache",
    "FileCache",
    "NullCache",
    "create_cache",
    "RateLimiter",
    "RateLimitInfo",
    "CacheRateLimiter",
    "Token",
    "CorsSettings",
    "JwtSettings",
    "VerifyResult",
    "HmacTokenVerifier",
    "sign_token",
    "DataValidator",
    "RuleChecker",
]
