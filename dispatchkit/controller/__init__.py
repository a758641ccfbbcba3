"""
Controller layer - declarative routing directives, metadata extraction,
route compilation and the route cache.

Example:
    ```python
    from dispatchkit.controller import Controller, GET, PathVariable, bind

    class UsersController(Controller):
        prefix = "/users"

        @GET("/{id}")
        @bind(PathVariable("id", default=-1))
        def show(self, id: int):
            return {"id": id}
    ```
"""

from .base import Controller
from .bindings import (
    ARG_NAME_PLACEHOLDER,
    ArgumentBinding,
    BindingKind,
    BindingMarker,
    ClientIp,
    Header,
    MapBind,
    PathVariable,
    RawBody,
    RequestParam,
    SanitizeMode,
    TokenClaim,
    UploadedFile,
)
from .decorators import (
    ALL,
    DELETE,
    GET,
    PATCH,
    POST,
    PUT,
    Extra,
    JwtAuth,
    RateLimit,
    Validate,
    bind,
    get_directives,
)
from .metadata import (
    RateLimitPolicy,
    RouteRule,
    ValidationSpec,
    extract_route_rules,
    join_path,
    parse_duration,
)
from .cache import RouteCache
from .compiler import RouteCompiler
from .router import PathMatcher, RouteMatch
from .binder import bind_arguments, map_bind

__all__ = [
    "Controller",
    # Bindings
    "ARG_NAME_PLACEHOLDER",
    "ArgumentBinding",
    "BindingKind",
    "BindingMarker",
    "ClientIp",
    "Header",
    "MapBind",
    "PathVariable",
    "RawBody",
    "RequestParam",
    "SanitizeMode",
    "TokenClaim",
    "UploadedFile",
    # Directives
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
    "get_directives",
    # Metadata
    "RateLimitPolicy",
    "RouteRule",
    "ValidationSpec",
    "extract_route_rules",
    "join_path",
    "parse_duration",
    # Compilation & matching
    "RouteCache",
    "RouteCompiler",
    "PathMatcher",
    "RouteMatch",
    "bind_arguments",
    "map_bind",
]
