"""
Controller Method Decorators

HTTP verb and policy decorators for controller methods.
Attach metadata without import-time side effects; the extractor reads
it back when compiling the route table.
"""

from typing import Any, Callable, Dict, Optional, TypeVar, Union

from .bindings import BindingMarker


F = TypeVar('F', bound=Callable[..., Any])

DIRECTIVES_ATTR = '__dispatch_directives__'


def get_directives(func: Callable) -> Dict[str, Any]:
    """Return the directive dict attached to ``func`` (empty if none)."""
    return getattr(func, DIRECTIVES_ATTR, None) or {}


def _directives(func: Callable) -> Dict[str, Any]:
    directives = func.__dict__.get(DIRECTIVES_ATTR)
    if directives is None:
        directives = {'routes': {}}
        setattr(func, DIRECTIVES_ATTR, directives)
    return directives


class RouteDecorator:
    """
    Base verb-mapping decorator.

    Records ``http_method -> path`` on the decorated function. A method may
    carry several verb decorators; the extractor keeps the one with the
    highest priority.
    """

    method: Optional[str] = None

    def __init__(self, path: str = "/"):
        """
        Args:
            path: Path suffix appended to the controller prefix. Variables
                  are written ``{name}`` or ``{name<regex>}``.
        """
        self.path = path if path else "/"

    def __call__(self, func: F) -> F:
        _directives(func)['routes'][self.method] = self.path
        return func


class GET(RouteDecorator):
    """GET route."""
    method = "GET"


class POST(RouteDecorator):
    """POST route."""
    method = "POST"


class PUT(RouteDecorator):
    """PUT route."""
    method = "PUT"


class PATCH(RouteDecorator):
    """PATCH route."""
    method = "PATCH"


class DELETE(RouteDecorator):
    """DELETE route."""
    method = "DELETE"


class ALL(RouteDecorator):
    """Route accepting both GET and POST."""
    method = "ALL"


class RateLimit:
    """
    Limit how often a handler may be called.

    Args:
        total: Requests allowed per window
        duration: Window length, seconds or a string like ``"5m"``,
                  ``"1h30m"``, ``"90s"``, ``"2d"``
        limit_by_ip: Count requests per client IP instead of globally

    Example:
        ```python
        @GET("/search")
        @RateLimit(10, "1m", limit_by_ip=True)
        def search(self): ...
        ```
    """

    def __init__(self, total: int, duration: Union[int, str] = 1, *, limit_by_ip: bool = False):
        self.total = total
        self.duration = duration
        self.limit_by_ip = limit_by_ip

    def __call__(self, func: F) -> F:
        _directives(func)['rate_limit'] = {
            'total': self.total,
            'duration': self.duration,
            'limit_by_ip': self.limit_by_ip,
        }
        return func


class JwtAuth:
    """Require a valid bearer token verified with the named settings."""

    def __init__(self, key: str = "default"):
        self.key = key

    def __call__(self, func: F) -> F:
        _directives(func)['auth_key'] = self.key
        return func


class Validate:
    """
    Validate request data before the handler runs.

    Rules use the ``field@Validator:checkValue@msg:tips`` syntax.
    """

    def __init__(self, *rules: str, failfast: bool = False):
        self.rules = tuple(rules)
        self.failfast = failfast

    def __call__(self, func: F) -> F:
        _directives(func)['validation'] = {'rules': self.rules, 'failfast': self.failfast}
        return func


class Extra:
    """Attach opaque pass-through strings to the route."""

    def __init__(self, *values: str):
        self.values = tuple(str(v) for v in values)

    def __call__(self, func: F) -> F:
        _directives(func).setdefault('extra', []).extend(self.values)
        return func


def bind(*markers: Optional[BindingMarker]) -> Callable[[F], F]:
    """
    Declare argument bindings positionally.

    The n-th marker binds the n-th handler parameter (``self`` excluded).
    ``None`` leaves a position to the annotation (``Request``/``Token``)
    or unbound.
    """
    for marker in markers:
        if marker is not None and not isinstance(marker, BindingMarker):
            raise TypeError(f"bind() expects binding markers, got {marker!r}")

    def decorator(func: F) -> F:
        _directives(func)['bindings'] = tuple(markers)
        return func

    return decorator


__all__ = [
    'DIRECTIVES_ATTR',
    'get_directives',
    'RouteDecorator',
    'GET',
    'POST',
    'PUT',
    'PATCH',
    'DELETE',
    'ALL',
    'RateLimit',
    'JwtAuth',
    'Validate',
    'Extra',
    'bind',
]
