"""
Controller Metadata Extraction

Introspection of controller classes to produce compiled ``RouteRule``
objects. Used by the route compiler; the resulting rules are what the
dispatcher consumes at runtime.
"""

from dataclasses import dataclass, field
from types import UnionType
from typing import Annotated, Any, Dict, List, Optional, Tuple, Type, Union, get_args, get_origin, get_type_hints
import inspect
import logging
import re

from .bindings import ArgumentBinding, BindingKind, BindingMarker
from .decorators import get_directives
from ..request import Request
from ..security import Token

logger = logging.getLogger("dispatchkit.compiler")


VERB_PRIORITY = ("GET", "POST", "PUT", "PATCH", "DELETE", "ALL")

_DURATION_PART = re.compile(r"(\d+)\s*([dhms])", re.IGNORECASE)
_DURATION_FULL = re.compile(r"^\s*(?:\d+\s*[dhms]\s*)+$", re.IGNORECASE)
_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


def parse_duration(value: Any) -> int:
    """
    Normalize a duration to seconds.

    Accepts ints, digit strings and unit strings such as ``"5m"``,
    ``"1h30m"``, ``"90s"`` or ``"2d"``.

    Raises:
        ValueError: if the value cannot be parsed
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    if text.isdigit():
        return int(text)
    if not _DURATION_FULL.match(text):
        raise ValueError(f"Invalid duration: {value!r}")

    return sum(int(n) * _UNIT_SECONDS[unit.lower()] for n, unit in _DURATION_PART.findall(text))


# ============================================================================
# Rule model
# ============================================================================

@dataclass(frozen=True)
class RateLimitPolicy:
    """Requests allowed per window, optionally counted per client IP."""
    total: int
    window_seconds: int
    limit_by_client_ip: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "window_seconds": self.window_seconds,
            "limit_by_client_ip": self.limit_by_client_ip,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateLimitPolicy":
        return cls(
            total=int(data["total"]),
            window_seconds=int(data["window_seconds"]),
            limit_by_client_ip=bool(data.get("limit_by_client_ip", False)),
        )


@dataclass(frozen=True)
class ValidationSpec:
    """Ordered validation rule expressions plus the fail-fast flag."""
    rules: Tuple[str, ...]
    failfast: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"rules": list(self.rules), "failfast": self.failfast}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationSpec":
        return cls(rules=tuple(data.get("rules", ())), failfast=bool(data.get("failfast", False)))


@dataclass(frozen=True)
class RouteRule:
    """
    One compiled route: (path pattern, HTTP verb) -> handler.

    Attributes:
        handler_id: ``"<module>:<Class>@<method>"``
        http_method: GET, POST, PUT, PATCH, DELETE or ALL
        path_pattern: Full path with ``{name}`` / ``{name<regex>}`` variables
        argument_bindings: One binding per handler parameter, ``self`` excluded
        rate_limit: Optional rate-limit policy
        auth_key: Optional token-verification settings key
        validation: Optional validation rules
        extra_metadata: Opaque pass-through strings
        controller_ref: ``"<module>:<Class>"``
        method_name: Handler method name
        source_file: File the controller was loaded from
        controller: Resolved controller class (not serialized)
    """
    handler_id: str
    http_method: str
    path_pattern: str
    argument_bindings: Tuple[ArgumentBinding, ...] = ()
    rate_limit: Optional[RateLimitPolicy] = None
    auth_key: Optional[str] = None
    validation: Optional[ValidationSpec] = None
    extra_metadata: Tuple[str, ...] = ()
    controller_ref: str = ""
    method_name: str = ""
    source_file: Optional[str] = None
    controller: Optional[Type] = field(default=None, compare=False, repr=False)

    def accepts(self, method: str) -> bool:
        """Whether this rule accepts the HTTP verb (ALL means GET and POST)."""
        method = method.upper()
        if self.http_method == "ALL":
            return method in ("GET", "POST")
        return method == self.http_method

    @property
    def allowed_methods(self) -> List[str]:
        if self.http_method == "ALL":
            return ["GET", "POST"]
        return [self.http_method]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handler_id": self.handler_id,
            "http_method": self.http_method,
            "path_pattern": self.path_pattern,
            "argument_bindings": [b.to_dict() for b in self.argument_bindings],
            "rate_limit": self.rate_limit.to_dict() if self.rate_limit else None,
            "auth_key": self.auth_key,
            "validation": self.validation.to_dict() if self.validation else None,
            "extra_metadata": list(self.extra_metadata),
            "controller_ref": self.controller_ref,
            "method_name": self.method_name,
            "source_file": self.source_file,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], controller: Optional[Type] = None) -> "RouteRule":
        rate_limit = data.get("rate_limit")
        validation = data.get("validation")
        return cls(
            handler_id=data["handler_id"],
            http_method=data["http_method"],
            path_pattern=data["path_pattern"],
            argument_bindings=tuple(ArgumentBinding.from_dict(b) for b in data.get("argument_bindings", [])),
            rate_limit=RateLimitPolicy.from_dict(rate_limit) if rate_limit else None,
            auth_key=data.get("auth_key"),
            validation=ValidationSpec.from_dict(validation) if validation else None,
            extra_metadata=tuple(data.get("extra_metadata", ())),
            controller_ref=data.get("controller_ref", ""),
            method_name=data.get("method_name", ""),
            source_file=data.get("source_file"),
            controller=controller,
        )


# ============================================================================
# Extraction
# ============================================================================

def controller_ref(controller_class: type) -> str:
    return f"{controller_class.__module__}:{controller_class.__qualname__}"


def join_path(prefix: str, suffix: str) -> str:
    """
    Concatenate a class prefix and a method suffix.

    The prefix loses its trailing slash unless it is exactly ``/``; the
    suffix gets a leading slash. Duplicate slashes collapse and a trailing
    slash is dropped except for the root path.
    """
    prefix = prefix or ""
    if prefix not in ("", "/"):
        prefix = prefix.rstrip("/")

    suffix = suffix or "/"
    if not suffix.startswith("/"):
        suffix = "/" + suffix

    path = re.sub(r"/{2,}", "/", prefix + suffix)
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def _select_verb(routes: Dict[str, str]) -> Optional[Tuple[str, str]]:
    for verb in VERB_PRIORITY:
        if verb in routes:
            return verb, routes[verb]
    return None


def _split_annotated(annotation: Any) -> Tuple[Any, Optional[BindingMarker]]:
    if get_origin(annotation) is Annotated:
        base, *extras = get_args(annotation)
        marker = next((m for m in extras if isinstance(m, BindingMarker)), None)
        return base, marker
    return annotation, None


def _is_subclass(annotation: Any, target: type) -> bool:
    return inspect.isclass(annotation) and issubclass(annotation, target)


_LITERAL_DEFAULTS = (type(None), bool, int, float, str)


def _allows_none(annotation: Any) -> bool:
    if annotation is None or annotation is Any:
        return False
    if get_origin(annotation) in (Union, UnionType):
        return type(None) in get_args(annotation)
    return False


def _unbound(param: inspect.Parameter, annotation: Any) -> ArgumentBinding:
    """
    ``NONE`` binding for a parameter without a marker.

    A literal Python default is kept so the binder can pass it; other
    defaults are not serializable and leave the parameter required.
    """
    has_default = param.default is not inspect.Parameter.empty and isinstance(param.default, _LITERAL_DEFAULTS)
    return ArgumentBinding(
        kind=BindingKind.NONE,
        arg_name=param.name,
        default=param.default if has_default else None,
        has_default=has_default,
        nullable=_allows_none(annotation),
    )


def extract_argument_bindings(func: Any) -> Tuple[ArgumentBinding, ...]:
    """
    Build one ``ArgumentBinding`` per parameter of ``func`` (``self`` excluded).

    Resolution order per parameter: ``Request``/``Token`` annotation,
    ``Annotated`` marker, positional ``@bind`` marker, otherwise ``NONE``.
    """
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func, include_extras=True)
    except Exception:
        hints = {}

    positional = get_directives(func).get("bindings", ())
    params = [p for p in sig.parameters.values() if p.name != "self"]

    bindings = []
    for i, param in enumerate(params):
        annotation = hints.get(param.name, param.annotation)
        if annotation is inspect.Parameter.empty:
            annotation = None
        base, annotated_marker = _split_annotated(annotation)

        if _is_subclass(base, Request):
            bindings.append(ArgumentBinding(kind=BindingKind.RAW_REQUEST, arg_name=param.name))
            continue
        if _is_subclass(base, Token):
            bindings.append(ArgumentBinding(kind=BindingKind.RAW_TOKEN, arg_name=param.name))
            continue

        marker = annotated_marker
        if marker is None and i < len(positional):
            marker = positional[i]

        if marker is None:
            bindings.append(_unbound(param, base))
        else:
            bindings.append(marker.to_binding(param.name, base))

    return tuple(bindings)


def extract_method_rule(
    controller_class: type,
    method_name: str,
    func: Any,
    source_file: Optional[str] = None,
) -> Optional[RouteRule]:
    """Extract the rule for one method, or None when it is not a route."""
    directives = get_directives(func)
    selected = _select_verb(directives.get("routes", {}))
    if selected is None:
        return None

    verb, suffix = selected
    ref = controller_ref(controller_class)

    rate_limit = None
    if directives.get("rate_limit"):
        rl = directives["rate_limit"]
        rate_limit = RateLimitPolicy(
            total=int(rl["total"]),
            window_seconds=parse_duration(rl["duration"]),
            limit_by_client_ip=bool(rl["limit_by_ip"]),
        )

    validation = None
    if directives.get("validation"):
        validation = ValidationSpec(
            rules=tuple(directives["validation"]["rules"]),
            failfast=bool(directives["validation"]["failfast"]),
        )

    return RouteRule(
        handler_id=f"{ref}@{method_name}",
        http_method=verb,
        path_pattern=join_path(getattr(controller_class, "prefix", ""), suffix),
        argument_bindings=extract_argument_bindings(func),
        rate_limit=rate_limit,
        auth_key=directives.get("auth_key") or None,
        validation=validation,
        extra_metadata=tuple(directives.get("extra", ())),
        controller_ref=ref,
        method_name=method_name,
        source_file=source_file,
        controller=controller_class,
    )


def extract_route_rules(controller_class: type, source_file: Optional[str] = None) -> List[RouteRule]:
    """
    Extract route rules from a controller class.

    A method whose metadata is malformed is logged and skipped; the rest of
    the class is still scanned.

    Args:
        controller_class: Controller class to inspect
        source_file: File the class was loaded from, stored on each rule

    Returns:
        Rules in method declaration order
    """
    rules = []
    members = inspect.getmembers(controller_class, inspect.isfunction)
    members.sort(key=lambda item: _declaration_order(item[1]))

    for name, func in members:
        if name.startswith("_"):
            continue
        try:
            rule = extract_method_rule(controller_class, name, func, source_file)
        except Exception as e:
            logger.warning(
                "Skipping %s.%s: invalid route metadata (%s)",
                controller_class.__qualname__, name, e,
            )
            continue
        if rule is not None:
            rules.append(rule)

    return rules


def _declaration_order(func: Any) -> Tuple[str, int]:
    code = getattr(func, "__code__", None)
    if code is None:
        return ("", 0)
    return (code.co_filename, code.co_firstlineno)


__all__ = [
    "VERB_PRIORITY",
    "parse_duration",
    "RateLimitPolicy",
    "ValidationSpec",
    "RouteRule",
    "controller_ref",
    "join_path",
    "extract_argument_bindings",
    "extract_method_rule",
    "extract_route_rules",
]
