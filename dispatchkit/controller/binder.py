"""
Argument Binder

Resolves a rule's ``ArgumentBinding`` list against a live request.
Absent values fall back to the declared default or the type's sentinel;
only a binding that cannot be resolved at all is an error.
"""

from typing import Any, Dict, List, Mapping, Sequence, Tuple

from .bindings import ArgumentBinding, BindingKind, SanitizeMode
from .metadata import RouteRule
from .. import casting
from ..faults import HandlerConfigurationError
from ..request import Request
from ..sanitize import purify_html, strip_tags, to_decimal_string


PATH_VARIABLE_TYPES = ("int", "float", "bool", "string")

MAP_TYPE_ALIASES = {
    "i": "int",
    "int": "int",
    "d": "float",
    "float": "float",
    "b": "bool",
    "bool": "bool",
    "s": "string",
    "str": "string",
    "string": "string",
    "a": "array",
    "array": "array",
}


def sanitize(value: str, mode: SanitizeMode) -> str:
    if mode == SanitizeMode.HTML_PURIFY:
        return purify_html(value)
    if mode == SanitizeMode.STRIP_TAGS:
        return strip_tags(value)
    return value


def _scalar(binding: ArgumentBinding, value: Any, allowed: Sequence[str], what: str) -> Any:
    if binding.type not in allowed:
        raise HandlerConfigurationError(f"unsupported type for {what}: {binding.lookup_name}")
    return casting.cast(value, binding.type, binding.default, binding.has_default)


def _request_param(binding: ArgumentBinding, request: Request) -> Any:
    value = request.request_params().get(binding.lookup_name)

    if binding.type != "string":
        return _scalar(binding, value, casting.CASTERS, "request param")

    text = casting.to_str(value)
    if text == "":
        return casting.to_str(binding.default) if binding.has_default else ""

    if binding.decimal:
        return to_decimal_string(strip_tags(text))
    return sanitize(text, binding.sanitize)


def parse_map_rule(rule: str) -> Tuple[str, str, Any, bool]:
    """
    Split a MapBind rule ``name[:type[:default]]``.

    Returns:
        (name, type or "", default, has_default)
    """
    parts = [p.strip() for p in rule.split(":", 2)]
    name = parts[0]
    type_name = ""
    if len(parts) > 1 and parts[1]:
        type_name = MAP_TYPE_ALIASES.get(parts[1].lower(), "")
        if not type_name:
            raise ValueError(f"unknown type in map rule {rule!r}")
    if len(parts) > 2:
        return name, type_name, parts[2], True
    return name, type_name, None, False


def map_bind(data: Mapping[str, Any], rules: Sequence[str]) -> Dict[str, Any]:
    """
    Filter and type ``data`` by MapBind rules.

    With no rules the whole map is returned. A key absent from ``data``
    is included only when its rule declares a default.
    """
    if not rules:
        return dict(data)

    result: Dict[str, Any] = {}
    for rule in rules:
        name, type_name, default, has_default = parse_map_rule(rule)
        if not name:
            continue
        present = name in data
        if not present and not has_default:
            continue
        value = data.get(name)
        if not type_name:
            result[name] = value if present else default
        else:
            result[name] = casting.cast(value, type_name, default, has_default)
    return result


def resolve_binding(binding: ArgumentBinding, request: Request) -> Any:
    """Resolve one binding; raises HandlerConfigurationError when impossible."""
    kind = binding.kind

    if kind == BindingKind.RAW_REQUEST:
        return request
    if kind == BindingKind.RAW_TOKEN:
        return request.token
    if kind == BindingKind.CLIENT_IP:
        return request.client_ip
    if kind == BindingKind.HEADER:
        return request.header(binding.lookup_name)
    if kind == BindingKind.RAW_BODY:
        return request.body.decode("utf-8", errors="replace")
    if kind == BindingKind.UPLOADED_FILE:
        return request.uploaded_file(binding.lookup_name)
    if kind == BindingKind.PATH_VARIABLE:
        return _scalar(binding, request.path_variable(binding.lookup_name), PATH_VARIABLE_TYPES, "path variable")
    if kind == BindingKind.TOKEN_CLAIM:
        token = request.token
        value = token.claim(binding.lookup_name) if token is not None else None
        return _scalar(binding, value, casting.CASTERS, "token claim")
    if kind == BindingKind.REQUEST_PARAM:
        return _request_param(binding, request)
    if kind == BindingKind.MAP_BIND:
        return map_bind(request.data_map(), binding.rules)
    if kind == BindingKind.NONE:
        if binding.has_default:
            return binding.default
        if binding.nullable:
            return None

    raise HandlerConfigurationError(f"no binding declared for parameter {binding.arg_name!r}")


def bind_arguments(rule: RouteRule, request: Request) -> List[Any]:
    """
    Resolve every argument of ``rule`` in order.

    Raises:
        HandlerConfigurationError: naming the argument index and handler id
    """
    args = []
    for i, binding in enumerate(rule.argument_bindings):
        try:
            args.append(resolve_binding(binding, request))
        except Exception as e:
            reason = e.message if isinstance(e, HandlerConfigurationError) else str(e)
            raise HandlerConfigurationError(
                f"fail to inject arg{i} [{binding.arg_name}] for handler {rule.handler_id}: {reason}",
                handler_id=rule.handler_id,
                arg_index=i,
            ) from e
    return args


__all__ = [
    "sanitize",
    "parse_map_rule",
    "map_bind",
    "resolve_binding",
    "bind_arguments",
]
