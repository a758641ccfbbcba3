"""
Argument Binding Markers

Declarative markers describing how a handler argument is produced from a
live request. Markers are listed positionally with ``@bind(...)`` or placed
in ``typing.Annotated`` metadata; the extractor turns each into an
``ArgumentBinding`` stored on the compiled ``RouteRule``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union, get_args, get_origin


ARG_NAME_PLACEHOLDER = "{argName}"


class BindingKind(str, Enum):
    """How one handler argument's value is produced."""
    RAW_REQUEST = "raw_request"
    RAW_TOKEN = "raw_token"
    CLIENT_IP = "client_ip"
    HEADER = "header"
    RAW_BODY = "raw_body"
    UPLOADED_FILE = "uploaded_file"
    PATH_VARIABLE = "path_variable"
    TOKEN_CLAIM = "token_claim"
    REQUEST_PARAM = "request_param"
    MAP_BIND = "map_bind"
    NONE = "none"


class SanitizeMode(str, Enum):
    """Sanitization applied to string request parameters."""
    NONE = "none"
    HTML_PURIFY = "html_purify"
    STRIP_TAGS = "strip_tags"


SCALAR_TYPES = ("int", "float", "bool", "string", "array")

_TYPE_NAMES = {
    int: "int",
    float: "float",
    bool: "bool",
    str: "string",
    list: "array",
    tuple: "array",
    "int": "int",
    "float": "float",
    "bool": "bool",
    "str": "string",
    "string": "string",
    "list": "array",
    "array": "array",
}


def scalar_type_name(annotation: Any) -> str:
    """
    Map a Python annotation (or type name) to a binding scalar type.

    Unknown annotations keep their own name so the binder can report
    them; a missing annotation means ``string``.
    """
    if annotation is None or annotation is Any:
        return "string"

    origin = get_origin(annotation)
    if origin is Union:
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return scalar_type_name(args[0])
    if origin in (list, List, tuple, Tuple):
        return "array"

    try:
        if annotation in _TYPE_NAMES:
            return _TYPE_NAMES[annotation]
    except TypeError:
        pass

    return getattr(annotation, "__name__", str(annotation))


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


# ============================================================================
# Compiled binding
# ============================================================================

@dataclass(frozen=True)
class ArgumentBinding:
    """
    One compiled handler argument binding.

    Attributes:
        kind: Binding kind
        arg_name: Handler parameter name
        name: Lookup name (header, path variable, claim, param); may be
              the ``{argName}`` placeholder
        type: Scalar type (int, float, bool, string, array)
        default: Declared default, ``None`` when ``has_default`` is false
        has_default: Whether a default was declared
        nullable: An unbound parameter that accepts None
        sanitize: Sanitize mode for string request params
        decimal: Force 2-decimal normalization
        rules: MapBind rules
    """
    kind: BindingKind
    arg_name: str = ""
    name: str = ""
    type: str = ""
    default: Any = None
    has_default: bool = False
    nullable: bool = False
    sanitize: SanitizeMode = SanitizeMode.STRIP_TAGS
    decimal: bool = False
    rules: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def lookup_name(self) -> str:
        """Lookup name with ``{argName}`` substituted."""
        return self.name.replace(ARG_NAME_PLACEHOLDER, self.arg_name)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value, "arg_name": self.arg_name}
        if self.name:
            data["name"] = self.name
        if self.type:
            data["type"] = self.type
        if self.has_default:
            data["default"] = self.default
        if self.nullable:
            data["nullable"] = True
        if self.kind == BindingKind.REQUEST_PARAM:
            data["sanitize"] = self.sanitize.value
            data["decimal"] = self.decimal
        if self.rules:
            data["rules"] = list(self.rules)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArgumentBinding":
        return cls(
            kind=BindingKind(data["kind"]),
            arg_name=data.get("arg_name", ""),
            name=data.get("name", ""),
            type=data.get("type", ""),
            default=data.get("default"),
            has_default="default" in data,
            nullable=bool(data.get("nullable", False)),
            sanitize=SanitizeMode(data.get("sanitize", SanitizeMode.STRIP_TAGS.value)),
            decimal=bool(data.get("decimal", False)),
            rules=tuple(data.get("rules", ())),
        )


# ============================================================================
# Markers
# ============================================================================

class BindingMarker:
    """Base class for argument binding markers."""

    kind: BindingKind = BindingKind.NONE

    def to_binding(self, arg_name: str, annotation: Any = None) -> ArgumentBinding:
        return ArgumentBinding(kind=self.kind, arg_name=arg_name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class ClientIp(BindingMarker):
    """Bind the client IP address."""
    kind = BindingKind.CLIENT_IP


class RawBody(BindingMarker):
    """Bind the raw request body."""
    kind = BindingKind.RAW_BODY


class Header(BindingMarker):
    """Bind a request header (empty name means the parameter name)."""

    kind = BindingKind.HEADER

    def __init__(self, name: str = ""):
        self.name = name

    def to_binding(self, arg_name: str, annotation: Any = None) -> ArgumentBinding:
        return ArgumentBinding(kind=self.kind, arg_name=arg_name, name=self.name or ARG_NAME_PLACEHOLDER)

    def __repr__(self) -> str:
        return f"Header({self.name!r})"


class UploadedFile(BindingMarker):
    """Bind an uploaded file by form key."""

    kind = BindingKind.UPLOADED_FILE

    def __init__(self, key: str = ""):
        self.key = key

    def to_binding(self, arg_name: str, annotation: Any = None) -> ArgumentBinding:
        return ArgumentBinding(kind=self.kind, arg_name=arg_name, name=self.key or arg_name)

    def __repr__(self) -> str:
        return f"UploadedFile({self.key!r})"


class _ScalarMarker(BindingMarker):
    def __init__(self, name: str = "", *, type: Optional[Union[str, type]] = None, default: Any = MISSING):
        self.name = name
        self.type = type
        self.default = default

    def _scalar(self, annotation: Any) -> str:
        return scalar_type_name(self.type if self.type is not None else annotation)

    def to_binding(self, arg_name: str, annotation: Any = None) -> ArgumentBinding:
        has_default = self.default is not MISSING
        return ArgumentBinding(
            kind=self.kind,
            arg_name=arg_name,
            name=self.name or ARG_NAME_PLACEHOLDER,
            type=self._scalar(annotation),
            default=self.default if has_default else None,
            has_default=has_default,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class PathVariable(_ScalarMarker):
    """Bind a path variable, coerced to the parameter type."""
    kind = BindingKind.PATH_VARIABLE


class TokenClaim(_ScalarMarker):
    """Bind a claim of the request's bearer token."""
    kind = BindingKind.TOKEN_CLAIM


class RequestParam(_ScalarMarker):
    """
    Bind a query or form parameter (form overrides query).

    Args:
        name: Parameter name; empty means the handler parameter name
        type: Explicit scalar type, otherwise taken from the annotation
        default: Value used when the parameter is absent
        sanitize: Sanitization for string values
        decimal: Normalize the value to 2 decimal places
    """

    kind = BindingKind.REQUEST_PARAM

    def __init__(
        self,
        name: str = "",
        *,
        type: Optional[Union[str, type]] = None,
        default: Any = MISSING,
        sanitize: SanitizeMode = SanitizeMode.STRIP_TAGS,
        decimal: bool = False,
    ):
        super().__init__(name, type=type, default=default)
        self.sanitize = SanitizeMode(sanitize)
        self.decimal = decimal

    def to_binding(self, arg_name: str, annotation: Any = None) -> ArgumentBinding:
        base = super().to_binding(arg_name, annotation)
        return ArgumentBinding(
            kind=base.kind,
            arg_name=base.arg_name,
            name=base.name,
            type=base.type,
            default=base.default,
            has_default=base.has_default,
            sanitize=self.sanitize,
            decimal=self.decimal,
        )


class MapBind(BindingMarker):
    """Bind a dict built from request data filtered by ``name[:type[:default]]`` rules."""

    kind = BindingKind.MAP_BIND

    def __init__(self, *rules: str):
        self.rules = tuple(rules)

    def to_binding(self, arg_name: str, annotation: Any = None) -> ArgumentBinding:
        return ArgumentBinding(kind=self.kind, arg_name=arg_name, rules=self.rules)

    def __repr__(self) -> str:
        return f"MapBind{self.rules!r}"


__all__ = [
    "ARG_NAME_PLACEHOLDER",
    "BindingKind",
    "SanitizeMode",
    "SCALAR_TYPES",
    "MISSING",
    "scalar_type_name",
    "ArgumentBinding",
    "BindingMarker",
    "ClientIp",
    "RawBody",
    "Header",
    "UploadedFile",
    "PathVariable",
    "TokenClaim",
    "RequestParam",
    "MapBind",
]
