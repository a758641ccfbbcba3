"""
Request - Immutable-ish HTTP request model used by the dispatcher.

The body is read up front by the transport adapter, so every accessor is
synchronous. Provides:
- Case-insensitive headers
- Query, form and uploaded-file access (form overrides query)
- Client IP resolution through proxy headers
- Bearer token parsing
- Path variables and context params set during dispatch
"""

from __future__ import annotations

import json
import time
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, unquote

from python_multipart import MultipartParser
from python_multipart.multipart import parse_options_header

from .security import Token


# ============================================================================
# Data structures
# ============================================================================

class Headers:
    """Case-insensitive header mapping (last value wins)."""

    def __init__(self, raw: Optional[Union[Mapping[str, str], List[Tuple[str, str]]]] = None):
        self._items: Dict[str, Tuple[str, str]] = {}
        pairs = raw.items() if isinstance(raw, Mapping) else (raw or [])
        for name, value in pairs:
            self._items[name.lower()] = (name, value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        item = self._items.get(name.lower())
        return item[1] if item else default

    def has(self, name: str) -> bool:
        return name.lower() in self._items

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._items.values())

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __getitem__(self, name: str) -> str:
        item = self._items.get(name.lower())
        if item is None:
            raise KeyError(name)
        return item[1]

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Headers({dict(self.items())!r})"


@dataclass
class UploadedFile:
    """A file received in a multipart request."""
    field_name: str
    filename: str
    content_type: str = "application/octet-stream"
    content: bytes = b""

    @property
    def size(self) -> int:
        return len(self.content)

    def save(self, dst: Union[str, Path]) -> Path:
        """Write the file to ``dst`` and return the path."""
        path = Path(dst)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.content)
        return path


def _pairs_to_dict(pairs: List[Tuple[str, str]]) -> Dict[str, Any]:
    """Collapse query pairs; repeated keys (or ``key[]``) become lists."""
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key.endswith("[]"):
            result.setdefault(key[:-2], []).append(value)
        elif key in result:
            existing = result[key]
            result[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            result[key] = value
    return result


def _xml_to_value(element: ElementTree.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()
    result: Dict[str, Any] = {}
    for child in children:
        value = _xml_to_value(child)
        if child.tag in result:
            existing = result[child.tag]
            result[child.tag] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            result[child.tag] = value
    return result


def parse_xml_map(body: Union[str, bytes]) -> Dict[str, Any]:
    """Parse an XML document into a dict of the root's children."""
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError:
        return {}
    value = _xml_to_value(root)
    return value if isinstance(value, dict) else {}


# ============================================================================
# Request
# ============================================================================

class Request:
    """
    HTTP request as seen by middleware, the argument binder and handlers.

    Args:
        method: HTTP verb
        path: Request path (query string excluded)
        query: Query parameters
        form: Parsed form fields
        headers: Request headers
        cookies: Cookies
        body: Raw body
        files: Uploaded files by form key
        remote_addr: Peer address
    """

    def __init__(
        self,
        method: str = "GET",
        path: str = "/",
        *,
        query: Optional[Mapping[str, Any]] = None,
        form: Optional[Mapping[str, Any]] = None,
        headers: Optional[Union[Mapping[str, str], List[Tuple[str, str]]]] = None,
        cookies: Optional[Mapping[str, str]] = None,
        body: Union[bytes, str] = b"",
        files: Optional[Mapping[str, UploadedFile]] = None,
        remote_addr: str = "",
    ):
        self.method = method.upper()
        self.path = path or "/"
        self.query_params: Dict[str, Any] = dict(query or {})
        self.form_data: Dict[str, Any] = dict(form or {})
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self.cookies: Dict[str, str] = dict(cookies or {})
        self.body = body.encode() if isinstance(body, str) else body
        self.files: Dict[str, UploadedFile] = dict(files or {})
        self.remote_addr = remote_addr
        self.path_variables: Dict[str, str] = {}
        self.context: Dict[str, Any] = {}
        self.exec_start = time.perf_counter()
        self._token: Optional[Token] = None
        self._token_parsed = False

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url}>"

    # ========================================================================
    # URL & headers
    # ========================================================================

    @property
    def url(self) -> str:
        """Path with surrounding slashes trimmed and a leading slash ensured."""
        return "/" + unquote(self.path).strip("/")

    @property
    def query_string(self) -> str:
        return "&".join(f"{k}={v}" for k, v in self.query_params.items())

    def url_with_query(self) -> str:
        qs = self.query_string
        return f"{self.url}?{qs}" if qs else self.url

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name, default)

    @property
    def content_type(self) -> str:
        return self.header("content-type").lower()

    @property
    def is_json(self) -> bool:
        return "application/json" in self.content_type

    @property
    def is_xml(self) -> bool:
        ct = self.content_type
        return "application/xml" in ct or "text/xml" in ct

    def accepts_encoding(self, encoding: str) -> bool:
        return encoding in self.header("accept-encoding").lower()

    @property
    def client_ip(self) -> str:
        """X-Forwarded-For (first entry), then X-Real-IP, then the peer address."""
        ip = self.header("x-forwarded-for") or self.header("x-real-ip") or self.remote_addr
        if not ip:
            return ""
        return ip.strip().split(",")[0].strip()

    # ========================================================================
    # Token
    # ========================================================================

    @property
    def token(self) -> Optional[Token]:
        """Bearer token from the Authorization header (parsed, not verified)."""
        if not self._token_parsed:
            self._token_parsed = True
            auth = " ".join(self.header("authorization").split())
            if auth:
                raw = auth.rsplit(" ", 1)[-1]
                self._token = Token.parse(raw)
        return self._token

    # ========================================================================
    # Data access
    # ========================================================================

    def request_params(self) -> Dict[str, Any]:
        """Query merged with form data (form wins)."""
        return {**self.query_params, **self.form_data}

    def request_param(self, name: str, default: Any = None) -> Any:
        return self.request_params().get(name, default)

    def path_variable(self, name: str, default: Any = None) -> Any:
        return self.path_variables.get(name, default)

    def uploaded_file(self, key: str) -> Optional[UploadedFile]:
        return self.files.get(key)

    def json(self) -> Any:
        """Decode the JSON body; None when empty or invalid."""
        if not self.body:
            return None
        try:
            return json.loads(self.body)
        except ValueError:
            return None

    def data_map(self) -> Dict[str, Any]:
        """
        Request data used by validation and map binding.

        Query for GET, the JSON body for JSON requests, the XML body for XML
        requests, otherwise query merged with form.
        """
        if self.method == "GET":
            data = self.query_params
        elif self.is_json:
            data = self.json()
        elif self.is_xml:
            data = parse_xml_map(self.body)
        else:
            data = self.request_params()
        return dict(data) if isinstance(data, dict) else {}

    def with_context_param(self, name: str, value: Any) -> "Request":
        self.context[name] = value
        return self

    def context_param(self, name: str, default: Any = None) -> Any:
        return self.context.get(name, default)

    # ========================================================================
    # Construction
    # ========================================================================

    @classmethod
    def from_asgi(cls, scope: Mapping[str, Any], body: bytes = b"") -> "Request":
        """Build a request from an ASGI http scope and its fully read body."""
        headers = [
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in scope.get("headers", [])
        ]
        request_headers = Headers(headers)

        query_string = scope.get("query_string", b"")
        if isinstance(query_string, bytes):
            query_string = query_string.decode("latin-1")
        query = _pairs_to_dict(parse_qsl(query_string, keep_blank_values=True))

        cookies: Dict[str, str] = {}
        cookie_header = request_headers.get("cookie")
        if cookie_header:
            jar = SimpleCookie()
            jar.load(cookie_header)
            cookies = {key: morsel.value for key, morsel in jar.items()}

        form: Dict[str, Any] = {}
        files: Dict[str, UploadedFile] = {}
        content_type = request_headers.get("content-type", "") or ""
        if "application/x-www-form-urlencoded" in content_type.lower():
            form = _pairs_to_dict(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))
        elif "multipart/form-data" in content_type.lower():
            form, files = parse_multipart(body, content_type)

        client = scope.get("client")
        return cls(
            method=scope.get("method", "GET"),
            path=scope.get("path", "/"),
            query=query,
            form=form,
            headers=request_headers,
            cookies=cookies,
            body=body,
            files=files,
            remote_addr=client[0] if client else "",
        )


def parse_multipart(body: bytes, content_type: str) -> Tuple[Dict[str, Any], Dict[str, UploadedFile]]:
    """Parse a multipart/form-data body into form fields and uploaded files."""
    _, options = parse_options_header(content_type)
    boundary = options.get(b"boundary")
    if not boundary:
        return {}, {}

    fields: List[Tuple[str, str]] = []
    files: Dict[str, UploadedFile] = {}
    state: Dict[str, Any] = {}

    def on_part_begin():
        state.update(headers={}, field=bytearray(), value=bytearray(), data=bytearray())

    def on_header_field(data: bytes, start: int, end: int):
        state["field"].extend(data[start:end])

    def on_header_value(data: bytes, start: int, end: int):
        state["value"].extend(data[start:end])

    def on_header_end():
        if state["field"]:
            name = state["field"].decode("utf-8", errors="replace").lower()
            state["headers"][name] = state["value"].decode("utf-8", errors="replace")
        state["field"] = bytearray()
        state["value"] = bytearray()

    def on_part_data(data: bytes, start: int, end: int):
        state["data"].extend(data[start:end])

    def on_part_end():
        _, disposition = parse_options_header(state["headers"].get("content-disposition", ""))
        name = disposition.get(b"name")
        if not name:
            return
        name = name.decode("utf-8", errors="replace")
        filename = disposition.get(b"filename")
        if filename:
            files[name] = UploadedFile(
                field_name=name,
                filename=Path(filename.decode("utf-8", errors="replace")).name,
                content_type=state["headers"].get("content-type", "application/octet-stream"),
                content=bytes(state["data"]),
            )
        else:
            fields.append((name, state["data"].decode("utf-8", errors="replace")))

    parser = MultipartParser(boundary, {
        "on_part_begin": on_part_begin,
        "on_part_data": on_part_data,
        "on_part_end": on_part_end,
        "on_header_field": on_header_field,
        "on_header_value": on_header_value,
        "on_header_end": on_header_end,
    })
    parser.write(body)
    parser.finalize()

    return _pairs_to_dict(fields), files


__all__ = ["Headers", "UploadedFile", "Request", "parse_xml_map", "parse_multipart"]
