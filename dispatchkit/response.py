"""
Response - payload normalization and ASGI transmission.

Handlers return a ``ResponsePayload``, a ``dict``/``list`` (JSON), a
``str`` (HTML), ``None`` (204) or an ``HttpError``. The dispatcher hands the
result, or the exception that ended the pipeline, to ``Response`` which
turns it into a status, headers and body.
"""

from __future__ import annotations

import gzip
import json
import logging
import mimetypes
from abc import ABC, abstractmethod
from http import HTTPStatus
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import quote
from xml.sax.saxutils import escape

from .faults import Fault, MethodNotAllowed, RateLimitExceeded, UnhandledException
from .security import CorsSettings

logger = logging.getLogger("dispatchkit.response")

POWERED_BY = "dispatchkit"
UNSUPPORTED_PAYLOAD = "unsupported response payload"


# ============================================================================
# Errors & payloads
# ============================================================================

class HttpError(Exception):
    """
    Bare HTTP error status.

    May be returned or raised by a handler; renders with an empty body.
    """

    def __init__(self, status: int = 500):
        super().__init__(f"HTTP {status}")
        self.status = status

    def __repr__(self) -> str:
        return f"HttpError({self.status})"


class ResponsePayload(ABC):
    """Typed response body with its content type."""

    content_type: str = "text/plain; charset=utf-8"
    status: int = 200
    binary: bool = False

    @abstractmethod
    def contents(self) -> Union[str, bytes, HttpError]:
        ...

    def headers(self) -> Dict[str, str]:
        """Headers sent with the body."""
        return {}


class JsonPayload(ResponsePayload):
    content_type = "application/json; charset=utf-8"

    def __init__(self, data: Any, status: int = 200):
        self.data = data
        self.status = status

    def contents(self) -> str:
        return json.dumps(self.data, ensure_ascii=False, default=str)


class HtmlPayload(ResponsePayload):
    content_type = "text/html; charset=utf-8"

    def __init__(self, html: str, status: int = 200):
        self.html = html
        self.status = status

    def contents(self) -> str:
        return self.html


class TextPayload(ResponsePayload):
    content_type = "text/plain; charset=utf-8"

    def __init__(self, text: str, status: int = 200):
        self.text = text
        self.status = status

    def contents(self) -> str:
        return self.text


def _to_xml(tag: str, value: Any) -> str:
    if isinstance(value, dict):
        inner = "".join(_to_xml(str(k), v) for k, v in value.items())
    elif isinstance(value, (list, tuple)):
        inner = "".join(_to_xml("item", v) for v in value)
    elif value is None:
        inner = ""
    elif isinstance(value, bool):
        inner = "true" if value else "false"
    else:
        inner = escape(str(value))
    return f"<{tag}>{inner}</{tag}>"


class XmlPayload(ResponsePayload):
    """XML body from a string document or a mapping (rendered under ``root``)."""

    content_type = "application/xml; charset=utf-8"

    def __init__(self, data: Union[str, Dict[str, Any]], root: str = "xml", status: int = 200):
        self.data = data
        self.root = root
        self.status = status

    def contents(self) -> str:
        if isinstance(self.data, str):
            return self.data
        return _to_xml(self.root, self.data)


class AttachmentPayload(ResponsePayload):
    """
    File download sent with ``Content-Disposition: attachment``.

    The body comes from an in-memory buffer or a file on disk. A missing
    download name, an empty buffer or an unreadable file renders as 400.
    Attachments are sent as-is: no gzip, no CORS headers.

    Example:
        ```python
        return AttachmentPayload.from_file("var/report.pdf", "report.pdf")
        ```
    """

    binary = True

    def __init__(self, filename: str, *, data: bytes = b"", path: Union[str, Path, None] = None):
        self.filename = filename
        self.data = data
        self.path = Path(path) if path is not None else None

    @classmethod
    def from_file(cls, path: Union[str, Path], filename: Optional[str] = None) -> "AttachmentPayload":
        return cls(filename if filename is not None else Path(path).name, path=path)

    @classmethod
    def from_buffer(cls, data: bytes, filename: str) -> "AttachmentPayload":
        return cls(filename, data=data)

    @property
    def content_type(self) -> str:  # type: ignore[override]
        if self.path is not None:
            media_type, _ = mimetypes.guess_type(str(self.path))
            if media_type:
                return media_type
        return "application/octet-stream"

    def contents(self) -> Union[bytes, HttpError]:
        if not self.filename:
            return HttpError(400)
        if self.data:
            return self.data
        if self.path is None or not self.path.is_file():
            return HttpError(400)
        return self.path.read_bytes()

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Transfer-Encoding": "binary",
            "Content-Disposition": f'attachment; filename="{quote(self.filename)}"',
            "Cache-Control": "no-cache, no-store, max-age=0, must-revalidate",
            "Pragma": "public",
        }


class ImagePayload(ResponsePayload):
    """
    Inline image from a buffer with an explicit MIME type, or from a file
    whose type is guessed from its name. Anything not ``image/*`` renders
    as 400. Sent as-is, like attachments.
    """

    binary = True

    def __init__(self, mime_type: str = "", *, data: bytes = b"", path: Union[str, Path, None] = None):
        self.mime_type = mime_type
        self.data = data
        self.path = Path(path) if path is not None else None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ImagePayload":
        media_type, _ = mimetypes.guess_type(str(path))
        if not media_type or not media_type.startswith("image/"):
            return cls()
        return cls(media_type, path=path)

    @classmethod
    def from_buffer(cls, data: bytes, mime_type: str) -> "ImagePayload":
        return cls(mime_type, data=data)

    @property
    def content_type(self) -> str:  # type: ignore[override]
        return self.mime_type

    def contents(self) -> Union[bytes, HttpError]:
        if not self.mime_type.startswith("image/"):
            return HttpError(400)
        if self.data:
            return self.data
        if self.path is None or not self.path.is_file():
            return HttpError(400)
        return self.path.read_bytes()


# ============================================================================
# Response
# ============================================================================

def reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


class Response:
    """
    Outgoing response for one request.

    Middleware may add headers with ``add_header`` at any point before
    ``render``; they are merged over the payload's headers.

    Args:
        gzip_enabled: Compress bodies when the client accepts gzip
        accept_encoding: Request ``Accept-Encoding`` header
        cors: Settings whose ``Access-Control-*`` headers are added
        origin: Request ``Origin`` header
    """

    def __init__(
        self,
        *,
        gzip_enabled: bool = False,
        accept_encoding: str = "",
        cors: Optional[CorsSettings] = None,
        origin: str = "",
    ):
        self.cors = cors
        self.origin = origin
        self.payload: Any = None
        self.extra_headers: Dict[str, str] = {}
        self.gzip_enabled = gzip_enabled
        self.accept_encoding = accept_encoding.lower()
        self.status = 200
        self.headers: Dict[str, str] = {}
        self.body = b""
        self._rendered = False

    def __repr__(self) -> str:
        return f"<Response {self.status}>"

    def with_payload(self, payload: Any) -> "Response":
        self.payload = payload
        self._rendered = False
        return self

    def add_header(self, name: str, value: str) -> "Response":
        self.extra_headers[name] = value
        self._rendered = False
        return self

    # ========================================================================
    # Normalization
    # ========================================================================

    def _normalize(self, payload: Any) -> Tuple[int, Dict[str, str], bytes]:
        headers: Dict[str, str] = {"X-Powered-By": POWERED_BY}

        if isinstance(payload, HttpError):
            return payload.status, headers, b""

        if isinstance(payload, RateLimitExceeded):
            headers.update(payload.headers())
            return 429, headers, b""

        if isinstance(payload, (dict, list)):
            payload = JsonPayload(payload)
        elif isinstance(payload, str):
            payload = HtmlPayload(payload)
        elif payload is None:
            return 204, headers, b""

        if isinstance(payload, ResponsePayload):
            contents = payload.contents()
            if isinstance(contents, HttpError):
                return contents.status, headers, b""
            headers["Content-Type"] = payload.content_type
            headers.update(payload.headers())
            body = contents.encode("utf-8") if isinstance(contents, str) else bytes(contents)
            return payload.status, headers, body

        if isinstance(payload, UnhandledException):
            logger.log(payload.severity.log_level, "Unhandled exception: %s", payload.cause, exc_info=payload.cause)
            return payload.status, headers, b""

        if isinstance(payload, Fault):
            if isinstance(payload, MethodNotAllowed):
                headers["Allow"] = ", ".join(payload.allowed)
            logger.log(
                payload.severity.log_level, "Fault %s", payload,
                exc_info=payload if payload.status >= 500 else None,
            )
            return payload.status, headers, b""

        if isinstance(payload, BaseException):
            logger.error("Unhandled exception: %s", payload, exc_info=payload)
            return 500, headers, b""

        headers["Content-Type"] = HtmlPayload.content_type
        return 200, headers, UNSUPPORTED_PAYLOAD.encode("utf-8")

    def render(self) -> "Response":
        """Compute ``status``, ``headers`` and ``body`` from the payload."""
        if self._rendered:
            return self

        status, headers, body = self._normalize(self.payload)
        binary = isinstance(self.payload, ResponsePayload) and self.payload.binary
        if self.cors is not None and not binary:
            headers.update(self.cors.headers(self.origin))
        headers.update(self.extra_headers)

        if (
            self.gzip_enabled
            and not binary
            and body
            and status < 400
            and "gzip" in self.accept_encoding
            and "Content-Encoding" not in headers
        ):
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"
            vary = headers.get("Vary")
            headers["Vary"] = f"{vary}, Accept-Encoding" if vary else "Accept-Encoding"

        if status != 204:
            headers["Content-Length"] = str(len(body))

        self.status, self.headers, self.body = status, headers, body
        self._rendered = True
        return self

    def json(self) -> Any:
        """Decode a JSON body (decompressing gzip)."""
        self.render()
        body = self.body
        if self.headers.get("Content-Encoding") == "gzip":
            body = gzip.decompress(body)
        return json.loads(body)

    def header_list(self) -> List[Tuple[bytes, bytes]]:
        self.render()
        return [(k.lower().encode("latin-1"), str(v).encode("latin-1")) for k, v in self.headers.items()]

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Send the rendered response through an ASGI ``send`` callable."""
        self.render()
        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self.header_list(),
        })
        await send({
            "type": "http.response.body",
            "body": self.body,
            "more_body": False,
        })


__all__ = [
    "HttpError",
    "ResponsePayload",
    "JsonPayload",
    "HtmlPayload",
    "TextPayload",
    "XmlPayload",
    "AttachmentPayload",
    "ImagePayload",
    "Response",
    "reason_phrase",
]
