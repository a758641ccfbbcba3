"""
Shared test fixtures and helpers for the dispatchkit test suite.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from dispatchkit.config import DispatchConfig
from dispatchkit.controller.cache import RouteCache
from dispatchkit.controller.compiler import RouteCompiler
from dispatchkit.dispatcher import RequestDispatcher
from dispatchkit.registry import WorkerRegistry
from dispatchkit.request import Request
from dispatchkit.security import JwtSettings, sign_token

FIXTURES_DIR = Path(__file__).parent / "fixtures"

JWT_SETTINGS = JwtSettings(issuer="dispatchkit-tests", secret="s3cret", ttl=3600)


# ============================================================================
# ASGI Helpers
# ============================================================================


def make_scope(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    client: Optional[tuple] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    for name, value in headers or []:
        raw_headers.append(
            (name.encode("latin-1") if isinstance(name, str) else name,
             value.encode("latin-1") if isinstance(value, str) else value)
        )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8"),
        "headers": raw_headers,
        "scheme": "http",
        "server": ("127.0.0.1", 8000),
        "client": client or ("127.0.0.1", 12345),
        "root_path": "",
    }


def make_receive(body: bytes = b"", *, chunks: Optional[List[bytes]] = None):
    """Create an ASGI receive callable from body bytes or a chunk list."""
    if chunks:
        messages = [
            {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1}
            for i, chunk in enumerate(chunks)
        ]
    else:
        messages = [{"type": "http.request", "body": body, "more_body": False}]

    idx = 0

    async def receive():
        nonlocal idx
        if idx < len(messages):
            msg = messages[idx]
            idx += 1
            return msg
        return {"type": "http.disconnect"}

    return receive


class SendRecorder:
    """Collects ASGI messages sent by an application."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def __call__(self, message: Dict[str, Any]):
        self.messages.append(message)

    @property
    def status(self) -> int:
        return self.messages[0]["status"]

    @property
    def headers(self) -> Dict[str, str]:
        return {k.decode(): v.decode() for k, v in self.messages[0]["headers"]}

    @property
    def body(self) -> bytes:
        return b"".join(m.get("body", b"") for m in self.messages if m["type"] == "http.response.body")


# ============================================================================
# Request / Token Helpers
# ============================================================================


def make_request(method: str = "GET", path: str = "/", **kwargs) -> Request:
    """Build a Request with a default peer address."""
    kwargs.setdefault("remote_addr", "127.0.0.1")
    return Request(method, path, **kwargs)


def make_token(claims: Optional[Dict[str, Any]] = None, settings: JwtSettings = JWT_SETTINGS) -> str:
    return sign_token(claims or {}, settings)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cache_path(tmp_path) -> Path:
    return tmp_path / "routes.json"


@pytest.fixture
def compiled(cache_path) -> Path:
    """Route cache compiled from the fixture controllers."""
    RouteCompiler(cache_path).compile(FIXTURES_DIR, ["api"])
    return cache_path


@pytest.fixture
def rules(compiled):
    return RouteCache(compiled).load()


@pytest.fixture
def config(compiled) -> DispatchConfig:
    return DispatchConfig(cache_file_path=str(compiled)).with_jwt_settings("default", JWT_SETTINGS)


@pytest.fixture
def registry(config) -> WorkerRegistry:
    return WorkerRegistry.bootstrap(config)


@pytest.fixture
def dispatcher(registry) -> RequestDispatcher:
    return RequestDispatcher(registry)


@pytest.fixture(autouse=True)
def reset_order_calls():
    """Clear the call log of the orders fixture controller."""
    yield
    import sys
    module = sys.modules.get("api.orders")
    if module is not None:
        module.OrdersController.calls.clear()
