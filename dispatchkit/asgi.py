"""
ASGI adapter - bridges the ASGI protocol to the dispatcher.

Handles ``http`` and ``lifespan`` scopes. The registry is either given
directly or produced when the lifespan starts (lazily on the first request
when the server sends no lifespan events), from a ``DispatchConfig`` via
``WorkerRegistry.bootstrap_async`` or from a sync or async factory.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .config import DispatchConfig
from .dispatcher import RequestDispatcher
from .registry import WorkerRegistry
from .request import Request
from .response import HttpError, Response

RegistryFactory = Callable[[], Union[WorkerRegistry, Awaitable[WorkerRegistry]]]


class DispatchApp:
    """
    ASGI 3 application.

    Example:
        ```python
        app = DispatchApp(config)
        app = DispatchApp(lambda: WorkerRegistry.bootstrap_async(config, rate_limiter=limiter))
        ```
    """

    def __init__(self, registry_or_factory: Union[WorkerRegistry, DispatchConfig, RegistryFactory]):
        self.logger = logging.getLogger("dispatchkit.asgi")
        self._factory: Optional[RegistryFactory] = None
        self._dispatcher: Optional[RequestDispatcher] = None
        if isinstance(registry_or_factory, WorkerRegistry):
            self._dispatcher = RequestDispatcher(registry_or_factory)
        elif isinstance(registry_or_factory, DispatchConfig):
            config = registry_or_factory
            self._factory = lambda: WorkerRegistry.bootstrap_async(config)
        elif callable(registry_or_factory):
            self._factory = registry_or_factory
        else:
            raise TypeError(
                f"expected a WorkerRegistry, a DispatchConfig or a factory, got {type(registry_or_factory).__name__}"
            )

    @property
    def registry(self) -> Optional[WorkerRegistry]:
        return self._dispatcher.registry if self._dispatcher else None

    async def _ensure_dispatcher(self) -> RequestDispatcher:
        if self._dispatcher is None:
            registry = self._factory()
            if inspect.isawaitable(registry):
                registry = await registry
            self._dispatcher = RequestDispatcher(registry)
        return self._dispatcher

    # ------------------------------------------------------------------
    # ASGI entry point
    # ------------------------------------------------------------------

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)
        else:
            self.logger.warning("Unsupported ASGI scope type: %s", scope_type)

    async def _read_body(self, receive: Callable) -> bytes:
        chunks = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        body = await self._read_body(receive)
        try:
            dispatcher = await self._ensure_dispatcher()
            request = Request.from_asgi(scope, body)
        except Exception as e:
            self.logger.error("Cannot serve %s: %s", scope.get("path", "/"), e, exc_info=True)
            await Response().with_payload(HttpError(500)).send_asgi(send)
            return

        response = await dispatcher.dispatch(request)
        await response.send_asgi(send)

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable):
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                try:
                    await self._ensure_dispatcher()
                    self.logger.debug("Dispatch startup complete")
                    await send({"type": "lifespan.startup.complete"})
                except Exception as e:
                    self.logger.error("Startup error: %s", e, exc_info=True)
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    raise

            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                break


def run(app: DispatchApp, host: str = "127.0.0.1", port: int = 8000, log_level: str = "info", **options: Any) -> None:
    """Serve ``app`` with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("dispatchkit.asgi").info("Starting uvicorn server on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level=log_level, **options)


__all__ = ["DispatchApp", "run"]
