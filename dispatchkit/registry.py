"""
Worker registry - per-worker routing table, controller singletons,
middleware and exception handlers.

A registry is written during start-up, frozen, then only read while
serving. Each worker owns its own registry; nothing here is global.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, List, Optional, Sequence

from .caching import MemoryCache
from .config import DispatchConfig
from .controller.cache import RouteCache
from .controller.metadata import RouteRule
from .controller.router import PathMatcher
from .handlers import BUILTIN_HANDLERS, ExceptionHandler
from .middleware import (
    AuthenticationMiddleware,
    ExecuteTimeLogMiddleware,
    Middleware,
    MiddlewareStack,
    RateLimitMiddleware,
    RequestLogMiddleware,
    ValidationMiddleware,
)
from .ratelimit import CacheRateLimiter, RateLimiter
from .validation import DataValidator

logger = logging.getLogger("dispatchkit.registry")


class _Unavailable:
    """Marks a controller type whose construction failed."""

    def __repr__(self) -> str:
        return "UNAVAILABLE"

    def __bool__(self) -> bool:
        return False


UNAVAILABLE = _Unavailable()


class WorkerRegistry:
    """
    State owned by one worker.

    Args:
        worker_id: Partition id (None for the one-shot model)
        config: Dispatch settings
    """

    def __init__(self, worker_id: Optional[Hashable] = None, config: Optional[DispatchConfig] = None):
        self.worker_id = worker_id
        self.config = config or DispatchConfig()
        self._routes: List[RouteRule] = []
        self._matcher = PathMatcher([])
        self._controllers: Dict[type, Any] = {}
        self._middleware = MiddlewareStack()
        self._exception_handlers: List[ExceptionHandler] = []
        self._frozen = False

        for handler_cls in BUILTIN_HANDLERS:
            self._exception_handlers.append(handler_cls())

    def __repr__(self) -> str:
        return (
            f"<WorkerRegistry worker={self.worker_id!r} routes={len(self._routes)} "
            f"middlewares={len(self._middleware.middlewares)} frozen={self._frozen}>"
        )

    # ========================================================================
    # Write phase
    # ========================================================================

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "WorkerRegistry":
        """End the start-up write phase."""
        self._frozen = True
        logger.debug("Registry for worker %r frozen with %d routes", self.worker_id, len(self._routes))
        return self

    def _check_writable(self, operation: str) -> None:
        if self._frozen:
            logger.warning(
                "%s on frozen registry for worker %r; in-flight requests may not see it",
                operation,
                self.worker_id,
            )

    # ========================================================================
    # Routes
    # ========================================================================

    def set_route_table(self, rules: Sequence[RouteRule]) -> None:
        self._check_writable("set_route_table")
        self._routes = list(rules)
        self._matcher = PathMatcher(self._routes)

    def get_route_table(self) -> List[RouteRule]:
        return list(self._routes)

    @property
    def matcher(self) -> PathMatcher:
        return self._matcher

    # ========================================================================
    # Controllers
    # ========================================================================

    def get_or_create_controller(self, controller_type: type) -> Any:
        """
        Singleton instance of ``controller_type`` for this worker.

        Construction failure is logged and remembered; ``UNAVAILABLE`` is
        returned then and on every later call.
        """
        instance = self._controllers.get(controller_type)
        if instance is not None:
            return instance

        try:
            instance = controller_type()
        except Exception:
            logger.error("Cannot construct controller %s", controller_type.__qualname__, exc_info=True)
            instance = UNAVAILABLE

        self._controllers[controller_type] = instance
        return instance

    # ========================================================================
    # Middleware
    # ========================================================================

    def register_middleware(self, middleware: Middleware) -> None:
        """Add ``middleware``; an instance of the same type is replaced in place."""
        self._check_writable("register_middleware")
        self._middleware.check_order(middleware)
        items = self._middleware.middlewares
        for i, existing in enumerate(items):
            if type(existing) is type(middleware):
                items[i] = middleware
                return
        self._middleware.add(middleware)

    @property
    def middleware(self) -> MiddlewareStack:
        return self._middleware

    @property
    def middlewares(self) -> List[Middleware]:
        return list(self._middleware.middlewares)

    # ========================================================================
    # Exception handlers
    # ========================================================================

    def register_exception_handler(self, handler: ExceptionHandler) -> None:
        """Add ``handler``; one registered for the same target type is replaced."""
        self._check_writable("register_exception_handler")
        for i, existing in enumerate(self._exception_handlers):
            if existing.target_type_name == handler.target_type_name:
                self._exception_handlers[i] = handler
                return
        self._exception_handlers.append(handler)

    @property
    def exception_handlers(self) -> List[ExceptionHandler]:
        return list(self._exception_handlers)

    # ========================================================================
    # Bootstrap
    # ========================================================================

    @classmethod
    def bootstrap(
        cls,
        config: Optional[DispatchConfig] = None,
        worker_id: Optional[Hashable] = None,
        *,
        rules: Optional[Sequence[RouteRule]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        validator: Optional[DataValidator] = None,
    ) -> "WorkerRegistry":
        """
        Build and freeze a registry.

        Routes come from ``rules`` when given, otherwise from the cache
        artifact at ``config.cache_file_path``. Built-in middleware is
        registered first, then the configured middleware and handlers.
        """
        config = config or DispatchConfig()
        if rules is None:
            rules = RouteCache(config.cache_file_path).load()
        return cls._assemble(config, worker_id, rules, rate_limiter, validator)

    @classmethod
    async def bootstrap_async(
        cls,
        config: Optional[DispatchConfig] = None,
        worker_id: Optional[Hashable] = None,
        *,
        rules: Optional[Sequence[RouteRule]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        validator: Optional[DataValidator] = None,
    ) -> "WorkerRegistry":
        """
        ``bootstrap`` for async start-up.

        The route cache is read as a bounded I/O join limited by
        ``config.io_timeout``; ``IOTimeoutFault`` is raised when it expires.
        """
        config = config or DispatchConfig()
        if rules is None:
            rules = await RouteCache(config.cache_file_path).load_async(config.io_timeout)
        return cls._assemble(config, worker_id, rules, rate_limiter, validator)

    @classmethod
    def _assemble(
        cls,
        config: DispatchConfig,
        worker_id: Optional[Hashable],
        rules: Sequence[RouteRule],
        rate_limiter: Optional[RateLimiter],
        validator: Optional[DataValidator],
    ) -> "WorkerRegistry":
        registry = cls(worker_id, config)
        if not rules:
            logger.warning("No routes loaded from %s", config.cache_file_path)
        registry.set_route_table(rules)

        if config.request_log_enabled:
            registry.register_middleware(RequestLogMiddleware())
        registry.register_middleware(AuthenticationMiddleware(config.jwt_settings))
        registry.register_middleware(
            RateLimitMiddleware(rate_limiter or CacheRateLimiter(MemoryCache()), timeout=config.io_timeout)
        )
        registry.register_middleware(ValidationMiddleware(validator))
        if config.execute_time_log_enabled:
            registry.register_middleware(ExecuteTimeLogMiddleware())

        for middleware in config.middlewares:
            registry.register_middleware(middleware)
        for handler in config.exception_handlers:
            registry.register_exception_handler(handler)

        logger.info("Worker %r ready with %d routes", worker_id, len(registry._routes))
        return registry.freeze()


class WorkerRegistries:
    """
    One isolated registry per worker id, built on first request for it.

    Worker id ``None`` is the single partition of the one-shot model.
    """

    def __init__(self, config: Optional[DispatchConfig] = None, **bootstrap_kwargs: Any):
        self.config = config or DispatchConfig()
        self._bootstrap_kwargs = bootstrap_kwargs
        self._registries: Dict[Optional[Hashable], WorkerRegistry] = {}

    def get(self, worker_id: Optional[Hashable] = None) -> WorkerRegistry:
        registry = self._registries.get(worker_id)
        if registry is None:
            registry = WorkerRegistry.bootstrap(self.config, worker_id, **self._bootstrap_kwargs)
            self._registries[worker_id] = registry
        return registry

    def __contains__(self, worker_id: Optional[Hashable]) -> bool:
        return worker_id in self._registries

    def __len__(self) -> int:
        return len(self._registries)


__all__ = ["UNAVAILABLE", "WorkerRegistry", "WorkerRegistries"]
