"""
Bounded I/O joins.

Blocking calls made from async code run in a worker thread and are
awaited with a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

from .faults import IOTimeoutFault

logger = logging.getLogger("dispatchkit.io")

T = TypeVar("T")

DEFAULT_TIMEOUT = 5.0


async def bounded(func: Callable[..., T], *args: Any, timeout: float = DEFAULT_TIMEOUT, operation: str = "") -> T:
    """
    Run ``func(*args)`` in a thread and wait at most ``timeout`` seconds.

    Raises:
        IOTimeoutFault: the call did not finish in time
    """
    name = operation or getattr(func, "__qualname__", repr(func))
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("I/O join timed out after %.3fs: %s", timeout, name)
        raise IOTimeoutFault(name, timeout) from None
