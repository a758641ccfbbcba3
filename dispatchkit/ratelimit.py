"""
Rate limiting.

The dispatcher only reads ``total``/``remaining``/``retry_after`` from a
``RateLimiter``; the counter itself lives in a shared store.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .caching import CacheStore


@dataclass(frozen=True)
class RateLimitInfo:
    """
    Counter state after one hit.

    ``remaining`` goes negative once the budget is exhausted.
    """
    total: int
    remaining: int
    retry_after: int = 0

    @property
    def exceeded(self) -> bool:
        return self.remaining < 0


@runtime_checkable
class RateLimiter(Protocol):
    def hit(self, key: str, total: int, window_seconds: int) -> RateLimitInfo:
        """Count one request for ``key`` and report the remaining budget."""
        ...


class CacheRateLimiter:
    """
    Fixed-window limiter backed by a ``CacheStore`` counter.

    The first hit opens a window of ``window_seconds``; the counter expires
    with it.
    """

    def __init__(self, store: CacheStore, key_prefix: str = "ratelimit:"):
        self.store = store
        self.key_prefix = key_prefix

    def hit(self, key: str, total: int, window_seconds: int) -> RateLimitInfo:
        counter_key = f"{self.key_prefix}{key}"
        count = self.store.increment(counter_key, 1, ttl=window_seconds)
        ttl = self.store.ttl(counter_key)
        retry_after = int(math.ceil(ttl)) if ttl else 0
        return RateLimitInfo(total=total, remaining=total - count, retry_after=retry_after)

    def reset(self, key: str) -> bool:
        return self.store.delete(f"{self.key_prefix}{key}")


def limiter_key(handler_id: str, client_ip: str = "", by_ip: bool = False) -> str:
    """Handler id, suffixed with ``@<client ip>`` when counting per IP."""
    if by_ip:
        return f"{handler_id}@{client_ip}"
    return handler_id


__all__ = ["RateLimitInfo", "RateLimiter", "CacheRateLimiter", "limiter_key"]
