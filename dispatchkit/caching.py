"""
Cache stores - key/value contract used by the rate limiter and other
collaborators.

Provides:
- ``CacheStore``: abstract contract (get/set/delete/has/clear plus batch
  variants), string keys with a configurable prefix
- ``MemoryCache``: process-local dict store
- ``FileCache``: one JSON file per key, safe across processes
- ``NullCache``: stores nothing

Stores are synchronous; async callers go through ``dispatchkit._io.bounded``.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

logger = logging.getLogger("dispatchkit.caching")


# ============================================================================
# Cache Entry & Stats
# ============================================================================

@dataclass(slots=True)
class CacheEntry:
    """Single cache entry with an optional absolute expiry (epoch seconds)."""
    value: Any
    expires_at: Optional[float] = None

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at

    @property
    def ttl_remaining(self) -> Optional[float]:
        """Remaining TTL in seconds, or None if no expiry."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.time())


@dataclass
class CacheStats:
    """Aggregate cache statistics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    backend: str = "unknown"

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100.0


def _expiry(ttl: Optional[float]) -> Optional[float]:
    if ttl is None or ttl <= 0:
        return None
    return time.time() + ttl


# ============================================================================
# Store contract
# ============================================================================

class CacheStore(ABC):
    """
    Abstract cache store.

    Public methods take unprefixed keys; backends implement the
    underscore methods on fully prefixed keys.
    """

    name = "abstract"

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.stats = CacheStats(backend=self.name)

    def build_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    # ── backend primitives ───────────────────────────────────────────

    @abstractmethod
    def _read(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    def _write(self, key: str, entry: CacheEntry) -> None:
        ...

    @abstractmethod
    def _remove(self, key: str) -> bool:
        ...

    @abstractmethod
    def _clear(self) -> int:
        ...

    @contextmanager
    def _atomic(self, key: str) -> Iterator[None]:
        """Serialize read-modify-write cycles on ``key``."""
        yield

    # ── contract ─────────────────────────────────────────────────────

    def _live(self, full_key: str) -> Optional[CacheEntry]:
        entry = self._read(full_key)
        if entry is not None and entry.is_expired:
            self._remove(full_key)
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(self.build_key(key))
        if entry is None:
            self.stats.misses += 1
            return default
        self.stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store ``value``; ``ttl`` in seconds (None or <= 0 means no expiry)."""
        self._write(self.build_key(key), CacheEntry(value=value, expires_at=_expiry(ttl)))
        self.stats.sets += 1

    def delete(self, key: str) -> bool:
        removed = self._remove(self.build_key(key))
        if removed:
            self.stats.deletes += 1
        return removed

    def has(self, key: str) -> bool:
        return self._live(self.build_key(key)) is not None

    def clear(self) -> int:
        """Remove every entry under this store's prefix."""
        return self._clear()

    def get_many(self, keys: Iterable[str], default: Any = None) -> Dict[str, Any]:
        return {key: self.get(key, default) for key in keys}

    def set_many(self, items: Dict[str, Any], ttl: Optional[float] = None) -> None:
        for key, value in items.items():
            self.set(key, value, ttl)

    def delete_many(self, keys: Iterable[str]) -> int:
        return sum(1 for key in keys if self.delete(key))

    def ttl(self, key: str) -> Optional[float]:
        entry = self._live(self.build_key(key))
        return entry.ttl_remaining if entry is not None else None

    def increment(self, key: str, delta: int = 1, ttl: Optional[float] = None) -> int:
        """
        Add ``delta`` to a counter and return the new value.

        A missing or expired counter starts at ``delta`` with ``ttl``; an
        existing one keeps its expiry.
        """
        full_key = self.build_key(key)
        with self._atomic(full_key):
            entry = self._live(full_key)
            if entry is None:
                entry = CacheEntry(value=delta, expires_at=_expiry(ttl))
            else:
                try:
                    entry = CacheEntry(value=int(entry.value) + delta, expires_at=entry.expires_at)
                except (TypeError, ValueError):
                    entry = CacheEntry(value=delta, expires_at=_expiry(ttl))
            self._write(full_key, entry)
            return entry.value


# ============================================================================
# Backends
# ============================================================================

class MemoryCache(CacheStore):
    """
    Process-local LRU store; thread-safe.

    Expired entries are swept on write once the earliest known expiry has
    passed. At ``max_size`` entries the least recently used one is evicted.
    """

    name = "memory"

    def __init__(self, prefix: str = "", max_size: int = 10000):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        super().__init__(prefix)
        self.max_size = max_size
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._next_expiry: Optional[float] = None
        self._lock = threading.RLock()

    def _read(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._store.get(key)
            if entry is not None:
                self._store.move_to_end(key)
            return entry

    def _write(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            if self._next_expiry is not None and time.time() >= self._next_expiry:
                self.purge_expired()

            if key in self._store:
                self._store.move_to_end(key)
            else:
                while len(self._store) >= self.max_size:
                    self._store.popitem(last=False)
                    self.stats.evictions += 1
            self._store[key] = entry

            if entry.expires_at is not None and (
                self._next_expiry is None or entry.expires_at < self._next_expiry
            ):
                self._next_expiry = entry.expires_at

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = time.time()
            expired = [k for k, e in self._store.items() if e.expires_at is not None and e.expires_at <= now]
            for k in expired:
                del self._store[k]
            pending = [e.expires_at for e in self._store.values() if e.expires_at is not None]
            self._next_expiry = min(pending) if pending else None
            return len(expired)

    def _remove(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def _clear(self) -> int:
        with self._lock:
            keys = [k for k in self._store if k.startswith(self.prefix)]
            for k in keys:
                del self._store[k]
            return len(keys)

    @contextmanager
    def _atomic(self, key: str) -> Iterator[None]:
        with self._lock:
            yield

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class FileCache(CacheStore):
    """
    One JSON file per key under ``directory``.

    Writes go to a temporary file and are moved into place; counter
    updates hold an exclusive ``flock`` on a per-key lock file.
    """

    name = "file"

    def __init__(self, directory: Union[str, Path], prefix: str = ""):
        super().__init__(prefix)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _read(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("Discarding corrupt cache file %s", path)
            path.unlink(missing_ok=True)
            return None
        return CacheEntry(value=data.get("value"), expires_at=data.get("expires_at"))

    def _write(self, key: str, entry: CacheEntry) -> None:
        path = self._path(key)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(self.directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"key": key, "value": entry.value, "expires_at": entry.expires_at}, f)
            os.replace(tmp_name, path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _remove(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def _clear(self) -> int:
        count = 0
        for path in self.directory.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                continue
            if str(data.get("key", "")).startswith(self.prefix):
                path.unlink(missing_ok=True)
                count += 1
        return count

    @contextmanager
    def _atomic(self, key: str) -> Iterator[None]:
        lock_path = self._path(key).with_suffix(".lock")
        with open(lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class NullCache(CacheStore):
    """Stores nothing; every read misses."""

    name = "null"

    def _read(self, key: str) -> Optional[CacheEntry]:
        return None

    def _write(self, key: str, entry: CacheEntry) -> None:
        pass

    def _remove(self, key: str) -> bool:
        return False

    def _clear(self) -> int:
        return 0


def create_cache(backend: str = "memory", *, prefix: str = "", directory: Optional[str] = None) -> CacheStore:
    """
    Build a store by backend name (memory, file, null).

    Raises:
        ValueError: unknown backend or missing directory for ``file``
    """
    if backend == "memory":
        return MemoryCache(prefix)
    if backend == "file":
        if not directory:
            raise ValueError("file cache requires a directory")
        return FileCache(directory, prefix)
    if backend == "null":
        return NullCache(prefix)
    raise ValueError(f"Unknown cache backend: {backend}")


__all__ = [
    "CacheEntry",
    "CacheStats",
    "CacheStore",
    "MemoryCache",
    "FileCache",
    "NullCache",
    "create_cache",
]
