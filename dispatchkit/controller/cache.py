"""
Route Cache - file-backed snapshot of the compiled route table.

The artifact is a single JSON document::

    {"format": 1, "generated_at": "...", "digest": "<sha256>", "rules": [...]}

Writers hold an exclusive ``flock`` on ``<artifact>.lock`` and replace the
artifact atomically, so readers see either the old or the new snapshot.
A missing or unreadable artifact loads as an empty table.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence, Union

from .loader import resolve_controller
from .metadata import RouteRule
from .._io import DEFAULT_TIMEOUT, bounded

logger = logging.getLogger("dispatchkit.compiler")

CACHE_FORMAT = 1


def rules_digest(rule_dicts: List[Dict[str, Any]]) -> str:
    """SHA-256 of the canonical JSON encoding of ``rule_dicts``."""
    canonical = json.dumps(rule_dicts, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class RouteCache:
    """
    Route table artifact at ``path``.

    Example:
        ```python
        cache = RouteCache("var/routes.json")
        rules = cache.load()
        ```
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def exists(self) -> bool:
        return self.path.is_file()

    def __repr__(self) -> str:
        return f"RouteCache({str(self.path)!r})"

    # ── Read ─────────────────────────────────────────────────────────

    def load(self) -> List[RouteRule]:
        """
        Load the snapshot.

        Returns an empty list (never raises) when the file is missing or
        cannot be decoded.
        """
        if not self.path.is_file():
            return []

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            return self._decode(document)
        except Exception as e:
            logger.warning("Ignoring unreadable route cache %s: %s", self.path, e)
            return []

    def _decode(self, document: Dict[str, Any]) -> List[RouteRule]:
        if document.get("format") != CACHE_FORMAT:
            raise ValueError(f"unsupported format {document.get('format')!r}")

        rule_dicts = document["rules"]
        digest = document.get("digest")
        if digest and digest != rules_digest(rule_dicts):
            raise ValueError("digest mismatch")

        rules = []
        controllers: Dict[str, Any] = {}
        for data in rule_dicts:
            ref = data.get("controller_ref", "")
            if ref not in controllers:
                controllers[ref] = resolve_controller(ref, data.get("source_file"))
                if controllers[ref] is None:
                    logger.warning("Controller %s not importable; its routes will fail at dispatch", ref)
            rules.append(RouteRule.from_dict(data, controller=controllers[ref]))
        return rules

    async def load_async(self, timeout: float = DEFAULT_TIMEOUT) -> List[RouteRule]:
        """``load`` as a bounded I/O join."""
        return await bounded(self.load, timeout=timeout, operation=f"load {self.path}")

    # ── Write ────────────────────────────────────────────────────────

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def dump(self, rules: Sequence[RouteRule]) -> str:
        """
        Write a full snapshot of ``rules``.

        Returns:
            Digest of the written rules
        """
        rule_dicts = [rule.to_dict() for rule in rules]
        digest = rules_digest(rule_dicts)
        document = {
            "format": CACHE_FORMAT,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "digest": digest,
            "rules": rule_dicts,
        }

        with self._locked():
            fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
            tmp = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.path)
            except Exception:
                if tmp.exists():
                    tmp.unlink()
                raise

        logger.info("Saved route cache: %d rules → %s", len(rule_dicts), self.path)
        return digest

    async def dump_async(self, rules: Sequence[RouteRule], timeout: float = DEFAULT_TIMEOUT) -> str:
        """``dump`` as a bounded I/O join."""
        return await bounded(self.dump, list(rules), timeout=timeout, operation=f"dump {self.path}")


__all__ = ["CACHE_FORMAT", "rules_digest", "RouteCache"]
