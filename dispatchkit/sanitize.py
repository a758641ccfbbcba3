"""
String sanitizers for request parameters.
"""

from __future__ import annotations

import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Iterable, Optional

from markupsafe import Markup

DEFAULT_ALLOWED_TAGS = ("b", "i", "u", "em", "strong", "a", "p", "br", "ul", "ol", "li", "span")

_BLOCK_RE = re.compile(r"<(script|style|iframe|object|embed)[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_HANDLER_DQ_RE = re.compile(r'\s*on\w+\s*=\s*"[^"]*"', re.IGNORECASE)
_HANDLER_SQ_RE = re.compile(r"\s*on\w+\s*=\s*'[^']*'", re.IGNORECASE)
_HANDLER_BARE_RE = re.compile(r"\s*on\w+\s*=\s*[^\s>]+", re.IGNORECASE)
_JS_URL_RE = re.compile(r"(href|src)\s*=\s*([\"']?)\s*javascript:[^\"'>\s]*\2", re.IGNORECASE)
_TAG_RE = re.compile(r"</?([A-Za-z][A-Za-z0-9]*)\b[^>]*>")


def purify_html(value: str, allowed_tags: Optional[Iterable[str]] = None) -> str:
    """
    Remove dangerous markup while keeping a small set of inline tags.

    Script/style blocks, event handler attributes and ``javascript:``
    URLs are dropped; tags outside ``allowed_tags`` are stripped.
    """
    allowed = {t.lower() for t in (allowed_tags if allowed_tags is not None else DEFAULT_ALLOWED_TAGS)}

    value = _BLOCK_RE.sub("", value)
    value = _HANDLER_DQ_RE.sub("", value)
    value = _HANDLER_SQ_RE.sub("", value)
    value = _HANDLER_BARE_RE.sub("", value)
    value = _JS_URL_RE.sub("", value)

    def keep_allowed(match: re.Match) -> str:
        return match.group(0) if match.group(1).lower() in allowed else ""

    return _TAG_RE.sub(keep_allowed, value)


def strip_tags(value: str) -> str:
    """Remove all tags and unescape entities."""
    return Markup(value).striptags()


def to_decimal_string(value: str, places: int = 2) -> str:
    """
    Normalize a numeric string to ``places`` decimals, truncating toward zero.

    Non-numeric input normalizes to zero.
    """
    quantum = Decimal(1).scaleb(-places)
    try:
        number = Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        number = Decimal(0)
    if not number.is_finite():
        number = Decimal(0)
    return str(number.quantize(quantum, rounding=ROUND_DOWN))
