"""
Request data validation.

Rules are strings of the form::

    field                          # Required
    field@Validator
    field@Validator:checkValue
    field@Validator:checkValue@msg:custom message
    field@Email@CheckOnNotEmpty    # only checked when present

Nested fields use dots (``user.email``). Unknown validator names are
looked up among registered ``RuleChecker`` objects (case-insensitive) and
pass when none matches.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

logger = logging.getLogger("dispatchkit.validation")


# ============================================================================
# Custom checkers
# ============================================================================

class RuleChecker(ABC):
    """Custom validator registered with ``DataValidator.add_rule_checker``."""

    @property
    @abstractmethod
    def rule_name(self) -> str:
        ...

    @abstractmethod
    def check(self, value: str, check_value: str = "") -> bool:
        ...


# ============================================================================
# Built-in validators
# ============================================================================

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)$")
_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$")
_MOBILE_RE = re.compile(r"^1[3-9]\d{9}$")
_COMMA_SEP = re.compile(r"\s*,\s*")


def _split(range_value: str) -> List[str]:
    return _COMMA_SEP.split(range_value.strip()) if range_value.strip() else []


def _ints(range_value: str) -> List[int]:
    return [int(p) for p in _split(range_value) if _INT_RE.match(p)]


def _decimals(range_value: str) -> List[Decimal]:
    return [Decimal(p) for p in _split(range_value) if _FLOAT_RE.match(p)]


def _decimal(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        return None


def _int_cmp(op: Callable[[int, int], bool]) -> Callable[[str, str], bool]:
    def check(value: str, check_value: str) -> bool:
        if not _INT_RE.match(value) or not _INT_RE.match(check_value.strip()):
            return False
        return op(int(value), int(check_value))
    return check


def _float_cmp(op: Callable[[Decimal, Decimal], bool]) -> Callable[[str, str], bool]:
    def check(value: str, check_value: str) -> bool:
        if not _FLOAT_RE.match(value):
            return False
        other = _decimal(check_value)
        if other is None:
            return False
        return op(Decimal(value), other)
    return check


def _len_cmp(op: Callable[[int, int], bool], when_unset: bool) -> Callable[[str, str], bool]:
    def check(value: str, check_value: str) -> bool:
        n = int(check_value) if _INT_RE.match(check_value.strip()) else 0
        if n < 1:
            return when_unset
        return op(len(value), n)
    return check


def _int_between(value: str, range_value: str) -> bool:
    bounds = _ints(range_value)
    if not _INT_RE.match(value) or len(bounds) < 2:
        return False
    return bounds[0] <= int(value) <= bounds[1]


def _float_between(value: str, range_value: str) -> bool:
    bounds = _decimals(range_value)
    if not _FLOAT_RE.match(value) or len(bounds) < 2:
        return False
    return bounds[0] <= Decimal(value) <= bounds[1]


def _str_len_between(value: str, range_value: str) -> bool:
    bounds = _ints(range_value)
    if len(bounds) < 2:
        return False
    return bounds[0] <= len(value) <= bounds[1]


def _is_date(value: str) -> bool:
    try:
        date.fromisoformat(value.strip())
    except ValueError:
        return False
    return True


def _is_datetime(value: str) -> bool:
    text = value.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            datetime.strptime(text, fmt)
        except ValueError:
            continue
        return True
    return False


def _regexp(value: str, pattern: str) -> bool:
    flags = 0
    m = re.match(r"^/(.*)/([imsx]*)$", pattern, re.DOTALL)
    if m:
        pattern = m.group(1)
        for flag in m.group(2):
            flags |= {"i": re.I, "m": re.M, "s": re.S, "x": re.X}[flag]
    try:
        return re.search(pattern, value, flags) is not None
    except re.error as e:
        logger.warning("Invalid Regexp validator pattern %r: %s", pattern, e)
        return False


VALIDATORS: Dict[str, Callable[..., bool]] = {
    "Int": lambda v: bool(_INT_RE.match(v)),
    "IntEq": _int_cmp(lambda a, b: a == b),
    "IntNe": _int_cmp(lambda a, b: a != b),
    "IntGt": _int_cmp(lambda a, b: a > b),
    "IntGe": _int_cmp(lambda a, b: a >= b),
    "IntLt": _int_cmp(lambda a, b: a < b),
    "IntLe": _int_cmp(lambda a, b: a <= b),
    "IntBetween": _int_between,
    "IntIn": lambda v, r: bool(_INT_RE.match(v)) and int(v) in _ints(r),
    "IntNotIn": lambda v, r: bool(_INT_RE.match(v)) and int(v) not in _ints(r),
    "Float": lambda v: bool(_FLOAT_RE.match(v)),
    "FloatGt": _float_cmp(lambda a, b: a > b),
    "FloatGe": _float_cmp(lambda a, b: a >= b),
    "FloatLt": _float_cmp(lambda a, b: a < b),
    "FloatLe": _float_cmp(lambda a, b: a <= b),
    "FloatBetween": _float_between,
    "StrEq": lambda v, c: v == c,
    "StrNe": lambda v, c: v != c,
    "StrIn": lambda v, r: v in _split(r),
    "StrNotIn": lambda v, r: v not in _split(r),
    "StrLen": _len_cmp(lambda a, b: a == b, False),
    "StrLenGt": _len_cmp(lambda a, b: a > b, True),
    "StrLenGe": _len_cmp(lambda a, b: a >= b, True),
    "StrLenLt": _len_cmp(lambda a, b: a < b, False),
    "StrLenLe": _len_cmp(lambda a, b: a <= b, False),
    "StrLenBetween": _str_len_between,
    "Alpha": lambda v: bool(re.fullmatch(r"[A-Za-z]+", v)),
    "Numbers": lambda v: bool(re.fullmatch(r"[0-9]+", v)),
    "Alnum": lambda v: bool(re.fullmatch(r"[A-Za-z0-9]+", v)),
    "Email": lambda v: bool(_EMAIL_RE.match(v)),
    "Mobile": lambda v: bool(_MOBILE_RE.match(v)),
    "Date": _is_date,
    "DateTime": _is_datetime,
    "Regexp": _regexp,
}

DEFAULT_MESSAGES = {
    "Mobile": "is not a valid mobile number",
    "Email": "is not a valid email address",
}
DEFAULT_MESSAGE = "is required"


# ============================================================================
# Rule parsing
# ============================================================================

class ParsedRule:
    __slots__ = ("field", "validator", "check_value", "message", "check_on_not_empty")

    def __init__(self, field: str, validator: str, check_value: str, message: str, check_on_not_empty: bool):
        self.field = field
        self.validator = validator
        self.check_value = check_value
        self.message = message
        self.check_on_not_empty = check_on_not_empty

    def __repr__(self) -> str:
        return f"ParsedRule({self.field!r}@{self.validator}:{self.check_value!r})"


def parse_rule(rule: str) -> ParsedRule:
    check_on_not_empty = False
    if "@CheckOnNotEmpty" in rule or "@WithNotEmpty" in rule:
        check_on_not_empty = True
        rule = rule.replace("@CheckOnNotEmpty", "").replace("@WithNotEmpty", "")

    message = ""
    if "@msg:" in rule:
        rule, _, tail = rule.rpartition("@")
        message = re.sub(r"^msg:[ \t]*", "", tail).strip()

    validator = "Required"
    check_value = ""
    if "@" in rule:
        field, _, validator = rule.partition("@")
        field = field.strip()
        if ":" in validator:
            validator, _, check_value = validator.partition(":")
            check_value = check_value.strip()
        validator = validator.strip()
    else:
        field = rule.strip()

    if not message:
        message = DEFAULT_MESSAGES.get(validator, DEFAULT_MESSAGE)

    return ParsedRule(field, validator, check_value, message, check_on_not_empty)


def _lookup(data: Mapping[str, Any], path: str) -> str:
    """Dotted lookup rendered as a string; missing values are ``""``."""
    value: Any = data
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return ""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float, Decimal)):
        return str(value)
    return ""


# ============================================================================
# Validator
# ============================================================================

class DataValidator:
    """
    Validates a data map against rule strings.

    Example:
        ```python
        validator = DataValidator()
        errors = validator.validate({"age": "x"}, ["name", "age@Int@msg:bad age"])
        # {"name": "is required", "age": "bad age"}
        ```
    """

    def __init__(self):
        self._checkers: List[RuleChecker] = []

    def add_rule_checker(self, checker: RuleChecker) -> None:
        """Register a custom checker; names are unique case-insensitively."""
        name = checker.rule_name.lower()
        if any(c.rule_name.lower() == name for c in self._checkers):
            return
        self._checkers.append(checker)

    def _checker(self, name: str) -> Optional[RuleChecker]:
        lowered = name.lower()
        return next((c for c in self._checkers if c.rule_name.lower() == lowered), None)

    def _passes(self, rule: ParsedRule, value: str, data: Mapping[str, Any]) -> bool:
        if rule.validator == "Required":
            return True
        if rule.validator == "EqualsWith":
            return value == _lookup(data, rule.check_value)

        func = VALIDATORS.get(rule.validator)
        if func is not None:
            args = (value,) if rule.check_value == "" else (value, rule.check_value)
            try:
                return bool(func(*args))
            except TypeError:
                logger.warning("Validator %s called with wrong arguments for field %s", rule.validator, rule.field)
                return False

        checker = self._checker(rule.validator)
        if checker is None:
            return True
        return checker.check(value, rule.check_value)

    def validate(
        self,
        data: Mapping[str, Any],
        rules: Sequence[str],
        failfast: bool = False,
    ) -> Union[str, Dict[str, str]]:
        """
        Validate ``data``.

        Returns:
            Fail-fast: the first failure message, or ``""``.
            Otherwise: field -> message for every failing field (first
            failure per field).
        """
        errors: Dict[str, str] = {}

        for raw in rules:
            if not isinstance(raw, str) or not raw.strip():
                continue
            rule = parse_rule(raw)

            if not failfast and rule.field in errors:
                continue

            value = _lookup(data, rule.field)
            if rule.check_on_not_empty and value == "":
                continue

            if value == "" or not self._passes(rule, value, data):
                if failfast:
                    return rule.message
                errors[rule.field] = rule.message

        return "" if failfast else errors


__all__ = [
    "RuleChecker",
    "VALIDATORS",
    "ParsedRule",
    "parse_rule",
    "DataValidator",
]
