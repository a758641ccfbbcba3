"""
Path Matcher

Matches request paths against compiled route rules in declared order.
Path variables are written ``{name}`` (one segment) or ``{name<regex>}``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence, Tuple
import re

from .metadata import RouteRule
from ..faults import MethodNotAllowed, NoRouteMatch


_VAR_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(?:<([^>]+)>)?\}")


def compile_pattern(path_pattern: str) -> Tuple[Pattern, List[str]]:
    """
    Compile a path pattern into an anchored regex.

    Returns:
        (compiled regex, variable names in order)
    """
    names: List[str] = []
    parts: List[str] = []
    pos = 0

    for match in _VAR_RE.finditer(path_pattern):
        parts.append(re.escape(path_pattern[pos:match.start()]))
        name, requirement = match.group(1), match.group(2)
        names.append(name)
        parts.append(f"(?P<{name}>{requirement or '[^/]+'})")
        pos = match.end()

    parts.append(re.escape(path_pattern[pos:]))
    return re.compile("^" + "".join(parts) + "$"), names


@dataclass
class RouteMatch:
    """Result of matching a request against the route table."""
    rule: RouteRule
    params: Dict[str, str] = field(default_factory=dict)


class PathMatcher:
    """
    Ordered matcher over a route table.

    The first rule whose path matches and whose verb is accepted wins.
    """

    def __init__(self, rules: Sequence[RouteRule]):
        self._entries: List[Tuple[RouteRule, Pattern]] = []
        for rule in rules:
            regex, _ = compile_pattern(rule.path_pattern)
            self._entries.append((rule, regex))

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, method: str, path: str) -> RouteMatch:
        """
        Find the rule for ``method`` and ``path``.

        Raises:
            NoRouteMatch: no rule path matches
            MethodNotAllowed: a path matched but no rule accepts the verb
        """
        allowed: List[str] = []
        path_matched = False

        for rule, regex in self._entries:
            m = regex.match(path)
            if m is None:
                continue
            path_matched = True
            if rule.accepts(method):
                return RouteMatch(rule=rule, params=m.groupdict())
            for verb in rule.allowed_methods:
                if verb not in allowed:
                    allowed.append(verb)

        if path_matched:
            raise MethodNotAllowed(method.upper(), path, allowed)
        raise NoRouteMatch(path)

    def find(self, method: str, path: str) -> Optional[RouteMatch]:
        """Like ``match`` but returns None instead of raising."""
        try:
            return self.match(method, path)
        except (NoRouteMatch, MethodNotAllowed):
            return None


__all__ = ["compile_pattern", "RouteMatch", "PathMatcher"]
