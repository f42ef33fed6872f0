"""
Matchers used by the permission evaluation engine.

PathPatternMatcher implements Ant-style path patterns:

- ``*`` matches exactly one path segment
- ``**`` matches zero or more whole segments
- ``{name}`` matches one segment, ``{name:regex}`` one segment matching regex
- ``?`` and ``*`` inside a segment match one / any number of characters

Everything else is compared literally and case-sensitively.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from shared.logging import get_logger
from .models import PermissionRule, UriRule


PATH_SEPARATOR = "/"
SINGLE_WILDCARD = "*"
DOUBLE_WILDCARD = "**"
ANY_METHOD = "*"

# {name} or {name:regex}; the regex part may itself contain one level of braces
_SEGMENT_TOKEN = re.compile(r"\?|\*|\{((?:\{[^/]+?\}|[^/{}]|\\[{}])+?)\}")

logger = get_logger("entitlements.path_matcher")


@lru_cache(maxsize=1024)
def _compile_segment(segment: str) -> Optional[Pattern]:
    """Compile a pattern segment, or None when its placeholder regex is invalid."""
    parts = []
    end = 0
    for match in _SEGMENT_TOKEN.finditer(segment):
        parts.append(re.escape(segment[end:match.start()]))
        token = match.group(0)
        if token == "?":
            parts.append(".")
        elif token == "*":
            parts.append(".*")
        else:
            variable = match.group(1)
            colon = variable.find(":")
            if colon == -1:
                parts.append("(.*)")
            else:
                parts.append("(" + variable[colon + 1:] + ")")
        end = match.end()
    parts.append(re.escape(segment[end:]))
    try:
        return re.compile("".join(parts), re.DOTALL)
    except re.error as e:
        logger.debug("Invalid path pattern segment, it never matches", segment=segment, error=str(e))
        return None


def _tokenize(value: str) -> List[str]:
    return [token for token in value.split(PATH_SEPARATOR) if token]


class PathPatternMatcher:
    """Matches request paths against hierarchical wildcard patterns."""

    def matches(self, pattern: str, path: str) -> bool:
        if pattern is None or path is None:
            return False
        if path.startswith(PATH_SEPARATOR) != pattern.startswith(PATH_SEPARATOR):
            return False

        # (pattern_index, path_index) states already known not to match
        failed: Set[Tuple[int, int]] = set()
        return self._match(_tokenize(pattern), 0, _tokenize(path), 0, pattern, path, failed)

    def _match(self, pattern_segments: Sequence[str], pattern_index: int,
               path_segments: Sequence[str], path_index: int,
               pattern: str, path: str, failed: Set[Tuple[int, int]]) -> bool:
        while pattern_index < len(pattern_segments):
            segment = pattern_segments[pattern_index]

            if segment == DOUBLE_WILDCARD:
                # Collapse runs of ** into one
                while (pattern_index + 1 < len(pattern_segments)
                       and pattern_segments[pattern_index + 1] == DOUBLE_WILDCARD):
                    pattern_index += 1
                if pattern_index == len(pattern_segments) - 1:
                    return True
                for start in range(path_index, len(path_segments) + 1):
                    state = (pattern_index + 1, start)
                    if state in failed:
                        continue
                    if self._match(pattern_segments, pattern_index + 1,
                                   path_segments, start, pattern, path, failed):
                        return True
                    failed.add(state)
                return False

            if path_index == len(path_segments):
                # "/users/*" still matches "/users/"
                return (pattern_index == len(pattern_segments) - 1
                        and segment == SINGLE_WILDCARD
                        and path.endswith(PATH_SEPARATOR))

            if not self.match_segment(segment, path_segments[path_index]):
                return False
            pattern_index += 1
            path_index += 1

        if path_index < len(path_segments):
            return False
        return pattern.endswith(PATH_SEPARATOR) == path.endswith(PATH_SEPARATOR)

    @staticmethod
    def match_segment(pattern_segment: str, path_segment: str) -> bool:
        """Match a single pattern segment against a single path segment."""
        if pattern_segment == SINGLE_WILDCARD:
            return True
        if not any(c in pattern_segment for c in "*?{"):
            return pattern_segment == path_segment
        compiled = _compile_segment(pattern_segment)
        if compiled is None:
            return False
        return compiled.fullmatch(path_segment) is not None


class MethodMatcher:
    """Matches HTTP methods against a method pattern."""

    def matches(self, method_pattern: str, requested_method: str) -> bool:
        if method_pattern is None or requested_method is None:
            return False
        if method_pattern == ANY_METHOD:
            return True
        return method_pattern.upper() == requested_method.upper()


class RuleMatcher:
    """Tests one permission rule against a (method, path) pair."""

    def __init__(self, method_matcher: Optional[MethodMatcher] = None,
                 path_matcher: Optional[PathPatternMatcher] = None):
        self.method_matcher = method_matcher or MethodMatcher()
        self.path_matcher = path_matcher or PathPatternMatcher()
        self.logger = get_logger("entitlements.rule_matcher")

    def matches(self, rule: PermissionRule, method: str, path: str) -> bool:
        if not isinstance(rule, UriRule):
            self.logger.debug("Skipping non-URI permission rule", rule=repr(rule))
            return False
        return (self.method_matcher.matches(rule.method, method)
                and self.path_matcher.matches(rule.path, path))

    def any_match(self, rules: Iterable[PermissionRule], method: str, path: str) -> bool:
        return any(self.matches(rule, method, path) for rule in rules)


class GroupIntersector:
    """Tests whether two group sets share a member."""

    def intersects(self, a: Optional[Iterable[str]], b: Optional[Iterable[str]]) -> bool:
        if not a or not b:
            return False
        return not set(a).isdisjoint(b)
