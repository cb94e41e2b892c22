"""Allow-list check for post-login destinations.

Glob patterns are matched against the whole candidate URL, not just its
origin, so ``https://app.example.com/*`` does not admit a different host and
``https://app.example.com/home`` does not admit ``/admin`` on the same host.
Matching is byte-for-byte: no case folding, trailing slash or percent
decoding. Patterns must be written in the canonical form callers redirect to.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, Optional, Protocol, Sequence, Union


@dataclass(frozen=True)
class GlobPattern:
    glob: str


@dataclass(frozen=True)
class RegexPattern:
    regex: re.Pattern

    @classmethod
    def compile(cls, expression: str) -> "RegexPattern":
        return cls(re.compile(expression))


Pattern = Union[GlobPattern, RegexPattern]
PatternInput = Union[Pattern, str, re.Pattern, Sequence["PatternInput"]]

REGEX_PREFIX = "re:"


class PatternMatcher(Protocol):
    def matches(self, pattern: Pattern, candidate: str) -> bool: ...


class DefaultPatternMatcher:
    """fnmatch globs (case-sensitive) and ``re.search`` regexes."""

    def matches(self, pattern: Pattern, candidate: str) -> bool:
        if isinstance(pattern, GlobPattern):
            return fnmatchcase(candidate, pattern.glob)
        if isinstance(pattern, RegexPattern):
            return pattern.regex.search(candidate) is not None
        raise TypeError(f"Unsupported redirect pattern: {pattern!r}")


def as_pattern(value: Union[Pattern, str, re.Pattern]) -> Pattern:
    """Coerce a configured value into a tagged pattern.

    Plain strings are globs unless prefixed with ``re:``.
    """
    if isinstance(value, (GlobPattern, RegexPattern)):
        return value
    if isinstance(value, re.Pattern):
        return RegexPattern(value)
    if isinstance(value, str):
        if value.startswith(REGEX_PREFIX):
            return RegexPattern.compile(value[len(REGEX_PREFIX):])
        return GlobPattern(value)
    raise TypeError(f"Unsupported redirect pattern: {value!r}")


def parse_patterns(values: Iterable[Union[Pattern, str, re.Pattern]]) -> tuple[Pattern, ...]:
    return tuple(as_pattern(value) for value in values)


class RedirectPolicy:
    def __init__(self, matcher: Optional[PatternMatcher] = None) -> None:
        self.matcher: PatternMatcher = matcher or DefaultPatternMatcher()

    def is_allowed(self, candidate: Optional[str], patterns: Optional[PatternInput]) -> bool:
        """Return True if any pattern admits ``candidate``.

        Nested sequences are walked in order and short-circuit on the first
        match. No patterns at all means deny.
        """
        if not candidate or patterns is None:
            return False
        if isinstance(patterns, (GlobPattern, RegexPattern, str, re.Pattern)):
            return self.matcher.matches(as_pattern(patterns), candidate)
        return any(self.is_allowed(candidate, entry) for entry in patterns)
