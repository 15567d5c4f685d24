"""Match strategies for YAML rules and their evaluation against structured values."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from re import Pattern
from typing import Any, ClassVar, List, Optional, Tuple, Union

from container_guardrails.rules.paths import CompiledPath

DEFAULT_SEPARATOR = ":"


@dataclass(frozen=True)
class Missing:
    """Fire when the path selects nothing."""

    path: CompiledPath

    strategy: ClassVar[str] = "missing"


@dataclass(frozen=True)
class Equals:
    """Fire when any selected value is exactly ``literal`` (case-sensitive)."""

    path: CompiledPath
    literal: str

    strategy: ClassVar[str] = "equals"


@dataclass(frozen=True)
class Regex:
    """Fire when any selected value contains a match for ``pattern``."""

    path: CompiledPath
    pattern: Pattern[str]

    strategy: ClassVar[str] = "regex"


@dataclass(frozen=True)
class Parts:
    """Correlate several paths by joining one value from each and testing the result.

    Every combination of the parts' values is tried in declared order, so two
    paths that are not positionally aligned can produce false correlations.
    """

    paths: Tuple[CompiledPath, ...]
    pattern: Pattern[str]
    separator: str = DEFAULT_SEPARATOR

    strategy: ClassVar[str] = "parts"


MatchSpec = Union[Missing, Equals, Regex, Parts]


def evaluate(match: MatchSpec, value: Any) -> bool:
    """Return whether ``match`` fires for ``value``."""

    return find_match(match, value) is not None


def find_match(match: MatchSpec, value: Any) -> Optional[str]:
    """Return the text that satisfied ``match`` or ``None``.

    ``Missing`` has nothing to report and returns an empty string when it
    fires. Absent data and values of an unexpected type never raise; they are
    simply not a match.
    """

    if isinstance(match, Missing):
        for _ in match.path.values(value):
            return None
        return ""

    if isinstance(match, Equals):
        for candidate in match.path.values(value):
            if candidate == match.literal:
                return candidate
        return None

    if isinstance(match, Regex):
        for candidate in match.path.values(value):
            if match.pattern.search(candidate):
                return candidate
        return None

    if isinstance(match, Parts):
        return _match_parts(match, value)

    return None


def _match_parts(match: Parts, value: Any) -> Optional[str]:
    buckets: List[List[str]] = [list(path.values(value)) for path in match.paths]
    if not buckets or any(not bucket for bucket in buckets):
        return None

    # product() is lazy, so the first satisfying tuple ends the search.
    for combo in product(*buckets):
        joined = match.separator.join(combo)
        if match.pattern.search(joined):
            return joined
    return None


def match_paths(match: MatchSpec) -> List[str]:
    """Return the path expressions a match strategy reads."""

    if isinstance(match, Parts):
        return [path.expression for path in match.paths]
    return [match.path.expression]
