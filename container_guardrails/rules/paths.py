"""JSONPath field extraction over inspected container and Dockerfile values."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as parse_jsonpath
from jsonpath_ng.jsonpath import DatumInContext, Slice

from container_guardrails.rules.errors import PathSyntaxError

logger = logging.getLogger(__name__)

# Failures jsonpath-ng can raise while walking a value. Filter regexes
# (``=~``) are only compiled at this point, hence ``re.error``.
EVALUATION_ERRORS = (TypeError, KeyError, IndexError, AttributeError, ValueError, re.error)


class ArraySlice(Slice):
    """``[*]`` and ``[start:end]`` that select array elements only.

    jsonpath-ng wraps a scalar or mapping into a one-element list before
    slicing; here anything that is not a list selects nothing.
    """

    def find(self, datum):
        datum = DatumInContext.wrap(datum)
        if not isinstance(datum.value, list):
            return []
        return super().find(datum)


@dataclass(frozen=True)
class CompiledPath:
    """A path expression parsed once at rule load time."""

    expression: str
    _parsed: Any = field(repr=False, compare=False)

    def values(self, value: Any) -> Iterator[str]:
        """Yield the string form of every node the expression selects."""

        try:
            matches = self._parsed.find(value)
        except EVALUATION_ERRORS as exc:
            # jsonpath-ng indexes blindly into mappings and scalars.
            logger.debug("Path %s does not apply to value: %s", self.expression, exc)
            return
        for match in matches:
            yield stringify(match.value)


def compile_path(expression: object) -> CompiledPath:
    """Parse ``expression`` or raise :class:`PathSyntaxError`."""

    if not isinstance(expression, str) or not expression.strip():
        raise PathSyntaxError(f"jsonpath must be a non-empty string, got {expression!r}")
    try:
        parsed = parse_jsonpath(expression)
    except (JsonPathLexerError, JsonPathParserError) as exc:
        raise PathSyntaxError(f"invalid jsonpath '{expression}': {exc}") from exc
    return CompiledPath(expression=expression, _parsed=_strict_slices(parsed))


def _strict_slices(node: Any) -> Any:
    if type(node) is Slice:
        return ArraySlice(start=node.start, end=node.end, step=node.step)
    for attr in ("left", "right"):
        child = getattr(node, attr, None)
        if child is not None:
            setattr(node, attr, _strict_slices(child))
    return node


def extract(value: Any, path: Union[CompiledPath, str]) -> Iterator[str]:
    """Yield the values at ``path`` inside ``value``.

    Missing members produce an empty sequence. The generator can be recreated
    any number of times with identical results because ``value`` is never
    modified.
    """

    compiled = path if isinstance(path, CompiledPath) else compile_path(path)
    return compiled.values(value)


def stringify(value: Any) -> str:
    """Render a selected node the way JSON would, without quotes around strings."""

    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
