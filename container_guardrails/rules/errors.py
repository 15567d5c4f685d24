"""Exceptions raised while building a rule catalog."""

from __future__ import annotations


class RuleValidationError(ValueError):
    """A single rule definition is malformed and must be excluded."""


class PathSyntaxError(RuleValidationError):
    """A rule references a jsonpath expression that does not parse."""


class UnknownRuleError(ValueError):
    """A rule id passed to a catalog selection does not exist."""
