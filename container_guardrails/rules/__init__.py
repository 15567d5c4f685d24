"""Declarative rule catalog: loading, path extraction and match evaluation."""

from __future__ import annotations

from .catalog import (
    Catalog,
    LoadError,
    Rule,
    RuleSource,
    Scope,
    Target,
    load_catalog,
    parse_match,
    parse_rule,
)
from .errors import PathSyntaxError, RuleValidationError, UnknownRuleError
from .matcher import Equals, MatchSpec, Missing, Parts, Regex, evaluate, find_match
from .paths import CompiledPath, compile_path, extract

__all__ = [
    "Catalog",
    "CompiledPath",
    "Equals",
    "LoadError",
    "MatchSpec",
    "Missing",
    "Parts",
    "PathSyntaxError",
    "Regex",
    "Rule",
    "RuleSource",
    "RuleValidationError",
    "Scope",
    "Target",
    "UnknownRuleError",
    "compile_path",
    "evaluate",
    "extract",
    "find_match",
    "load_catalog",
    "parse_match",
    "parse_rule",
]
