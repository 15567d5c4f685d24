"""Load YAML rule definitions into a validated, read-only catalog."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import yaml

from container_guardrails.rules.errors import RuleValidationError, UnknownRuleError
from container_guardrails.rules.matcher import (
    DEFAULT_SEPARATOR,
    Equals,
    MatchSpec,
    Missing,
    Parts,
    Regex,
)
from container_guardrails.rules.paths import compile_path, stringify
from container_guardrails.severity import Severity
from container_guardrails.utils import read_yaml_file

logger = logging.getLogger(__name__)

RULE_FILE_SUFFIXES = (".yaml", ".yml")
REQUIRED_FIELDS = ("id", "severity", "match", "message")
_TARGET_ALIASES = {
    "docker": "container_runtime",
    "runtime": "container_runtime",
    "container": "container_runtime",
}


class Target(str, Enum):
    """What kind of object a rule inspects."""

    CONTAINER_RUNTIME = "container_runtime"
    DOCKERFILE = "dockerfile"


class Scope(str, Enum):
    """Granularity of a Dockerfile scan unit."""

    INSTRUCTION = "instruction"
    STAGE = "stage"
    FILE = "file"


@dataclass(frozen=True)
class RuleSource:
    path: str
    index: Optional[int] = None

    def __str__(self) -> str:
        if self.index is None:
            return self.path
        return f"{self.path}#{self.index}"


@dataclass(frozen=True)
class Rule:
    """A single validated rule definition."""

    id: str
    name: str
    target: Target
    severity: Severity
    match: MatchSpec
    message: str
    scope: Optional[Scope] = None
    instruction_kind: Optional[str] = None
    remediation: Optional[str] = None
    include_match_in_description: bool = False
    description: Optional[str] = None
    references: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    source: Optional[RuleSource] = field(default=None, compare=False)

    def applies_to_instruction(self, kind: str) -> bool:
        return self.instruction_kind is None or self.instruction_kind == kind.upper()


@dataclass(frozen=True)
class LoadError:
    """A rule or rule file that was excluded from the catalog."""

    source: str
    reason: str
    index: Optional[int] = None
    rule_id: Optional[str] = None

    def __str__(self) -> str:
        location = self.source if self.index is None else f"{self.source}#{self.index}"
        if self.rule_id:
            location = f"{location} ({self.rule_id})"
        return f"{location}: {self.reason}"


@dataclass(frozen=True)
class Catalog:
    """Read-only collection of rules in deterministic load order."""

    rules: Tuple[Rule, ...] = ()

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def ids(self) -> List[str]:
        return [rule.id for rule in self.rules]

    def get(self, rule_id: str) -> Optional[Rule]:
        wanted = rule_id.lower()
        for rule in self.rules:
            if rule.id.lower() == wanted:
                return rule
        return None

    def for_target(self, target: Target) -> Tuple[Rule, ...]:
        return tuple(rule for rule in self.rules if rule.target == target)

    def for_scope(self, scope: Scope) -> Tuple[Rule, ...]:
        return tuple(
            rule for rule in self.rules if rule.target == Target.DOCKERFILE and rule.scope == scope
        )

    def merge(self, other: "Catalog") -> Tuple["Catalog", List[LoadError]]:
        """Combine two catalogs, rejecting ids from ``other`` that already exist."""

        seen = {rule.id.lower() for rule in self.rules}
        accepted = list(self.rules)
        errors: List[LoadError] = []
        for rule in other.rules:
            if rule.id.lower() in seen:
                errors.append(_duplicate_error(rule))
                continue
            seen.add(rule.id.lower())
            accepted.append(rule)
        return Catalog(rules=tuple(accepted)), errors

    def select(
        self,
        only: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> "Catalog":
        """Return a catalog restricted by rule id (case-insensitive).

        Raises :class:`UnknownRuleError` when an id is not part of the catalog.
        """

        available = {rule.id.lower() for rule in self.rules}
        only_set = _normalise_ids(only)
        exclude_set = _normalise_ids(exclude)
        _validate_ids(available, only_set, "--only")
        _validate_ids(available, exclude_set, "--exclude")

        selected = []
        for rule in self.rules:
            key = rule.id.lower()
            if only_set is not None and key not in only_set:
                continue
            if exclude_set is not None and key in exclude_set:
                continue
            selected.append(rule)
        return Catalog(rules=tuple(selected))


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------
def load_catalog(
    directory: Path | str,
    default_target: Optional[Target] = None,
) -> Tuple[Catalog, List[LoadError]]:
    """Load every rule file beneath ``directory``.

    Malformed rules and unreadable files are excluded and reported as
    :class:`LoadError` entries; they never abort the load.
    """

    root = Path(directory)
    if not root.is_dir():
        logger.info("Rule directory %s does not exist; catalog is empty", root)
        return Catalog(), []

    accepted: List[Rule] = []
    errors: List[LoadError] = []
    seen_ids: Set[str] = set()

    for path in iter_rule_files(root):
        try:
            document = read_yaml_file(path)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            logger.debug("Skipping unreadable rule file %s: %s", path, exc)
            errors.append(LoadError(source=str(path), reason=f"cannot read rule file: {exc}"))
            continue

        try:
            entries = _rule_entries(document)
        except RuleValidationError as exc:
            errors.append(LoadError(source=str(path), reason=str(exc)))
            continue

        for index, entry in entries:
            source = RuleSource(path=str(path), index=index)
            rule_id = entry.get("id") if isinstance(entry, dict) else None
            try:
                rule = parse_rule(entry, source=source, default_target=default_target)
            except RuleValidationError as exc:
                logger.debug("Excluding rule at %s: %s", source, exc)
                errors.append(
                    LoadError(
                        source=str(path),
                        index=index,
                        rule_id=str(rule_id) if rule_id is not None else None,
                        reason=str(exc),
                    )
                )
                continue

            if rule.id.lower() in seen_ids:
                errors.append(_duplicate_error(rule))
                continue
            seen_ids.add(rule.id.lower())
            accepted.append(rule)
            logger.debug("Loaded rule %s from %s", rule.id, source)

    logger.info("Loaded %d rules from %s (%d rejected)", len(accepted), root, len(errors))
    return Catalog(rules=tuple(accepted)), errors


def iter_rule_files(root: Path) -> List[Path]:
    """Return rule files beneath ``root`` sorted by path."""

    return sorted(
        path for path in root.rglob("*") if path.suffix in RULE_FILE_SUFFIXES and path.is_file()
    )


def _rule_entries(document: Any) -> List[Tuple[Optional[int], Any]]:
    if document is None:
        return []
    if isinstance(document, list):
        return list(enumerate(document))
    if isinstance(document, dict):
        if "rules" in document:
            rules = document["rules"]
            if not isinstance(rules, list):
                raise RuleValidationError("'rules' must be a list")
            return list(enumerate(rules))
        return [(None, document)]
    raise RuleValidationError("rule file must contain a mapping or a list of rules")


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
def parse_rule(
    raw: Any,
    source: Optional[RuleSource] = None,
    default_target: Optional[Target] = None,
) -> Rule:
    """Validate one raw rule mapping and build a :class:`Rule`."""

    if not isinstance(raw, dict):
        raise RuleValidationError("rule must be a mapping")

    missing = [key for key in REQUIRED_FIELDS if key not in raw or raw[key] is None]
    if missing:
        raise RuleValidationError(f"rule is missing keys: {', '.join(missing)}")

    rule_id = _require_string(raw, "id")
    message = _require_string(raw, "message")
    target = _parse_target(raw.get("target"), default_target)

    try:
        severity = Severity.parse(raw["severity"])
    except ValueError as exc:
        raise RuleValidationError(str(exc)) from None

    scope = _parse_scope(raw.get("scope"), target)
    instruction_kind = _parse_kind(raw.get("kind"), scope)
    match = parse_match(raw["match"])

    include_match = raw.get("include_match_in_description", False)
    if not isinstance(include_match, bool):
        raise RuleValidationError("include_match_in_description must be a boolean")

    return Rule(
        id=rule_id,
        name=_optional_string(raw, "name") or rule_id,
        target=target,
        severity=severity,
        match=match,
        message=message,
        scope=scope,
        instruction_kind=instruction_kind,
        remediation=_optional_string(raw, "remediation") or _optional_string(raw, "fix"),
        include_match_in_description=include_match,
        description=_optional_string(raw, "description"),
        references=_string_tuple(raw, "references"),
        tags=_string_tuple(raw, "tags"),
        source=source,
    )


def parse_match(raw: Any) -> MatchSpec:
    """Turn a ``match`` block into exactly one match strategy."""

    if not isinstance(raw, dict):
        raise RuleValidationError("'match' must be a mapping")

    if "parts" in raw:
        return _parse_parts(raw)

    chosen = [key for key in ("equals", "regex", "missing") if raw.get(key) is not None]
    if len(chosen) != 1:
        found = ", ".join(chosen) if chosen else "none"
        raise RuleValidationError(
            f"'match' must set exactly one of equals/regex/missing (found: {found})"
        )
    if "jsonpath" not in raw:
        raise RuleValidationError("'match' requires a jsonpath")

    path = compile_path(raw["jsonpath"])
    strategy = chosen[0]
    if strategy == "equals":
        literal = raw["equals"]
        if isinstance(literal, (dict, list)):
            raise RuleValidationError("'equals' must be a scalar value")
        return Equals(path=path, literal=stringify(literal))
    if strategy == "regex":
        return Regex(path=path, pattern=_compile_regex(raw["regex"]))
    if raw["missing"] is not True:
        raise RuleValidationError("'missing' must be true when set")
    return Missing(path=path)


def _parse_parts(raw: Dict[str, Any]) -> Parts:
    conflicting = [key for key in ("equals", "missing", "jsonpath") if raw.get(key) is not None]
    if conflicting:
        raise RuleValidationError(
            f"'parts' cannot be combined with: {', '.join(conflicting)}"
        )
    if raw.get("regex") is None:
        raise RuleValidationError("'parts' requires a regex")

    parts = raw["parts"]
    if not isinstance(parts, list) or not parts:
        raise RuleValidationError("'parts' must be a non-empty list")
    paths = []
    for part in parts:
        if not isinstance(part, dict) or "jsonpath" not in part:
            raise RuleValidationError("each entry in 'parts' needs a jsonpath")
        paths.append(compile_path(part["jsonpath"]))

    separator = raw.get("separator", DEFAULT_SEPARATOR)
    if separator is None:
        separator = DEFAULT_SEPARATOR
    if not isinstance(separator, str):
        raise RuleValidationError("'separator' must be a string")

    return Parts(paths=tuple(paths), pattern=_compile_regex(raw["regex"]), separator=separator)


def _compile_regex(pattern: Any) -> re.Pattern:
    if not isinstance(pattern, str):
        raise RuleValidationError("'regex' must be a string")
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise RuleValidationError(f"invalid regex '{pattern}': {exc}") from None


def _parse_target(value: Any, default_target: Optional[Target]) -> Target:
    if value is None:
        if default_target is None:
            raise RuleValidationError("rule is missing keys: target")
        return default_target
    name = str(value).strip().lower()
    try:
        return Target(_TARGET_ALIASES.get(name, name))
    except ValueError:
        allowed = ", ".join(member.value for member in Target)
        raise RuleValidationError(f"unknown target '{value}' (expected one of: {allowed})") from None


def _parse_scope(value: Any, target: Target) -> Optional[Scope]:
    if target != Target.DOCKERFILE:
        if value is not None:
            raise RuleValidationError("'scope' only applies to dockerfile rules")
        return None
    if value is None:
        raise RuleValidationError("dockerfile rules require a scope")
    try:
        return Scope(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in Scope)
        raise RuleValidationError(f"unknown scope '{value}' (expected one of: {allowed})") from None


def _parse_kind(value: Any, scope: Optional[Scope]) -> Optional[str]:
    if value is None:
        return None
    if scope != Scope.INSTRUCTION:
        raise RuleValidationError("'kind' only applies to instruction-scoped rules")
    if not isinstance(value, str) or not value.strip():
        raise RuleValidationError("'kind' must be an instruction keyword")
    return value.strip().upper()


def _require_string(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise RuleValidationError(f"'{key}' must be a non-empty string")
    return value.strip() if key == "id" else value


def _optional_string(raw: Dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise RuleValidationError(f"'{key}' must be a string")
    return value


def _string_tuple(raw: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise RuleValidationError(f"'{key}' must be a list")
    return tuple(str(item) for item in value)


def _duplicate_error(rule: Rule) -> LoadError:
    source = rule.source or RuleSource(path="<memory>")
    logger.debug("Excluding duplicate rule id %s at %s", rule.id, source)
    return LoadError(
        source=source.path,
        index=source.index,
        rule_id=rule.id,
        reason=f"duplicate rule id '{rule.id}'",
    )


def _normalise_ids(values: Optional[Iterable[str]]) -> Optional[Set[str]]:
    if values is None:
        return None
    return {value.strip().lower() for value in values if value and value.strip()}


def _validate_ids(available: Set[str], provided: Optional[Set[str]], flag: str) -> None:
    if not provided:
        return
    unknown = sorted(provided - available)
    if unknown:
        noun = "rule" if len(unknown) == 1 else "rules"
        raise UnknownRuleError(f"Unknown {noun} in {flag}: {', '.join(unknown)}")
