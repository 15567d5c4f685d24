"""Evaluate a rule catalog against containers and Dockerfiles and assemble findings."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Optional, Sequence

from .dockerfile import Dockerfile
from .result import Finding
from .rules import Catalog, Rule, Scope, Target
from .rules.matcher import find_match
from .scope import file_unit, instruction_units, stage_units

logger = logging.getLogger(__name__)

MATCH_PLACEHOLDER = "{{match}}"


def build_finding(
    rule: Rule,
    matched: str,
    line: Optional[int] = None,
    target: Optional[str] = None,
) -> Finding:
    """Turn a matching rule into a :class:`Finding`."""

    description = rule.message.replace(MATCH_PLACEHOLDER, matched)
    if rule.include_match_in_description and matched:
        description = f"{description}: {matched}"
    return Finding(
        rule_id=rule.id,
        title=rule.name,
        description=description,
        severity=rule.severity,
        line=line,
        remediation=rule.remediation,
        target=target,
        references=rule.references,
    )


def evaluate_rules(
    rules: Iterable[Rule],
    value: Any,
    line: Optional[int] = None,
    target: Optional[str] = None,
) -> List[Finding]:
    """Run each rule once against one scan unit; a rule yields at most one finding."""

    findings: List[Finding] = []
    for rule in rules:
        matched = find_match(rule.match, value)
        if matched is None:
            continue
        findings.append(build_finding(rule, matched, line=line, target=target))
    return findings


# ----------------------------------------------------------------------
# Container runtime
# ----------------------------------------------------------------------
def scan_container(catalog: Catalog, record: Any, label: Optional[str] = None) -> List[Finding]:
    """Evaluate every container rule against one inspection record."""

    rules = catalog.for_target(Target.CONTAINER_RUNTIME)
    findings = evaluate_rules(rules, record, target=label)
    logger.debug("Container %s: %d findings from %d rules", label, len(findings), len(rules))
    return findings


def scan_containers(
    catalog: Catalog,
    records: Sequence[Any],
    labels: Optional[Sequence[Optional[str]]] = None,
    max_workers: Optional[int] = None,
) -> List[List[Finding]]:
    """Scan independent records in parallel; results follow the input order."""

    if labels is None:
        labels = [None] * len(records)
    if len(labels) != len(records):
        raise ValueError("labels must line up with records")
    if not records:
        return []

    workers = max_workers or min(len(records), 8)
    if workers <= 1:
        return [scan_container(catalog, record, label) for record, label in zip(records, labels)]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(
            executor.map(lambda pair: scan_container(catalog, pair[0], pair[1]), zip(records, labels))
        )


# ----------------------------------------------------------------------
# Dockerfile
# ----------------------------------------------------------------------
def scan_dockerfile(catalog: Catalog, dockerfile: Dockerfile) -> List[Finding]:
    """Evaluate Dockerfile rules at instruction, stage and file scope, in that order."""

    label = dockerfile.path
    findings: List[Finding] = []

    instruction_rules = catalog.for_scope(Scope.INSTRUCTION)
    if instruction_rules:
        for instruction, value in instruction_units(dockerfile):
            applicable = [rule for rule in instruction_rules if rule.applies_to_instruction(instruction.kind)]
            findings.extend(evaluate_rules(applicable, value, line=instruction.line, target=label))

    stage_rules = catalog.for_scope(Scope.STAGE)
    if stage_rules:
        for _, value in stage_units(dockerfile):
            findings.extend(evaluate_rules(stage_rules, value, target=label))

    file_rules = catalog.for_scope(Scope.FILE)
    if file_rules:
        findings.extend(evaluate_rules(file_rules, file_unit(dockerfile), target=label))

    logger.debug("Dockerfile %s: %d findings", label, len(findings))
    return findings
