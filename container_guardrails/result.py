"""Core result data structures for the scanner."""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .severity import Severity

SEVERITY_ORDER: Sequence[Severity] = (
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFORMATIVE,
)

CSV_FIELDS = (
    "target",
    "kind",
    "rule_id",
    "severity",
    "line",
    "title",
    "description",
    "remediation",
    "references",
)


@dataclass(frozen=True)
class Finding:
    """A rule that matched one scan unit."""

    rule_id: str
    description: str
    severity: Severity
    line: Optional[int] = None
    title: str = ""
    remediation: Optional[str] = None
    target: Optional[str] = None
    references: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["references"] = list(self.references)
        return data


def filter_findings(
    findings: Iterable[Finding],
    severities: Optional[Iterable[Severity]] = None,
    min_severity: Optional[Severity] = None,
) -> List[Finding]:
    """Keep findings whose severity is in ``severities`` and at or above ``min_severity``."""

    allowed = set(severities) if severities is not None else None
    kept = []
    for finding in findings:
        if allowed is not None and finding.severity not in allowed:
            continue
        if min_severity is not None and not finding.severity.at_least(min_severity):
            continue
        kept.append(finding)
    return kept


def should_fail(findings: Iterable[Finding], fail_on: Optional[Severity]) -> bool:
    """Return ``True`` when any finding reaches the ``fail_on`` threshold."""

    if fail_on is None:
        return False
    return any(finding.severity.at_least(fail_on) for finding in findings)


@dataclass
class Summary:
    """Aggregate finding counts by severity."""

    high: int = 0
    medium: int = 0
    low: int = 0
    informative: int = 0

    def increment(self, severity: Severity) -> None:
        attr = severity.value
        setattr(self, attr, getattr(self, attr) + 1)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    def as_rows(self) -> List[Tuple[str, int]]:
        """Return severity/count pairs ordered for reporting."""

        return [(severity.value.upper(), getattr(self, severity.value)) for severity in SEVERITY_ORDER]

    @property
    def total(self) -> int:
        return sum(getattr(self, severity.value) for severity in SEVERITY_ORDER)


@dataclass
class TargetResult:
    """Findings for one scanned container or Dockerfile."""

    target: str
    kind: str
    findings: List[Finding] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "target": self.target,
            "kind": self.kind,
            "findings": [finding.to_dict() for finding in self.findings],
        }


@dataclass
class ScanResult:
    """Bundle per-target findings, the severity summary and rule load errors."""

    summary: Summary = field(default_factory=Summary)
    targets: List[TargetResult] = field(default_factory=list)
    load_errors: List[str] = field(default_factory=list)
    fail_on: Optional[Severity] = None

    @property
    def findings(self) -> List[Finding]:
        return [finding for target in self.targets for finding in target.findings]

    @property
    def passed(self) -> bool:
        return not should_fail(self.findings, self.fail_on)

    def add_target(self, target: TargetResult) -> None:
        for finding in target.findings:
            self.summary.increment(finding.severity)
        self.targets.append(target)

    def to_dict(self) -> Dict[str, object]:
        return {
            "summary": self.summary.to_dict(),
            "targets": [target.to_dict() for target in self.targets],
            "load_errors": list(self.load_errors),
            "passed": self.passed,
        }

    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def top_findings(self, limit: int = 5) -> List[Finding]:
        """Return findings ordered by severity ranking."""

        ordered = sorted(
            self.findings,
            key=lambda finding: (-finding.severity.rank, finding.rule_id, finding.line or 0),
        )
        return ordered[:limit]


# ----------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------
def write_json(result: ScanResult, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")


def write_csv(result: ScanResult, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for target in result.targets:
            for finding in target.findings:
                row = finding.to_dict()
                row["kind"] = target.kind
                row["target"] = target.target
                row["references"] = " ".join(finding.references)
                writer.writerow({key: row.get(key) for key in CSV_FIELDS})


def format_summary_table(result: ScanResult, max_findings: int = 5) -> str:
    """Create a human-readable summary table for console output."""

    lines: List[str] = []
    lines.append("Scan Summary")
    lines.append("=" * 40)
    header = f"{'Severity':<12} | {'Count':>5}"
    lines.append(header)
    lines.append("-" * len(header))
    for severity, count in result.summary.as_rows():
        lines.append(f"{severity:<12} | {count:>5}")
    lines.append("-" * len(header))
    status = "PASS" if result.passed else "FAIL"
    lines.append(f"Status    : {status}")
    lines.append(f"Targets   : {len(result.targets)}")
    lines.append(f"Findings  : {result.summary.total}")
    if result.load_errors:
        lines.append(f"Rule errors: {len(result.load_errors)}")

    findings = result.top_findings(max_findings)
    if findings:
        lines.append("")
        lines.append("Top Findings")
        lines.append("-" * 40)
        for finding in findings:
            lines.append(f"[{finding.severity.value.upper()}] {finding.rule_id} {finding.title}")
            location = finding.target or "-"
            if finding.line is not None:
                location = f"{location}:{finding.line}"
            lines.append(f"  Location: {location}")
            lines.append(f"  {finding.description}")
    return "\n".join(lines)
