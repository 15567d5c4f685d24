"""Command-line entry point for the Container Guardrails scanner."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Sequence

from . import __version__
from .config import RulesConfig, ScanOptions, split_ids
from .dockerfile import load_dockerfile
from .engine import scan_containers, scan_dockerfile
from .result import ScanResult, TargetResult, filter_findings, format_summary_table, write_csv, write_json
from .rules import Catalog, LoadError, Rule, UnknownRuleError
from .rules.matcher import match_paths
from .severity import Severity
from .utils import container_label, load_inspect_records

logger = logging.getLogger(__name__)

EXIT_RULE_ERRORS = 3


def _severity_arg(value: str) -> Severity:
    try:
        return Severity.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _severity_list_arg(value: str) -> List[Severity]:
    try:
        severities = Severity.parse_list(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None
    if not severities:
        raise argparse.ArgumentTypeError("expected at least one severity")
    return severities


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="container-guardrails",
        description="Rule-driven misconfiguration scanner for containers and Dockerfiles",
    )
    parser.add_argument(
        "--rules",
        dest="rules_dir",
        default=None,
        help="Directory containing YAML rules (defaults to $GUARDRAILS_RULES_DIR or ./rules).",
    )
    parser.add_argument(
        "--dockerfile",
        "-f",
        dest="dockerfiles",
        action="append",
        default=[],
        help="Dockerfile to scan (repeatable).",
    )
    parser.add_argument(
        "--inspect",
        "-i",
        dest="inspect_files",
        action="append",
        default=[],
        help="JSON output of 'docker inspect' to scan (repeatable).",
    )
    parser.add_argument("--only", default=None, help="Run only these rule ids, comma-separated.")
    parser.add_argument("--exclude", default=None, help="Skip these rule ids, comma-separated.")

    severity_group = parser.add_mutually_exclusive_group()
    severity_group.add_argument(
        "--severity",
        type=_severity_list_arg,
        default=None,
        help="Report only these severities, comma-separated (e.g. high,medium).",
    )
    severity_group.add_argument(
        "--min-severity",
        type=_severity_arg,
        default=None,
        help="Report findings at or above this severity.",
    )
    parser.add_argument(
        "--fail-on",
        type=_severity_arg,
        default=None,
        help="Exit with status 1 when a reported finding is at or above this severity.",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress console output; requires --fail-on.",
    )
    parser.add_argument(
        "--format",
        choices=["json", "csv"],
        default=None,
        help="Report format for file output (defaults to json); requires --out.",
    )
    parser.add_argument(
        "--out",
        "--output",
        dest="output_path",
        type=str,
        default=None,
        help="Path to write the structured report (e.g., artifacts/scan.json).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads used to scan container records.",
    )
    parser.add_argument(
        "--strict-rules",
        action="store_true",
        help=f"Exit with status {EXIT_RULE_ERRORS} if any rule fails to load.",
    )
    parser.add_argument(
        "--list-rules",
        action="store_true",
        help="List the loaded rules and exit.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging; with --list-rules, show rule details.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def options_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> ScanOptions:
    if args.quiet and args.fail_on is None:
        parser.error("--quiet requires --fail-on")
    if args.format is not None and not args.output_path:
        parser.error("--format requires --out")
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")
    for flag, value in (("--only", args.only), ("--exclude", args.exclude)):
        if value is not None and not split_ids(value):
            parser.error(f"{flag} requires at least one rule id")
    if not args.list_rules and not args.dockerfiles and not args.inspect_files:
        parser.error("nothing to scan: pass --dockerfile and/or --inspect")

    return ScanOptions(
        only=split_ids(args.only),
        exclude=split_ids(args.exclude),
        severities=tuple(args.severity) if args.severity else None,
        min_severity=args.min_severity,
        fail_on=args.fail_on,
        quiet=args.quiet,
        output_path=args.output_path,
        report_format=args.format or "json",
        workers=args.workers,
        strict_rules=args.strict_rules,
    )


def run_scan(
    catalog: Catalog,
    dockerfiles: Sequence[str],
    inspect_files: Sequence[str],
    options: ScanOptions,
    load_errors: Sequence[LoadError] = (),
) -> ScanResult:
    result = ScanResult(fail_on=options.fail_on, load_errors=[str(error) for error in load_errors])

    for path in dockerfiles:
        dockerfile = load_dockerfile(Path(path))
        findings = scan_dockerfile(catalog, dockerfile)
        result.add_target(TargetResult(target=path, kind="dockerfile", findings=_filtered(findings, options)))

    for path in inspect_files:
        records = load_inspect_records(Path(path))
        labels = [container_label(record) for record in records]
        per_container = scan_containers(catalog, records, labels=labels, max_workers=options.workers)
        for label, findings in zip(labels, per_container):
            result.add_target(TargetResult(target=label, kind="container", findings=_filtered(findings, options)))

    return result


def _filtered(findings, options: ScanOptions):
    return filter_findings(findings, severities=options.severities, min_severity=options.min_severity)


def write_output(result: ScanResult, options: ScanOptions) -> None:
    if not options.quiet:
        print(format_summary_table(result))

    if options.output_path:
        output_file = Path(options.output_path)
        if options.report_format == "csv":
            write_csv(result, output_file)
        else:
            write_json(result, output_file)
        if not options.quiet:
            print(f"\nReport written to {options.output_path}")


def print_rules(catalog: Catalog, details: bool = False) -> None:
    header = f"{'ID':<14} {'TARGET':<18} {'SCOPE':<12} {'SEVERITY':<12} NAME"
    print(header)
    print("-" * len(header))
    for rule in catalog:
        scope = rule.scope.value if rule.scope else "-"
        if rule.instruction_kind:
            scope = f"{scope}:{rule.instruction_kind}"
        print(f"{rule.id:<14} {rule.target.value:<18} {scope:<12} {rule.severity.value:<12} {rule.name}")
        if details:
            _print_rule_details(rule)


def _print_rule_details(rule: Rule) -> None:
    indent = " " * 15
    if rule.description:
        print(f"{indent}{rule.description}")
    print(f"{indent}match: {rule.match.strategy} {', '.join(match_paths(rule.match))}")
    if rule.tags:
        print(f"{indent}tags: {', '.join(rule.tags)}")
    for reference in rule.references:
        print(f"{indent}see: {reference}")


def report_load_errors(errors: Sequence[LoadError]) -> None:
    for error in errors:
        sys.stderr.write(f"warning: rule excluded: {error}\n")


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    options = options_from_args(parser, args)

    rules_config = RulesConfig.resolve(args.rules_dir)
    catalog, load_errors = rules_config.load()
    report_load_errors(load_errors)
    try:
        catalog = catalog.select(only=options.only, exclude=options.exclude)
    except UnknownRuleError as exc:
        parser.error(str(exc))

    if args.list_rules:
        print_rules(catalog, details=args.verbose)
        return EXIT_RULE_ERRORS if options.strict_rules and load_errors else 0

    try:
        result = run_scan(catalog, args.dockerfiles, args.inspect_files, options, load_errors)
    except (OSError, ValueError) as exc:
        logger.debug("Scan aborted", exc_info=True)
        sys.stderr.write(f"error: {exc}\n")
        return 2

    write_output(result, options)
    if options.strict_rules and load_errors:
        return EXIT_RULE_ERRORS
    return result.exit_code()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
