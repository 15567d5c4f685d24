import pytest

from container_guardrails.dockerfile import parse_dockerfile
from container_guardrails.engine import build_finding, scan_container, scan_containers, scan_dockerfile
from container_guardrails.rules import Catalog, parse_rule
from container_guardrails.severity import Severity


def _catalog(*raw_rules):
    return Catalog(rules=tuple(parse_rule(raw) for raw in raw_rules))


def _runtime(rule_id, match, message="matched", **extra):
    raw = {
        "id": rule_id,
        "target": "container_runtime",
        "severity": extra.pop("severity", "high"),
        "match": match,
        "message": message,
    }
    raw.update(extra)
    return raw


def _dockerfile_rule(rule_id, scope, match, message="matched", **extra):
    raw = {
        "id": rule_id,
        "target": "dockerfile",
        "scope": scope,
        "severity": extra.pop("severity", "medium"),
        "match": match,
        "message": message,
    }
    raw.update(extra)
    return raw


PRIVILEGED = _runtime(
    "RT001",
    {"jsonpath": "$.HostConfig.Privileged", "equals": "true"},
    message="Container runs in privileged mode",
    name="Privileged container",
    remediation="Drop --privileged.",
)


def test_privileged_container_produces_one_finding():
    catalog = _catalog(PRIVILEGED)

    findings = scan_container(catalog, {"HostConfig": {"Privileged": True}}, label="web")

    assert len(findings) == 1
    finding = findings[0]
    assert finding.rule_id == "RT001"
    assert finding.severity == Severity.HIGH
    assert finding.description == "Container runs in privileged mode"
    assert finding.title == "Privileged container"
    assert finding.remediation == "Drop --privileged."
    assert finding.target == "web"
    assert finding.line is None


def test_unprivileged_container_produces_nothing():
    catalog = _catalog(PRIVILEGED)

    assert scan_container(catalog, {"HostConfig": {"Privileged": False}}) == []
    assert scan_container(catalog, {}) == []
    assert scan_container(catalog, "not a record") == []


def test_container_rule_fires_once_even_with_many_matching_values():
    catalog = _catalog(
        _runtime("RT021", {"jsonpath": "$.HostConfig.CapAdd[*]", "regex": "^SYS_"}, message="cap {{match}}")
    )

    findings = scan_container(catalog, {"HostConfig": {"CapAdd": ["SYS_ADMIN", "SYS_PTRACE"]}})

    assert [finding.description for finding in findings] == ["cap SYS_ADMIN"]


def test_dockerfile_rules_are_ignored_for_containers():
    catalog = _catalog(
        _dockerfile_rule("DF1", "file", {"jsonpath": "$.HostConfig", "missing": True}),
        _runtime("RT1", {"jsonpath": "$.Config.User", "missing": True}, message="no user"),
    )

    findings = scan_container(catalog, {"Config": {}})

    assert [finding.rule_id for finding in findings] == ["RT1"]


def test_env_secret_reported_at_its_line():
    catalog = _catalog(
        _dockerfile_rule(
            "DF003",
            "instruction",
            {"jsonpath": "$.command", "regex": r"(?i)(api_key|secret)\s*="},
            message="ENV sets a secret",
            kind="ENV",
            severity="high",
        )
    )
    dockerfile = parse_dockerfile("FROM alpine:3.19\nENV API_KEY=supersecret123\n", path="Dockerfile")

    findings = scan_dockerfile(catalog, dockerfile)

    assert len(findings) == 1
    assert findings[0].line == 2
    assert findings[0].severity == Severity.HIGH
    assert findings[0].target == "Dockerfile"


def test_one_finding_per_matching_instruction():
    content = "\n".join(
        [
            "FROM ubuntu:22.04",
            "RUN apt-get update",
            "",
            "RUN sudo apt-get install -y curl",
            "# switch to the app",
            "COPY app /app",
            "WORKDIR /app",
            "ENV MODE=sudo-less",
            "RUN sudo chown -R app /app",
        ]
    )
    catalog = _catalog(
        _dockerfile_rule("DF004", "instruction", {"jsonpath": "$.command", "regex": r"\bsudo\s"}, kind="RUN")
    )

    findings = scan_dockerfile(catalog, parse_dockerfile(content))

    assert [(finding.rule_id, finding.line) for finding in findings] == [("DF004", 4), ("DF004", 9)]


def test_instruction_kind_filter():
    catalog = _catalog(
        _dockerfile_rule("ANY", "instruction", {"jsonpath": "$.command", "regex": "sudo"}),
        _dockerfile_rule("RUNONLY", "instruction", {"jsonpath": "$.command", "regex": "sudo"}, kind="RUN"),
    )

    findings = scan_dockerfile(catalog, parse_dockerfile("FROM alpine\nENV NOTE=sudo\n"))

    assert [(finding.rule_id, finding.line) for finding in findings] == [("ANY", 2)]


def test_dockerfile_findings_order_instruction_then_stage_then_file():
    catalog = _catalog(
        _dockerfile_rule("FILE1", "file", {"jsonpath": "$.has_healthcheck", "equals": "false"}),
        _dockerfile_rule("STAGE1", "stage", {"jsonpath": "$.user", "equals": "root"}),
        _dockerfile_rule("INSTR1", "instruction", {"jsonpath": "$.from.tag", "equals": "latest"}, kind="FROM"),
    )
    dockerfile = parse_dockerfile("FROM node\nRUN npm ci\nFROM node AS runtime\n")

    findings = scan_dockerfile(catalog, dockerfile)

    assert [(finding.rule_id, finding.line) for finding in findings] == [
        ("INSTR1", 1),
        ("INSTR1", 3),
        ("STAGE1", None),
        ("STAGE1", None),
        ("FILE1", None),
    ]


def test_parts_rule_over_file_unit():
    catalog = _catalog(
        _dockerfile_rule(
            "DF200",
            "file",
            {"parts": [{"jsonpath": "$.broad_copy"}, {"jsonpath": "$.dockerignore"}], "regex": "^true:false$"},
            message="context copied",
            include_match_in_description=True,
        )
    )
    content = "FROM alpine\nCOPY . /app\n"

    without_ignore = scan_dockerfile(catalog, parse_dockerfile(content))
    with_ignore = scan_dockerfile(catalog, parse_dockerfile(content, dockerignore_present=True))

    assert [finding.description for finding in without_ignore] == ["context copied: true:false"]
    assert with_ignore == []


def test_build_finding_placeholder_and_appended_match():
    rule = parse_rule(
        _runtime(
            "RT011",
            {"jsonpath": "$.Mounts[*].Source", "regex": "docker.sock"},
            message="socket {{match}} mounted",
            include_match_in_description=True,
        )
    )

    finding = build_finding(rule, "/var/run/docker.sock", line=3, target="web")

    assert finding.description == "socket /var/run/docker.sock mounted: /var/run/docker.sock"
    assert finding.line == 3
    assert finding.title == "RT011"


def test_missing_match_does_not_append_empty_text():
    rule = parse_rule(
        _runtime("RT9", {"jsonpath": "$.Config.User", "missing": True}, include_match_in_description=True)
    )

    assert build_finding(rule, "").description == "matched"


def test_scan_is_deterministic():
    catalog = _catalog(
        _dockerfile_rule("A", "instruction", {"jsonpath": "$.kind", "regex": "."}),
        _dockerfile_rule("B", "stage", {"jsonpath": "$.digest", "missing": True}),
    )
    dockerfile = parse_dockerfile("FROM alpine\nRUN a\nFROM b\nRUN c\n")

    assert scan_dockerfile(catalog, dockerfile) == scan_dockerfile(catalog, dockerfile)


def test_scan_containers_preserves_input_order():
    catalog = _catalog(
        _runtime("RT1", {"jsonpath": "$.Name", "regex": "."}, message="{{match}}"),
    )
    records = [{"Name": f"/c{index}"} for index in range(20)]
    labels = [f"c{index}" for index in range(20)]

    results = scan_containers(catalog, records, labels=labels, max_workers=4)
    sequential = scan_containers(catalog, records, labels=labels, max_workers=1)

    assert [findings[0].description for findings in results] == [f"/c{index}" for index in range(20)]
    assert [findings[0].target for findings in results] == labels
    assert results == sequential


def test_scan_containers_edge_cases():
    catalog = _catalog(PRIVILEGED)

    assert scan_containers(catalog, []) == []
    assert scan_containers(catalog, [{}]) == [[]]
    with pytest.raises(ValueError):
        scan_containers(catalog, [{}, {}], labels=["only-one"])


def test_finding_carries_rule_references():
    rule = parse_rule(
        _runtime(
            "RT001",
            {"jsonpath": "$.HostConfig.Privileged", "equals": "true"},
            references=["https://docs.docker.com/engine/security/"],
        )
    )

    finding = build_finding(rule, "true")

    assert finding.references == ("https://docs.docker.com/engine/security/",)
