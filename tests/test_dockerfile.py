import pytest

from container_guardrails.dockerfile import (
    load_dockerfile,
    parse_dockerfile,
    parse_from_arguments,
    split_flags,
)

MULTI_STAGE = """\
# syntax=docker/dockerfile:1
FROM python:3.12-slim AS build
RUN apt-get update \\
    && apt-get install -y gcc
# build the wheel
COPY . /src

FROM build AS final
USER app
"""


def test_parse_instructions_with_lines_and_continuations():
    dockerfile = parse_dockerfile(MULTI_STAGE)

    kinds = [(instruction.kind, instruction.line) for instruction in dockerfile.instructions]
    assert kinds == [("FROM", 2), ("RUN", 3), ("COPY", 6), ("FROM", 8), ("USER", 9)]

    run = dockerfile.instructions[1]
    assert run.arguments == "apt-get update && apt-get install -y gcc"
    assert run.end_line == 4
    assert "\\" in run.raw
    assert dockerfile.directives == (("syntax", "docker/dockerfile:1"),)


def test_parse_groups_instructions_into_stages():
    dockerfile = parse_dockerfile(MULTI_STAGE)

    assert len(dockerfile.stages) == 2
    build, final = dockerfile.stages
    assert (build.index, build.base_image, build.alias) == (0, "python:3.12-slim", "build")
    assert [instruction.kind for instruction in build.instructions] == ["FROM", "RUN", "COPY"]
    assert (final.base_image, final.alias, final.line) == ("build", "final", 8)
    assert [instruction.stage_index for instruction in dockerfile.instructions] == [0, 0, 0, 1, 1]


def test_comments_inside_continuations_are_skipped():
    content = "FROM alpine\nRUN echo a \\\n# inner comment\n\n    && echo b\nCMD [\"sh\"]\n"

    dockerfile = parse_dockerfile(content)

    run = dockerfile.instructions[1]
    assert run.arguments == "echo a && echo b"
    assert (run.line, run.end_line) == (2, 5)
    assert dockerfile.instructions[2].line == 6


def test_instructions_before_first_from_have_no_stage():
    dockerfile = parse_dockerfile("ARG VERSION=3.19\nFROM alpine:${VERSION}\n")

    arg, from_ = dockerfile.instructions
    assert arg.stage_index is None
    assert from_.stage_index == 0
    assert dockerfile.stages[0].instructions == (from_,)


def test_escape_directive_changes_continuation_character():
    dockerfile = parse_dockerfile("# escape=`\nFROM alpine\nRUN echo a `\n    && echo b\n")

    assert dockerfile.directives == (("escape", "`"),)
    assert dockerfile.instructions[1].arguments == "echo a && echo b"


def test_keywords_are_case_insensitive():
    dockerfile = parse_dockerfile("from alpine\nrun echo hi\n")

    assert [instruction.kind for instruction in dockerfile.instructions] == ["FROM", "RUN"]


def test_empty_dockerfile():
    dockerfile = parse_dockerfile("")

    assert dockerfile.instructions == ()
    assert dockerfile.stages == ()


def test_parse_from_arguments():
    assert parse_from_arguments("--platform=linux/amd64 golang:1.22 AS builder") == (
        "golang:1.22",
        "builder",
        "linux/amd64",
    )
    assert parse_from_arguments("alpine") == ("alpine", None, None)


def test_split_flags():
    flags, rest = split_flags("--chown=app:app --FROM=build /a /b")

    assert flags == {"chown": "app:app", "from": "build"}
    assert rest == "/a /b"


def test_load_dockerfile_detects_dockerignore(tmp_path):
    path = tmp_path / "Dockerfile"
    path.write_text("FROM alpine\n", encoding="utf-8")

    assert load_dockerfile(path).dockerignore_present is False

    (tmp_path / ".dockerignore").write_text(".git\n", encoding="utf-8")
    dockerfile = load_dockerfile(path)

    assert dockerfile.dockerignore_present is True
    assert dockerfile.path == str(path)


def test_load_dockerfile_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_dockerfile(tmp_path / "Dockerfile")


def test_heredoc_body_belongs_to_its_instruction():
    dockerfile = parse_dockerfile(
        "FROM nginx:1.25\n"
        "COPY <<EOF /etc/nginx/nginx.conf\n"
        "user nginx;\n"
        "\n"
        "# not a comment here\n"
        "worker_processes auto;\n"
        "EOF\n"
        "RUN nginx -t\n"
    )

    kinds = [(instruction.kind, instruction.line) for instruction in dockerfile.instructions]
    assert kinds == [("FROM", 1), ("COPY", 2), ("RUN", 8)]
    copy = dockerfile.instructions[1]
    assert copy.arguments == "<<EOF /etc/nginx/nginx.conf"
    assert copy.end_line == 7
    assert copy.heredocs == (("EOF", "user nginx;\n\n# not a comment here\nworker_processes auto;"),)
    assert copy.raw.endswith("worker_processes auto;\nEOF")


def test_dash_and_quoted_heredoc_markers():
    dockerfile = parse_dockerfile(
        "FROM alpine\n"
        "RUN <<-'SCRIPT' sh\n"
        "\tset -e\n"
        "\tapk add curl\n"
        "\tSCRIPT\n"
        "USER app\n"
    )

    run = dockerfile.instructions[1]
    assert run.heredocs == (("SCRIPT", "set -e\napk add curl"),)
    assert [instruction.kind for instruction in dockerfile.instructions] == ["FROM", "RUN", "USER"]


def test_heredoc_markers_only_apply_to_run_copy_add():
    dockerfile = parse_dockerfile("FROM alpine\nLABEL note=<<EOF\nUSER app\n")

    assert [instruction.kind for instruction in dockerfile.instructions] == ["FROM", "LABEL", "USER"]
    assert dockerfile.instructions[1].heredocs == ()


def test_unterminated_heredoc_runs_to_end_of_file():
    dockerfile = parse_dockerfile("FROM alpine\nRUN <<EOF\necho hi\nUSER app\n")

    run = dockerfile.instructions[1]
    assert len(dockerfile.instructions) == 2
    assert run.heredocs == (("EOF", "echo hi\nUSER app"),)
    assert run.end_line == 4
