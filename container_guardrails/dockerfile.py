"""Parse Dockerfile source into instructions and build stages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .utils import read_text_file

logger = logging.getLogger(__name__)

DOCKERIGNORE_FILENAME = ".dockerignore"
DEFAULT_ESCAPE = "\\"

INSTRUCTION_PATTERN = re.compile(r"^\s*([A-Za-z]+)(?:\s+(.*))?$")
HEREDOC_PATTERN = re.compile(r"<<(-?)([\"']?)([A-Za-z_][A-Za-z0-9_]*)\2")
HEREDOC_KINDS = {"RUN", "COPY", "ADD"}
DIRECTIVE_PATTERN = re.compile(r"^#\s*([A-Za-z]+)\s*=\s*(.*?)\s*$")


@dataclass(frozen=True)
class Instruction:
    """One logical Dockerfile instruction after joining continuation lines."""

    kind: str
    arguments: str
    raw: str
    line: int
    end_line: int
    stage_index: Optional[int] = None
    heredocs: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Stage:
    """A build stage, starting at its FROM instruction."""

    index: int
    base_image: str
    alias: Optional[str]
    platform: Optional[str]
    instructions: Tuple[Instruction, ...]

    @property
    def line(self) -> int:
        return self.instructions[0].line


@dataclass(frozen=True)
class Dockerfile:
    """Parsed Dockerfile plus the file-level facts gathered next to it."""

    instructions: Tuple[Instruction, ...]
    stages: Tuple[Stage, ...]
    path: Optional[str] = None
    dockerignore_present: bool = False
    directives: Tuple[Tuple[str, str], ...] = ()


def load_dockerfile(path: Path) -> Dockerfile:
    """Read and parse the Dockerfile at ``path``."""

    if not path.is_file():
        raise FileNotFoundError(f"Dockerfile not found: {path}")
    content = read_text_file(path)
    dockerignore = path.parent / DOCKERIGNORE_FILENAME
    return parse_dockerfile(
        content,
        path=str(path),
        dockerignore_present=dockerignore.is_file(),
    )


def parse_dockerfile(
    content: str,
    path: Optional[str] = None,
    dockerignore_present: bool = False,
) -> Dockerfile:
    """Split ``content`` into instructions and group them into stages.

    Comment lines and blank lines are dropped, including inside continuations.
    Heredoc bodies (``<<EOF`` on RUN, COPY and ADD) belong to the instruction
    that opens them and are kept verbatim in ``heredocs``.
    """

    lines = content.splitlines()
    directives, body_start = _read_directives(lines)
    escape = dict(directives).get("escape", DEFAULT_ESCAPE) or DEFAULT_ESCAPE

    instructions: List[Instruction] = []
    stages: List[Stage] = []
    stage_members: List[Instruction] = []
    stage_header: Optional[Tuple[str, Optional[str], Optional[str]]] = None

    def close_stage() -> None:
        if stage_header is None:
            return
        base_image, alias, platform = stage_header
        stages.append(
            Stage(
                index=len(stages),
                base_image=base_image,
                alias=alias,
                platform=platform,
                instructions=tuple(stage_members),
            )
        )

    for start, end, text, raw, heredocs in _logical_lines(lines, body_start, escape):
        match = INSTRUCTION_PATTERN.match(text)
        if not match:
            logger.debug("Ignoring unparseable Dockerfile line %d: %s", start, text)
            continue
        kind = match.group(1).upper()
        arguments = (match.group(2) or "").strip()

        if kind == "FROM":
            close_stage()
            stage_members = []
            stage_header = parse_from_arguments(arguments)
            stage_index: Optional[int] = len(stages)
        else:
            stage_index = len(stages) if stage_header is not None else None

        instruction = Instruction(
            kind=kind,
            arguments=arguments,
            raw=raw,
            line=start,
            end_line=end,
            stage_index=stage_index,
            heredocs=heredocs,
        )
        instructions.append(instruction)
        if stage_header is not None:
            stage_members.append(instruction)

    close_stage()
    return Dockerfile(
        instructions=tuple(instructions),
        stages=tuple(stages),
        path=path,
        dockerignore_present=dockerignore_present,
        directives=tuple(directives),
    )


def parse_from_arguments(arguments: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Return ``(image, alias, platform)`` for a FROM instruction."""

    flags, rest = split_flags(arguments)
    tokens = rest.split()
    image = tokens[0] if tokens else ""
    alias = None
    if len(tokens) >= 3 and tokens[1].upper() == "AS":
        alias = tokens[2]
    return image, alias, flags.get("platform")


def split_flags(arguments: str) -> Tuple[Dict[str, str], str]:
    """Strip leading ``--name=value`` flags from an argument string."""

    flags: Dict[str, str] = {}
    rest = arguments.lstrip()
    while rest.startswith("--"):
        token, _, remainder = rest.partition(" ")
        name, _, value = token[2:].partition("=")
        if not name:
            break
        flags[name.lower()] = value
        rest = remainder.lstrip()
    return flags, rest


# ----------------------------------------------------------------------
# Line handling
# ----------------------------------------------------------------------
def _read_directives(lines: List[str]) -> Tuple[List[Tuple[str, str]], int]:
    directives: List[Tuple[str, str]] = []
    for index, line in enumerate(lines):
        match = DIRECTIVE_PATTERN.match(line.strip())
        if not match:
            return directives, index
        directives.append((match.group(1).lower(), match.group(2)))
    return directives, len(lines)


def _logical_lines(lines: List[str], start_index: int, escape: str):
    """Yield ``(first_line, last_line, joined_text, raw_text, heredocs)`` for each instruction."""

    pieces: List[str] = []
    raw_lines: List[str] = []
    first_line = 0
    index = start_index

    while index < len(lines):
        line = lines[index]
        index += 1
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        if not pieces:
            first_line = index
        raw_lines.append(line)

        continued = stripped.endswith(escape)
        if continued:
            stripped = stripped[: -len(escape)].rstrip()
        if stripped:
            pieces.append(stripped)
        if continued:
            continue

        text = " ".join(pieces)
        heredocs: List[Tuple[str, str]] = []
        for word, strip_tabs in _heredoc_markers(text):
            body, consumed, index = _read_heredoc(lines, index, word, strip_tabs)
            raw_lines.extend(consumed)
            heredocs.append((word, "\n".join(body)))
        yield first_line, index, text, "\n".join(raw_lines), tuple(heredocs)
        pieces = []
        raw_lines = []

    if pieces:
        # Trailing continuation at end of file.
        yield first_line, len(lines), " ".join(pieces), "\n".join(raw_lines), ()


def _heredoc_markers(text: str) -> List[Tuple[str, bool]]:
    """Return ``(word, strip_tabs)`` for each ``<<WORD`` opened by a RUN, COPY or ADD line."""

    match = INSTRUCTION_PATTERN.match(text)
    if not match or match.group(1).upper() not in HEREDOC_KINDS:
        return []
    return [(marker.group(3), bool(marker.group(1))) for marker in HEREDOC_PATTERN.finditer(text)]


def _read_heredoc(
    lines: List[str], index: int, word: str, strip_tabs: bool
) -> Tuple[List[str], List[str], int]:
    """Read a heredoc body starting at ``index`` up to the line holding only ``word``.

    Returns the body, the source lines consumed (terminator included) and the
    index after them. An unterminated heredoc runs to the end of the file.
    """

    body: List[str] = []
    consumed: List[str] = []
    while index < len(lines):
        line = lines[index]
        index += 1
        consumed.append(line)
        content = line.lstrip("\t") if strip_tabs else line
        if content.rstrip() == word:
            return body, consumed, index
        body.append(content)
    return body, consumed, index
