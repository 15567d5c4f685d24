"""Expose Dockerfile instructions, stages and file facts as JSONPath-addressable values.

Each builder returns a fresh dictionary per scan unit. Keys whose value is
unknown are omitted rather than set to ``None`` so that ``missing`` rules see
them as absent.
"""

from __future__ import annotations

import json
import shlex
from typing import Any, Dict, List, Optional, Tuple

from .dockerfile import Dockerfile, Instruction, Stage, split_flags

DEFAULT_USER = "root"
BROAD_COPY_SOURCES = {".", "./"}


# ----------------------------------------------------------------------
# Instruction scope
# ----------------------------------------------------------------------
def instruction_units(dockerfile: Dockerfile) -> List[Tuple[Instruction, Dict[str, Any]]]:
    return [(instruction, instruction_value(instruction)) for instruction in dockerfile.instructions]


def instruction_value(instruction: Instruction) -> Dict[str, Any]:
    """Describe one instruction: common fields plus keyword-specific ones."""

    form, args = split_arguments(instruction.arguments)
    value: Dict[str, Any] = {
        "kind": instruction.kind,
        "command": instruction.arguments,
        "raw": instruction.raw,
        "line": instruction.line,
        "end_line": instruction.end_line,
        "stage_index": instruction.stage_index,
        "form": form,
        "args": args,
        "heredocs": [{"name": name, "body": body} for name, body in instruction.heredocs] or None,
    }

    builder = _KIND_BUILDERS.get(instruction.kind)
    if builder is not None:
        value.update(builder(instruction.arguments))
    return _compact(value)


def split_arguments(arguments: str) -> Tuple[str, List[str]]:
    """Return ``("exec", list)`` for JSON-array arguments, else ``("shell", words)``."""

    stripped = arguments.strip()
    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            parsed = None
        if isinstance(parsed, list) and all(isinstance(item, str) for item in parsed):
            return "exec", parsed
    return "shell", _split_words(stripped)


def _split_words(text: str) -> List[str]:
    try:
        return shlex.split(text)
    except ValueError:
        # Unbalanced quotes; fall back to whitespace splitting.
        return text.split()


def _from_fields(arguments: str) -> Dict[str, Any]:
    flags, rest = split_flags(arguments)
    tokens = rest.split()
    reference = tokens[0] if tokens else ""
    image, tag, digest = parse_image_reference(reference)
    alias = tokens[2] if len(tokens) >= 3 and tokens[1].upper() == "AS" else None
    return {
        "from": _compact(
            {
                "reference": reference,
                "image": image,
                "tag": tag,
                "digest": digest,
                "alias": alias,
                "platform": flags.get("platform"),
            }
        )
    }


def _run_fields(arguments: str) -> Dict[str, Any]:
    flags, _ = split_flags(arguments)
    return {"flags": flags} if flags else {}


def _env_fields(arguments: str) -> Dict[str, Any]:
    return {"env": _key_value_pairs(arguments, allow_legacy=True)}


def _label_fields(arguments: str) -> Dict[str, Any]:
    return {"labels": _key_value_pairs(arguments, allow_legacy=False)}


def _arg_fields(arguments: str) -> Dict[str, Any]:
    name, sep, default = arguments.strip().partition("=")
    fields: Dict[str, Any] = {"name": name.strip()}
    if sep:
        fields["default"] = default.strip().strip("\"'")
    return {"arg": fields}


def _user_fields(arguments: str) -> Dict[str, Any]:
    user, sep, group = arguments.strip().partition(":")
    fields: Dict[str, Any] = {"user": user}
    if sep:
        fields["group"] = group
    return fields


def _expose_fields(arguments: str) -> Dict[str, Any]:
    ports = arguments.split()
    fields: Dict[str, Any] = {"ports": ports}
    if ports:
        fields["port"] = ports[0]
    return fields


def _copy_fields(arguments: str) -> Dict[str, Any]:
    flags, rest = split_flags(arguments)
    _, paths = split_arguments(rest)
    fields: Dict[str, Any] = {"flags": flags}
    if paths:
        fields["sources"] = paths[:-1]
        fields["destination"] = paths[-1]
    return fields


def _healthcheck_fields(arguments: str) -> Dict[str, Any]:
    flags, rest = split_flags(arguments)
    if rest.strip().upper() == "NONE":
        return {"healthcheck": {"disabled": True}}
    command = rest.strip()
    if command.upper().startswith("CMD"):
        command = command[3:].strip()
    return {"healthcheck": {"disabled": False, "command": command, "flags": flags}}


_KIND_BUILDERS = {
    "FROM": _from_fields,
    "RUN": _run_fields,
    "ENV": _env_fields,
    "LABEL": _label_fields,
    "ARG": _arg_fields,
    "USER": _user_fields,
    "EXPOSE": _expose_fields,
    "COPY": _copy_fields,
    "ADD": _copy_fields,
    "HEALTHCHECK": _healthcheck_fields,
}


def _key_value_pairs(arguments: str, allow_legacy: bool) -> List[Dict[str, str]]:
    words = _split_words(arguments)
    if not words:
        return []
    if allow_legacy and "=" not in words[0]:
        # ENV KEY value with spaces
        key, _, rest = arguments.strip().partition(" ")
        return [{"key": key, "value": rest.strip()}]
    pairs = []
    for word in words:
        key, _, value = word.partition("=")
        pairs.append({"key": key, "value": value})
    return pairs


def parse_image_reference(reference: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Split ``registry/name:tag@digest`` into ``(name, tag, digest)``.

    The tag defaults to ``latest`` when neither a tag nor a digest is pinned.
    """

    name, _, digest = reference.partition("@")
    tag: Optional[str] = None
    colon = name.rfind(":")
    if colon > name.rfind("/"):
        name, tag = name[:colon], name[colon + 1 :]
    if tag is None and not digest:
        tag = "latest"
    return name, tag, digest or None


# ----------------------------------------------------------------------
# Stage scope
# ----------------------------------------------------------------------
def stage_units(dockerfile: Dockerfile) -> List[Tuple[Stage, Dict[str, Any]]]:
    units: List[Tuple[Stage, Dict[str, Any]]] = []
    effective_users: List[str] = []
    for stage in dockerfile.stages:
        parent_user = _parent_user(stage, dockerfile.stages, effective_users)
        value = stage_value(stage, inherited_user=parent_user)
        effective_users.append(value["user"])
        units.append((stage, value))
    return units


def stage_value(stage: Stage, inherited_user: str = DEFAULT_USER) -> Dict[str, Any]:
    """Summarise a stage: base image, alias, effective user and its instructions."""

    image, tag, digest = parse_image_reference(stage.base_image)
    declared_users = [
        _user_fields(instruction.arguments)["user"]
        for instruction in stage.instructions
        if instruction.kind == "USER"
    ]
    return _compact(
        {
            "index": stage.index,
            "line": stage.line,
            "base_image": stage.base_image,
            "image": image,
            "tag": tag,
            "digest": digest,
            "alias": stage.alias,
            "platform": stage.platform,
            "user": declared_users[-1] if declared_users else inherited_user,
            "user_declared": bool(declared_users),
            "users": declared_users,
            "kinds": [instruction.kind for instruction in stage.instructions],
            "instructions": [
                {"kind": instruction.kind, "command": instruction.arguments, "line": instruction.line}
                for instruction in stage.instructions
            ],
        }
    )


def _parent_user(stage: Stage, stages: Tuple[Stage, ...], effective_users: List[str]) -> str:
    base = stage.base_image.lower()
    for earlier in stages[: stage.index]:
        if (earlier.alias and earlier.alias.lower() == base) or str(earlier.index) == base:
            return effective_users[earlier.index]
    return DEFAULT_USER


# ----------------------------------------------------------------------
# File scope
# ----------------------------------------------------------------------
def file_unit(dockerfile: Dockerfile) -> Dict[str, Any]:
    """Whole-file facts that are not tied to a single instruction."""

    broad_copy_lines = [
        instruction.line for instruction in dockerfile.instructions if _is_broad_copy(instruction)
    ]
    stages = stage_units(dockerfile)
    kinds = [instruction.kind for instruction in dockerfile.instructions]
    return _compact(
        {
            "path": dockerfile.path,
            "stage_count": len(dockerfile.stages),
            "instruction_count": len(dockerfile.instructions),
            "dockerignore": dockerfile.dockerignore_present,
            "broad_copy": bool(broad_copy_lines),
            "broad_copy_lines": broad_copy_lines,
            "base_images": [stage.base_image for stage in dockerfile.stages],
            "final_user": stages[-1][1]["user"] if stages else None,
            "kinds": kinds,
            "has_user": "USER" in kinds,
            "has_healthcheck": "HEALTHCHECK" in kinds,
            "directives": {key: value for key, value in dockerfile.directives},
        }
    )


def _is_broad_copy(instruction: Instruction) -> bool:
    if instruction.kind not in {"COPY", "ADD"}:
        return False
    fields = _copy_fields(instruction.arguments)
    if "from" in fields["flags"]:
        return False
    return any(source in BROAD_COPY_SOURCES for source in fields.get("sources", []))


def _compact(value: Dict[str, Any]) -> Dict[str, Any]:
    return {key: item for key, item in value.items() if item is not None}
