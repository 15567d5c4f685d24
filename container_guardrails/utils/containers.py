"""Helpers for container inspection records produced by ``docker inspect``."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from .fileio import read_json_file


def load_inspect_records(path: Path) -> List[Dict[str, Any]]:
    """Load ``docker inspect`` output, which is a list of records or a single record."""

    data = read_json_file(path)
    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        raise ValueError(f"Inspect output at {path} is not a list or mapping")
    records = [item for item in data if isinstance(item, dict)]
    if len(records) != len(data):
        raise ValueError(f"Inspect output at {path} contains entries that are not mappings")
    return records


def container_label(record: Dict[str, Any]) -> str:
    """Return a short human-readable name for a container record."""

    name = record.get("Name")
    if isinstance(name, str) and name.strip("/"):
        return name.strip("/")
    identifier = record.get("Id")
    if isinstance(identifier, str) and identifier:
        return identifier[:12]
    return "<unknown>"
