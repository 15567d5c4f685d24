"""Utility helpers for the scanner."""

from .fileio import read_json_file, read_text_file, read_yaml_file
from .containers import container_label, load_inspect_records

__all__ = [
    "read_yaml_file",
    "read_json_file",
    "read_text_file",
    "load_inspect_records",
    "container_label",
]
