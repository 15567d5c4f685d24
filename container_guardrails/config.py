"""Run configuration: where rules live and which options a scan uses."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .rules import Catalog, LoadError, Target, load_catalog
from .severity import Severity

RULES_DIR_ENV = "GUARDRAILS_RULES_DIR"
DEFAULT_RULES_DIR = "rules"
RUNTIME_SUBDIR = "runtime"
DOCKERFILE_SUBDIR = "dockerfile"


@dataclass(frozen=True)
class RulesConfig:
    """Location of the rule catalog on disk."""

    base_dir: Path

    @classmethod
    def resolve(cls, explicit: Optional[str] = None) -> "RulesConfig":
        """Pick the rules directory: explicit argument, then environment, then default."""

        if explicit:
            return cls(base_dir=Path(explicit))
        from_env = os.environ.get(RULES_DIR_ENV)
        if from_env:
            return cls(base_dir=Path(from_env))
        return cls(base_dir=Path(DEFAULT_RULES_DIR))

    @property
    def runtime_dir(self) -> Path:
        return self.base_dir / RUNTIME_SUBDIR

    @property
    def dockerfile_dir(self) -> Path:
        return self.base_dir / DOCKERFILE_SUBDIR

    @property
    def is_split(self) -> bool:
        return self.runtime_dir.is_dir() or self.dockerfile_dir.is_dir()

    def load(self) -> Tuple[Catalog, List[LoadError]]:
        """Load the catalog.

        With ``runtime/`` and ``dockerfile/`` subdirectories each half supplies
        its own default target; otherwise every rule must declare ``target``.
        """

        if not self.is_split:
            return load_catalog(self.base_dir)

        runtime, runtime_errors = load_catalog(self.runtime_dir, default_target=Target.CONTAINER_RUNTIME)
        dockerfile, dockerfile_errors = load_catalog(self.dockerfile_dir, default_target=Target.DOCKERFILE)
        catalog, merge_errors = runtime.merge(dockerfile)
        return catalog, runtime_errors + dockerfile_errors + merge_errors


@dataclass(frozen=True)
class ScanOptions:
    """Filters and output settings collected from the command line."""

    only: Optional[Tuple[str, ...]] = None
    exclude: Optional[Tuple[str, ...]] = None
    severities: Optional[Tuple[Severity, ...]] = None
    min_severity: Optional[Severity] = None
    fail_on: Optional[Severity] = None
    quiet: bool = False
    output_path: Optional[str] = None
    report_format: str = "json"
    workers: Optional[int] = None
    strict_rules: bool = False


def split_ids(value: Optional[str]) -> Optional[Tuple[str, ...]]:
    """Split a comma-separated id list; ``None`` stays ``None``."""

    if value is None:
        return None
    return tuple(item.strip() for item in value.split(",") if item.strip())
