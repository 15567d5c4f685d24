"""Severity definitions for scanner findings."""

from __future__ import annotations

from enum import Enum
from typing import List

_ALIASES = {
    "info": "informative",
    "critical": "high",
}


class Severity(str, Enum):
    """Enumerate the supported severity levels, ordered from least to most severe."""

    INFORMATIVE = "informative"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Return an integer ranking used for ordering and thresholds."""

        ordering = {
            Severity.INFORMATIVE: 0,
            Severity.LOW: 1,
            Severity.MEDIUM: 2,
            Severity.HIGH: 3,
        }
        return ordering[self]

    @classmethod
    def parse(cls, value: object) -> "Severity":
        """Parse a severity name case-insensitively, accepting ``info`` and ``critical``."""

        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Severity must be a string, got {type(value).__name__}")
        name = value.strip().lower()
        name = _ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown severity '{value}' (expected one of: {allowed})") from None

    @classmethod
    def parse_list(cls, value: str) -> List["Severity"]:
        """Parse a comma-separated list such as ``"high,medium"``."""

        return [cls.parse(item) for item in value.split(",") if item.strip()]

    def at_least(self, threshold: "Severity") -> bool:
        return self.rank >= threshold.rank

    # str mixin comparisons would be lexicographic; compare by rank instead.
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

