"""Degraded-mode extraction for texts the structural pass could not split.

Every configured criterion is looked up anywhere in the text as
"label ... number", ignoring section structure entirely.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from re import Pattern
from typing import List, Optional, Tuple

from models import Criterion, CriterionSpec, RubricSchema

from .line_classifier import to_points

_MARKUP = re.compile(r"\*\*|__")


@dataclass(frozen=True)
class FallbackExtraction:
    criteria: Tuple[Criterion, ...]
    total: Optional[int]
    rejected: Tuple[str, ...] = ()

    @property
    def found_any(self) -> bool:
        return bool(self.criteria)


@lru_cache(maxsize=256)
def _value_pattern(label_pattern: str) -> Pattern[str]:
    return re.compile(
        rf"(?:{label_pattern})[\s?:\-–=]*"
        r"(?:\(\s*(?P<paired>[+-]?\d+)\s*/\s*\d+[^()]*\)"
        r"|(?:\([^()]*\)[\s:\-–=]*)?(?P<value>[+-]?\d+)\b)",
        re.IGNORECASE,
    )


def _lookup(text: str, criterion: CriterionSpec) -> Optional[str]:
    match = _value_pattern(criterion.match_pattern).search(text)
    if match is None:
        return None
    return match.group("paired") or match.group("value")


def extract_fallback(text: str, rubric: RubricSchema) -> FallbackExtraction:
    """Sum whatever configured criteria can be found in ``text``."""

    cleaned = _MARKUP.sub("", text or "")
    found: List[Criterion] = []
    rejected: List[str] = []
    for section, spec in rubric.iter_criteria():
        captured = _lookup(cleaned, spec)
        if captured is None:
            continue
        value = to_points(captured)
        if value is None:
            rejected.append(f"{spec.label}: value out of range")
            continue
        if section.is_penalty:
            value = -abs(value)
        elif value < 0:
            rejected.append(f"{spec.label}: {value}")
            continue
        if abs(value) > abs(spec.max_points):
            rejected.append(f"{spec.label}: {value} exceeds {spec.max_points}")
            continue
        found.append(
            Criterion(text=spec.label, awarded_points=value, max_points=spec.max_points)
        )

    total = sum(item.awarded_points for item in found) if found else None
    return FallbackExtraction(criteria=tuple(found), total=total, rejected=tuple(rejected))
