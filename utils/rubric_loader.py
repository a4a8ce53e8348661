"""Load rubric configuration files into validated :class:`RubricSchema` objects."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from models import RubricSchema

from . import io_utils


_SECTION_ALIASES = {
    "name": "title",
    "weight": "max_points",
    "total_points": "max_points",
    "peso": "max_points",
    "penalty": "is_penalty",
    "is_reducer": "is_penalty",
    "items": "criteria",
}
_CRITERION_ALIASES = {
    "name": "label",
    "text": "label",
    "points": "max_points",
    "weight": "max_points",
    "regex": "pattern",
}


class RubricLoadError(ValueError):
    """Raised when a rubric payload cannot be turned into a schema."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


@dataclass
class RubricLoadResult:
    """Outcome of canonicalising an arbitrary rubric payload."""

    rubric: Optional[RubricSchema]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    converted: bool = False

    @property
    def is_valid(self) -> bool:
        return self.rubric is not None and not self.errors


def canonicalize_rubric(payload: Any) -> RubricLoadResult:
    """Validate ``payload``, converting legacy rubric shapes when needed."""

    if not isinstance(payload, dict):
        return RubricLoadResult(rubric=None, errors=["__root__: Rubric must be a JSON object"])

    first = _validate(copy.deepcopy(payload))
    if first.is_valid:
        return first

    converted_payload, converted, warnings = _auto_convert(payload)
    if not converted:
        return first

    second = _validate(converted_payload)
    second.converted = True
    second.warnings.extend(warnings)
    return second


def read_rubric(path: Union[str, Path]) -> RubricLoadResult:
    """Read the rubric JSON file at ``path``, keeping any conversion warnings."""

    try:
        payload = io_utils.read_json_file(str(path))
    except ValueError as exc:
        raise RubricLoadError(f"Rubric file is not valid JSON: {path}", [str(exc)]) from exc

    result = canonicalize_rubric(payload)
    if not result.is_valid or result.rubric is None:
        raise RubricLoadError(f"Invalid rubric configuration: {path}", result.errors)
    return result


def load_rubric(path: Union[str, Path]) -> RubricSchema:
    """Read and validate the rubric JSON file at ``path``."""

    rubric = read_rubric(path).rubric
    assert rubric is not None
    return rubric


def format_validation_errors(error: ValidationError) -> List[str]:
    """Convert a Pydantic ValidationError into concise ``loc: msg`` strings."""

    messages: List[str] = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"])
        if location:
            messages.append(f"{location}: {issue['msg']}")
        else:
            messages.append(issue["msg"])
    return messages


def _validate(payload: Dict[str, Any]) -> RubricLoadResult:
    try:
        rubric = RubricSchema.model_validate(payload)
    except ValidationError as exc:
        return RubricLoadResult(rubric=None, errors=format_validation_errors(exc))
    return RubricLoadResult(rubric=rubric)


def _auto_convert(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], bool, List[str]]:
    """Apply heuristic conversions for legacy rubric shapes."""

    working = copy.deepcopy(payload)
    changed = False
    warnings: List[str] = []

    if "rubric" in working and isinstance(working["rubric"], dict):
        working = copy.deepcopy(working["rubric"])
        changed = True
        warnings.append("Unwrapped rubric payload from the 'rubric' key")

    sections = working.get("sections")
    if not isinstance(sections, list):
        return working, changed, warnings

    for index, section in enumerate(sections):
        if not isinstance(section, dict):
            continue
        if _rename_keys(section, _SECTION_ALIASES, f"sections[{index}]", warnings):
            changed = True
        if section.get("is_penalty") and isinstance(section.get("max_points"), (int, float)):
            if section["max_points"] > 0:
                section["max_points"] = -section["max_points"]
                changed = True
                warnings.append(f"sections[{index}].max_points negated for penalty section")
        criteria = section.get("criteria")
        if not isinstance(criteria, list):
            continue
        for position, criterion in enumerate(criteria):
            if not isinstance(criterion, dict):
                continue
            loc = f"sections[{index}].criteria[{position}]"
            if _rename_keys(criterion, _CRITERION_ALIASES, loc, warnings):
                changed = True
            points = criterion.get("max_points")
            if section.get("is_penalty") and isinstance(points, (int, float)) and points > 0:
                criterion["max_points"] = -points
                changed = True
                warnings.append(f"{loc}.max_points negated for penalty section")

    return working, changed, warnings


def _rename_keys(
    item: Dict[str, Any], aliases: Dict[str, str], loc: str, warnings: List[str]
) -> bool:
    changed = False
    for legacy, canonical in aliases.items():
        if legacy in item and canonical not in item:
            item[canonical] = item.pop(legacy)
            warnings.append(f"{loc}.{legacy} renamed to {canonical}")
            changed = True
    return changed
