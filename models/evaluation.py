"""Evaluation result models produced by the rubric text parser."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


EvaluationStatus = Literal["ok", "partial_failure", "total_failure"]
ScoreSource = Literal["structural", "declared", "fallback", "prior", "none"]


class _ResultModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Criterion(_ResultModel):
    """A single scored rubric item."""

    text: str = Field(min_length=1)
    awarded_points: int
    max_points: int
    justification: str = ""


class RubricSection(_ResultModel):
    """A rubric section and the criteria parsed beneath it."""

    title: str = Field(min_length=1)
    max_points: int
    is_penalty: bool = False
    criteria: Tuple[Criterion, ...] = ()

    @model_validator(mode="after")
    def _check_signs(self) -> "RubricSection":
        if not self.is_penalty:
            for criterion in self.criteria:
                if criterion.awarded_points < 0:
                    raise ValueError(
                        f"Negative award for '{criterion.text}' outside a penalty section"
                    )
        return self

    @property
    def awarded_points(self) -> int:
        return sum(criterion.awarded_points for criterion in self.criteria)


class EvaluationResult(_ResultModel):
    """Structured outcome of parsing one evaluation text."""

    sections: Tuple[RubricSection, ...] = ()
    summary: str
    final_score: int
    status: EvaluationStatus
    raw_text: Optional[str] = None
    score_source: ScoreSource = "none"
    declared_score: Optional[int] = None
    unclassified_lines: Tuple[str, ...] = Field(default=(), exclude=True)

    @model_validator(mode="after")
    def _check_consistency(self) -> "EvaluationResult":
        if self.sections and self.raw_text is not None:
            raise ValueError("raw_text is only kept when no sections were extracted")
        if self.status == "ok" and not self.sections:
            raise ValueError("status 'ok' requires at least one parsed section")
        if self.status != "total_failure" and self.final_score < 0:
            raise ValueError("negative scores are reserved for total failures")
        return self

    @property
    def structural_sum(self) -> Optional[int]:
        if not self.sections:
            return None
        return sum(section.awarded_points for section in self.sections)

    def to_json_dict(self) -> Dict[str, Any]:
        """JSON-ready payload with the stable camelCase field names."""

        data = self.model_dump(mode="json", by_alias=True)
        if data.get("rawText") is None:
            data.pop("rawText", None)
        return data

    def to_json(self) -> str:
        exclude = {"raw_text"} if self.raw_text is None else None
        return self.model_dump_json(by_alias=True, exclude=exclude)
