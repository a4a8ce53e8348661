"""Pydantic models for rubric configuration and parsed evaluations."""

from .evaluation import (
    Criterion,
    EvaluationResult,
    EvaluationStatus,
    RubricSection,
    ScoreSource,
)
from .rubric import CriterionSpec, RubricSchema, SectionSpec, define_rubric

__all__ = [
    "Criterion",
    "CriterionSpec",
    "EvaluationResult",
    "EvaluationStatus",
    "RubricSchema",
    "RubricSection",
    "ScoreSource",
    "SectionSpec",
    "define_rubric",
]
