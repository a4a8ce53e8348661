"""Pick the score to report from the candidates a parse produced."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from models import EvaluationStatus, RubricSchema, RubricSection, ScoreSource


ScorePrecedence = Literal["structural_first", "declared_first"]
PRECEDENCES = ("structural_first", "declared_first")


@dataclass(frozen=True)
class ReconciliationPolicy:
    """How competing score sources are ranked.

    ``structural_first`` (the default) always reports the sum of the itemised
    criteria when any were parsed, so the total can never disagree with the
    breakdown shown next to it. ``declared_first`` trusts the total the
    generator wrote itself whenever one is present.
    """

    precedence: ScorePrecedence = "structural_first"
    floor: int = 0

    def __post_init__(self) -> None:
        if self.precedence not in PRECEDENCES:
            raise ValueError(
                f"Unknown score precedence '{self.precedence}'; expected one of {', '.join(PRECEDENCES)}"
            )
        if self.floor < 0:
            raise ValueError("floor must not be negative")


DEFAULT_POLICY = ReconciliationPolicy()


@dataclass(frozen=True)
class Reconciliation:
    final_score: int
    status: EvaluationStatus
    source: ScoreSource


def structural_sum(sections: Sequence[RubricSection]) -> Optional[int]:
    if not sections:
        return None
    return sum(section.awarded_points for section in sections)


def reconcile_score(
    sections: Sequence[RubricSection],
    declared_score: Optional[int],
    prior_score: Optional[int],
    rubric: RubricSchema,
    *,
    fallback_score: Optional[int] = None,
    policy: ReconciliationPolicy = DEFAULT_POLICY,
) -> Reconciliation:
    """Return the reported score, its status and where it came from."""

    summed = structural_sum(sections)
    if summed is not None:
        if policy.precedence == "declared_first" and declared_score is not None:
            return Reconciliation(max(declared_score, policy.floor), "ok", "declared")
        return Reconciliation(max(summed, policy.floor), "ok", "structural")

    if declared_score is not None and declared_score >= 0:
        return Reconciliation(declared_score, "partial_failure", "declared")

    if fallback_score is not None:
        return Reconciliation(max(fallback_score, policy.floor), "partial_failure", "fallback")

    # A persisted failure sentinel is not a score worth carrying forward.
    if prior_score is not None and prior_score >= 0:
        return Reconciliation(prior_score, "partial_failure", "prior")

    return Reconciliation(rubric.failure_sentinel, "total_failure", "none")
