"""Public entry point: turn generator text into an :class:`EvaluationResult`."""

from __future__ import annotations

from typing import Optional

from models import EvaluationResult, RubricSchema

from .fallback_extractor import extract_fallback
from .score_reconciler import DEFAULT_POLICY, ReconciliationPolicy, reconcile_score
from .structural_parser import parse_structure


def parse_evaluation(
    raw_text: Optional[str],
    rubric: RubricSchema,
    prior_score: Optional[int] = None,
    *,
    policy: Optional[ReconciliationPolicy] = None,
) -> EvaluationResult:
    """Parse ``raw_text`` against ``rubric`` and reconcile the final score.

    Malformed text never raises: the outcome is expressed through
    ``status`` (``ok``, ``partial_failure`` or ``total_failure``). Missing
    text (``None`` or empty) is treated as nothing to parse. Sections are
    kept in order of appearance; when none can be built the original text
    is returned in ``raw_text`` for manual inspection.
    """

    text = raw_text if isinstance(raw_text, str) else ""
    parsed = parse_structure(text, rubric)

    fallback = None
    unclassified = parsed.unclassified_lines
    if not parsed.sections:
        fallback = extract_fallback(text, rubric)
        unclassified = unclassified + fallback.rejected

    outcome = reconcile_score(
        parsed.sections,
        parsed.declared_score,
        prior_score,
        rubric,
        fallback_score=fallback.total if fallback is not None else None,
        policy=policy or DEFAULT_POLICY,
    )

    if outcome.status == "total_failure":
        summary = rubric.failure_summary_text.replace("{raw_text}", text)
    else:
        summary = parsed.summary or rubric.no_summary_text

    return EvaluationResult(
        sections=parsed.sections,
        summary=summary,
        final_score=outcome.final_score,
        status=outcome.status,
        raw_text=None if parsed.sections else text,
        score_source=outcome.source,
        declared_score=parsed.declared_score,
        unclassified_lines=unclassified,
    )
